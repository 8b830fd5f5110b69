"""
Tests for Pydantic schemas - entity links, contact fields and school records.
"""

import pytest
from pydantic import ValidationError

from src.schemas import (
    ContactInfo,
    EntityLink,
    ERROR_VALUE,
    FieldKind,
    Found,
    NOT_FOUND,
    NotFound,
    SchoolRecord,
    UNSPECIFIED,
)


class TestEntityLink:
    """Test EntityLink validation."""

    def test_valid_link_with_defaults(self):
        link = EntityLink(name="  Ecole   A ", url="https://diplomeo.com/etablissement-a", sector="", city=None)
        assert link.name == "Ecole A"
        assert link.sector == UNSPECIFIED
        assert link.city == UNSPECIFIED

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError, match="name cannot be empty"):
            EntityLink(name="   ", url="https://diplomeo.com/etablissement-a")

    def test_relative_url_rejected(self):
        with pytest.raises(ValidationError, match="absolute"):
            EntityLink(name="A", url="/etablissement-a")

    def test_link_is_immutable(self):
        link = EntityLink(name="A", url="https://diplomeo.com/etablissement-a")
        with pytest.raises(ValidationError):
            link.name = "B"


class TestContactInfo:
    """Test tagged contact fields."""

    def test_defaults_are_not_found(self):
        info = ContactInfo()
        for kind in FieldKind:
            assert not info.found(kind)
            assert info.value_of(kind) == NOT_FOUND

    def test_discriminator_from_plain_dicts(self):
        info = ContactInfo.model_validate({
            "email": {"kind": "found", "value": "a@b.fr", "raw": "xznvygb:n@o=cg=se"},
            "phone": {"kind": "not_found"},
        })
        assert isinstance(info.email, Found)
        assert isinstance(info.phone, NotFound)
        assert info.value_of(FieldKind.EMAIL) == "a@b.fr"


class TestSchoolRecord:
    """Test SchoolRecord construction and invariants."""

    link = EntityLink(name="Ecole A", url="https://diplomeo.com/etablissement-a", sector="Commerce", city="Paris")

    def test_from_contact(self):
        info = ContactInfo(website=Found(value="https://ecole-a.fr"))
        record = SchoolRecord.from_contact(self.link, info, formations=["MBA"])
        assert record.website_found and record.website == "https://ecole-a.fr"
        assert record.email == NOT_FOUND and not record.email_found
        assert record.formations == ["MBA"]
        assert record.found_count == 1
        assert record.processed_at.tzinfo is not None

    def test_from_error_uses_sentinels(self):
        record = SchoolRecord.from_error(self.link, "Timeout 60000ms exceeded")
        assert record.error == "Timeout 60000ms exceeded"
        assert (record.email, record.phone, record.website) == (ERROR_VALUE,) * 3
        assert record.found_count == 0

    def test_error_with_found_field_rejected(self):
        with pytest.raises(ValidationError, match="errored record"):
            SchoolRecord(url=self.link.url, name="A", email="a@b.fr", email_found=True, error="boom")

    def test_json_round_trip(self):
        record = SchoolRecord.from_error(self.link, "boom")
        assert SchoolRecord.model_validate_json(record.model_dump_json()) == record
