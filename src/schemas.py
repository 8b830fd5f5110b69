"""
School Directory Contacts - Pydantic Data Schemas

Core data models for directory entities, decoded contact fields and the
per-school records written to the checkpoint/output JSON files.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


NOT_FOUND = "Not found"
ERROR_VALUE = "Not available (error)"
UNSPECIFIED = "Unspecified"


class FieldKind(str, Enum):
    """Types of obfuscated contact fields found on detail pages."""
    EMAIL = "email"
    PHONE = "phone"
    WEBSITE = "website"


class EntityLink(BaseModel):
    """
    One school discovered on a listing page.

    The canonical URL is the unique key across discovery, checkpoints and
    the consolidated output.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        description="Display name as shown on the listing card"
    )

    url: str = Field(
        ...,
        description="Absolute canonical detail page URL"
    )

    sector: str = Field(
        default=UNSPECIFIED,
        description="Raw sector label from the listing card"
    )

    city: str = Field(
        default=UNSPECIFIED,
        description="Raw city label from the listing card"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Names must be non-empty after trimming."""
        if not v or not v.strip():
            raise ValueError('name cannot be empty')
        return " ".join(v.split())

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('url must be an absolute HTTP/HTTPS URL')
        return v

    @field_validator('sector', 'city', mode='before')
    @classmethod
    def default_blank_labels(cls, v):
        """Blank labels fall back to the Unspecified sentinel."""
        if v is None or not str(v).strip():
            return UNSPECIFIED
        return " ".join(str(v).split())


class Found(BaseModel):
    """A decoded contact value together with the encoded attribute it came from."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["found"] = "found"
    value: str
    raw: str = ""


class NotFound(BaseModel):
    """The detail page carried no element for this field."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_found"] = "not_found"


ContactField = Annotated[Union[Found, NotFound], Field(discriminator="kind")]


class ContactInfo(BaseModel):
    """Decoded email/phone/website for one detail page."""
    email: ContactField = Field(default_factory=NotFound)
    phone: ContactField = Field(default_factory=NotFound)
    website: ContactField = Field(default_factory=NotFound)

    def get(self, kind: FieldKind) -> Union[Found, NotFound]:
        return getattr(self, FieldKind(kind).value)

    def found(self, kind: FieldKind) -> bool:
        return isinstance(self.get(kind), Found)

    def value_of(self, kind: FieldKind) -> str:
        """Decoded value, or the Not found sentinel."""
        field = self.get(kind)
        return field.value if isinstance(field, Found) else NOT_FOUND


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchoolRecord(BaseModel):
    """
    Flat per-school record, the unit written to batch checkpoints and the
    consolidated output file.

    A record carrying ``error`` never claims a found contact field.
    """
    url: str = Field(..., description="Canonical detail page URL (unique key)")
    name: str = Field(..., description="School name from the listing")
    city: str = Field(default=UNSPECIFIED, description="City label")
    sector: str = Field(default=UNSPECIFIED, description="Sector label")

    email: str = Field(default=NOT_FOUND)
    email_found: bool = False
    phone: str = Field(default=NOT_FOUND)
    phone_found: bool = False
    website: str = Field(default=NOT_FOUND)
    website_found: bool = False

    description: str = ""
    address: str = ""
    formations: List[str] = Field(default_factory=list)

    processed_at: datetime = Field(default_factory=_utcnow)
    error: Optional[str] = Field(
        default=None,
        description="Failure message when the detail page could not be processed"
    )
    needs_review: bool = Field(
        default=False,
        description="Decoded email failed format validation"
    )

    @model_validator(mode='after')
    def check_error_consistency(self):
        """Errored records cannot report found contacts."""
        if self.error is not None:
            if self.email_found or self.phone_found or self.website_found:
                raise ValueError('errored record cannot have found contact fields')
        return self

    @property
    def found_count(self) -> int:
        return sum((self.email_found, self.phone_found, self.website_found))

    @classmethod
    def from_contact(
        cls,
        link: EntityLink,
        contact: ContactInfo,
        *,
        description: str = "",
        address: str = "",
        formations: Optional[List[str]] = None,
    ) -> 'SchoolRecord':
        """Build a record from a listing entity and its decoded contact info."""
        return cls(
            url=link.url,
            name=link.name,
            city=link.city,
            sector=link.sector,
            email=contact.value_of(FieldKind.EMAIL),
            email_found=contact.found(FieldKind.EMAIL),
            phone=contact.value_of(FieldKind.PHONE),
            phone_found=contact.found(FieldKind.PHONE),
            website=contact.value_of(FieldKind.WEBSITE),
            website_found=contact.found(FieldKind.WEBSITE),
            description=description,
            address=address,
            formations=list(formations or []),
        )

    @classmethod
    def from_error(cls, link: EntityLink, message: str) -> 'SchoolRecord':
        """Error record: all contact values carry the error sentinel."""
        return cls(
            url=link.url,
            name=link.name,
            city=link.city,
            sector=link.sector,
            email=ERROR_VALUE,
            phone=ERROR_VALUE,
            website=ERROR_VALUE,
            error=message or "unknown error",
        )
