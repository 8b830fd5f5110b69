from __future__ import annotations

"""
Contact extraction from a single school detail page.

Contact links are hidden in ``.externals-item[data-l]`` attributes and decoded
with ``src.pipeline.codec``. Each field is looked up independently; a missing
element yields ``NotFound`` rather than an error.
"""

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from selectolax.parser import HTMLParser

from src.pipeline import codec
from src.pipeline.consent import ConsentHandler
from src.pipeline.retry import RetryPolicy
from src.schemas import ContactInfo, EntityLink, FieldKind, Found, NotFound, SchoolRecord


FIELD_SELECTORS: Dict[FieldKind, tuple] = {
    FieldKind.EMAIL: ('.externals-item[data-l*="xznvygb:"]',),
    FieldKind.PHONE: ('.externals-item[data-l*="xgry:"]',),
    FieldKind.WEBSITE: ('.externals-item[data-l^="xuggcf://"]', '.externals-item[data-l^="xuggc://"]'),
}

DESCRIPTION_SELECTORS = (".school-description", ".tw-text-body-sm")
ADDRESS_PREFIX = "xnqqerff:"
ADDRESS_SELECTOR = f'.externals-item[data-l*="{ADDRESS_PREFIX}"]'
# Visible address block: a flex row holding a small text label
ADDRESS_BLOCK_SELECTOR = ".tw-flex.tw-gap-2.tw-items-start"
ADDRESS_LABEL_SELECTOR = ".tw-text-body-xs"
FORMATION_SELECTORS = (".diplomas-list li", ".tw-grid-cols-1 .tw-flex.tw-flex-col a")
MAX_FORMATIONS = 50


def _decode_field(parser: HTMLParser, kind: FieldKind):
    for sel in FIELD_SELECTORS[kind]:
        node = parser.css_first(sel)
        if node is None:
            continue
        raw = ((node.attributes or {}).get("data-l") or "").strip()
        if codec.detect_kind(raw) is not kind:
            continue
        value = codec.decode(raw)
        if value and value != raw:
            return Found(value=value, raw=raw)
    return NotFound()


def extract_contact_info(html: str) -> ContactInfo:
    """Decode email/phone/website from detail page HTML. Never raises."""
    try:
        parser = HTMLParser(html or "")
    except Exception:
        return ContactInfo()
    fields = {}
    for kind in FieldKind:
        try:
            fields[kind.value] = _decode_field(parser, kind)
        except Exception:
            fields[kind.value] = NotFound()
    return ContactInfo(**fields)


def _node_text(node) -> str:
    return " ".join((node.text(separator=" ") or "").split())


def _extract_address(parser: HTMLParser) -> str:
    """Encoded address attribute first, then its visible text, then the address block."""
    node = parser.css_first(ADDRESS_SELECTOR)
    if node is not None:
        raw = (node.attributes or {}).get("data-l") or ""
        idx = raw.find(ADDRESS_PREFIX)
        if idx >= 0:
            address = codec.decode_address(raw[idx + len(ADDRESS_PREFIX):])
            if address:
                return address
        text = _node_text(node)
        if text:
            return text
    for block in parser.css(ADDRESS_BLOCK_SELECTOR):
        if block.css_first(ADDRESS_LABEL_SELECTOR) is not None:
            text = _node_text(block)
            if text:
                return text
    return ""


def extract_extras(html: str) -> Dict[str, Any]:
    """Description, postal address and formation titles (best-effort)."""
    extras: Dict[str, Any] = {"description": "", "address": "", "formations": []}
    try:
        parser = HTMLParser(html or "")
    except Exception as e:
        print(f"  ⚠️  Extras parse failed: {e}")
        return extras
    try:
        for sel in DESCRIPTION_SELECTORS:
            node = parser.css_first(sel)
            if node is not None and node.text(strip=True):
                extras["description"] = " ".join(node.text(separator=" ").split())
                break
    except Exception as e:
        print(f"  ⚠️  Description extraction failed: {e}")
    try:
        extras["address"] = _extract_address(parser)
    except Exception as e:
        print(f"  ⚠️  Address extraction failed: {e}")
    try:
        titles: List[str] = []
        for sel in FORMATION_SELECTORS:
            for node in parser.css(sel):
                text = " ".join((node.text(separator=" ") or "").split())
                if text and text not in titles:
                    titles.append(text)
            if titles:
                break
        extras["formations"] = titles[:MAX_FORMATIONS]
    except Exception as e:
        print(f"  ⚠️  Formations extraction failed: {e}")
    return extras


@dataclass
class DetailExtractor:
    """Navigate to one detail page and turn it into a ``SchoolRecord``.

    Navigation is retried through ``retry``; exhaustion propagates so the
    caller can record the failure. Consent overlays are handled on a sample
    of pages (``consent_probability``) since the banner reappears rarely.
    """
    consent: ConsentHandler = field(default_factory=ConsentHandler)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    navigation_timeout_ms: int = 60000
    wait_until: str = "networkidle"
    settle_ms: int = 2000
    consent_probability: float = 0.1
    rng: Callable[[], float] = field(default=random.random, repr=False)
    with_extras: bool = True

    def navigate(self, page: Any, url: str) -> None:
        def _goto():
            page.goto(url, wait_until=self.wait_until, timeout=self.navigation_timeout_ms)

        def _on_retry(attempt: int, e: Exception) -> None:
            print(f"  🔁 Navigation attempt {attempt} failed for {url}: {e}")

        self.retry.call(_goto, on_retry=_on_retry)

    def extract(self, page: Any, link: EntityLink) -> SchoolRecord:
        self.navigate(page, link.url)
        if self.rng() < self.consent_probability:
            self.consent.dismiss(page)
        try:
            page.wait_for_timeout(self.settle_ms)
        except Exception:
            pass
        html = page.content()
        contact = extract_contact_info(html)
        extras = extract_extras(html) if self.with_extras else {}
        record = SchoolRecord.from_contact(link, contact, **extras)
        website = contact.get(FieldKind.WEBSITE)
        if isinstance(website, Found) and codec.uses_tld_shorthand(website.raw):
            # A real .se or .bet host decodes to .com or .org
            record = record.model_copy(update={"needs_review": True})
        return record
