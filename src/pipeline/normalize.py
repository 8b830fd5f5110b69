from __future__ import annotations

import re
import unicodedata
from typing import Dict, List, Optional, Tuple

from src.schemas import SchoolRecord, UNSPECIFIED


EMAIL_RE = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")

# Decoded emails often carry one stray letter after the TLD
EMAIL_SUFFIX_FIXES: Dict[str, str] = {
    ".frs": ".fr",
    ".coms": ".com",
    ".nets": ".net",
    ".orgs": ".org",
    ".orrgs": ".org",
    ".edus": ".edu",
    ".ios": ".io",
    ".cos": ".co",
    ".infos": ".info",
    ".eues": ".eu",
    ".eus": ".eu",
    ".pros": ".pro",
    ".schools": ".school",
    ".institutes": ".institute",
    ".pariss": ".paris",
}
_SUFFIXES_LONGEST_FIRST: List[Tuple[str, str]] = sorted(
    EMAIL_SUFFIX_FIXES.items(), key=lambda kv: len(kv[0]), reverse=True
)

SECTOR_KEYWORDS: Dict[str, str] = {
    "communication": "Communication",
    "commerce": "Commerce",
    "management": "Management",
    "gestion": "Management",
    "ressources humaines": "Ressources Humaines",
    "rh": "Ressources Humaines",
    "informatique": "Informatique",
    "numerique": "Informatique",
    "digital": "Informatique",
    "art": "Art & Design",
    "design": "Art & Design",
    "graphisme": "Art & Design",
    "sante": "Santé",
    "medical": "Santé",
    "paramedical": "Santé",
    "marketing": "Marketing",
    "finance": "Finance & Comptabilité",
    "comptabilite": "Finance & Comptabilité",
    "international": "International",
    "ingenieur": "Ingénierie",
    "ingenierie": "Ingénierie",
    "tourisme": "Tourisme & Hôtellerie",
    "hotellerie": "Tourisme & Hôtellerie",
    "restauration": "Tourisme & Hôtellerie",
    "architecture": "Architecture",
    "immobilier": "Immobilier",
    "juridique": "Droit & Juridique",
    "droit": "Droit & Juridique",
    "agriculture": "Agriculture & Environnement",
    "environnement": "Agriculture & Environnement",
    "education": "Éducation & Formation",
    "formation": "Éducation & Formation",
    "sport": "Sport",
    "transport": "Transport & Logistique",
    "logistique": "Transport & Logistique",
    "luxe": "Luxe & Mode",
    "mode": "Luxe & Mode",
    "cinema": "Médias & Audiovisuel",
    "audiovisuel": "Médias & Audiovisuel",
    "media": "Médias & Audiovisuel",
    "journalisme": "Médias & Audiovisuel",
}


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fix_email_suffix(email: str) -> str:
    for bad, good in _SUFFIXES_LONGEST_FIRST:
        if email.endswith(bad):
            return email[: -len(bad)] + good
    return email


def normalize_email(raw: Optional[str]) -> Optional[str]:
    """Lowercase, repair the TLD and validate.

    Returns None when the result is not a plausible address.
    """
    if not raw:
        return None
    email = fix_email_suffix(raw.strip().lower())
    if not EMAIL_RE.match(email):
        return None
    return email


def normalize_phone(raw: Optional[str]) -> str:
    """Keep digits and '+', and put French numbers in +33 form."""
    if not raw:
        return ""
    phone = re.sub(r"[^\d+]", "", raw)
    if phone.startswith("33") and len(phone) == 11:
        return "+" + phone
    if phone.startswith("0") and len(phone) == 10:
        return "+33" + phone[1:]
    return phone


def normalize_website(raw: Optional[str]) -> str:
    if not raw:
        return ""
    site = raw.strip()
    if not site.startswith(("http://", "https://")):
        site = "https://" + site
    return site


def normalize_sector(raw: Optional[str]) -> str:
    """Map a free-text sector label onto a canonical category.

    Matching is accent- and case-insensitive on substrings; when several
    keywords match, the longest one wins. Unmatched labels keep their text
    with the first letter capitalized.
    """
    if raw is None or not raw.strip() or raw.strip() == UNSPECIFIED:
        return UNSPECIFIED
    text = raw.strip()
    folded = strip_accents(text).lower()
    best: Optional[str] = None
    for keyword in SECTOR_KEYWORDS:
        if keyword in folded and (best is None or len(keyword) > len(best)):
            best = keyword
    if best is not None:
        return SECTOR_KEYWORDS[best]
    return text[0].upper() + text[1:]


def normalize_city(raw: Optional[str]) -> str:
    """Collapse whitespace and capitalize each space- or hyphen-separated part."""
    if raw is None or not raw.strip():
        return UNSPECIFIED
    city = " ".join(raw.split())
    return re.sub(r"(^|[\s-])(\w)", lambda m: m.group(1) + m.group(2).upper(), city)


def normalize_record(record: SchoolRecord) -> SchoolRecord:
    """Clean the contact and label fields of a processed record.

    Errored records are returned untouched. A found email that does not
    validate keeps its decoded value and is flagged for review.
    """
    if record.error is not None:
        return record
    updates: Dict[str, object] = {
        "sector": normalize_sector(record.sector),
        "city": normalize_city(record.city),
    }
    if record.email_found:
        email = normalize_email(record.email)
        if email is None:
            updates["needs_review"] = True
        else:
            updates["email"] = email
    if record.phone_found:
        updates["phone"] = normalize_phone(record.phone) or record.phone
    if record.website_found:
        updates["website"] = normalize_website(record.website)
    return record.model_copy(update=updates)
