from __future__ import annotations

"""
Decoder for the obfuscated contact attributes on school detail pages.

The directory hides contact links in a ``data-l`` attribute: the whole link
(including a leading ``k`` before the scheme) is ROT13-rotated over ASCII
letters, and punctuation is spelled out with ``=xx=`` tokens:

    xznvygb:pbagnpg@rpbyr=cg=se   ->  contact@ecole.fr
    xgry:0123456789f              ->  0123456789
    xuggcf://jjj=cg=rpbyr=pb=n=cg=se -> https://www.ecole-a.fr

Decoding never raises; unknown tokens are left in place.
"""

import re
from typing import Dict, List, Optional, Tuple

from src.schemas import FieldKind


EMAIL_PREFIX = "xznvygb:"
PHONE_PREFIX = "xgry:"
WEBSITE_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("xuggcf://", "https://"),
    ("xuggc://", "http://"),
)

# Site appends this marker to encoded phone numbers
PHONE_SENTINEL = "f"

# Applied after rotation. Order matters: host suffix tokens before the plain dot.
DOT_TOKENS: Tuple[str, ...] = ("=pt=", "=cg=")
DASH_TOKEN = "=co="
TLD_TOKENS: Tuple[Tuple[str, str], ...] = (
    ("=pt=bet", ".org"),
    ("=cg=bet", ".org"),
    ("=pt=se", ".com"),
    ("=cg=se", ".com"),
)
_TLD_RE = re.compile(
    r"(" + "|".join(re.escape(tok) for tok, _ in TLD_TOKENS) + r")(?=$|[/:?#])"
)
_TLD_MAP: Dict[str, str] = dict(TLD_TOKENS)


def rot13(text: str) -> str:
    """Rotate ASCII letters by 13, preserving case. Everything else is kept."""
    out: List[str] = []
    for ch in text:
        if "a" <= ch <= "z":
            out.append(chr((ord(ch) - 97 + 13) % 26 + 97))
        elif "A" <= ch <= "Z":
            out.append(chr((ord(ch) - 65 + 13) % 26 + 65))
        else:
            out.append(ch)
    return "".join(out)


def detect_kind(field: str) -> Optional[FieldKind]:
    """Return the contact kind announced by the encoded prefix, if any."""
    s = (field or "").strip()
    if s.startswith(EMAIL_PREFIX):
        return FieldKind.EMAIL
    if s.startswith(PHONE_PREFIX):
        return FieldKind.PHONE
    if any(s.startswith(p) for p, _ in WEBSITE_PREFIXES):
        return FieldKind.WEBSITE
    return None


def _substitute_tokens(text: str) -> str:
    for tok in DOT_TOKENS:
        text = text.replace(tok, ".")
    return text.replace(DASH_TOKEN, "-")


def _decode_host_suffix(body: str) -> str:
    # Only the end of the host segment carries TLD shorthand
    host, sep, rest = body.partition("/")
    host = _TLD_RE.sub(lambda m: _TLD_MAP[m.group(1)], host)
    return host + sep + rest


def decode_address(body: str) -> str:
    """Decode the part of an address attribute after its prefix (``+`` encodes a space)."""
    try:
        return " ".join(_substitute_tokens(rot13(body or "")).replace("+", " ").split())
    except Exception:
        return body


def uses_tld_shorthand(field: str) -> bool:
    """True when decoding rewrites the website host ending (``.se``/``.bet`` are ambiguous)."""
    s = (field or "").strip()
    for prefix, _ in WEBSITE_PREFIXES:
        if s.startswith(prefix):
            host = rot13(s[len(prefix):]).partition("/")[0]
            return _TLD_RE.search(host) is not None
    return False


def decode(field: str) -> str:
    """Decode one ``data-l`` attribute value.

    Values without a known scheme prefix are returned unchanged.
    """
    if not field:
        return field
    s = field.strip()
    kind = detect_kind(s)
    if kind is None:
        return field
    try:
        if kind is FieldKind.EMAIL:
            return _substitute_tokens(rot13(s[len(EMAIL_PREFIX):]))
        if kind is FieldKind.PHONE:
            body = s[len(PHONE_PREFIX):]
            if body.endswith(PHONE_SENTINEL):
                body = body[: -len(PHONE_SENTINEL)]
            return _substitute_tokens(rot13(body))
        for prefix, scheme in WEBSITE_PREFIXES:
            if s.startswith(prefix):
                body = _decode_host_suffix(rot13(s[len(prefix):]))
                return scheme + _substitute_tokens(body)
    except Exception:
        return field
    return field


def encode(value: str, kind: FieldKind) -> str:
    """Inverse of ``decode`` for building page fixtures.

    ``=`` is reserved and must not appear in ``value``. Website hosts ending in
    ``.se`` or ``.bet`` do not survive a round trip (TLD shorthand).
    """
    if "=" in value:
        raise ValueError("'=' is reserved in encoded values")
    kind = FieldKind(kind)
    if kind is FieldKind.WEBSITE:
        for prefix, scheme in WEBSITE_PREFIXES:
            if value.startswith(scheme):
                body = value[len(scheme):]
                return prefix + rot13(body.replace(".", "=pt=").replace("-", "=co="))
        raise ValueError("website must start with http:// or https://")
    spelled = rot13(value.replace(".", "=pt=").replace("-", "=co="))
    if kind is FieldKind.EMAIL:
        return EMAIL_PREFIX + spelled
    return PHONE_PREFIX + spelled + PHONE_SENTINEL
