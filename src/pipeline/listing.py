from __future__ import annotations

"""
Entity extraction from directory listing pages.

The listing markup changes between page variants, so extraction runs an
ordered list of strategies and keeps the first one that yields entities:

1. result items under ``ul[data-cy="hub-schools-results"]``
2. generic ``.tw-group`` cards
3. a raw scan of detail anchors, recovering sector/city from ancestors by
   label class or, failing that, by the shape of nearby text
"""

import re
from functools import partial
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

from selectolax.parser import HTMLParser, Node

from src.schemas import EntityLink


DETAIL_PATH_PATTERN = "/etablissement-"
RESULTS_CONTAINER = 'ul[data-cy="hub-schools-results"]'
RESULT_ITEM_SELECTORS = ('ul[data-cy="hub-schools-results"] li',)
CARD_SELECTORS = (".tw-group",)
SECTOR_SELECTORS = (".tw-text-body-xs.tw-font-sans.tw-text-gray-800", ".tw-text-xs")
CITY_SELECTORS = (".tw-text-body-xs.tw-font-semibold", ".tw-text-xs.tw-font-bold")
MAX_ANCESTOR_LEVELS = 5
TEXT_NODE_SELECTOR = "span, p, div"
_TEXT_TAGS = ("span", "p", "div")
MAX_SECTOR_TEXT = 50
MAX_CITY_TEXT = 30
_POSTCODE_RE = re.compile(r"^\d{5}")
_CAPITALIZED_RE = re.compile(r"^[A-Z]")

ListingStrategy = Callable[[HTMLParser, str], Optional[List[EntityLink]]]


def canonical_url(href: str, base_url: str) -> Optional[str]:
    """Absolute detail URL with lowercase host and no query, fragment or trailing slash."""
    try:
        absolute = urljoin(base_url, (href or "").strip())
        p = urlparse(absolute)
        if p.scheme not in ("http", "https") or not p.netloc:
            return None
        path = p.path or ""
        if path.endswith("/") and path != "/":
            path = path.rstrip("/")
        return urlunparse(p._replace(netloc=p.netloc.lower(), path=path, query="", fragment=""))
    except Exception:
        return None


def _first_text(node: Node, selectors: Sequence[str]) -> Optional[str]:
    for sel in selectors:
        try:
            found = node.css_first(sel)
        except Exception:
            found = None
        if found is not None:
            text = (found.text(strip=True) or "").strip()
            if text:
                return text
    return None


def _detail_anchor(node: Node, detail_pattern: str = DETAIL_PATH_PATTERN) -> Optional[Node]:
    return node.css_first(f'a[href*="{detail_pattern}"]')


def _anchor_name(anchor: Node) -> str:
    text = anchor.text(separator=" ", strip=True) or ""
    if not text.strip():
        attrs = anchor.attributes or {}
        text = attrs.get("title") or attrs.get("aria-label") or ""
    return " ".join(text.split())


def _text_candidates(scope: Node, detail_pattern: str) -> List[str]:
    """Texts of innermost text elements under ``scope`` that do not wrap a school anchor."""
    texts: List[str] = []
    for node in scope.css(TEXT_NODE_SELECTOR):
        if _detail_anchor(node, detail_pattern) is not None:
            continue
        if any(child.tag in _TEXT_TAGS for child in node.iter()):
            continue
        text = " ".join((node.text(separator=" ", strip=True) or "").split())
        if text and text not in texts:
            texts.append(text)
    return texts


def guess_labels(texts: Sequence[str]) -> Tuple[Optional[str], Optional[str]]:
    """Pick (sector, city) from free texts by shape.

    City: under 30 chars, postal code first, else a capitalized word.
    Sector: under 50 chars, not starting with a digit, not the city.
    """
    city = next((t for t in texts if len(t) < MAX_CITY_TEXT and _POSTCODE_RE.match(t)), None)
    sector = next(
        (t for t in texts if len(t) < MAX_SECTOR_TEXT and not t[0].isdigit() and t != city),
        None,
    )
    if city is None:
        city = next(
            (t for t in texts if len(t) < MAX_CITY_TEXT and _CAPITALIZED_RE.match(t) and t != sector),
            None,
        )
    return sector, city


def _scope_labels(scope: Node, detail_pattern: str, by_shape: bool) -> Tuple[Optional[str], Optional[str]]:
    sector = _first_text(scope, SECTOR_SELECTORS)
    city = _first_text(scope, CITY_SELECTORS)
    if by_shape and sector is None and city is None:
        return guess_labels(_text_candidates(scope, detail_pattern))
    return sector, city


def _build_link(
    anchor: Node,
    base_url: str,
    scope: Optional[Node],
    detail_pattern: str = DETAIL_PATH_PATTERN,
    by_shape: bool = False,
) -> Optional[EntityLink]:
    href = (anchor.attributes or {}).get("href")
    url = canonical_url(href or "", base_url)
    name = _anchor_name(anchor)
    if not url or not name or detail_pattern not in url:
        return None
    sector, city = (None, None)
    if scope is not None:
        sector, city = _scope_labels(scope, detail_pattern, by_shape)
    try:
        return EntityLink(name=name, url=url, sector=sector, city=city)
    except ValueError:
        return None


def _from_items(
    parser: HTMLParser,
    base_url: str,
    selectors: Iterable[str],
    detail_pattern: str,
) -> List[EntityLink]:
    out: List[EntityLink] = []
    seen: Set[str] = set()
    for sel in selectors:
        for item in parser.css(sel):
            anchor = _detail_anchor(item, detail_pattern)
            if anchor is None:
                continue
            link = _build_link(anchor, base_url, item, detail_pattern)
            if link and link.url not in seen:
                seen.add(link.url)
                out.append(link)
    return out


def from_results_list(
    parser: HTMLParser, base_url: str, detail_pattern: str = DETAIL_PATH_PATTERN
) -> Optional[List[EntityLink]]:
    return _from_items(parser, base_url, RESULT_ITEM_SELECTORS, detail_pattern)


def from_group_cards(
    parser: HTMLParser, base_url: str, detail_pattern: str = DETAIL_PATH_PATTERN
) -> Optional[List[EntityLink]]:
    return _from_items(parser, base_url, CARD_SELECTORS, detail_pattern)


def _looks_like_card(node: Node, detail_pattern: str) -> bool:
    """A container that carries label-like text but only one school."""
    anchors = node.css(f'a[href*="{detail_pattern}"]')
    hrefs = {(a.attributes or {}).get("href") for a in anchors}
    if len(hrefs) > 1:
        return False
    if _first_text(node, SECTOR_SELECTORS + CITY_SELECTORS) is not None:
        return True
    return bool(_text_candidates(node, detail_pattern))


def _card_scope(anchor: Node, detail_pattern: str = DETAIL_PATH_PATTERN) -> Optional[Node]:
    node = anchor.parent
    for _ in range(MAX_ANCESTOR_LEVELS):
        if node is None or node.tag in ("body", "html"):
            return None
        if _looks_like_card(node, detail_pattern):
            return node
        node = node.parent
    return None


def from_detail_anchors(
    parser: HTMLParser, base_url: str, detail_pattern: str = DETAIL_PATH_PATTERN
) -> Optional[List[EntityLink]]:
    out: List[EntityLink] = []
    seen: Set[str] = set()
    for anchor in parser.css(f'a[href*="{detail_pattern}"]'):
        scope = _card_scope(anchor, detail_pattern)
        link = _build_link(anchor, base_url, scope, detail_pattern, by_shape=True)
        if link and link.url not in seen:
            seen.add(link.url)
            out.append(link)
    return out


DEFAULT_STRATEGIES: List[ListingStrategy] = [
    from_results_list,
    from_group_cards,
    from_detail_anchors,
]


def default_strategies(detail_pattern: str = DETAIL_PATH_PATTERN) -> List[ListingStrategy]:
    """The default strategies bound to a detail path pattern."""
    if detail_pattern == DETAIL_PATH_PATTERN:
        return list(DEFAULT_STRATEGIES)
    return [partial(s, detail_pattern=detail_pattern) for s in DEFAULT_STRATEGIES]


def first_success(strategies: Sequence[ListingStrategy], parser: HTMLParser, base_url: str) -> List[EntityLink]:
    """Run strategies in order; the first non-empty result wins.

    A strategy that raises counts as a miss.
    """
    for strategy in strategies:
        name = getattr(strategy, "__name__", None) or getattr(getattr(strategy, "func", None), "__name__", strategy)
        try:
            result = strategy(parser, base_url)
        except Exception as e:
            print(f"  ⚠️  Listing strategy {name} failed: {e}")
            continue
        if result:
            return list(result)
    return []


def extract_entities(
    html: str,
    base_url: str,
    strategies: Optional[Sequence[ListingStrategy]] = None,
    detail_pattern: str = DETAIL_PATH_PATTERN,
) -> List[EntityLink]:
    """Extract unique entities (by canonical URL) from one listing page.

    ``detail_pattern`` only applies to the default strategies.
    """
    if not html:
        return []
    parser = HTMLParser(html)
    return first_success(strategies or default_strategies(detail_pattern), parser, base_url)
