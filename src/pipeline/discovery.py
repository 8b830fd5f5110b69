from __future__ import annotations

"""
Link discovery over the school directory results pages.

Three strategies run in order until the target number of unique schools is
reached:

A. incremental reveal: one results page, scroll and click "load more" until
   the listing stops growing
B. pagination: ``?page=N`` for N = 1..max_pages
C. faceted filtering: one results page per sector facet, then per
   sector x locality facet

Every page-level failure is printed and skipped; discovery always returns
what it accumulated, unique by canonical URL and in discovery order.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set
from urllib.parse import quote

from src.pipeline.consent import ConsentHandler
from src.pipeline.listing import DETAIL_PATH_PATTERN, RESULTS_CONTAINER, ListingStrategy, extract_entities
from src.schemas import EntityLink


BASE_URL = "https://diplomeo.com/etablissements/resultats"
FALLBACK_CONTAINER = ".tw-flex.tw-flex-col.tw-w-full"

SECTOR_CATALOG = (
    "Communication", "Commerce", "Art", "Management", "Informatique", "Santé",
    "Marketing", "Design", "Finance", "International", "Ingénieur", "Gestion",
    "Graphisme", "Ressources Humaines", "Tourisme", "Architecture",
)
LOCALITY_CATALOG = (
    "Paris", "Lyon", "Marseille", "Toulouse", "Bordeaux", "Lille", "Nantes",
    "Strasbourg", "Montpellier", "Rennes", "Nice",
)

STRATEGY_ORDER = ("incremental_reveal", "paginate", "faceted")

_SCROLL_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"
_SCROLL_UP_JS = "() => window.scrollBy(0, -300)"

# Layered "load more" triggers, most specific first. Each returns true on click.
LOAD_MORE_TRIGGERS = (
    """
    () => {
      const el = document.querySelector('div[data-action="click->pagination#loadMoreTrainings"]');
      if (!el) return false;
      el.scrollIntoView({block: 'center'});
      el.click();
      return true;
    }
    """,
    """
    () => {
      const phrases = ['voir plus', 'charger plus', 'afficher plus', 'plus de résultats'];
      const els = Array.from(document.querySelectorAll('button, a, span, div'));
      for (const p of phrases) {
        const el = els.find(e => {
          const t = (e.innerText || '').toLowerCase().trim();
          return t.length > 0 && t.length < 60 && t.includes(p);
        });
        if (el) { el.scrollIntoView({block: 'center'}); el.click(); return true; }
      }
      return false;
    }
    """,
    """
    () => {
      const h = window.innerHeight;
      const els = Array.from(document.querySelectorAll('button, div.tw-inline-flex'));
      for (const e of els) {
        const r = e.getBoundingClientRect();
        const st = window.getComputedStyle(e);
        if (r.width === 0 || r.height === 0 || st.visibility === 'hidden' || st.display === 'none') continue;
        if (r.top >= h * 0.7 && r.top <= h && (e.innerText || '').trim() !== '') { e.click(); return true; }
      }
      return false;
    }
    """,
)


@dataclass
class DiscoveryConfig:
    base_url: str = BASE_URL
    detail_pattern: str = DETAIL_PATH_PATTERN
    target_count: int = 1700
    max_scroll_iterations: int = 300
    no_growth_threshold: int = 3
    max_pages: int = 300
    facet_scroll_rounds: int = 5
    sectors: Sequence[str] = SECTOR_CATALOG
    localities: Sequence[str] = LOCALITY_CATALOG
    strategies: Sequence[str] = STRATEGY_ORDER
    navigation_timeout_ms: int = 60000
    container_timeout_ms: int = 10000
    scroll_wait_ms: int = 2000
    load_wait_ms: int = 2500
    page_delay_s: float = 2.0
    error_delay_s: float = 5.0
    consent_every_pages: int = 10
    consent_every_facets: int = 5
    checkpoint_every: int = 5


class LinkAccumulator:
    """Ordered set of entities keyed by canonical URL (first seen wins)."""

    def __init__(self, links: Optional[Iterable[EntityLink]] = None) -> None:
        self._links: List[EntityLink] = []
        self._urls: Set[str] = set()
        if links:
            self.add_all(links)

    def add(self, link: EntityLink) -> bool:
        if link.url in self._urls:
            return False
        self._urls.add(link.url)
        self._links.append(link)
        return True

    def add_all(self, links: Iterable[EntityLink]) -> int:
        return sum(1 for link in links if self.add(link))

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __len__(self) -> int:
        return len(self._links)

    def links(self) -> List[EntityLink]:
        return list(self._links)


def with_query(base_url: str, query: str) -> str:
    sep = "&" if "?" in base_url else "?"
    return f"{base_url}{sep}{query}"


def page_url(base_url: str, n: int) -> str:
    return with_query(base_url, f"page={n}")


def facet_url(base_url: str, sector: str, locality: Optional[str] = None) -> str:
    url = with_query(base_url, f"f[0]=field_domain:{quote(sector)}")
    if locality:
        url += f"&f[1]=field_city:{quote(locality)}"
    return url


class DiscoveryEngine:
    """Collect school entities from the listing pages with a single browser page."""

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        *,
        consent: Optional[ConsentHandler] = None,
        listing_strategies: Optional[Sequence[ListingStrategy]] = None,
        sleep: Callable[[float], None] = time.sleep,
        ops_logger: Any = None,
        on_checkpoint: Optional[Callable[[List[EntityLink]], None]] = None,
    ) -> None:
        self.config = config or DiscoveryConfig()
        self.consent = consent or ConsentHandler()
        self.listing_strategies = listing_strategies
        self.sleep = sleep
        self.ops_logger = ops_logger
        self.on_checkpoint = on_checkpoint

    # --- page helpers -------------------------------------------------

    def extract(self, page: Any) -> List[EntityLink]:
        """Entities currently rendered on ``page``; errors count as zero."""
        try:
            html = page.content()
            return extract_entities(
                html, self.config.base_url, self.listing_strategies, self.config.detail_pattern
            )
        except Exception as e:
            print(f"  ⚠️  Extraction failed: {e}")
            return []

    def _goto(self, page: Any, url: str) -> None:
        page.goto(url, wait_until="networkidle", timeout=self.config.navigation_timeout_ms)

    def _wait_for_listing(self, page: Any) -> bool:
        for sel in (RESULTS_CONTAINER, FALLBACK_CONTAINER):
            try:
                page.wait_for_selector(sel, timeout=self.config.container_timeout_ms)
                return True
            except Exception:
                continue
        return False

    def _pause(self, ms: int) -> None:
        self.sleep(ms / 1000.0)

    def _scroll_to_bottom(self, page: Any) -> None:
        try:
            page.evaluate(_SCROLL_BOTTOM_JS)
        except Exception:
            pass

    def trigger_load_more(self, page: Any) -> bool:
        """Click the first "load more" control the layered triggers can find.

        When nothing fires, scroll up slightly and try the layers once more.
        """
        for attempt in range(2):
            for snippet in LOAD_MORE_TRIGGERS:
                try:
                    if page.evaluate(snippet):
                        return True
                except Exception:
                    continue
            if attempt == 0:
                try:
                    page.evaluate(_SCROLL_UP_JS)
                except Exception:
                    pass
                self._pause(1000)
        return False

    def _wait_for_growth(self, page: Any) -> None:
        try:
            page.wait_for_load_state("networkidle", timeout=self.config.container_timeout_ms)
        except Exception:
            pass
        self._pause(self.config.load_wait_ms)

    def _checkpoint(self, acc: LinkAccumulator) -> None:
        if self.on_checkpoint is None:
            return
        try:
            self.on_checkpoint(acc.links())
        except Exception as e:
            print(f"  ⚠️  Intermediate save failed: {e}")

    def _emit(self, kind: str, **fields: Any) -> None:
        if self.ops_logger is not None:
            self.ops_logger.event(kind, **fields)

    # --- strategies ---------------------------------------------------

    def incremental_reveal(self, page: Any, acc: LinkAccumulator, target: int) -> None:
        cfg = self.config
        print(f"📜 Incremental reveal on {cfg.base_url}")
        self._goto(page, cfg.base_url)
        self.consent.dismiss(page)
        if not self._wait_for_listing(page):
            print("  ⚠️  Listing container not found, skipping incremental reveal")
            return
        acc.add_all(self.extract(page))
        stale = 0
        for i in range(1, cfg.max_scroll_iterations + 1):
            if len(acc) >= target:
                break
            self._scroll_to_bottom(page)
            self._pause(cfg.scroll_wait_ms)
            self.trigger_load_more(page)
            self._wait_for_growth(page)
            added = acc.add_all(self.extract(page))
            print(f"  ↳ iteration {i}: +{added} (total {len(acc)})")
            if i % cfg.checkpoint_every == 0:
                self._checkpoint(acc)
            if added == 0:
                stale += 1
                if stale >= cfg.no_growth_threshold:
                    print(f"  ⏹️  No new schools for {stale} iterations, stopping")
                    break
            else:
                stale = 0

    def paginate(self, page: Any, acc: LinkAccumulator, target: int) -> None:
        cfg = self.config
        print(f"📄 Pagination over up to {cfg.max_pages} pages")
        for n in range(1, cfg.max_pages + 1):
            if len(acc) >= target:
                break
            url = page_url(cfg.base_url, n)
            try:
                self._goto(page, url)
                if (n - 1) % cfg.consent_every_pages == 0:
                    self.consent.dismiss(page)
                if not self._wait_for_listing(page):
                    print(f"  ⚠️  Page {n}: no listing, skipping")
                    continue
                added = acc.add_all(self.extract(page))
                print(f"  ↳ page {n}: +{added} (total {len(acc)})")
                if n % cfg.checkpoint_every == 0:
                    self._checkpoint(acc)
                self.sleep(cfg.page_delay_s)
            except Exception as e:
                print(f"  ⚠️  Page {n} failed: {e}")
                self.sleep(cfg.error_delay_s)

    def _sweep_facet(self, page: Any, acc: LinkAccumulator, url: str, label: str, index: int) -> None:
        cfg = self.config
        try:
            self._goto(page, url)
            if index % cfg.consent_every_facets == 0:
                self.consent.dismiss(page)
            if not self._wait_for_listing(page):
                print(f"  ⚠️  No results for {label}, skipping")
                return
            for _ in range(cfg.facet_scroll_rounds):
                self._scroll_to_bottom(page)
                self._pause(cfg.scroll_wait_ms)
                self.trigger_load_more(page)
            added = acc.add_all(self.extract(page))
            print(f"  ↳ {label}: +{added} (total {len(acc)})")
            self.sleep(cfg.page_delay_s)
        except Exception as e:
            print(f"  ⚠️  Facet {label} failed: {e}")

    def faceted(self, page: Any, acc: LinkAccumulator, target: int) -> None:
        cfg = self.config
        print(f"🧭 Faceted sweep over {len(cfg.sectors)} sectors")
        for i, sector in enumerate(cfg.sectors):
            if len(acc) >= target:
                return
            self._sweep_facet(page, acc, facet_url(cfg.base_url, sector), sector, i)
        self._checkpoint(acc)
        if len(acc) >= target or not cfg.localities:
            return
        print(f"🧭 Sector x locality sweep ({len(cfg.sectors)} x {len(cfg.localities)})")
        index = 0
        for sector in cfg.sectors:
            for locality in cfg.localities:
                if len(acc) >= target:
                    return
                url = facet_url(cfg.base_url, sector, locality)
                self._sweep_facet(page, acc, url, f"{sector} / {locality}", index)
                index += 1

    # --- entry point --------------------------------------------------

    def discover(self, page: Any, target_count: Optional[int] = None) -> List[EntityLink]:
        target = int(target_count if target_count is not None else self.config.target_count)
        acc = LinkAccumulator()
        for name in self.config.strategies:
            if len(acc) >= target:
                break
            strategy = getattr(self, name, None)
            if strategy is None:
                print(f"⚠️  Unknown discovery strategy: {name}")
                continue
            before = len(acc)
            started = time.perf_counter()
            try:
                strategy(page, acc, target)
            except KeyboardInterrupt:
                print(f"🛑 Interrupted during {name}, saving {len(acc)} links")
                self._checkpoint(acc)
                self._emit("discovery_interrupted", strategy=name, total=len(acc))
                raise
            except Exception as e:
                print(f"⚠️  Strategy {name} aborted: {e}")
            print(f"✅ {name}: +{len(acc) - before} (total {len(acc)}/{target})")
            self._emit(
                "discovery_strategy",
                strategy=name,
                added=len(acc) - before,
                total=len(acc),
                duration_s=round(time.perf_counter() - started, 2),
            )
            self._checkpoint(acc)
        self._emit("discovery_done", total=len(acc), target=target)
        return acc.links()
