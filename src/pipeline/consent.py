from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional, Sequence


OVERLAY_SELECTORS = (
    "#didomi-notice",
    ".cookies-notice",
    "#tarteaucitronAlertBig",
    "#tarteaucitronRoot",
    "#cookieChoiceInfo",
    ".cookie-consent",
    ".cookie-banner",
    "#cookie-law-info-bar",
    ".gdpr",
    '[aria-label="Cookie banner"]',
    "#CybotCookiebotDialog",
    '[aria-label="Cookies"]',
    ".js-consent-banner",
    "#cookiebanner",
    ".hw-cc-modal__wrapper",
    ".hw-cc-notice-box",
)

ACCEPT_SELECTORS = (
    "#didomi-notice-agree-button",
    "#onetrust-accept-btn-handler",
    ".js-accept-cookies",
    "#tarteaucitronPersonalize",
    "#CybotCookiebotDialogBodyButtonAccept",
    ".cookies-notice-ok",
    ".cookie-accept",
    ".cc-btn.cc-allow",
    "#acceptCookies",
    ".accept-cookies-button",
    'button[aria-label="Consentir"]',
    '[data-gdpr-action="accept"]',
    ".hw-cc-btn--primary",
    'button:has-text("Tout accepter")',
    'button:has-text("Accepter")',
    'button:has-text("Accept all")',
    'button:has-text("Accept")',
)

ACCEPT_PHRASES = (
    "tout accepter",
    "accepter tout",
    "accepter les cookies",
    "accept all cookies",
    "accept all",
    "accept cookies",
    "j'accepte",
    "accepter",
    "accepte",
    "accept",
    "agree",
    "allow",
    "autoriser",
    "continuer",
    "oui",
    "ok",
)

# Single round trip: is any known overlay in the DOM?
_OVERLAY_CHECK_JS = """
(selectors) => selectors.some(s => { try { return document.querySelector(s) !== null; } catch (e) { return false; } })
"""

# Click the first visible clickable element whose text contains an accept phrase
_TEXT_SCAN_JS = """
(phrases) => {
  const visible = (el) => {
    const st = window.getComputedStyle(el);
    return st.display !== 'none' && st.visibility !== 'hidden' && st.opacity !== '0'
      && el.offsetWidth > 0 && el.offsetHeight > 0;
  };
  const nodes = document.querySelectorAll('button, a, [role="button"], input[type="button"], input[type="submit"]');
  for (const el of nodes) {
    if (!visible(el)) continue;
    const text = ((el.innerText || el.value || '') + '').toLowerCase().trim();
    if (!text || text.length > 40) continue;
    if (phrases.some(p => text === p || text.includes(p))) { el.click(); return true; }
  }
  return false;
}
"""


class ConsentHandler:
    """Best-effort dismissal of cookie/consent overlays.

    - Fast path: one ``evaluate`` checks for any known overlay; none -> False
    - Accept-button selectors are tried in order, then a visible-text scan
    - Never raises to caller
    """

    def __init__(
        self,
        *,
        click_timeout_ms: int = 3000,
        settle_ms: int = 1000,
        screenshots_dir: Optional[Path] = None,
        overlay_selectors: Sequence[str] = OVERLAY_SELECTORS,
        accept_selectors: Sequence[str] = ACCEPT_SELECTORS,
        accept_phrases: Sequence[str] = ACCEPT_PHRASES,
    ) -> None:
        self.click_timeout_ms = click_timeout_ms
        self.settle_ms = settle_ms
        self.screenshots_dir = Path(screenshots_dir) if screenshots_dir else None
        self.overlay_selectors = list(overlay_selectors)
        self.accept_selectors = list(accept_selectors)
        self.accept_phrases = list(accept_phrases)

    def overlay_present(self, page: Any) -> bool:
        try:
            return bool(page.evaluate(_OVERLAY_CHECK_JS, self.overlay_selectors))
        except Exception:
            return False

    def dismiss(self, page: Any) -> bool:
        """Return True when an accept control was clicked."""
        try:
            if not self.overlay_present(page):
                return False
            print("🍪 Consent overlay detected")
            self._screenshot(page, "before")
            clicked = self._click_accept_selector(page) or self._click_by_text(page)
            if clicked:
                try:
                    page.wait_for_timeout(self.settle_ms)
                except Exception:
                    pass
                print("  ✅ Consent accepted")
            else:
                print("  ℹ️  No accept control found for consent overlay")
            self._screenshot(page, "after")
            return clicked
        except Exception as e:
            print(f"  ⚠️  Consent handling failed: {e}")
            return False

    def _click_accept_selector(self, page: Any) -> bool:
        for sel in self.accept_selectors:
            try:
                el = page.query_selector(sel)
                if el is None:
                    continue
                el.click(timeout=self.click_timeout_ms)
                return True
            except Exception:
                continue
        return False

    def _click_by_text(self, page: Any) -> bool:
        try:
            return bool(page.evaluate(_TEXT_SCAN_JS, self.accept_phrases))
        except Exception:
            return False

    def _screenshot(self, page: Any, label: str) -> None:
        if self.screenshots_dir is None:
            return
        try:
            self.screenshots_dir.mkdir(parents=True, exist_ok=True)
            path = self.screenshots_dir / f"{label}-consent-{int(time.time() * 1000)}.png"
            page.screenshot(path=str(path), full_page=False, timeout=5000)
        except Exception:
            pass
