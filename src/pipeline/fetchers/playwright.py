from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page


DEFAULT_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"


@dataclass(frozen=True)
class BrowserSettings:
    headless: bool = True
    slow_mo_ms: int = 0
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1280
    viewport_height: int = 800
    navigation_timeout_ms: int = 60000


class BrowserSession:
    """One Chromium page reused for a whole discovery or processing run.

    Uses Playwright with security-first settings:
    - Sandbox enabled (no --no-sandbox)
    - Extensions and plugins disabled

    Usage:
        with BrowserSession(settings) as page:
            page.goto(...)
    """

    def __init__(self, settings: Optional[BrowserSettings] = None) -> None:
        self.settings = settings or BrowserSettings()
        self._pw_cm: Any = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def open(self) -> Page:
        s = self.settings
        self._pw_cm = sync_playwright()
        p = self._pw_cm.__enter__()
        try:
            self._browser = p.chromium.launch(
                headless=s.headless,
                slow_mo=s.slow_mo_ms,
                args=[
                    '--disable-dev-shm-usage',     # Prevent /dev/shm issues in containers
                    '--disable-gpu',
                    '--disable-extensions',
                    '--disable-plugins',
                    '--no-first-run',
                    '--disable-default-apps',
                    '--disable-background-timer-throttling',  # Consistent timing
                ]
            )
            self._context = self._browser.new_context(
                user_agent=s.user_agent,
                viewport={"width": s.viewport_width, "height": s.viewport_height},
            )
            self.page = self._context.new_page()
            self.page.set_default_timeout(s.navigation_timeout_ms)
        except Exception:
            self.close()
            raise
        return self.page

    def close(self) -> None:
        try:
            if self._browser is not None:
                self._browser.close()
        except Exception:
            pass
        finally:
            self._browser = None
            self._context = None
            self.page = None
        if self._pw_cm is not None:
            cm, self._pw_cm = self._pw_cm, None
            try:
                cm.__exit__(None, None, None)
            except Exception:
                pass

    def __enter__(self) -> Page:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
