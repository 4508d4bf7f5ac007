from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Protocol

import structlog
from playwright.async_api import Browser, Playwright, async_playwright

log = structlog.get_logger("browser")


class PageTextExtractor(Protocol):
    async def extract(self, url: str, selector: str, wait_s: float = 3.0) -> Optional[str]:
        """Inner text of the first element matching `selector`, or None when absent."""
        ...


@dataclass(slots=True)
class BrowserConfig:
    headless: bool = True
    executable_path: Optional[str] = None
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    nav_timeout_s: float = 30.0
    args: list[str] = field(default_factory=lambda: [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ])


class PlaywrightExtractor:
    """
    Headless Chromium page reader. One browser per process, one page per
    extract() call, so concurrent subjects never share page state.
    """
    def __init__(self, cfg: Optional[BrowserConfig] = None):
        self.cfg = cfg or BrowserConfig()
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._pw is None:
                self._pw = await async_playwright().start()
            kwargs: dict = {"headless": self.cfg.headless, "args": list(self.cfg.args)}
            if self.cfg.executable_path:
                kwargs["executable_path"] = self.cfg.executable_path
            self._browser = await self._pw.chromium.launch(**kwargs)
            log.info("browser_launched", headless=self.cfg.headless)
            return self._browser

    async def extract(self, url: str, selector: str, wait_s: float = 3.0) -> Optional[str]:
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=self.cfg.user_agent)
        try:
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=self.cfg.nav_timeout_s * 1000)
            if wait_s > 0:
                await asyncio.sleep(wait_s)
            el = await page.query_selector(selector)
            if el is None:
                return None
            return await el.inner_text()
        finally:
            await context.close()

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None
