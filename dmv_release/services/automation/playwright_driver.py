"""
Playwright driver implementation for release automation

Handles all Playwright-specific browser logic. Playwright exceptions are
translated into the automation error taxonomy so callers never depend on
Playwright types.
"""

import asyncio
import logging
from typing import Optional, Sequence, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Locator, Page, Playwright, ViewportSize
from playwright.async_api import TimeoutError as PlaywrightTimeoutError, Error as PlaywrightError

from .base_driver import AutomationDriver
from ...exceptions import (
    BrowserInitializationError, ElementNotFoundError, FormInteractionError,
    PageNavigationError, StepTimeoutError
)

LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--no-first-run',
    '--no-default-browser-check',
    '--disable-dev-shm-usage',
    '--disable-extensions',
    '--no-sandbox',
    '--disable-background-networking',
]

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

# Smallest slice of the budget any one fallback selector gets
MIN_SELECTOR_TIMEOUT = 1.0


def _ms(seconds: float) -> float:
    return seconds * 1000


class PlaywrightDriver(AutomationDriver):
    """Chromium session driven through Playwright's async API"""

    def __init__(self, headless: bool = True, screenshot_format: str = "png", launch_timeout: float = 60.0):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.headless = headless
        self.screenshot_format = screenshot_format
        self.screenshot_mime = f"image/{screenshot_format}"
        self.launch_timeout = launch_timeout

        # Playwright browser management
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.browser_context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def get_backend_name(self) -> str:
        return "playwright"

    async def start(self) -> None:
        """Launch Chromium and open a fresh context and page"""
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
                timeout=_ms(self.launch_timeout),
            )
            self.browser_context = await self.browser.new_context(
                viewport=ViewportSize({'width': 1280, 'height': 1024}),
                user_agent=USER_AGENT,
            )
            # The form needs no media; images stay enabled for screenshots
            await self.browser_context.route(
                "**/*.{mp4,avi,mov,wmv,flv,webm,mp3,wav,ogg}", lambda route: route.abort()
            )
            self.page = await self.browser_context.new_page()
        except Exception as e:
            await self.close()
            raise BrowserInitializationError(
                f"Failed to initialize browser: {e}", backend="playwright"
            ) from e

        self.logger.debug("Browser session started")

    def _require_page(self) -> Page:
        if self.page is None:
            raise BrowserInitializationError("Browser session not started", backend="playwright")
        return self.page

    async def navigate(self, url: str, timeout: float) -> None:
        page = self._require_page()
        try:
            await page.goto(url, wait_until='domcontentloaded', timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError("navigate", timeout, {"url": url}) from e
        except PlaywrightError as e:
            raise PageNavigationError(url, str(e)) from e

    async def _locate(self, selectors: Sequence[str], field: str, timeout: float) -> Tuple[Locator, str]:
        """Find the first visible element, sharing the timeout across fallbacks"""
        page = self._require_page()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        for position, selector in enumerate(selectors):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            share = max(remaining / (len(selectors) - position), MIN_SELECTOR_TIMEOUT)
            try:
                locator = page.locator(selector).first
                await locator.wait_for(state="visible", timeout=_ms(min(share, remaining)))
                return locator, selector
            except PlaywrightTimeoutError:
                continue
            except PlaywrightError as e:
                self.logger.debug(f"Selector {selector} rejected for {field}: {e}")
                continue

        raise ElementNotFoundError(
            selector=" or ".join(selectors),
            element_type=field,
            timeout=timeout
        )

    async def fill(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        element, selector = await self._locate(selectors, field, timeout)
        try:
            await element.fill(value, timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError(f"fill {field}", timeout) from e
        except PlaywrightError as e:
            raise FormInteractionError("fill", field, {
                "selector": selector,
                "error": str(e),
                "value_length": len(value)
            }) from e

    async def select(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        element, selector = await self._locate(selectors, field, timeout)
        try:
            tag = await element.evaluate("el => el.tagName.toLowerCase()")
            if tag == "select":
                await element.select_option(value, timeout=_ms(timeout))
            else:
                page = self._require_page()
                await page.locator(f'{selector}[value="{value}"]').first.check(timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError(f"select {field}", timeout) from e
        except PlaywrightError as e:
            raise FormInteractionError("select", field, {"selector": selector, "value": value, "error": str(e)}) from e

    async def click(self, selectors: Sequence[str], field: str, timeout: float) -> None:
        element, selector = await self._locate(selectors, field, timeout)
        try:
            await element.click(timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError(f"click {field}", timeout) from e
        except PlaywrightError as e:
            raise FormInteractionError("click", field, {"selector": selector, "error": str(e)}) from e

    async def wait_for_settle(self, timeout: float) -> None:
        page = self._require_page()
        try:
            await page.wait_for_load_state("networkidle", timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError("wait for page to settle", timeout) from e

    async def read_text(self, timeout: float) -> str:
        page = self._require_page()
        try:
            return await page.inner_text("body", timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError("read page text", timeout) from e
        except PlaywrightError as e:
            raise FormInteractionError("read", "body", {"error": str(e)}) from e

    async def screenshot(self, timeout: float) -> bytes:
        page = self._require_page()
        try:
            return await page.screenshot(full_page=True, type=self.screenshot_format, timeout=_ms(timeout))
        except PlaywrightTimeoutError as e:
            raise StepTimeoutError("screenshot", timeout) from e
        except PlaywrightError as e:
            raise FormInteractionError("screenshot", "page", {"error": str(e)}) from e

    async def close(self) -> None:
        """Clean up Playwright browser resources"""
        for name in ("page", "browser_context", "browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                self.logger.warning(f"Error closing {name}: {e}")
            setattr(self, name, None)

        if self.playwright:
            try:
                await self.playwright.stop()
            except Exception as e:
                self.logger.warning(f"Error stopping playwright: {e}")
            self.playwright = None
