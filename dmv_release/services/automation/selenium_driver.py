"""
Selenium driver implementation for release automation

Alternative backend for hosts where Playwright browsers cannot be
installed. Selenium's API is blocking, so every call runs in a worker
thread to keep the event loop free.
"""

import asyncio
import logging
from typing import Optional, Sequence

from .base_driver import AutomationDriver
from ...exceptions import (
    BrowserInitializationError, ElementNotFoundError, FormInteractionError,
    PageNavigationError, StepTimeoutError
)

# Import selenium dependencies
try:
    from selenium import webdriver
    from selenium.webdriver.common.by import By
    from selenium.webdriver.support.ui import Select, WebDriverWait
    from selenium.webdriver.support import expected_conditions as EC
    from selenium.common.exceptions import TimeoutException, WebDriverException
    SELENIUM_AVAILABLE = True
except ImportError:
    SELENIUM_AVAILABLE = False


def _locator(selector: str):
    """Map a form selector onto a Selenium locator tuple"""
    if selector.startswith("xpath="):
        return By.XPATH, selector[len("xpath="):]
    return By.CSS_SELECTOR, selector


class SeleniumDriver(AutomationDriver):
    """Headless Chrome session driven through Selenium WebDriver"""

    def __init__(self, headless: bool = True):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.headless = headless
        self.selenium_driver: Optional[object] = None

        if not SELENIUM_AVAILABLE:
            raise BrowserInitializationError(
                "Selenium backend requested but selenium is not installed. "
                "Install it with: pip install 'dmv-release[selenium]'",
                backend="selenium",
                details={"selenium_available": SELENIUM_AVAILABLE}
            )

    def get_backend_name(self) -> str:
        return "selenium"

    def _start_sync(self):
        options = webdriver.ChromeOptions()
        if self.headless:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--window-size=1280,1024")
        self.selenium_driver = webdriver.Chrome(options=options)

    async def start(self) -> None:
        try:
            await asyncio.to_thread(self._start_sync)
        except Exception as e:
            await self.close()
            raise BrowserInitializationError(
                f"Failed to initialize selenium driver: {e}", backend="selenium"
            ) from e

    def _require_driver(self):
        if self.selenium_driver is None:
            raise BrowserInitializationError("Browser session not started", backend="selenium")
        return self.selenium_driver

    def _navigate_sync(self, url: str, timeout: float):
        driver = self._require_driver()
        driver.set_page_load_timeout(timeout)
        driver.get(url)
        WebDriverWait(driver, timeout).until(
            lambda d: d.execute_script("return document.readyState") in ("interactive", "complete")
        )

    async def navigate(self, url: str, timeout: float) -> None:
        try:
            await asyncio.to_thread(self._navigate_sync, url, timeout)
        except TimeoutException as e:
            raise StepTimeoutError("navigate", timeout, {"url": url}) from e
        except WebDriverException as e:
            raise PageNavigationError(url, e.msg or str(e)) from e

    def _find_sync(self, selectors: Sequence[str], field: str, timeout: float):
        driver = self._require_driver()
        per_selector = max(timeout / max(len(selectors), 1), 1.0)
        for selector in selectors:
            try:
                element = WebDriverWait(driver, per_selector).until(
                    EC.visibility_of_element_located(_locator(selector))
                )
                return element, selector
            except TimeoutException:
                continue
        raise ElementNotFoundError(" or ".join(selectors), field, timeout)

    def _fill_sync(self, selectors, value, field, timeout):
        element, selector = self._find_sync(selectors, field, timeout)
        try:
            element.clear()
            element.send_keys(value)
        except WebDriverException as e:
            raise FormInteractionError("fill", field, {"selector": selector, "error": e.msg or str(e)}) from e

    def _select_sync(self, selectors, value, field, timeout):
        element, selector = self._find_sync(selectors, field, timeout)
        try:
            if element.tag_name.lower() == "select":
                Select(element).select_by_value(value)
            else:
                by, query = _locator(f'{selector}[value="{value}"]')
                self._require_driver().find_element(by, query).click()
        except WebDriverException as e:
            raise FormInteractionError("select", field, {"selector": selector, "value": value, "error": e.msg or str(e)}) from e

    def _click_sync(self, selectors, field, timeout):
        element, selector = self._find_sync(selectors, field, timeout)
        try:
            element.click()
        except WebDriverException as e:
            raise FormInteractionError("click", field, {"selector": selector, "error": e.msg or str(e)}) from e

    async def fill(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        await asyncio.to_thread(self._fill_sync, selectors, value, field, timeout)

    async def select(self, selectors: Sequence[str], value: str, field: str, timeout: float) -> None:
        await asyncio.to_thread(self._select_sync, selectors, value, field, timeout)

    async def click(self, selectors: Sequence[str], field: str, timeout: float) -> None:
        await asyncio.to_thread(self._click_sync, selectors, field, timeout)

    async def wait_for_settle(self, timeout: float) -> None:
        # WebDriver has no network-idle signal; a complete document is the closest
        driver = self._require_driver()
        try:
            await asyncio.to_thread(
                WebDriverWait(driver, timeout).until,
                lambda d: d.execute_script("return document.readyState") == "complete",
            )
        except TimeoutException as e:
            raise StepTimeoutError("wait for page to settle", timeout) from e

    async def read_text(self, timeout: float) -> str:
        driver = self._require_driver()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(lambda: driver.find_element(By.TAG_NAME, "body").text), timeout
            )
        except asyncio.TimeoutError as e:
            raise StepTimeoutError("read page text", timeout) from e
        except WebDriverException as e:
            raise FormInteractionError("read", "body", {"error": e.msg or str(e)}) from e

    async def screenshot(self, timeout: float) -> bytes:
        driver = self._require_driver()
        try:
            return await asyncio.wait_for(asyncio.to_thread(driver.get_screenshot_as_png), timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError("screenshot", timeout) from e
        except WebDriverException as e:
            raise FormInteractionError("screenshot", "page", {"error": e.msg or str(e)}) from e

    async def close(self) -> None:
        if self.selenium_driver is None:
            return
        driver, self.selenium_driver = self.selenium_driver, None
        try:
            await asyncio.to_thread(driver.quit)
        except Exception as e:
            self.logger.warning(f"Error during selenium cleanup: {e}")
