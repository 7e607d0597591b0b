"""Browser session abstraction and its Playwright implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Callable, Generator

from playwright.async_api import Browser, BrowserContext, Locator, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from flowmend.core.errors import ActionTimeoutError, ElementNotFoundError

logger = logging.getLogger(__name__)

ConsoleHandler = Callable[[str, str], None]  # (type, text)
PageErrorHandler = Callable[[str], None]

_EXTRACT_JS = """(el, attr) => {
    if (attr === 'innerText') return el.innerText;
    if (!attr || attr === 'textContent') return el.textContent;
    return el.getAttribute(attr);
}"""

_ASSIGN_VALUE_JS = """(el, val) => {
    if (typeof el.value === 'string') el.value = val;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
}"""


class BrowserSession(ABC):
    """
    The browser capability the executor drives.

    One session belongs to exactly one run. Implementations raise
    ElementNotFoundError / ActionTimeoutError for transient failures so the
    executor can retry them.
    """

    @property
    @abstractmethod
    def url(self) -> str: ...

    @abstractmethod
    async def goto(self, url: str, timeout_ms: int) -> None: ...

    @abstractmethod
    async def click(self, selector: str, timeout_ms: int) -> None:
        """Wait for the first match to be visible, scroll it into view, click it."""

    @abstractmethod
    async def type(self, selector: str, text: str, timeout_ms: int) -> None:
        """Wait for the field, clear it and type ``text`` key by key."""

    @abstractmethod
    async def input_value(self, selector: str, timeout_ms: int) -> str: ...

    @abstractmethod
    async def set_value(self, selector: str, text: str, timeout_ms: int) -> None:
        """Assign the field value directly and dispatch input/change events."""

    @abstractmethod
    async def extract(self, selector: str, attribute: str | None, timeout_ms: int) -> Any: ...

    @abstractmethod
    async def screenshot(self, path: Path) -> None: ...

    @abstractmethod
    async def content(self) -> str: ...

    @abstractmethod
    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool: ...

    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        return None

    def on_console(self, handler: ConsoleHandler) -> None:
        return None

    def on_page_error(self, handler: PageErrorHandler) -> None:
        return None

    @abstractmethod
    async def close(self) -> None:
        """Release the browser. Must not raise."""


@contextmanager
def _translate_timeouts(action: str, selector: str = "") -> Generator[None, None, None]:
    try:
        yield
    except PlaywrightTimeoutError as exc:
        if selector:
            raise ElementNotFoundError(
                f"{action}: no visible element for {selector!r}", selector=selector
            ) from exc
        raise ActionTimeoutError(f"{action} timed out: {exc}") from exc


class PlaywrightSession(BrowserSession):
    """Chromium page driven through ``playwright.async_api``."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._closed = False

    @classmethod
    async def launch(
        cls,
        *,
        headless: bool = True,
        viewport: tuple[int, int] = (1280, 900),
    ) -> PlaywrightSession:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=headless)
            context = await browser.new_context(
                viewport={"width": viewport[0], "height": viewport[1]}
            )
            page = await context.new_page()
        except BaseException:
            with suppress(Exception):
                await playwright.stop()
            raise
        logger.debug("Launched chromium (headless=%s)", headless)
        return cls(playwright, browser, context, page)

    @property
    def url(self) -> str:
        return self._page.url

    def _first(self, selector: str) -> Locator:
        return self._page.locator(selector).first

    async def goto(self, url: str, timeout_ms: int) -> None:
        with _translate_timeouts("goto"):
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def click(self, selector: str, timeout_ms: int) -> None:
        loc = self._first(selector)
        with _translate_timeouts("click", selector):
            await loc.wait_for(state="visible", timeout=timeout_ms)
            await loc.scroll_into_view_if_needed(timeout=timeout_ms)
            await loc.click(timeout=timeout_ms)

    async def type(self, selector: str, text: str, timeout_ms: int) -> None:
        loc = self._first(selector)
        with _translate_timeouts("type", selector):
            await loc.wait_for(state="visible", timeout=timeout_ms)
            await loc.scroll_into_view_if_needed(timeout=timeout_ms)
            await loc.click(timeout=timeout_ms)
            await loc.fill("", timeout=timeout_ms)
            await loc.press_sequentially(text, delay=50, timeout=timeout_ms)

    async def input_value(self, selector: str, timeout_ms: int) -> str:
        with _translate_timeouts("input_value", selector):
            return await self._first(selector).input_value(timeout=timeout_ms)

    async def set_value(self, selector: str, text: str, timeout_ms: int) -> None:
        with _translate_timeouts("set_value", selector):
            await self._first(selector).evaluate(_ASSIGN_VALUE_JS, text, timeout=timeout_ms)

    async def extract(self, selector: str, attribute: str | None, timeout_ms: int) -> Any:
        loc = self._first(selector)
        with _translate_timeouts("extract", selector):
            await loc.wait_for(state="attached", timeout=timeout_ms)
            return await loc.evaluate(_EXTRACT_JS, attribute, timeout=timeout_ms)

    async def screenshot(self, path: Path) -> None:
        with _translate_timeouts("screenshot"):
            await self._page.screenshot(path=str(path), full_page=True)

    async def content(self) -> str:
        return await self._page.content()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self._page.evaluate(expression, arg)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        with suppress(PlaywrightTimeoutError):
            await self._page.wait_for_load_state(state, timeout=timeout_ms)

    def on_console(self, handler: ConsoleHandler) -> None:
        self._page.on("console", lambda msg: handler(msg.type, msg.text))

    def on_page_error(self, handler: PageErrorHandler) -> None:
        self._page.on("pageerror", lambda error: handler(str(error)))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for closer in (self._context.close, self._browser.close, self._playwright.stop):
            try:
                await closer()
            except PlaywrightError as exc:
                logger.debug("Ignoring error while closing browser: %s", exc)
            except Exception:
                logger.debug("Ignoring unexpected error while closing browser", exc_info=True)
