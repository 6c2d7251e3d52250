"""
Browser Automation - Playwright Session

The worker drives forms through the :class:`BrowserSession` capability.
:class:`PlaywrightSession` implements it on top of Playwright's async API
with a single Chromium page per session.
"""

import asyncio
import contextlib
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

logger = logging.getLogger(__name__)


class BrowserSession(Protocol):
    """Operations the worker needs from a browser page.

    Timeouts are in seconds.  Selector-based methods raise when the
    selector is invalid or the element is missing, except :meth:`exists`
    and :meth:`bounding_box` which report absence.
    """

    async def open(self) -> None: ...

    async def goto(self, url: str, timeout: float) -> None: ...

    async def add_style_tag(self, css: str) -> None: ...

    async def exists(self, selector: str) -> bool: ...

    async def claim(self, selector: str, attribute: str) -> bool:
        """Mark the element; return True if it was already marked."""
        ...

    async def bounding_box(self, selector: str) -> Optional[Dict[str, float]]: ...

    async def describe(self, selector: str) -> Tuple[str, Optional[str]]:
        """Return the element's lower-case tag name and ``type`` attribute."""
        ...

    async def wait_for_selector(self, selector: str, timeout: float) -> None: ...

    async def scroll_into_view(self, selector: str) -> None: ...

    async def click(self, selector: str, click_count: int = 1) -> None: ...

    async def force_click(self, selector: str) -> None:
        """Dispatch ``element.click()`` from inside the page."""
        ...

    async def type_text(self, text: str, selector: Optional[str] = None) -> None:
        """Type into *selector*, or into the focused element when omitted."""
        ...

    async def press(self, key: str) -> None: ...

    async def select_option(self, selector: str, value: str) -> None: ...

    async def set_value(self, selector: str, value: str) -> None:
        """Assign ``value`` directly and fire ``input``/``change`` events."""
        ...

    async def upload_file(self, selector: str, path: str) -> None: ...

    async def wait_for_text(self, keywords: Sequence[str], timeout: float) -> None:
        """Wait until the visible page text contains any of *keywords*."""
        ...

    def is_closed(self) -> bool: ...

    async def close(self) -> None: ...


# ------------------------------------------------------------------
# Page scripts
# ------------------------------------------------------------------

_CLAIM_JS = """(el, attr) => {
    if (el.getAttribute(attr) === 'true') return true;
    el.setAttribute(attr, 'true');
    return false;
}"""

_DESCRIBE_JS = "el => [el.tagName.toLowerCase(), el.getAttribute('type')]"

_SCROLL_JS = "el => el.scrollIntoView({block: 'center', inline: 'center'})"

_SET_VALUE_JS = """(el, value) => {
    el.value = value;
    el.dispatchEvent(new Event('input', {bubbles: true}));
    el.dispatchEvent(new Event('change', {bubbles: true}));
}"""

_TEXT_MATCH_JS = """(words) => {
    const body = document.body;
    const text = ((body && body.innerText) || '').toLowerCase();
    return words.some(w => text.includes(w));
}"""


def _ms(seconds: float) -> float:
    return seconds * 1000


class PlaywrightSession:
    """Headless (or visible) Chromium page driven through Playwright."""

    def __init__(
        self,
        headless: bool = True,
        slow_mo_ms: float = 0,
        viewport: Optional[Dict[str, int]] = None,
    ) -> None:
        self.headless = headless
        self.slow_mo_ms = slow_mo_ms
        self.viewport = viewport or {"width": 1920, "height": 1080}
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._closed = False

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        """Launch the browser and open its primary page.

        Anything already started is released if launching fails or is
        cancelled part way through.
        """
        if self.page:
            return
        logger.info("Launching Chromium (headless=%s)", self.headless)
        try:
            self.playwright = await self._start_driver()
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                slow_mo=self.slow_mo_ms,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            )
            self.context = await self.browser.new_context(viewport=self.viewport)
            self.page = await self.context.new_page()
        except (Exception, asyncio.CancelledError):
            await self.close()
            raise

    @staticmethod
    async def _start_driver() -> Playwright:
        starting = asyncio.ensure_future(async_playwright().start())
        try:
            return await asyncio.shield(starting)
        except asyncio.CancelledError:
            # The driver process still comes up; stop it before unwinding.
            with contextlib.suppress(Exception):
                playwright = await starting
                await playwright.stop()
            raise

    def _page(self) -> Page:
        if self.page is None or self._closed:
            raise RuntimeError("Browser session is not open")
        return self.page

    async def goto(self, url: str, timeout: float) -> None:
        await self._page().goto(url, wait_until="domcontentloaded", timeout=_ms(timeout))

    async def add_style_tag(self, css: str) -> None:
        await self._page().add_style_tag(content=css)

    async def exists(self, selector: str) -> bool:
        return await self._page().query_selector(selector) is not None

    async def claim(self, selector: str, attribute: str) -> bool:
        return bool(await self._page().eval_on_selector(selector, _CLAIM_JS, attribute))

    async def bounding_box(self, selector: str) -> Optional[Dict[str, float]]:
        handle = await self._page().query_selector(selector)
        if handle is None:
            return None
        return await handle.bounding_box()

    async def describe(self, selector: str) -> Tuple[str, Optional[str]]:
        tag, input_type = await self._page().eval_on_selector(selector, _DESCRIBE_JS)
        return tag, input_type

    async def wait_for_selector(self, selector: str, timeout: float) -> None:
        await self._page().wait_for_selector(selector, state="attached", timeout=_ms(timeout))

    async def scroll_into_view(self, selector: str) -> None:
        await self._page().eval_on_selector(selector, _SCROLL_JS)

    async def click(self, selector: str, click_count: int = 1) -> None:
        await self._page().click(selector, click_count=click_count)

    async def force_click(self, selector: str) -> None:
        await self._page().eval_on_selector(selector, "el => el.click()")

    async def type_text(self, text: str, selector: Optional[str] = None) -> None:
        page = self._page()
        if selector is None:
            await page.keyboard.type(text)
        else:
            await page.locator(selector).first.press_sequentially(text)

    async def press(self, key: str) -> None:
        await self._page().keyboard.press(key)

    async def select_option(self, selector: str, value: str) -> None:
        await self._page().select_option(selector, value)

    async def set_value(self, selector: str, value: str) -> None:
        await self._page().eval_on_selector(selector, _SET_VALUE_JS, value)

    async def upload_file(self, selector: str, path: str) -> None:
        await self._page().set_input_files(selector, path)

    async def wait_for_text(self, keywords: Sequence[str], timeout: float) -> None:
        words: List[str] = [w.lower() for w in keywords]
        await self._page().wait_for_function(_TEXT_MATCH_JS, arg=words, timeout=_ms(timeout))

    def is_closed(self) -> bool:
        if self._closed or self.page is None:
            return self._closed
        return self.page.is_closed()

    async def close(self) -> None:
        """Clean up browser resources.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing browser...")
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
        finally:
            if self.playwright:
                await self.playwright.stop()
