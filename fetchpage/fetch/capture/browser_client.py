"""Browser automation client used for rendered-page retrieval.

The orchestrator depends only on the narrow ``BrowserClient`` protocol.
``PlaywrightBrowserClient`` implements it on top of ``BrowserFactory``; tests
substitute an in-memory fake.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Iterable, Optional, Protocol, runtime_checkable

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, Field

from ..errors import NavigationError
from ..models import CookieRecord, LocalStorageBucket
from .browser_factory import BrowserConfig, BrowserFactory

logger = logging.getLogger(__name__)


class WaitPolicy:
    """Navigation completion events accepted by ``navigate``."""
    COMMIT = "commit"
    DOMCONTENTLOADED = "domcontentloaded"
    LOAD = "load"
    NETWORKIDLE = "networkidle"


_LOCAL_STORAGE_SCRIPT = """
(() => {
  const buckets = %s;
  const host = window.location.hostname;
  for (const [domain, entries] of Object.entries(buckets)) {
    if (host !== domain && !host.endsWith('.' + domain)) {
      continue;
    }
    for (const [key, value] of Object.entries(entries)) {
      try {
        window.localStorage.setItem(key, value);
      } catch (e) {}
    }
  }
})();
"""

_SCROLL_SCRIPT = """
async ([steps, stepPx, delayMs]) => {
  for (let i = 0; i < steps; i++) {
    window.scrollBy(0, stepPx);
    await new Promise(resolve => setTimeout(resolve, delayMs));
    if (window.innerHeight + window.scrollY >= document.body.scrollHeight) {
      break;
    }
  }
  window.scrollTo(0, 0);
}
"""


class ExtractedDocument(BaseModel):
    """Rendered document handed to the Markdown transformer."""

    title: str = Field(default="", description="Document title")
    html: str = Field(default="", description="Serialized rendered DOM")
    selector: Optional[str] = Field(default=None, description="Selector scoping the extraction")
    final_url: Optional[str] = Field(default=None, description="Page URL after navigation")


@runtime_checkable
class BrowserClient(Protocol):
    """Operations the orchestrator needs from a browser."""

    async def launch(self, headless: bool = True) -> None: ...

    async def set_cookies(self, records: Iterable[CookieRecord]) -> int: ...

    async def set_local_storage(self, buckets: Dict[str, LocalStorageBucket]) -> None: ...

    async def navigate(
        self,
        url: str,
        wait_policy: str = WaitPolicy.DOMCONTENTLOADED,
        timeout_ms: int = 30000
    ) -> Optional[int]: ...

    async def wait_for_selector(self, selector: str, timeout_ms: int = 30000) -> bool: ...

    async def wait_for_ready_state(self, timeout_ms: int = 10000) -> bool: ...

    async def scroll(self) -> None: ...

    async def extract_document(self, selector: Optional[str] = None) -> ExtractedDocument: ...

    async def close(self) -> None: ...


class PlaywrightBrowserClient:
    """BrowserClient backed by one Playwright browser, context and page."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        scroll_steps: int = 10,
        scroll_step_px: int = 800,
        scroll_delay_ms: int = 150
    ):
        """Initialize client.

        Args:
            config: Browser configuration (defaults used if None)
            scroll_steps: Maximum scroll increments of the lazy-load pass (0 disables it)
            scroll_step_px: Pixels per scroll increment
            scroll_delay_ms: Pause after each increment
        """
        self.config = config or BrowserConfig()
        self.scroll_steps = scroll_steps
        self.scroll_step_px = scroll_step_px
        self.scroll_delay_ms = scroll_delay_ms

        self.factory: Optional[BrowserFactory] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def _require_page(self) -> Page:
        if self.page is None:
            raise RuntimeError("Browser not launched. Call launch() first.")
        return self.page

    async def launch(self, headless: bool = True) -> None:
        """Start the browser and open one page."""
        self.config.headless = headless
        self.factory = BrowserFactory(self.config)
        await self.factory.start()
        self.context = await self.factory.create_context()
        self.page = await self.context.new_page()

    async def set_cookies(self, records: Iterable[CookieRecord]) -> int:
        """Inject cookies into the context. Returns the number accepted."""
        if self.context is None:
            raise RuntimeError("Browser not launched. Call launch() first.")

        cookies = [record.to_playwright_cookie() for record in records]
        if not cookies:
            return 0

        try:
            await self.context.add_cookies(cookies)
            logger.debug(f"Injected {len(cookies)} cookies")
            return len(cookies)
        except PlaywrightError as e:
            logger.warning(f"Bulk cookie injection failed ({e}), retrying one by one")

        accepted = 0
        for cookie in cookies:
            try:
                await self.context.add_cookies([cookie])
                accepted += 1
            except PlaywrightError as e:
                logger.warning(f"Rejected cookie {cookie['name']} for {cookie['domain']}: {e}")
        return accepted

    async def set_local_storage(self, buckets: Dict[str, LocalStorageBucket]) -> None:
        """Register a script writing each domain's bucket on matching pages."""
        if self.context is None:
            raise RuntimeError("Browser not launched. Call launch() first.")

        buckets = {domain: entries for domain, entries in buckets.items() if entries}
        if not buckets:
            return

        script = _LOCAL_STORAGE_SCRIPT % json.dumps(buckets, ensure_ascii=False)
        await self.context.add_init_script(script)
        logger.debug(f"Registered local storage for {len(buckets)} domains")

    async def navigate(
        self,
        url: str,
        wait_policy: str = WaitPolicy.DOMCONTENTLOADED,
        timeout_ms: int = 30000
    ) -> Optional[int]:
        """Navigate the page.

        Returns:
            Response status, or None when the navigation produced no response

        Raises:
            NavigationError: On navigation failure or a status >= 400
        """
        page = self._require_page()

        try:
            response = await page.goto(url, wait_until=wait_policy, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Navigation timed out after {timeout_ms}ms: {url} ({e})")
        except PlaywrightError as e:
            raise NavigationError(f"Navigation failed: {url} ({e})")

        if response is None:
            logger.debug(f"Navigation to {url} produced no response")
            return None

        if response.status >= 400:
            raise NavigationError(f"HTTP {response.status} loading {url}", status_code=response.status)

        logger.debug(f"Navigation completed: {url} ({response.status})")
        return response.status

    async def wait_for_selector(self, selector: str, timeout_ms: int = 30000) -> bool:
        page = self._require_page()
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.warning(f"Selector wait timeout ({selector}), continuing with current content")
        except PlaywrightError as e:
            logger.warning(f"Selector wait failed ({selector}): {e}")
        return False

    async def wait_for_ready_state(self, timeout_ms: int = 10000) -> bool:
        page = self._require_page()
        try:
            await page.wait_for_function("document.readyState === 'complete'", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.warning("Ready state wait timeout, continuing with current content")
        except PlaywrightError as e:
            logger.warning(f"Ready state wait failed: {e}")
        return False

    async def scroll(self) -> None:
        """Scroll through the page to trigger lazily loaded content."""
        if self.scroll_steps <= 0:
            return
        page = self._require_page()
        try:
            await page.evaluate(_SCROLL_SCRIPT, [self.scroll_steps, self.scroll_step_px, self.scroll_delay_ms])
        except PlaywrightError as e:
            logger.debug(f"Scroll pass failed: {e}")

    async def extract_document(self, selector: Optional[str] = None) -> ExtractedDocument:
        page = self._require_page()
        html = await page.content()

        try:
            title = await page.title()
        except PlaywrightError as e:
            logger.debug(f"Failed to get page title: {e}")
            title = ''

        return ExtractedDocument(title=title, html=html, selector=selector, final_url=page.url)

    async def close(self) -> None:
        """Close page, context and browser. Safe to call repeatedly."""
        if self.context is not None:
            try:
                await self.context.close()
            except Exception as e:
                logger.warning(f"Error closing browser context: {e}")

        if self.factory is not None:
            await self.factory.stop()

        self.page = None
        self.context = None
        self.factory = None


@asynccontextmanager
async def browser_session(client: BrowserClient, headless: bool = True) -> AsyncGenerator[BrowserClient, None]:
    """Launch a client and guarantee ``close()`` on every exit path."""
    try:
        await client.launch(headless)
        yield client
    finally:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing browser session: {e}")
