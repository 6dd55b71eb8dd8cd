"""Playwright launcher used by the browser retrieval strategy.

BrowserFactory owns the Playwright driver and one launched browser. Contexts
created through it carry the viewport, user agent and locale from
BrowserConfig plus the automation-masking init script, so rendered pages see
an ordinary desktop browser.
"""

import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Playwright,
    async_playwright,
)

from .http_client import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


# Hides the most common automation fingerprints before any page script runs
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en', 'zh-CN', 'zh'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""

DEFAULT_LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--no-sandbox',
]


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class BrowserConfig:
    """Launch and context settings for one rendered fetch."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        ignore_https_errors: bool = False,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
        init_scripts: Optional[List[str]] = None,
        launch_args: Optional[List[str]] = None,
    ):
        """
        Args:
            engine: chromium, firefox or webkit
            headless: Launch without a visible window
            viewport: Window size as {'width', 'height'}
            user_agent: User-Agent presented by the page
            ignore_https_errors: Accept invalid certificates
            locale: Context locale such as 'zh-CN'
            timezone: Timezone ID such as 'Asia/Shanghai'
            init_scripts: Scripts run before any page script (stealth script if None)
            launch_args: Chromium command line switches
        """
        self.engine = engine
        self.headless = headless
        self.viewport = viewport or {'width': 1366, 'height': 768}
        self.user_agent = user_agent
        self.ignore_https_errors = ignore_https_errors
        self.locale = locale
        self.timezone = timezone
        self.init_scripts = [STEALTH_INIT_SCRIPT] if init_scripts is None else list(init_scripts)
        self.launch_args = list(DEFAULT_LAUNCH_ARGS) if launch_args is None else list(launch_args)

    def to_browser_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``BrowserType.launch``."""
        options: Dict[str, Any] = {'headless': self.headless}
        # Only Chromium understands the Blink switches
        if self.launch_args and self.engine == BrowserEngineType.CHROMIUM:
            options['args'] = list(self.launch_args)
        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``Browser.new_context``."""
        options: Dict[str, Any] = {'viewport': self.viewport}
        if self.user_agent:
            options['user_agent'] = self.user_agent
        if self.ignore_https_errors:
            options['ignore_https_errors'] = True
        if self.locale:
            options['locale'] = self.locale
        if self.timezone:
            options['timezone_id'] = self.timezone
        return options


class BrowserFactory:
    """Starts Playwright, launches one browser and hands out contexts."""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None

    async def start(self) -> None:
        """Start Playwright and launch the configured engine.

        Raises:
            playwright.async_api.Error: If the browser cannot be launched
        """
        if self.playwright is not None:
            logger.warning("Browser factory already started")
            return

        logger.info(f"Launching {self.config.engine} (headless={self.config.headless})")

        try:
            self.playwright = await async_playwright().start()
            browser_type = getattr(self.playwright, self.config.engine, None) or self.playwright.chromium
            self.browser = await browser_type.launch(**self.config.to_browser_options())
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Close the browser and the Playwright driver. Safe to call twice."""
        try:
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")
        finally:
            self.browser = None
            self.playwright = None

    async def create_context(self) -> BrowserContext:
        """Open a context with the configured options and init scripts.

        Raises:
            RuntimeError: If start() has not been called
        """
        if not self.browser:
            raise RuntimeError("Browser factory not started. Call start() first.")

        context = await self.browser.new_context(**self.config.to_context_options())
        for script in self.config.init_scripts:
            await context.add_init_script(script)

        logger.debug(f"Created browser context with {len(self.config.init_scripts)} init scripts")
        return context
