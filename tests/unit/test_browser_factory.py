"""Unit tests for the Playwright launcher."""

import pytest
from unittest.mock import AsyncMock, patch

from fetchpage.fetch.capture.browser_factory import (
    DEFAULT_LAUNCH_ARGS,
    STEALTH_INIT_SCRIPT,
    BrowserConfig,
    BrowserEngineType,
    BrowserFactory,
)
from fetchpage.fetch.capture.http_client import DEFAULT_USER_AGENT
from fetchpage.fetch.config import BrowserSettings


@pytest.fixture
def driver():
    """Patch async_playwright with a driver whose engines return one browser."""
    with patch('fetchpage.fetch.capture.browser_factory.async_playwright') as async_playwright:
        playwright = AsyncMock()
        async_playwright.return_value.start = AsyncMock(return_value=playwright)

        browser = AsyncMock()
        for engine in ('chromium', 'firefox', 'webkit'):
            getattr(playwright, engine).launch.return_value = browser

        context = AsyncMock()
        browser.new_context.return_value = context

        yield {'playwright': playwright, 'browser': browser, 'context': context}


class TestBrowserConfig:
    """Tests for BrowserConfig."""

    def test_defaults_mask_automation(self):
        config = BrowserConfig()

        assert config.engine == BrowserEngineType.CHROMIUM
        assert config.headless is True
        assert config.user_agent == DEFAULT_USER_AGENT
        assert config.init_scripts == [STEALTH_INIT_SCRIPT]
        assert config.to_browser_options() == {'headless': True, 'args': DEFAULT_LAUNCH_ARGS}

    def test_switches_only_for_chromium(self):
        options = BrowserConfig(engine=BrowserEngineType.WEBKIT, headless=False).to_browser_options()
        assert options == {'headless': False}

    def test_context_options(self):
        config = BrowserConfig(
            viewport={'width': 800, 'height': 600},
            user_agent="Test Agent",
            ignore_https_errors=True,
            locale='zh-CN',
            timezone='Asia/Shanghai',
        )

        assert config.to_context_options() == {
            'viewport': {'width': 800, 'height': 600},
            'user_agent': "Test Agent",
            'ignore_https_errors': True,
            'locale': 'zh-CN',
            'timezone_id': 'Asia/Shanghai',
        }

    def test_minimal_context_options(self):
        options = BrowserConfig(user_agent=None).to_context_options()
        assert options == {'viewport': {'width': 1366, 'height': 768}}

    def test_built_from_settings(self):
        settings = BrowserSettings(engine='firefox', window_width=1024, window_height=700, locale='en-GB')

        config = settings.to_browser_config(headless=False)

        assert config.engine == 'firefox'
        assert config.headless is False
        assert config.viewport == {'width': 1024, 'height': 700}
        assert config.locale == 'en-GB'

    def test_empty_init_scripts_allowed(self):
        assert BrowserConfig(init_scripts=[]).init_scripts == []


class TestBrowserFactory:
    """Tests for BrowserFactory."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, driver):
        factory = BrowserFactory(BrowserConfig())

        await factory.start()
        assert factory.browser is driver['browser']
        driver['playwright'].chromium.launch.assert_awaited_once_with(headless=True, args=DEFAULT_LAUNCH_ARGS)

        await factory.stop()
        await factory.stop()

        assert factory.browser is None
        assert factory.playwright is None
        driver['browser'].close.assert_awaited_once()
        driver['playwright'].stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, driver):
        factory = BrowserFactory(BrowserConfig())

        await factory.start()
        await factory.start()

        assert driver['playwright'].chromium.launch.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("engine", [BrowserEngineType.FIREFOX, BrowserEngineType.WEBKIT])
    async def test_engine_selection(self, driver, engine):
        await BrowserFactory(BrowserConfig(engine=engine)).start()

        getattr(driver['playwright'], engine).launch.assert_awaited_once_with(headless=True)
        driver['playwright'].chromium.launch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_launch_failure_releases_driver(self, driver):
        driver['playwright'].chromium.launch.side_effect = Exception("Executable doesn't exist")
        factory = BrowserFactory(BrowserConfig())

        with pytest.raises(Exception, match="Executable doesn't exist"):
            await factory.start()

        assert factory.playwright is None
        driver['playwright'].stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_swallows_close_errors(self, driver):
        factory = BrowserFactory(BrowserConfig())
        await factory.start()
        driver['browser'].close.side_effect = Exception("Target closed")

        await factory.stop()

        assert factory.browser is None
        assert factory.playwright is None

    @pytest.mark.asyncio
    async def test_create_context_adds_init_scripts(self, driver):
        factory = BrowserFactory(BrowserConfig(locale='zh-CN'))
        await factory.start()

        context = await factory.create_context()

        assert context is driver['context']
        _, kwargs = driver['browser'].new_context.call_args
        assert kwargs['locale'] == 'zh-CN'
        assert kwargs['user_agent'] == DEFAULT_USER_AGENT
        context.add_init_script.assert_awaited_once_with(STEALTH_INIT_SCRIPT)

    @pytest.mark.asyncio
    async def test_create_context_requires_start(self):
        with pytest.raises(RuntimeError, match="Browser factory not started"):
            await BrowserFactory(BrowserConfig()).create_context()
