"""Configuration system for page fetching.

This module provides configuration management for the fetch pipeline,
including YAML loading, validation and environment variable overrides.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from .capture.browser_client import WaitPolicy
from .capture.browser_factory import BrowserConfig, BrowserEngineType
from .capture.http_client import DEFAULT_USER_AGENT
from .classifier import ClassifierPolicy

logger = logging.getLogger(__name__)


DEFAULT_BASE_DIR = Path('~/Downloads/mcp-fetchpage')

ENV_CONFIG_PATH = 'FETCHPAGE_CONFIG'
ENV_COOKIE_DIR = 'FETCHPAGE_COOKIE_DIR'
ENV_PAGES_DIR = 'FETCHPAGE_PAGES_DIR'


class StoreSettings(BaseModel):
    """Locations of the credential store and saved pages."""

    cookie_dir: Path = Field(
        default=DEFAULT_BASE_DIR / 'cookies',
        description="Directory holding captured cookie files"
    )
    pages_dir: Path = Field(
        default=DEFAULT_BASE_DIR / 'pages',
        description="Directory receiving Markdown artifacts"
    )
    save_artifacts: bool = Field(default=True, description="Write a Markdown artifact per invocation")

    @field_validator('cookie_dir', 'pages_dir')
    @classmethod
    def expand_user(cls, v):
        return Path(v).expanduser()


class HttpSettings(BaseModel):
    """Plain fetch settings."""

    timeout_s: float = Field(default=30.0, description="Total request timeout in seconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    extra_headers: Dict[str, str] = Field(default_factory=dict, description="Headers added to every request")

    @field_validator('timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeout_s must be positive")
        return v


class BrowserSettings(BaseModel):
    """Rendered retrieval settings."""

    engine: str = Field(default=BrowserEngineType.CHROMIUM, description="Browser engine")
    headless: bool = Field(default=True, description="Run without a visible window")
    window_width: int = Field(default=1366, description="Viewport width")
    window_height: int = Field(default=768, description="Viewport height")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent for the context")
    locale: Optional[str] = Field(default=None, description="Context locale")
    timezone: Optional[str] = Field(default=None, description="Context timezone ID")
    ignore_https_errors: bool = Field(default=False, description="Ignore TLS errors")
    wait_policy: str = Field(default=WaitPolicy.DOMCONTENTLOADED, description="Navigation completion event")
    navigation_timeout_ms: int = Field(default=30000, description="Navigation and selector wait timeout")
    ready_state_timeout_ms: int = Field(default=10000, description="document.readyState wait timeout")
    scroll_steps: int = Field(default=10, description="Lazy-load scroll increments (0 disables)")

    @field_validator('engine')
    @classmethod
    def validate_engine(cls, v):
        valid_engines = {BrowserEngineType.CHROMIUM, BrowserEngineType.FIREFOX, BrowserEngineType.WEBKIT}
        if v not in valid_engines:
            raise ValueError(f"Engine must be one of: {valid_engines}")
        return v

    @field_validator('wait_policy')
    @classmethod
    def validate_wait_policy(cls, v):
        valid_policies = {WaitPolicy.COMMIT, WaitPolicy.DOMCONTENTLOADED, WaitPolicy.LOAD, WaitPolicy.NETWORKIDLE}
        if v not in valid_policies:
            raise ValueError(f"Wait policy must be one of: {valid_policies}")
        return v

    def to_browser_config(self, headless: Optional[bool] = None) -> BrowserConfig:
        """Build the Playwright browser configuration."""
        return BrowserConfig(
            engine=self.engine,
            headless=self.headless if headless is None else headless,
            viewport={'width': self.window_width, 'height': self.window_height},
            user_agent=self.user_agent,
            locale=self.locale,
            timezone=self.timezone,
            ignore_https_errors=self.ignore_https_errors,
        )


class FetchConfig(BaseModel):
    """Root configuration for the fetch pipeline."""

    store: StoreSettings = Field(default_factory=StoreSettings, description="Storage locations")
    http: HttpSettings = Field(default_factory=HttpSettings, description="Plain fetch settings")
    browser: BrowserSettings = Field(default_factory=BrowserSettings, description="Browser settings")
    classifier: ClassifierPolicy = Field(default_factory=ClassifierPolicy, description="Classifier thresholds")
    domain_selectors: Dict[str, str] = Field(
        default_factory=dict,
        description="Hostname to content selector; matching hosts always render"
    )
    merge_all_captures: bool = Field(
        default=True,
        description="Merge every capture in the store instead of the latest one for the host"
    )
    login_excerpt_chars: int = Field(
        default=1000,
        description="Page excerpt length included in login notices"
    )

    def apply_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> 'FetchConfig':
        """Return a copy with store paths overridden from the environment."""
        environ = os.environ if environ is None else environ
        store_updates: Dict[str, Any] = {}

        if environ.get(ENV_COOKIE_DIR):
            store_updates['cookie_dir'] = Path(environ[ENV_COOKIE_DIR]).expanduser()
        if environ.get(ENV_PAGES_DIR):
            store_updates['pages_dir'] = Path(environ[ENV_PAGES_DIR]).expanduser()

        if not store_updates:
            return self
        return self.model_copy(update={'store': self.store.model_copy(update=store_updates)})


class FetchConfigManager:
    """Manager for fetch configuration loading and caching."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to config YAML file. Defaults to $FETCHPAGE_CONFIG,
                then config/fetchpage.yaml in the project root
        """
        self._explicit = config_path is not None or bool(os.environ.get(ENV_CONFIG_PATH))

        if config_path is None:
            config_path = os.environ.get(ENV_CONFIG_PATH)
        if not config_path:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "fetchpage.yaml"

        self.config_path = Path(config_path).expanduser()
        self._config: Optional[FetchConfig] = None

    def load_config(self, force_reload: bool = False) -> FetchConfig:
        """Load configuration from YAML file.

        A missing default file yields the built-in defaults; a missing file
        that was asked for explicitly is an error.

        Args:
            force_reload: Force reload even if already cached

        Returns:
            Loaded and validated configuration

        Raises:
            FileNotFoundError: If an explicitly requested config file doesn't exist
            yaml.YAMLError: If YAML is invalid
            ValueError: If configuration validation fails
        """
        if self._config is not None and not force_reload:
            return self._config

        if not self.config_path.exists():
            if self._explicit:
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
            logger.debug(f"No config file at {self.config_path}, using defaults")
            self._config = FetchConfig().apply_env_overrides()
            return self._config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {self.config_path}: {e}")

        try:
            self._config = FetchConfig(**config_data).apply_env_overrides()
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}")

        logger.debug(f"Loaded configuration from {self.config_path}")
        return self._config

    @property
    def config(self) -> FetchConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config
