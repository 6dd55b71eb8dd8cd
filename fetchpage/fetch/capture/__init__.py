"""Retrieval clients: plain HTTP and Playwright browser rendering."""

from .browser_client import (
    BrowserClient,
    ExtractedDocument,
    PlaywrightBrowserClient,
    WaitPolicy,
    browser_session,
)
from .browser_factory import BrowserConfig, BrowserEngineType, BrowserFactory
from .http_client import DEFAULT_USER_AGENT, HttpFetchClient, HttpResponse

__all__ = [
    'BrowserClient',
    'ExtractedDocument',
    'PlaywrightBrowserClient',
    'WaitPolicy',
    'browser_session',
    'BrowserConfig',
    'BrowserEngineType',
    'BrowserFactory',
    'HttpFetchClient',
    'HttpResponse',
    'DEFAULT_USER_AGENT',
]
