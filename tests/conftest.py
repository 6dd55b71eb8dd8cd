"""Shared test fixtures and configuration for fetchpage tests."""

import json
import os
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fetchpage.fetch.capture.browser_client import ExtractedDocument
from fetchpage.fetch.capture.http_client import HttpResponse
from fetchpage.fetch.config import FetchConfig, StoreSettings


GOOD_ARTICLE_HTML = (
    "<html><head><title>Good Article</title></head><body>"
    "<h1>Understanding Widgets</h1>"
    + "".join(
        f"<p>Paragraph {i} explains how widgets are assembled, tested and shipped to customers.</p>"
        for i in range(12)
    )
    + "</body></html>"
)

THIN_SHELL_HTML = (
    "<html><head><title>App Shell</title></head>"
    "<body><div id=\"root\"></div><script>window.boot()</script></body></html>"
)

LOGIN_WALL_HTML = (
    "<html><head><title>Sign in</title></head><body>"
    "<p>Please sign in to continue.</p>"
    "<form action=\"/login\"><input name=\"user\"><input type=\"password\" name=\"pw\"></form>"
    "</body></html>"
)


class FakeHttpClient:
    """In-memory stand-in for HttpFetchClient."""

    def __init__(
        self,
        body: str = GOOD_ARTICLE_HTML,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        error: Optional[Exception] = None
    ):
        self.body = body
        self.status_code = status_code
        self.headers = headers or {'Content-Type': 'text/html; charset=utf-8'}
        self.error = error
        self.calls: List[Dict] = []

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        self.calls.append({'url': url, 'headers': dict(headers or {})})
        if self.error is not None:
            raise self.error
        return HttpResponse(
            status_code=self.status_code,
            headers=self.headers,
            body=self.body,
            url=url,
            elapsed_ms=5.0,
        )


class FakeBrowserClient:
    """In-memory BrowserClient recording every call."""

    def __init__(
        self,
        html: str = GOOD_ARTICLE_HTML,
        title: str = "Rendered Page",
        status: Optional[int] = 200,
        navigate_error: Optional[Exception] = None,
        launch_error: Optional[Exception] = None
    ):
        self.html = html
        self.title = title
        self.status = status
        self.navigate_error = navigate_error
        self.launch_error = launch_error

        self.launched = False
        self.closed = False
        self.headless: Optional[bool] = None
        self.cookies: List = []
        self.local_storage: Dict = {}
        self.navigations: List[Dict] = []
        self.waited_selectors: List[str] = []
        self.extract_selectors: List[Optional[str]] = []

    async def launch(self, headless: bool = True) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.launched = True
        self.headless = headless

    async def set_cookies(self, records: Iterable) -> int:
        self.cookies.extend(records)
        return len(self.cookies)

    async def set_local_storage(self, buckets: Dict) -> None:
        self.local_storage.update(buckets)

    async def navigate(self, url: str, wait_policy: str = "domcontentloaded", timeout_ms: int = 30000):
        self.navigations.append({'url': url, 'wait_policy': wait_policy, 'timeout_ms': timeout_ms})
        if self.navigate_error is not None:
            raise self.navigate_error
        return self.status

    async def wait_for_selector(self, selector: str, timeout_ms: int = 30000) -> bool:
        self.waited_selectors.append(selector)
        return True

    async def wait_for_ready_state(self, timeout_ms: int = 10000) -> bool:
        return True

    async def scroll(self) -> None:
        pass

    async def extract_document(self, selector: Optional[str] = None) -> ExtractedDocument:
        self.extract_selectors.append(selector)
        return ExtractedDocument(title=self.title, html=self.html, selector=selector)

    async def close(self) -> None:
        self.closed = True


class FakeBrowserFactory:
    """Callable producing FakeBrowserClient instances and remembering them."""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients: List[FakeBrowserClient] = []

    def __call__(self) -> FakeBrowserClient:
        client = FakeBrowserClient(**self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def called(self) -> bool:
        return bool(self.clients)


def write_capture(
    directory: Path,
    domain: str,
    cookies: List[Dict],
    local_storage: Optional[Dict[str, str]] = None,
    filename: Optional[str] = None,
    mtime: Optional[float] = None
) -> Path:
    """Write a capture file the way the browser extension does."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / (filename or f"{domain}_cookies.json")
    data = {
        'domain': domain,
        'url': f"https://{domain}/",
        'timestamp': '2024-01-01T00:00:00Z',
        'cookies': cookies,
        'localStorage': local_storage or {},
    }
    path.write_text(json.dumps(data), encoding='utf-8')
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def cookie_dir(tmp_path):
    """Empty credential directory."""
    directory = tmp_path / "cookies"
    directory.mkdir()
    return directory


@pytest.fixture
def pages_dir(tmp_path):
    """Directory receiving saved pages."""
    return tmp_path / "pages"


@pytest.fixture
def fetch_config(cookie_dir, pages_dir):
    """Configuration pointing at temporary directories, artifact saving off."""
    return FetchConfig(
        store=StoreSettings(cookie_dir=cookie_dir, pages_dir=pages_dir, save_artifacts=False),
        domain_selectors={'docs.example.org': '.doc-body'},
    )


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture
def fake_browsers():
    return FakeBrowserFactory()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
