"""Pydantic models for captured credentials, fetch attempts and results.

This module defines the data shared by the cookie jar manager, the retrieval
strategies, the content classifier and the orchestrator: cookie records and
captured sessions as they come out of the credential store, the merged
cookie jar, per-attempt fetch outcomes, classifier verdicts and the final
result document.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


CookieKey = Tuple[str, str, str]
LocalStorageBucket = Dict[str, str]

# Chrome extension sameSite values mapped onto the names browsers accept
_SAME_SITE_MAP = {
    'no_restriction': 'None',
    'none': 'None',
    'lax': 'Lax',
    'strict': 'Strict',
}


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _from_unix_seconds(value: Any) -> Optional[datetime]:
    if value is None or value == '' or value == -1:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid expiration timestamp: {value!r}")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid expiration timestamp: {value!r}")
    if seconds != seconds:
        raise ValueError("Invalid expiration timestamp: NaN")
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # Far-future expirations that do not fit in a datetime
        return datetime.max.replace(tzinfo=timezone.utc)



def _path_matches(request_path: str, cookie_path: str) -> bool:
    """RFC 6265 path-match: '/foo' covers '/foo' and '/foo/bar' but not '/foobar'."""
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith('/') or request_path[len(cookie_path)] == '/'


class FetchStrategy(str, Enum):
    """Retrieval method used for one URL."""
    HTTP = "http"
    BROWSER = "browser"


class ResultStatus(str, Enum):
    """Terminal state of one invocation."""
    DONE = "done"
    LOGIN_REQUIRED = "login_required"
    ERROR = "error"


class CookieRecord(BaseModel):
    """One cookie from a captured browser session."""

    name: str = Field(description="Cookie name")
    value: str = Field(default="", description="Cookie value")
    domain: str = Field(description="Cookie domain, possibly with a leading dot")
    path: str = Field(default="/", description="Cookie path")
    secure: bool = Field(default=False, description="Secure flag")
    http_only: bool = Field(default=False, description="HttpOnly flag")
    same_site: Optional[str] = Field(
        default=None,
        description="SameSite attribute as captured (Strict, Lax, None, unspecified)"
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        description="Expiration time; None for session cookies"
    )

    @field_validator('expires_at')
    @classmethod
    def validate_expires_at(cls, v):
        return _ensure_aware(v)

    @property
    def key(self) -> CookieKey:
        """Uniqueness key used when merging captures."""
        return (self.name, self.domain, self.path)

    @property
    def is_session(self) -> bool:
        """Session cookies carry no explicit expiry."""
        return self.expires_at is None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether an explicit expiry has passed. Session cookies never expire."""
        if self.expires_at is None:
            return False
        return (now or utc_now()) > self.expires_at

    def matches_url(self, url: str) -> bool:
        """Check whether the cookie would be sent with a request to ``url``."""
        parsed = urlparse(url)
        host = (parsed.hostname or '').lower()
        cookie_domain = self.domain.lstrip('.').lower()
        if not host or not cookie_domain:
            return False

        if host != cookie_domain and not host.endswith(f'.{cookie_domain}'):
            return False

        if not _path_matches(parsed.path or '/', self.path or '/'):
            return False

        if self.secure and parsed.scheme != 'https':
            return False

        return True

    def to_playwright_cookie(self) -> Dict[str, Any]:
        """Convert to the dict shape accepted by ``BrowserContext.add_cookies``."""
        same_site = _SAME_SITE_MAP.get((self.same_site or '').lower(), 'Lax')
        if same_site == 'None' and not self.secure:
            # Browsers reject SameSite=None without Secure
            same_site = 'Lax'

        cookie = {
            'name': self.name,
            'value': self.value,
            'domain': self.domain,
            'path': self.path or '/',
            'secure': self.secure,
            'httpOnly': self.http_only,
            'sameSite': same_site,
        }
        if self.expires_at is not None and self.expires_at.year < 9999:
            cookie['expires'] = self.expires_at.timestamp()
        return cookie

    @classmethod
    def from_capture_dict(cls, data: Dict[str, Any], default_domain: str = '') -> 'CookieRecord':
        """Create a CookieRecord from a cookie entry of a capture file.

        Args:
            data: Cookie dict using the browser extension's field names
            default_domain: Domain used when the entry carries none

        Returns:
            Parsed CookieRecord

        Raises:
            ValueError: If the entry is not a dict or has no name
        """
        if not isinstance(data, dict):
            raise ValueError(f"Cookie entry must be an object, got {type(data).__name__}")
        if not data.get('name'):
            raise ValueError("Cookie entry has no name")

        return cls(
            name=str(data['name']),
            value=str(data.get('value', '') or ''),
            domain=str(data.get('domain') or default_domain),
            path=str(data.get('path') or '/'),
            secure=bool(data.get('secure', False)),
            http_only=bool(data.get('httpOnly', data.get('http_only', False))),
            same_site=data.get('sameSite', data.get('same_site')),
            expires_at=_from_unix_seconds(data.get('expirationDate', data.get('expires'))),
        )

    def to_capture_dict(self) -> Dict[str, Any]:
        """Convert back to the capture file cookie shape."""
        data = {
            'name': self.name,
            'value': self.value,
            'domain': self.domain,
            'path': self.path,
            'secure': self.secure,
            'httpOnly': self.http_only,
            'sameSite': self.same_site,
        }
        if self.expires_at is not None:
            data['expirationDate'] = self.expires_at.timestamp()
        return data


class CapturedSession(BaseModel):
    """One saved snapshot of cookies and local storage for a domain."""

    model_config = {"frozen": True}

    domain: str = Field(description="Domain the capture was taken on")
    url: Optional[str] = Field(default=None, description="Page URL at capture time")
    captured_at: Optional[datetime] = Field(default=None, description="Capture timestamp")
    cookies: List[CookieRecord] = Field(default_factory=list, description="Captured cookies")
    local_storage: LocalStorageBucket = Field(
        default_factory=dict,
        description="Local storage entries for the capture domain"
    )

    # Store metadata, not part of the capture file
    source_path: Optional[Path] = Field(default=None, description="File the capture was read from")
    modified_at: Optional[datetime] = Field(default=None, description="File modification time")

    @field_validator('captured_at', 'modified_at')
    @classmethod
    def validate_timestamps(cls, v):
        return _ensure_aware(v)

    @property
    def source_name(self) -> str:
        return self.source_path.name if self.source_path else ''

    @property
    def merge_order_key(self) -> Tuple[datetime, str]:
        """Sort key giving the last-write-wins order used by merges."""
        stamp = self.modified_at or self.captured_at or datetime.min.replace(tzinfo=timezone.utc)
        return (stamp, self.source_name)

    @classmethod
    def from_capture_dict(
        cls,
        data: Any,
        source_path: Optional[Path] = None,
        modified_at: Optional[datetime] = None
    ) -> 'CapturedSession':
        """Create a CapturedSession from parsed capture JSON.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"Capture must be a JSON object, got {type(data).__name__}")

        domain = data.get('domain')
        if not domain and data.get('url'):
            domain = urlparse(data['url']).hostname
        if not domain:
            raise ValueError("Capture has neither domain nor url")

        raw_cookies = data.get('cookies') or []
        if not isinstance(raw_cookies, list):
            raise ValueError("Capture 'cookies' must be a list")

        raw_storage = data.get('localStorage') or {}
        if not isinstance(raw_storage, dict):
            raise ValueError("Capture 'localStorage' must be an object")
        local_storage = {
            str(k): v if isinstance(v, str) else json.dumps(v)
            for k, v in raw_storage.items()
        }

        return cls(
            domain=str(domain),
            url=data.get('url'),
            captured_at=data.get('timestamp'),
            cookies=[CookieRecord.from_capture_dict(c, default_domain=str(domain)) for c in raw_cookies],
            local_storage=local_storage,
            source_path=source_path,
            modified_at=modified_at,
        )

    def to_capture_dict(self) -> Dict[str, Any]:
        """Convert to the capture file format."""
        return {
            'domain': self.domain,
            'url': self.url,
            'timestamp': (self.captured_at or utc_now()).isoformat(),
            'cookies': [c.to_capture_dict() for c in self.cookies],
            'localStorage': dict(self.local_storage),
        }


class ExpiryCheck(BaseModel):
    """Outcome of an expiry check over a set of cookies."""

    expired: bool = Field(default=False, description="Whether any cookie has expired")
    cookie_names: List[str] = Field(default_factory=list, description="Names of expired cookies")
    checked_count: int = Field(default=0, description="Cookies carrying an explicit expiry")

    def __bool__(self) -> bool:
        return self.expired


@dataclass
class CookieJar:
    """Deduplicated cookies and local storage merged from all captures."""

    cookies: Dict[CookieKey, CookieRecord] = field(default_factory=dict)
    local_storage: Dict[str, LocalStorageBucket] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)

    @property
    def records(self) -> List[CookieRecord]:
        return list(self.cookies.values())

    def keys(self) -> set:
        return set(self.cookies.keys())

    def __len__(self) -> int:
        return len(self.cookies)

    def is_empty(self) -> bool:
        return not self.cookies and not any(self.local_storage.values())

    def cookies_for_url(self, url: str, now: Optional[datetime] = None) -> List[CookieRecord]:
        """Unexpired cookies that would be sent to ``url``."""
        return [
            cookie for cookie in self.cookies.values()
            if cookie.matches_url(url) and not cookie.is_expired(now)
        ]

    def cookie_header(self, url: str, now: Optional[datetime] = None) -> str:
        """Format matching cookies as a ``Cookie`` header value."""
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies_for_url(url, now))

    def expired_cookie_names(self, now: Optional[datetime] = None) -> List[str]:
        return sorted({c.name for c in self.cookies.values() if c.is_expired(now)})


class FetchOutcome(BaseModel):
    """Raw result of one retrieval attempt."""

    strategy_used: FetchStrategy = Field(description="Strategy that produced this outcome")
    status_code: Optional[int] = Field(default=None, description="HTTP status, when known")
    raw_html: str = Field(default="", description="Retrieved markup")
    title: str = Field(default="", description="Document title")
    elapsed_ms: float = Field(default=0.0, description="Attempt duration in milliseconds")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")
    final_url: Optional[str] = Field(default=None, description="URL after navigation")
    selector: Optional[str] = Field(default=None, description="Extraction selector in effect")

    @property
    def location(self) -> Optional[str]:
        """Redirect target of a 3xx response."""
        for name, value in self.headers.items():
            if name.lower() == 'location':
                return value
        return None


class ContentVerdict(BaseModel):
    """Classifier judgment over one piece of retrieved content."""

    needs_login: bool = Field(default=False, description="A login wall was detected")
    quality_ok: bool = Field(default=False, description="Content is substantive enough to return")
    reason: str = Field(default="", description="Human-readable explanation")
    advisory_text: Optional[str] = Field(default=None, description="User-facing advisory")
    login_keyword_count: int = Field(default=0, description="Login phrases found")
    has_password_field: bool = Field(default=False, description="A password input was found")
    text_length: int = Field(default=0, description="Length of the tag-stripped text")


class ResultDocument(BaseModel):
    """Final text artifact produced by one invocation."""

    model_config = {"frozen": True}

    title: str = Field(description="Document title")
    markdown_body: str = Field(description="Markdown body or diagnostic text")
    source_url: str = Field(description="Requested URL")
    strategy_used: Optional[FetchStrategy] = Field(
        default=None,
        description="Strategy whose content was returned; None when no attempt succeeded"
    )
    status: ResultStatus = Field(default=ResultStatus.DONE, description="Terminal state")
    notes: List[str] = Field(default_factory=list, description="Credential advisories")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")

    @property
    def is_error(self) -> bool:
        return self.status != ResultStatus.DONE

    def render(self) -> str:
        """Render as ``Title: ...`` header, Markdown body and optional notes trailer."""
        text = f"Title: {self.title}\n\n{self.markdown_body}"
        if self.notes:
            text += "\n\nNotes:\n" + "\n".join(f"- {note}" for note in self.notes)
        return text
