"""Heuristic classification of retrieved content.

The classifier answers two independent questions about a page: does it look
like a login wall, and is the content substantive enough to return as-is.
Thresholds live in ``ClassifierPolicy`` so they can be tuned and tested
without going through the orchestrator.
"""

import logging
import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import ContentVerdict, FetchOutcome

logger = logging.getLogger(__name__)


DEFAULT_LOGIN_PHRASES = [
    'please log in',
    'please sign in',
    'login required',
    'session expired',
    'authentication required',
    'access denied',
    '请登录',
    '请先登录',
    '登录已过期',
    '会话已过期',
    'login form',
    'sign in form',
]

_SCRIPT_STYLE_RE = re.compile(r'<(script|style|noscript)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r'<[^>]+>')
_WHITESPACE_RE = re.compile(r'\s+')
_STRUCTURE_RE = re.compile(
    r'</(h[1-6]|p|div|article|section|main|li|table|blockquote|pre)\s*>',
    re.IGNORECASE
)
_FORM_RE = re.compile(r'<form\b', re.IGNORECASE)
_PASSWORD_FIELD_RE = re.compile(
    r'<input\b[^>]*\b(type|name|id)\s*=\s*["\']?password\b',
    re.IGNORECASE
)


class CheckContext(str, Enum):
    """Call path a login check runs in; selects the short-content floor."""
    DIRECT = "direct"
    ORCHESTRATED = "orchestrated"


class ClassifierPolicy(BaseModel):
    """Fixed-threshold policy for login and quality judgments."""

    login_phrases: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LOGIN_PHRASES),
        description="Case-insensitive login indicator phrases"
    )
    login_phrase_threshold: int = Field(
        default=2,
        description="Phrase count that signals a login wall on its own"
    )
    direct_short_content_floor: int = Field(
        default=200,
        description="Short-content floor for a single direct fetch check"
    )
    orchestrated_short_content_floor: int = Field(
        default=2000,
        description="Short-content floor for the orchestrated multi-step check"
    )
    redirect_login_tokens: List[str] = Field(
        default_factory=lambda: ['login', 'signin', 'auth', 'sso'],
        description="Redirect target fragments that indicate a login page"
    )
    min_quality_text_length: int = Field(
        default=500,
        description="Stripped text must be longer than this to pass the quality check"
    )
    error_keywords: List[str] = Field(
        default_factory=lambda: ['404', 'not found'],
        description="Visible-text keywords that mark an error page"
    )
    browser_preference_ratio: float = Field(
        default=1.2,
        description="Browser content wins when longer than HTTP content by this factor"
    )

    @field_validator('login_phrases', 'redirect_login_tokens', 'error_keywords')
    @classmethod
    def lowercase_terms(cls, v):
        return [term.lower() for term in v if term]

    @field_validator('browser_preference_ratio')
    @classmethod
    def validate_ratio(cls, v):
        if v < 1.0:
            raise ValueError("browser_preference_ratio must be >= 1.0")
        return v

    def short_content_floor(self, context: CheckContext) -> int:
        if context == CheckContext.DIRECT:
            return self.direct_short_content_floor
        return self.orchestrated_short_content_floor


def strip_markup(content: str) -> str:
    """Remove script/style blocks and tags, collapsing whitespace."""
    text = _SCRIPT_STYLE_RE.sub(' ', content)
    text = _TAG_RE.sub(' ', text)
    return _WHITESPACE_RE.sub(' ', text).strip()


class ContentClassifier:
    """Scores retrieved content for login walls and quality."""

    def __init__(self, policy: Optional[ClassifierPolicy] = None):
        """Initialize classifier.

        Args:
            policy: Threshold policy (defaults used if None)
        """
        self.policy = policy or ClassifierPolicy()
        self._error_patterns = [
            re.compile(rf'(?<!\w){re.escape(keyword)}(?!\w)')
            for keyword in self.policy.error_keywords
        ]

    def count_login_phrases(self, content: str) -> int:
        """Count distinct login phrases present in the content."""
        lowered = content.lower()
        return sum(1 for phrase in self.policy.login_phrases if phrase in lowered)

    def has_password_field(self, content: str) -> bool:
        """Detect a password-type field inside a form."""
        return bool(_FORM_RE.search(content) and _PASSWORD_FIELD_RE.search(content))

    def login_redirect_reason(
        self,
        status_code: Optional[int],
        headers: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        """Return a reason when the status/redirect itself signals a login wall."""
        if status_code is None:
            return None

        if status_code == 401:
            return "401 Unauthorized response"

        if 300 <= status_code < 400:
            location = ''
            for name, value in (headers or {}).items():
                if name.lower() == 'location':
                    location = (value or '').lower()
                    break
            for token in self.policy.redirect_login_tokens:
                if token in location:
                    return f"redirected to login page ({location})"

        return None

    def is_error_page(self, text: str) -> bool:
        lowered = text.lower()
        return any(pattern.search(lowered) for pattern in self._error_patterns)

    def classify(
        self,
        content: str,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        context: CheckContext = CheckContext.ORCHESTRATED
    ) -> ContentVerdict:
        """Classify content for login walls and quality.

        Args:
            content: Raw markup (or text) to judge
            status_code: Response status, when known
            headers: Response headers, used for redirect inspection
            context: Call path, selects the short-content floor

        Returns:
            ContentVerdict with both judgments
        """
        content = content or ''
        keyword_count = self.count_login_phrases(content)
        password_field = self.has_password_field(content)
        redirect_reason = self.login_redirect_reason(status_code, headers)
        floor = self.policy.short_content_floor(context)
        is_short = len(content) < floor

        text = strip_markup(content)
        text_length = len(text)

        needs_login = (
            redirect_reason is not None
            or keyword_count >= self.policy.login_phrase_threshold
            or password_field
            or (keyword_count >= 1 and is_short)
        )

        if needs_login:
            details = [f"login phrases: {keyword_count}"]
            if password_field:
                details.append("password form field present")
            if redirect_reason:
                details.append(redirect_reason)
            if keyword_count >= 1 and is_short:
                details.append(f"content shorter than {floor} characters")
            reason = f"Login required ({', '.join(details)})"
            logger.debug(f"Classifier: {reason}")
            return ContentVerdict(
                needs_login=True,
                quality_ok=False,
                reason=reason,
                advisory_text=f"The page appears to require authentication: {', '.join(details)}.",
                login_keyword_count=keyword_count,
                has_password_field=password_field,
                text_length=text_length,
            )

        has_structure = bool(_STRUCTURE_RE.search(content))
        error_page = self.is_error_page(text)
        quality_ok = (
            text_length > self.policy.min_quality_text_length
            and has_structure
            and not error_page
        )

        if quality_ok:
            reason = f"Content quality good (text length: {text_length})"
        else:
            reason = (
                f"Content quality poor (text length: {text_length}, "
                f"structure: {has_structure}, error page: {error_page})"
            )
        logger.debug(f"Classifier: {reason}")

        return ContentVerdict(
            needs_login=False,
            quality_ok=quality_ok,
            reason=reason,
            login_keyword_count=keyword_count,
            has_password_field=password_field,
            text_length=text_length,
        )

    def classify_outcome(
        self,
        outcome: FetchOutcome,
        context: CheckContext = CheckContext.ORCHESTRATED
    ) -> ContentVerdict:
        """Classify a fetch outcome using its markup, status and headers."""
        return self.classify(
            outcome.raw_html,
            status_code=outcome.status_code,
            headers=outcome.headers,
            context=context,
        )
