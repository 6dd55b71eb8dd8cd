"""Page fetching pipeline.

Main Components:
- Cookie Jar Manager: loads and merges captured browser sessions (cookies/)
- Retrieval clients: aiohttp plain fetch and Playwright rendering (capture/)
- Content Classifier: login wall and content quality heuristics
- Markdown Transformer: HTML to Markdown in string and tree-walk modes
- Orchestrator: strategy selection, fallback and result assembly
"""

from .classifier import CheckContext, ClassifierPolicy, ContentClassifier
from .config import FetchConfig, FetchConfigManager
from .domain_selectors import DomainSelectorTable
from .errors import (
    CredentialParseError,
    FetchPageError,
    NavigationError,
    NetworkError,
    SelectorNotFound,
)
from .markdown import MarkdownTransformer
from .models import (
    CapturedSession,
    ContentVerdict,
    CookieJar,
    CookieRecord,
    ExpiryCheck,
    FetchOutcome,
    FetchStrategy,
    ResultDocument,
    ResultStatus,
)
from .orchestrator import FetchOrchestrator, fetchpage

__all__ = [
    # Entry points
    'fetchpage',
    'FetchOrchestrator',

    # Components
    'ContentClassifier',
    'ClassifierPolicy',
    'CheckContext',
    'MarkdownTransformer',
    'DomainSelectorTable',
    'FetchConfig',
    'FetchConfigManager',

    # Models
    'CookieRecord',
    'CapturedSession',
    'CookieJar',
    'ExpiryCheck',
    'FetchOutcome',
    'FetchStrategy',
    'ContentVerdict',
    'ResultDocument',
    'ResultStatus',

    # Errors
    'FetchPageError',
    'CredentialParseError',
    'NetworkError',
    'NavigationError',
    'SelectorNotFound',
]
