"""Exception types raised by the fetch pipeline.

Every exception here is caught at an attempt boundary by the orchestrator and
turned into a result document; none of them escape ``fetchpage()``.
"""

from typing import Optional


class FetchPageError(Exception):
    """Base class for all fetch pipeline errors."""
    pass


class CredentialParseError(FetchPageError):
    """Raised when a capture file cannot be parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NetworkError(FetchPageError):
    """Raised when the plain fetch times out or cannot connect."""
    pass


class NavigationError(FetchPageError):
    """Raised when browser navigation fails or returns an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SelectorNotFound(FetchPageError):
    """Raised when a caller selector matches nothing usable."""

    def __init__(self, selector: str, nested_only: bool = False):
        if nested_only:
            message = f'Selector "{selector}" matched only nested elements, all of which were filtered'
        else:
            message = f'Selector "{selector}" matched no elements'
        super().__init__(message)
        self.selector = selector
        self.nested_only = nested_only
