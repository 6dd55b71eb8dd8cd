"""Captured credential storage and consolidation."""

from .jar import CookieJarManager
from .store import CAPTURE_FILE_RE, CaptureFile, FileCredentialStore, strip_www

__all__ = [
    'CookieJarManager',
    'FileCredentialStore',
    'CaptureFile',
    'CAPTURE_FILE_RE',
    'strip_www',
]
