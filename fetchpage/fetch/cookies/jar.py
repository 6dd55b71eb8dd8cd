"""Consolidation of captured sessions into one cookie jar.

Captures are merged in modification-time order so that, for cookies sharing
``(name, domain, path)``, the most recently saved capture wins regardless of
the order the files were listed in.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from ..errors import CredentialParseError
from ..models import CapturedSession, CookieJar, ExpiryCheck, utc_now
from .store import FileCredentialStore, strip_www

logger = logging.getLogger(__name__)


class CookieJarManager:
    """Loads, merges and checks captured credentials from a store."""

    def __init__(self, store: FileCredentialStore):
        self.store = store

    def load_sessions(self) -> List[CapturedSession]:
        """Parse every capture in the store, skipping malformed files."""
        sessions = []
        for capture in self.store.list_captures():
            try:
                sessions.append(self.store.read(capture))
            except CredentialParseError as e:
                logger.warning(f"Skipping capture {capture.name}: {e}")
        return sessions

    def load_all(self) -> Optional[CookieJar]:
        """Load and merge every capture in the store.

        Returns:
            Merged CookieJar, or None when the store holds nothing usable
        """
        sessions = self.load_sessions()
        if not sessions:
            logger.info(f"No usable captures in {self.store.directory}")
            return None

        jar = self.merge(sessions)
        if jar.is_empty():
            return None

        logger.info(
            f"Loaded {len(jar)} cookies for {len(jar.local_storage)} storage domains "
            f"from {len(sessions)} captures"
        )
        return jar

    def merge(self, sessions: Iterable[CapturedSession]) -> CookieJar:
        """Merge sessions into one jar, last-modified capture winning conflicts."""
        jar = CookieJar()
        for session in sorted(sessions, key=lambda s: s.merge_order_key):
            for cookie in session.cookies:
                jar.cookies[cookie.key] = cookie

            if session.local_storage:
                bucket = jar.local_storage.setdefault(strip_www(session.domain), {})
                bucket.update(session.local_storage)

            if session.source_name:
                jar.sources.append(session.source_name)

        return jar

    def is_expired(self, session: CapturedSession, now: Optional[datetime] = None) -> ExpiryCheck:
        """Check a session's cookies that carry an explicit expiry.

        Session cookies (no expiry) are never reported.
        """
        now = now or utc_now()
        dated = [cookie for cookie in session.cookies if not cookie.is_session]
        expired = [cookie.name for cookie in dated if cookie.is_expired(now)]

        if expired:
            logger.debug(f"Capture for {session.domain} has {len(expired)} expired cookies: {expired}")

        return ExpiryCheck(expired=bool(expired), cookie_names=expired, checked_count=len(dated))

    def find_latest_for_domain(self, domain: str) -> Optional[CapturedSession]:
        """Return the most recently modified capture that parses for a domain.

        Candidate base names are the domain itself, the domain without
        ``www.`` and ``www.`` plus the bare domain.
        """
        domain = domain.lower()
        bare = strip_www(domain)
        candidates = [domain, bare, f"www.{bare}"]

        for capture in self.store.list_captures(base_names=candidates):
            try:
                session = self.store.read(capture)
            except CredentialParseError as e:
                logger.warning(f"Skipping capture {capture.name}: {e}")
                continue
            logger.debug(f"Latest capture for {domain}: {capture.name}")
            return session

        logger.debug(f"No capture found for {domain}")
        return None

    def load_for_url(self, url: str, merge_all: bool = True) -> Optional[CookieJar]:
        """Credentials to use for one URL.

        Args:
            url: Target URL
            merge_all: Merge the whole store; otherwise use the latest capture for the host

        Returns:
            CookieJar, or None when there is nothing to inject
        """
        if merge_all:
            return self.load_all()

        host = urlparse(url).hostname
        if not host:
            return None
        session = self.find_latest_for_domain(host)
        if session is None:
            return None

        jar = self.merge([session])
        return None if jar.is_empty() else jar
