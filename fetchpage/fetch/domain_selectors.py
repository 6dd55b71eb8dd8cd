"""Hostname to CSS selector table for sites that always need rendering."""

import logging
import re
from typing import Dict, Iterator, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


_COMMON_PREFIX_RE = re.compile(r'^(www\.|m\.|mobile\.)')


class DomainSelectorTable:
    """Maps hostnames to the selector holding their main content.

    Lookup precedence: exact hostname, then the hostname with a ``www.``,
    ``m.`` or ``mobile.`` prefix removed, then the first configured key
    contained in the hostname.
    """

    def __init__(self, mapping: Optional[Dict[str, str]] = None):
        self._table: Dict[str, str] = {
            key.strip().lower(): selector
            for key, selector in (mapping or {}).items()
            if key and key.strip() and selector
        }

    def __len__(self) -> int:
        return len(self._table)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._table.items())

    def lookup_host(self, hostname: str) -> Optional[str]:
        hostname = (hostname or '').lower()
        if not hostname:
            return None

        if hostname in self._table:
            return self._table[hostname]

        stripped = _COMMON_PREFIX_RE.sub('', hostname)
        if stripped in self._table:
            return self._table[stripped]

        for key, selector in self._table.items():
            if key in hostname:
                return selector

        return None

    def lookup(self, url: str) -> Optional[str]:
        """Selector configured for a URL's hostname, or None."""
        try:
            hostname = urlparse(url).hostname
        except ValueError:
            return None

        selector = self.lookup_host(hostname or '')
        if selector:
            logger.debug(f"Domain selector for {hostname}: {selector}")
        return selector
