"""Persistence of rendered result documents as Markdown files."""

import logging
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from .models import ResultDocument

logger = logging.getLogger(__name__)


_UNSAFE_PATH_CHARS = re.compile(r'[^a-zA-Z0-9.-]')


def artifact_filename(document: ResultDocument) -> str:
    """``<hostname><sanitized-path>_<YYYY-MM-DD>[_ERROR].md``"""
    try:
        parsed = urlparse(document.source_url)
        hostname = parsed.hostname or 'unknown'
        path = parsed.path or ''
    except ValueError:
        # e.g. an unbalanced IPv6 bracket in a rejected URL
        hostname, path = 'unknown', ''
    path = _UNSAFE_PATH_CHARS.sub('_', path)
    date = document.created_at.strftime('%Y-%m-%d')
    suffix = '_ERROR' if document.is_error else ''
    return f"{hostname}{path}_{date}{suffix}.md"


class ArtifactWriter:
    """Writes each result document into a pages directory."""

    def __init__(self, pages_dir: Union[str, Path]):
        self.pages_dir = Path(pages_dir).expanduser()

    def write(self, document: ResultDocument) -> Optional[Path]:
        """Save the rendered document.

        Returns:
            Written path, or None if the file could not be written
        """
        path = None
        try:
            path = self.pages_dir / artifact_filename(document)
            self.pages_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(document.render(), encoding='utf-8')
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save page artifact {path or self.pages_dir}: {e}")
            return None

        logger.info(f"Page content saved: {path}")
        return path
