"""Directory-backed store of captured browser sessions.

Each capture is a JSON file named ``<domain>_cookies.json``, as written by the
companion browser extension. Downloads of the same capture may pick up a
`` (N)`` duplicate suffix (``example.com_cookies (2).json``); those variants
are recognized too.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from ..errors import CredentialParseError
from ..models import CapturedSession

logger = logging.getLogger(__name__)


CAPTURE_SUFFIX = '_cookies'
CAPTURE_FILE_RE = re.compile(r'^(?P<base>.+)_cookies(\s*\(\d+\))?\.json$')


def strip_www(domain: str) -> str:
    domain = domain.lower()
    return domain[4:] if domain.startswith('www.') else domain


class CaptureFile:
    """A capture file found in the store."""

    def __init__(self, path: Path, modified_at: datetime):
        self.path = path
        self.modified_at = modified_at

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def base_name(self) -> str:
        """File name without the ``_cookies`` suffix and duplicate counter."""
        match = CAPTURE_FILE_RE.match(self.path.name)
        return match.group('base') if match else self.path.stem

    def __repr__(self) -> str:
        return f"CaptureFile(name={self.name!r}, modified_at={self.modified_at.isoformat()})"


class FileCredentialStore:
    """Reads and writes capture files in one directory."""

    def __init__(self, directory: Union[str, Path]):
        """Initialize store.

        Args:
            directory: Directory holding capture files (need not exist yet)
        """
        self.directory = Path(directory).expanduser()

    def exists(self) -> bool:
        return self.directory.is_dir()

    def list_captures(self, base_names: Optional[List[str]] = None) -> List[CaptureFile]:
        """List capture files, newest first.

        Args:
            base_names: Restrict to captures whose base name is one of these

        Returns:
            CaptureFile entries sorted by modification time, descending
        """
        if not self.exists():
            logger.debug(f"Credential directory does not exist: {self.directory}")
            return []

        wanted = {name.lower() for name in base_names} if base_names else None
        captures = []

        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            match = CAPTURE_FILE_RE.match(path.name)
            if not match:
                continue
            if wanted is not None and match.group('base').lower() not in wanted:
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError as e:
                logger.warning(f"Cannot stat capture file {path}: {e}")
                continue
            captures.append(CaptureFile(path, datetime.fromtimestamp(mtime, tz=timezone.utc)))

        captures.sort(key=lambda c: (c.modified_at, c.name), reverse=True)
        return captures

    def read(self, capture: Union[CaptureFile, Path]) -> CapturedSession:
        """Parse one capture file.

        Raises:
            CredentialParseError: If the file cannot be read or is malformed
        """
        if isinstance(capture, CaptureFile):
            path, modified_at = capture.path, capture.modified_at
        else:
            path = Path(capture)
            try:
                modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            except OSError as e:
                raise CredentialParseError(f"Cannot read capture file {path}: {e}", path=str(path))

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError) as e:
            raise CredentialParseError(f"Cannot read capture file {path}: {e}", path=str(path))
        except json.JSONDecodeError as e:
            raise CredentialParseError(f"Invalid JSON in capture file {path}: {e}", path=str(path))

        try:
            return CapturedSession.from_capture_dict(data, source_path=path, modified_at=modified_at)
        except ValueError as e:
            # pydantic ValidationError is a ValueError subclass
            raise CredentialParseError(f"Malformed capture file {path}: {e}", path=str(path))

    def path_for(self, domain: str) -> Path:
        return self.directory / f"{strip_www(domain)}{CAPTURE_SUFFIX}.json"

    def write(self, session: CapturedSession) -> Path:
        """Write a capture, overwriting any existing capture for the same domain.

        Returns:
            Path of the written file
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session.domain)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(session.to_capture_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(session.cookies)} cookies for {session.domain} to {path}")
        return path

    def __repr__(self) -> str:
        return f"FileCredentialStore(directory={str(self.directory)!r})"
