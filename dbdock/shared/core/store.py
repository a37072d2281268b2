"""JSON document persistence shared by the dbdock stores."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.environ.get("DBDOCK_CONFIG_DIR", Path.home() / ".dbdock"))

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class JSONFileStore:
    """One JSON document on disk.

    Anything that cannot be read back (missing file, bad encoding, invalid or
    oversized JSON, permission errors) reads as None so that the owner falls
    back to its defaults. Writes replace the file in one rename and leave it
    owner-only (0600).
    """

    def __init__(self, file_path: Path):
        self._file_path = Path(file_path)

    @property
    def file_path(self) -> Path:
        return self._file_path

    def exists(self) -> bool:
        return self._file_path.exists()

    def _read_json(self) -> Any:
        if not self._file_path.exists():
            return None
        try:
            text = self._file_path.read_text(encoding="utf-8")
            return json.loads(text)
        except (ValueError, TypeError, RecursionError, OSError) as exc:
            # ValueError covers JSONDecodeError, UnicodeDecodeError and the
            # integer digit limit.
            logger.warning("Ignoring unreadable store file %s: %s", self._file_path, exc)
            return None

    def _prepare_directory(self) -> Path:
        directory = self._file_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(directory, _DIR_MODE)
        except OSError as exc:
            logger.debug("Cannot restrict permissions of %s: %s", directory, exc)
        return directory

    def _write_json(self, data: Any) -> None:
        """Serialize ``data`` to a sibling temp file, then rename it over the target."""
        directory = self._prepare_directory()
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self._file_path.stem}-", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.chmod(tmp_path, _FILE_MODE)
            os.replace(tmp_path, self._file_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
