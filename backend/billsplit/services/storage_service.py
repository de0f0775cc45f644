"""Filesystem storage for uploaded receipt images.

Files live under ``settings.STORAGE_DIRECTORY/<user_id>/`` with a random
prefix on the sanitised original name.  Keys returned to callers are
relative (``user_id/filename``); lookups are always scoped to a user id
so one user cannot address another user's files.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional, Tuple

from billsplit.core.config import settings

logger = logging.getLogger(__name__)


class StorageService:
    """Store, resolve and delete user uploads on disk."""

    def __init__(self, base_dir: Optional[str] = None) -> None:
        base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
        if not base_path.is_absolute():
            repo_root = Path(__file__).resolve().parents[3]
            base_path = (repo_root / base_path).resolve()
        self.base_dir = base_path
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def normalise_filename(filename: str) -> str:
        """Remove potentially dangerous characters and ensure a safe filename."""
        keepchars = {"-", "_", "."}
        cleaned = "".join(c for c in filename if c.isalnum() or c in keepchars).lstrip(".")
        return cleaned or "receipt"

    def save_bytes(self, user_id: int, original_name: str, contents: bytes) -> Tuple[str, str]:
        """Persist ``contents`` and return ``(key, stored_filename)``."""
        if not contents:
            raise ValueError("Empty upload payload")
        stored_name = f"{uuid.uuid4().hex}_{self.normalise_filename(original_name)}"
        user_dir = self.base_dir / str(user_id)
        user_dir.mkdir(parents=True, exist_ok=True)
        path = user_dir / stored_name
        path.write_bytes(contents)
        logger.info("Stored upload user=%s file=%s bytes=%d", user_id, stored_name, len(contents))
        return f"{user_id}/{stored_name}", stored_name

    def resolve(self, user_id: int, filename: str) -> Optional[Path]:
        """Return the path of a stored file, or None when absent."""
        safe = self.normalise_filename(filename)
        if safe != filename:
            return None
        path = self.base_dir / str(user_id) / safe
        return path if path.is_file() else None

    def delete(self, user_id: int, filename: str) -> bool:
        path = self.resolve(user_id, filename)
        if path is None:
            return False
        path.unlink()
        logger.info("Deleted upload user=%s file=%s", user_id, filename)
        return True


__all__ = ["StorageService"]
