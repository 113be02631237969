from __future__ import annotations

import logging
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def put(self, data: bytes, suffix: str = ".jpg", prefix: str = "temp") -> str: ...

    def get(self, name: str, permanent: bool = True) -> Optional[bytes]: ...

    def move_to_permanent(self, temp_name: str, final_stem: str) -> Optional[str]: ...

    def delete_older_than(self, max_age_seconds: float) -> int: ...


def _safe_name(name: str) -> str:
    # blob names are flat filenames; drop any directory part
    base = os.path.basename(name or "")
    if base in ("", ".", ".."):
        raise ValueError("invalid_blob_name")
    return base


class LocalBlobStore:
    """Photographs on local disk: a temp namespace and a permanent one."""

    def __init__(self, permanent_dir: str | os.PathLike, temp_dir: str | os.PathLike) -> None:
        self.permanent_dir = Path(permanent_dir)
        self.temp_dir = Path(temp_dir)
        self.permanent_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def put(self, data: bytes, suffix: str = ".jpg", prefix: str = "temp") -> str:
        suffix = suffix if suffix.startswith(".") else f".{suffix}"
        name = f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}{suffix}"
        (self.temp_dir / name).write_bytes(data)
        logger.info("[BLOB] temp stored %s (%d bytes)", name, len(data))
        return name

    def get(self, name: str, permanent: bool = True) -> Optional[bytes]:
        root = self.permanent_dir if permanent else self.temp_dir
        path = root / _safe_name(name)
        if not path.exists():
            return None
        return path.read_bytes()

    def move_to_permanent(self, temp_name: str, final_stem: str) -> Optional[str]:
        """Copy a temp blob into the permanent namespace; the temp copy is
        removed whether or not the copy worked. Returns the permanent name."""
        src = self.temp_dir / _safe_name(temp_name)
        if not src.exists():
            logger.warning("[BLOB] temp blob missing: %s", temp_name)
            return None

        final_name = f"{_safe_name(final_stem)}{src.suffix or '.jpg'}"
        moved: Optional[str] = None
        try:
            shutil.copyfile(src, self.permanent_dir / final_name)
            moved = final_name
            logger.info("[BLOB] %s -> %s", temp_name, final_name)
        except OSError as e:
            logger.error("[BLOB] commit of %s failed: %r", temp_name, e)
        finally:
            try:
                src.unlink()
            except OSError as e:
                logger.warning("[BLOB] could not delete temp %s: %r", temp_name, e)
        return moved

    def delete_older_than(self, max_age_seconds: float) -> int:
        cutoff = time.time() - max_age_seconds
        cleaned = 0
        for path in self.temp_dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    cleaned += 1
            except OSError as e:
                logger.warning("[BLOB] sweep could not remove %s: %r", path.name, e)
        if cleaned:
            logger.info("[BLOB] cleaned %d old temp images", cleaned)
        return cleaned
