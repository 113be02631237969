from __future__ import annotations

import json
import os
import threading
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

_ID_LOCK = threading.Lock()
_last_id_ms = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()


def new_id(prefix: str) -> str:
    """Millisecond-timestamp id; strictly increasing within the process."""
    global _last_id_ms
    with _ID_LOCK:
        ms = max(int(time.time() * 1000), _last_id_ms + 1)
        _last_id_ms = ms
    return f"{prefix}_{ms}"


def atomic_write_json(path: Path, doc: Any) -> None:
    """Write to a sibling temp file, then replace; readers never see a partial file."""
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(doc, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
