from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from ..gateway import DraftToolFields, ExtractionError, ExtractionGateway
from ..utils import atomic_write_json, utcnow

logger = logging.getLogger(__name__)

EXTRACTION_LOG_FILE = "ai_analysis_log.json"


def fallback_draft(err: ExtractionError) -> dict[str, Any]:
    """Something the UI can still route into manual entry."""
    return {
        "name": "새 공구 (정보 입력 필요)",
        "category": "기타",
        "manufacturer": None,
        "model": None,
        "condition": "used",
        "notes": None,
        "confidence": 0.0,
        "error": "AI extraction is unavailable; please enter the details manually.",
        "errorCode": err.code,
        "errorDetails": err.message,
    }


async def extract_draft(
    gateway: ExtractionGateway,
    image: bytes,
    mime_type: str,
    timeout: float,
) -> dict[str, Any]:
    """Run the gateway under a timeout. Never raises for gateway faults."""
    try:
        draft: DraftToolFields = await asyncio.wait_for(gateway.extract(image, mime_type), timeout)
    except asyncio.TimeoutError:
        err = ExtractionError("TIMEOUT", f"extraction timed out after {timeout:g}s")
        logger.warning("[EXTRACT] %s", err)
        return fallback_draft(err)
    except ExtractionError as err:
        logger.warning("[EXTRACT] %s", err)
        return fallback_draft(err)

    out = draft.model_dump(by_alias=True)
    out["name"] = out["name"] or "미확인 공구"
    out["category"] = out["category"] or "기타"
    logger.info("[EXTRACT] draft %r (confidence %.2f)", out["name"], out["confidence"])
    return out


class ExtractionLog:
    """Most recent extraction attempts, kept as one bounded JSON document."""

    def __init__(self, data_dir: str | Path, limit: int = 50) -> None:
        self.path = Path(data_dir) / EXTRACTION_LOG_FILE
        self.limit = limit
        self._lock = threading.Lock()

    def entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._read()

    def append(self, temp_image_name: Optional[str], size: int, mime_type: str, result: dict[str, Any]) -> None:
        entry = {
            "timestamp": utcnow().isoformat(),
            "tempImageName": temp_image_name,
            "fileSize": size,
            "mimeType": mime_type,
            "analysisResult": result,
            "success": "error" not in result,
        }
        with self._lock:
            logs = self._read()
            logs.append(entry)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                atomic_write_json(self.path, logs[-self.limit:])
            except OSError as e:
                logger.error("[EXTRACT] could not write extraction log: %r", e)

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("[EXTRACT] extraction log unreadable, starting over: %r", e)
            return []
        return data if isinstance(data, list) else []
