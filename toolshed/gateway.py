from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .usecases.status_policy import normalize_condition

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Analyze this photo of a tool and extract its catalog information as JSON.

Respond in exactly this shape:
{
  "name": "tool name",
  "manufacturer": "manufacturer",
  "model": "model number",
  "category": "tool category",
  "condition": "new or used",
  "notes": "notable features or cautions",
  "confidence": 0.8
}

Rules:
- use null for anything you are not sure about
- condition must be exactly "new" or "used"
- confidence is a number between 0 and 1
- respond with JSON only"""

_FENCE = re.compile(r"```(?:json)?\s*|```")
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class DraftToolFields(BaseModel):
    """Untrusted registration draft proposed from a photograph."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    name: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    condition: str = "used"
    notes: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ExtractionError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ExtractionGateway(Protocol):
    @property
    def configured(self) -> bool: ...

    @property
    def model_name(self) -> str: ...

    async def extract(self, image: bytes, mime_type: str = "image/jpeg") -> DraftToolFields: ...


def _text_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def coerce_draft(raw: dict[str, Any]) -> DraftToolFields:
    conf = raw.get("confidence")
    try:
        conf = min(max(float(conf), 0.0), 1.0)
    except (TypeError, ValueError):
        conf = 0.5
    return DraftToolFields(
        name=_text_or_none(raw.get("name")),
        category=_text_or_none(raw.get("category")),
        manufacturer=_text_or_none(raw.get("manufacturer")),
        model=_text_or_none(raw.get("model")),
        condition=normalize_condition(_text_or_none(raw.get("condition"))),
        notes=_text_or_none(raw.get("notes")),
        confidence=conf,
    )


def parse_model_text(text: str) -> DraftToolFields:
    cleaned = _FENCE.sub("", text or "").strip()
    if not cleaned:
        raise ExtractionError("EMPTY_RESPONSE", "model returned no text")
    try:
        data = json.loads(cleaned)
    except ValueError:
        m = _OBJECT.search(cleaned)
        if not m:
            raise ExtractionError("INVALID_RESPONSE", "no JSON object in model output")
        try:
            data = json.loads(m.group(0))
        except ValueError as e:
            raise ExtractionError("INVALID_RESPONSE", f"unparseable JSON: {e}")
    if not isinstance(data, dict):
        raise ExtractionError("INVALID_RESPONSE", "model output is not an object")
    return coerce_draft(data)


class GeminiExtractionGateway:
    """Calls the Gemini ``generateContent`` REST endpoint with an inline image."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def model_name(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.aclose()

    async def extract(self, image: bytes, mime_type: str = "image/jpeg") -> DraftToolFields:
        if not self._api_key:
            raise ExtractionError("NO_API_KEY", "extraction API key is not configured")

        body = {
            "contents": [{
                "parts": [
                    {"text": EXTRACTION_PROMPT},
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode("ascii")}},
                ],
            }],
            "generationConfig": {
                "temperature": 0.1,
                "topP": 0.8,
                "topK": 40,
                "maxOutputTokens": 2048,
                "responseMimeType": "application/json",
            },
        }
        url = f"{self._api_base}/models/{self._model}:generateContent"
        try:
            resp = await self._client.post(url, json=body, headers={"x-goog-api-key": self._api_key})
        except httpx.TimeoutException as e:
            raise ExtractionError("TIMEOUT", str(e) or "request timed out")
        except httpx.HTTPError as e:
            raise ExtractionError("NETWORK_ERROR", str(e))

        if resp.status_code in (401, 403):
            raise ExtractionError("INVALID_API_KEY", f"gateway rejected credentials ({resp.status_code})")
        if resp.status_code == 429:
            raise ExtractionError("QUOTA_EXCEEDED", "extraction quota exceeded, retry later")
        if resp.status_code >= 400:
            raise ExtractionError("GATEWAY_ERROR", f"HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            payload = resp.json()
        except ValueError:
            raise ExtractionError("INVALID_RESPONSE", "gateway response is not JSON")

        text = _candidate_text(payload)
        logger.debug("[EXTRACT] raw model text (%d chars)", len(text))
        return parse_model_text(text)


def _candidate_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        raise ExtractionError("EMPTY_RESPONSE", "gateway returned no candidates")
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))
