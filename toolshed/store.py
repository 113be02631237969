from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from .models import Incident, Loan, Tool
from .usecases.status_policy import sync_availability
from .utils import atomic_write_json

logger = logging.getLogger(__name__)

TOOLS_FILE = "tools_data.json"
LOANS_FILE = "loans_data.json"
INCIDENTS_FILE = "incidents_data.json"

SAMPLE_TOOLS_PATH = Path(__file__).parent / "sample_data" / "sample_tools.json"


class EntityStore:
    """In-memory Tools/Loans/Incidents with a JSON snapshot on disk.

    ``lock`` is re-entrant; callers that need a check-then-mutate step to be
    uninterrupted hold it around the whole step. Getters hand out copies so a
    reader never observes an entity while another writer is changing it.
    """

    def __init__(self, data_dir: str | os.PathLike, sample_path: Path | None = SAMPLE_TOOLS_PATH) -> None:
        self.data_dir = Path(data_dir)
        self.sample_path = sample_path
        self.lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._tools: dict[str, Tool] = {}
        self._loans: list[Loan] = []
        self._incidents: list[Incident] = []
        self._dirty = False

    @classmethod
    @contextmanager
    def opened(cls, data_dir: str | os.PathLike, **kwargs) -> Iterator["EntityStore"]:
        """Load on enter; always try a final flush on exit."""
        store = cls(data_dir, **kwargs)
        store.load()
        try:
            yield store
        finally:
            try:
                store.flush()
            except OSError as e:
                logger.error("[STORE] final flush failed: %r", e)

    # ---------------- load / persist ----------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def load(self) -> None:
        tools_raw = self._read_json(TOOLS_FILE)
        loans_raw = self._read_json(LOANS_FILE)
        incidents_raw = self._read_json(INCIDENTS_FILE)

        tools: dict[str, Tool] = {}
        if isinstance(tools_raw, dict):
            for tid, data in tools_raw.items():
                if not isinstance(data, dict):
                    logger.warning("[STORE] skipping malformed Tool record %r: not an object", tid)
                    continue
                t = self._parse(Tool, {"id": tid, **data})
                if t:
                    tools[t.id] = sync_availability(t)

        from_sample = False
        if not tools:
            tools = self.load_sample()
            from_sample = bool(tools)

        loans = [l for l in (self._parse(Loan, x) for x in _as_list(loans_raw)) if l]
        incidents = [i for i in (self._parse(Incident, x) for x in _as_list(incidents_raw)) if i]

        with self.lock:
            self._tools = tools
            self._loans = loans
            self._incidents = incidents
            self._dirty = from_sample

        logger.info(
            "[STORE] loaded tools=%d loans=%d incidents=%d (sample=%s) from %s",
            len(tools), len(loans), len(incidents), from_sample, self.data_dir,
        )

    def load_sample(self) -> dict[str, Tool]:
        if not self.sample_path or not self.sample_path.exists():
            return {}
        try:
            arr = json.loads(self.sample_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("[STORE] sample dataset unreadable: %r", e)
            return {}
        if not isinstance(arr, list):
            logger.warning("[STORE] sample dataset is not an array")
            return {}
        out: dict[str, Tool] = {}
        for data in arr:
            t = self._parse(Tool, data)
            if t:
                out[t.id] = sync_availability(t)
        return out

    def _read_json(self, name: str) -> Any:
        path = self.data_dir / name
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("[STORE] could not read %s: %r", path, e)
            return None

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("[STORE] skipping malformed %s record: %s", model.__name__, e.errors()[:1])
            return None

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                TOOLS_FILE: {tid: t.to_json() for tid, t in self._tools.items()},
                LOANS_FILE: [l.to_json() for l in self._loans],
                INCIDENTS_FILE: [i.to_json() for i in self._incidents],
            }

    def flush(self) -> None:
        """Write the current snapshot. Raises OSError; the store stays dirty on failure."""
        with self._flush_lock:
            with self.lock:
                docs = self.snapshot()
                self._dirty = False
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                for name, doc in docs.items():
                    atomic_write_json(self.data_dir / name, doc)
            except OSError:
                with self.lock:
                    self._dirty = True
                raise
        logger.debug("[STORE] flushed to %s", self.data_dir)

    def flush_if_dirty(self) -> bool:
        if not self._dirty:
            return False
        self.flush()
        return True

    def _touch(self) -> None:
        self._dirty = True

    # ---------------- tools ----------------

    def get_tool(self, tool_id: str) -> Optional[Tool]:
        with self.lock:
            t = self._tools.get(tool_id)
            return t.model_copy(deep=True) if t else None

    def has_tool(self, tool_id: str) -> bool:
        with self.lock:
            return tool_id in self._tools

    def list_tools(self) -> list[Tool]:
        with self.lock:
            return [t.model_copy(deep=True) for t in self._tools.values()]

    def put_tool(self, tool: Tool) -> Tool:
        with self.lock:
            self._tools[tool.id] = tool.model_copy(deep=True)
            self._touch()
        return tool

    def remove_tool(self, tool_id: str) -> bool:
        with self.lock:
            if tool_id not in self._tools:
                return False
            del self._tools[tool_id]
            self._touch()
            return True

    # ---------------- loans ----------------

    def list_loans(self, tool_id: Optional[str] = None) -> list[Loan]:
        with self.lock:
            rows = [l.model_copy(deep=True) for l in self._loans if tool_id is None or l.tool_id == tool_id]
        # newest first; equal timestamps keep newest-inserted first
        return sorted(reversed(rows), key=lambda l: l.created_at, reverse=True)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        with self.lock:
            for l in self._loans:
                if l.id == loan_id:
                    return l.model_copy(deep=True)
        return None

    def append_loan(self, loan: Loan) -> Loan:
        with self.lock:
            self._loans.append(loan.model_copy(deep=True))
            self._touch()
        return loan

    def update_loan(self, loan_id: str, patch: dict[str, Any]) -> Optional[Loan]:
        with self.lock:
            for idx, l in enumerate(self._loans):
                if l.id == loan_id:
                    updated = l.model_copy(update={k: v for k, v in patch.items() if k != "id"}, deep=True)
                    self._loans[idx] = updated
                    self._touch()
                    return updated.model_copy(deep=True)
        return None

    # ---------------- incidents ----------------

    def list_incidents(self, tool_id: Optional[str] = None) -> list[Incident]:
        with self.lock:
            rows = [i.model_copy(deep=True) for i in self._incidents if tool_id is None or i.tool_id == tool_id]
        return sorted(reversed(rows), key=lambda i: i.timestamp, reverse=True)

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        with self.lock:
            for i in self._incidents:
                if i.id == incident_id:
                    return i.model_copy(deep=True)
        return None

    def append_incident(self, incident: Incident) -> Incident:
        with self.lock:
            self._incidents.append(incident.model_copy(deep=True))
            self._touch()
        return incident

    def update_incident(self, incident_id: str, patch: dict[str, Any]) -> Optional[Incident]:
        with self.lock:
            for idx, i in enumerate(self._incidents):
                if i.id == incident_id:
                    updated = i.model_copy(update={k: v for k, v in patch.items() if k != "id"}, deep=True)
                    self._incidents[idx] = updated
                    self._touch()
                    return updated.model_copy(deep=True)
        return None


def _as_list(raw: Any) -> list:
    return raw if isinstance(raw, list) else []

