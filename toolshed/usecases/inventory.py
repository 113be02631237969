from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError

from ..blob_store import BlobStore
from ..models import Incident, Loan, Tool
from ..schemas import ToolCreate
from ..store import EntityStore
from ..utils import new_id, today
from . import status_policy as policy

logger = logging.getLogger(__name__)

# never taken from an edit patch
IMMUTABLE_TOOL_FIELDS = ("id", "available", "loan_status", "created_at")


class NotFound(LookupError):
    pass


class InventoryService:
    """All state-changing tool/loan/incident use cases.

    Each use case validates, then performs its whole in-memory mutation while
    holding ``store.lock``; blob I/O happens before the lock is taken and the
    flush after it is released.
    """

    def __init__(self, store: EntityStore, blobs: Optional[BlobStore] = None, flush_on_write: bool = True) -> None:
        self.store = store
        self.blobs = blobs
        self.flush_on_write = flush_on_write

    def _commit(self) -> None:
        if not self.flush_on_write:
            return
        try:
            self.store.flush()
        except OSError as e:
            # in-memory state stays authoritative; the autosave task retries
            logger.error("[STORE] flush failed, will retry: %r", e)

    def _must_tool(self, tool_id: str) -> Tool:
        t = self.store.get_tool(tool_id)
        if not t:
            raise NotFound("tool_not_found")
        return t

    def _new_tool_id(self) -> str:
        tid = new_id("t")
        while self.store.has_tool(tid):
            tid = new_id("t")
        return tid

    def _commit_image(self, temp_name: Optional[str], tool_id: str) -> Optional[str]:
        if not temp_name or not self.blobs:
            return None
        return self.blobs.move_to_permanent(temp_name, f"tool_{tool_id}")

    def _record(self, tool_id: str, incident_type: str, description: str, ts: Optional[datetime] = None) -> Incident:
        fields: dict[str, Any] = {"id": new_id("i"), "tool_id": tool_id, "type": incident_type, "description": description}
        if ts is not None:
            fields["timestamp"] = ts
        return self.store.append_incident(Incident(**fields))

    def _has_open_loan(self, tool_id: str) -> bool:
        return any(l.is_open for l in self.store.list_loans(tool_id))

    # ---------------- reads ----------------

    def list_tools(self, available: Optional[bool] = None, category: Optional[str] = None) -> list[Tool]:
        rows = self.store.list_tools()
        if available is not None:
            rows = [t for t in rows if t.available == available]
        if category:
            rows = [t for t in rows if t.category == category]
        return rows

    def get_tool(self, tool_id: str) -> Tool:
        return self._must_tool(tool_id)

    def tool_names(self) -> dict[str, str]:
        return {t.id: t.name for t in self.store.list_tools()}

    def list_loans(self, tool_id: Optional[str] = None, open_only: bool = False) -> list[Loan]:
        rows = self.store.list_loans(tool_id)
        if open_only:
            rows = [l for l in rows if l.is_open]
        return rows

    def list_incidents(self, tool_id: Optional[str] = None) -> list[Incident]:
        return self.store.list_incidents(tool_id)

    # ---------------- tools ----------------

    def register_tool(self, body: ToolCreate) -> Tool:
        name = (body.name or "").strip()
        if not name:
            raise ValueError("missing_name")
        if not (body.condition or "").strip():
            raise ValueError("missing_condition")

        tool_id = self._new_tool_id()
        image_url = self._commit_image(body.temp_image_name, tool_id)

        tool = Tool(
            id=tool_id,
            name=name,
            category=body.category or "기타",
            manufacturer=body.manufacturer,
            model=body.model,
            condition=policy.normalize_condition(body.condition),
            purchase_date=body.purchase_date,
            lifespan_months=body.lifespan_months,
            notes=body.notes,
            image_url=image_url,
            loan_status="returned",
            damaged=bool(body.damaged),
            repaired=bool(body.repaired),
            status=body.status,
        )
        if body.required_keys is not None:
            tool.required_keys = body.required_keys
        if body.hidden_keys is not None:
            tool.hidden_keys = body.hidden_keys
        policy.align_status_flags(
            tool,
            status_changed=body.status is not None,
            damaged_changed=body.damaged is not None,
        )

        with self.store.lock:
            self.store.put_tool(tool)
            self._record(tool.id, "new", f"new tool registered: {tool.name}")
        self._commit()

        logger.info("[INVENTORY] registered %s (%s) image=%s", tool.id, tool.name, image_url)
        return tool

    def update_tool(self, tool_id: str, patch: dict[str, Any]) -> Tool:
        self._must_tool(tool_id)
        patch = {k: v for k, v in patch.items() if k not in IMMUTABLE_TOOL_FIELDS}
        temp_name = patch.pop("temp_image_name", None)
        image_url = self._commit_image(temp_name, tool_id)
        if image_url:
            patch["image_url"] = image_url
        if "condition" in patch:
            patch["condition"] = policy.normalize_condition(patch["condition"])

        with self.store.lock:
            tool = self._must_tool(tool_id)
            was_loanable = policy.is_loanable(tool)
            status_changed = "status" in patch and patch["status"] != tool.status
            damaged_changed = "damaged" in patch and patch["damaged"] != tool.damaged

            try:
                updated = Tool.model_validate({**tool.model_dump(), **patch})
            except ValidationError as e:
                fields = ",".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
                raise ValueError(f"invalid_tool_fields:{fields}")
            policy.align_status_flags(updated, status_changed=status_changed, damaged_changed=damaged_changed)
            self.store.put_tool(updated)

            now_loanable = policy.is_loanable(updated)
            if was_loanable != now_loanable:
                self._record(
                    tool_id,
                    "restored" if now_loanable else _blocking_incident_type(updated),
                    f"edited: now {policy.display_status(updated)}",
                )
        self._commit()
        return updated

    def delete_tool(self, tool_id: str) -> Tool:
        with self.store.lock:
            tool = self._must_tool(tool_id)
            # history first: the record outlives the entity
            self._record(tool_id, "disposed", f"tool deleted: {tool.name}")
            self.store.remove_tool(tool_id)
        self._commit()
        logger.info("[INVENTORY] deleted %s (%s)", tool_id, tool.name)
        return tool

    def restore_tool(self, tool_id: str) -> Tool:
        with self.store.lock:
            tool = self._must_tool(tool_id)
            self._record(tool_id, "restored", f"restored: {tool.name}")
            policy.restore_flags(tool)
            self.store.put_tool(tool)
        self._commit()
        return tool

    # ---------------- loans ----------------

    def create_loan(
        self,
        tool_ids: list[str],
        days: int,
        start_date: Optional[date] = None,
        borrower_name: Optional[str] = None,
    ) -> list[Loan]:
        ids = list(dict.fromkeys(tid for tid in tool_ids if tid))
        if not ids:
            raise ValueError("no_tool_ids")
        if days < 1:
            raise ValueError("invalid_days")
        start = start_date or today()

        with self.store.lock:
            # validate the whole batch before touching anything
            tools: list[Tool] = []
            for tid in ids:
                t = self.store.get_tool(tid)
                if not t:
                    raise ValueError(f"tool_not_found:{tid}")
                if not policy.is_loanable(t):
                    raise ValueError(f"tool_not_loanable:{tid}")
                if self._has_open_loan(tid):
                    raise ValueError(f"tool_already_on_loan:{tid}")
                tools.append(t)

            created: list[Loan] = []
            for t in tools:
                loan = Loan(
                    id=new_id("loan"),
                    tool_id=t.id,
                    borrower_name=borrower_name,
                    start_date=start,
                    end_date=start + timedelta(days=days),
                    status="active",
                    extend_count=0,
                )
                self.store.append_loan(loan)
                t.loan_status = "on-loan"
                policy.sync_availability(t)
                self.store.put_tool(t)
                created.append(loan)
        self._commit()

        logger.info("[INVENTORY] loaned %s for %d days", ids, days)
        return created

    def extend_loan(self, loan_id: str, days: int) -> Loan:
        if days < 1:
            raise ValueError("invalid_days")
        with self.store.lock:
            loan = self.store.get_loan(loan_id)
            if not loan:
                raise NotFound("loan_not_found")
            if not loan.is_open:
                raise ValueError("loan_not_active")
            base = loan.end_date or loan.start_date
            updated = self.store.update_loan(loan_id, {
                "end_date": base + timedelta(days=days),
                "extend_count": loan.extend_count + 1,
                "status": "active",
            })
        self._commit()
        return updated

    def return_loan(self, loan_id: str) -> Loan:
        with self.store.lock:
            loan = self.store.get_loan(loan_id)
            if not loan:
                raise NotFound("loan_not_found")
            if loan.status == "returned":
                raise ValueError("loan_already_returned")
            updated = self.store.update_loan(loan_id, {"status": "returned", "return_date": today()})

            tool = self.store.get_tool(loan.tool_id)
            if tool is None:
                logger.warning("[INVENTORY] loan %s returned for missing tool %s", loan_id, loan.tool_id)
            elif not self._has_open_loan(tool.id):
                tool.loan_status = "returned"
                policy.sync_availability(tool)
                self.store.put_tool(tool)
        self._commit()
        return updated

    def sync_loan_status(self) -> tuple[int, int]:
        """Force every tool's loanStatus to match its open loans. Returns
        ``(updated_count, open_loan_count)``."""
        with self.store.lock:
            open_loans = [l for l in self.store.list_loans() if l.is_open]
            on_loan_ids = {l.tool_id for l in open_loans}
            updated = 0
            for tool in self.store.list_tools():
                before = (tool.loan_status, tool.available)
                tool.loan_status = "on-loan" if tool.id in on_loan_ids else "returned"
                policy.sync_availability(tool)
                if (tool.loan_status, tool.available) != before:
                    self.store.put_tool(tool)
                    updated += 1
        if updated:
            self._commit()
            logger.info("[INVENTORY] loan status sync updated %d tools", updated)
        return updated, len(open_loans)

    # ---------------- incidents ----------------

    def report_incident(
        self,
        tool_id: str,
        incident_type: str,
        description: str = "",
        timestamp: Optional[datetime] = None,
    ) -> Incident:
        incident_type = (incident_type or "").strip()
        if not tool_id:
            raise ValueError("missing_tool_id")
        if not incident_type:
            raise ValueError("missing_type")
        if incident_type not in policy.INCIDENT_TYPES:
            raise ValueError(f"unknown_incident_type:{incident_type}")

        with self.store.lock:
            tool = self._must_tool(tool_id)
            inc = self._record(tool_id, incident_type, description or "", timestamp)
            policy.apply_incident_type(tool, incident_type)
            self.store.put_tool(tool)
        self._commit()

        logger.info("[INVENTORY] incident %s for %s", incident_type, tool_id)
        return inc

    def update_incident(self, incident_id: str, patch: dict[str, Any]) -> Incident:
        patch = {k: v for k, v in patch.items() if k in ("type", "description", "timestamp") and v is not None}
        if "type" in patch and patch["type"] not in policy.INCIDENT_TYPES:
            raise ValueError(f"unknown_incident_type:{patch['type']}")
        if "timestamp" in patch and patch["timestamp"].tzinfo is None:
            patch["timestamp"] = patch["timestamp"].replace(tzinfo=timezone.utc)
        with self.store.lock:
            if not self.store.get_incident(incident_id):
                raise NotFound("incident_not_found")
            updated = self.store.update_incident(incident_id, patch)

            if "type" in patch:
                tool = self.store.get_tool(updated.tool_id)
                if tool is None:
                    logger.warning("[INVENTORY] incident %s refers to missing tool %s", incident_id, updated.tool_id)
                else:
                    policy.apply_incident_type(tool, patch["type"])
                    self.store.put_tool(tool)
        self._commit()
        return updated

    # ---------------- maintenance ----------------

    def sample_tools(self) -> list[Tool]:
        tools = list(self.store.load_sample().values())
        if not tools:
            raise NotFound("sample_not_found")
        return tools

    def reload(self) -> list[str]:
        self.store.load()
        return [t.id for t in self.store.list_tools()]


def _blocking_incident_type(tool: Tool) -> str:
    if tool.status in policy.TERMINAL_TYPES:
        return tool.status
    if tool.status == "repairing":
        return "repair"
    return "damage"
