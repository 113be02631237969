from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .utils import utcnow

LoanStatus = Literal["returned", "on-loan"]
LoanRecordStatus = Literal["active", "overdue", "returned"]

# loans that still hold their tool
OPEN_LOAN_STATUSES = ("active", "overdue")

# older snapshots stored Korean loan labels
_LEGACY_TOOL_LOAN_STATUS = {
    "대출중": "on-loan",
    "대여중": "on-loan",
    "반납": "returned",
    "available": "returned",
}
_LEGACY_LOAN_STATUS = {
    "borrowed": "active",
}


def _aware(v: datetime) -> datetime:
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class Entity(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Tool(Entity):
    id: str
    name: str
    category: str = "기타"
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    condition: str = "used"
    purchase_date: Optional[str] = None
    lifespan_months: Optional[int] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    available: bool = True
    loan_status: LoanStatus = "returned"
    damaged: bool = False
    repaired: bool = False
    status: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    required_keys: list[str] = Field(default_factory=lambda: ["name", "condition"])
    hidden_keys: list[str] = Field(default_factory=list)

    _created_at_aware = field_validator("created_at")(_aware)

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.get("loanStatus", data.get("loan_status"))
        data.pop("loan_status", None)
        if raw in (None, ""):
            data["loanStatus"] = "returned"
        else:
            data["loanStatus"] = _LEGACY_TOOL_LOAN_STATUS.get(raw, raw)
        if data.get("imageUrl") == "":
            data["imageUrl"] = None
        return data


class Loan(Entity):
    id: str
    tool_id: str
    borrower_name: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    return_date: Optional[date] = None
    status: LoanRecordStatus = "active"
    extend_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    _created_at_aware = field_validator("created_at")(_aware)

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "borrowerName" not in data and "user" in data:
            data["borrowerName"] = data.pop("user")
        if "startDate" not in data and "borrowDate" in data:
            data["startDate"] = data.pop("borrowDate")
        for key in ("startDate", "endDate", "returnDate"):
            # tolerate full ISO timestamps where a date is expected
            v = data.get(key)
            if isinstance(v, str) and "T" in v:
                data[key] = v.split("T", 1)[0]
        st = data.get("status")
        if st in _LEGACY_LOAN_STATUS:
            data["status"] = _LEGACY_LOAN_STATUS[st]
        return data

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES


class Incident(Entity):
    id: str
    tool_id: str
    type: str
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)

    _timestamp_aware = field_validator("timestamp")(_aware)
