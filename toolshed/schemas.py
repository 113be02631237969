from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Incident, Loan, Tool
from .usecases.status_policy import display_label, display_status
from .utils import today

UNKNOWN_TOOL_NAME = "unknown tool"


class Body(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
        extra="ignore",
    )


def _required_text(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be empty")
    return v


# ---------------- TOOLS ----------------

class ToolCreate(Body):
    """
    Manual or AI-assisted registration. Server generates id; loan state always
    starts "returned". ``tempImageName`` is a temp blob to commit.
    """
    name: str
    condition: str
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    purchase_date: Optional[str] = None
    lifespan_months: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None

    damaged: Optional[bool] = None
    repaired: Optional[bool] = None
    status: Optional[str] = None

    required_keys: Optional[list[str]] = None
    hidden_keys: Optional[list[str]] = None

    temp_image_id: Optional[str] = None
    temp_image_name: Optional[str] = None

    @field_validator("name", "condition")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _required_text(v)


class ToolPatch(Body):
    # id, available and loanStatus are not editable; unknown keys are dropped
    name: Optional[str] = None
    condition: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    purchase_date: Optional[str] = None
    lifespan_months: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    image_url: Optional[str] = None
    damaged: Optional[bool] = None
    repaired: Optional[bool] = None
    status: Optional[str] = None
    required_keys: Optional[list[str]] = None
    hidden_keys: Optional[list[str]] = None
    temp_image_name: Optional[str] = None

    # may be omitted, never null
    @field_validator("category", "damaged", "repaired", "required_keys", "hidden_keys")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v

    @field_validator("name", "condition")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> str:
        return _required_text(v)


class ToolOut(Tool):
    display_status: str
    display_label: str


def tool_out(tool: Tool) -> ToolOut:
    return ToolOut(
        **tool.model_dump(),
        display_status=display_status(tool),
        display_label=display_label(tool),
    )


class TempImageOut(Body):
    temp_image_id: str
    temp_image_name: str
    message: str = "Temporary image uploaded successfully"


# ---------------- LOANS ----------------

class LoanCreate(Body):
    tool_ids: list[str] = Field(min_length=1)
    days: int = Field(default=3, ge=1, le=365)
    start_date: Optional[date] = None
    borrower_name: Optional[str] = None


class LoanExtend(Body):
    days: int = Field(default=3, ge=1, le=365)


class LoanOut(Loan):
    tool_name: str


def loan_out(loan: Loan, tool_names: dict[str, str]) -> LoanOut:
    data = loan.model_dump()
    if loan.status == "active" and loan.end_date and loan.end_date < today():
        data["status"] = "overdue"
    return LoanOut(**data, tool_name=tool_names.get(loan.tool_id, UNKNOWN_TOOL_NAME))


class LoanBatchOut(Body):
    success: bool = True
    loans: list[LoanOut]


# ---------------- INCIDENTS ----------------

IncidentType = Literal[
    "new", "restored",
    "broken", "damaged", "damage",
    "repair", "repairing",
    "lost", "disposed",
]


class ToolIncidentCreate(Body):
    """Incident body when the tool comes from the URL."""
    type: IncidentType
    description: str = ""
    timestamp: Optional[datetime] = None


class IncidentCreate(ToolIncidentCreate):
    tool_id: str

    @field_validator("tool_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _required_text(v)


class IncidentPatch(Body):
    type: Optional[IncidentType] = None
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


class IncidentOut(Incident):
    tool_name: str


def incident_out(incident: Incident, tool_names: dict[str, str]) -> IncidentOut:
    return IncidentOut(**incident.model_dump(), tool_name=tool_names.get(incident.tool_id, UNKNOWN_TOOL_NAME))


# ---------------- MISC ----------------

class DeleteOut(Body):
    success: bool = True
    message: str
    deleted_tool: ToolOut


class SyncOut(Body):
    success: bool = True
    updated_count: int
    active_loans: int


class ReloadOut(Body):
    reloaded: int
    keys: list[str]
