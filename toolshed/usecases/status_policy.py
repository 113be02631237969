"""Pure rules deriving a tool's loanability and display status from its flags.

Every inventory transition ends with ``sync_availability`` so that the stored
``available`` flag never disagrees with ``is_loanable``.
"""
from __future__ import annotations

from ..models import Tool

# statuses that block lending regardless of the damage flags
UNLOANABLE_STATUSES = ("disposed", "repairing", "lost")

# incident types whose effect is "the tool is damaged"
DAMAGE_TYPES = ("broken", "damaged", "damage")
REPAIR_TYPES = ("repair", "repairing")
TERMINAL_TYPES = ("lost", "disposed")

# accepted on new reports; stored history may hold older values
INCIDENT_TYPES = ("new", "restored") + DAMAGE_TYPES + REPAIR_TYPES + TERMINAL_TYPES

# precedence: first match wins
DISPLAY_LABELS = {
    "disposed": "폐기",
    "lost": "분실",
    "damaged": "파손",
    "repairing": "수리중",
    "on-loan": "대여중",
    "repaired": "수리완료",
    "normal": "정상",
}

_CONDITION_ALIASES = {
    "new": "new",
    "신품": "new",
    "새것": "new",
    "새제품": "new",
    "used": "used",
    "중고": "used",
}


def has_unresolved_damage(tool: Tool) -> bool:
    return tool.damaged and not tool.repaired


def is_loanable(tool: Tool) -> bool:
    if tool.status in UNLOANABLE_STATUSES:
        return False
    if has_unresolved_damage(tool):
        return False
    return tool.loan_status != "on-loan"


def display_status(tool: Tool) -> str:
    if tool.status == "disposed":
        return "disposed"
    if tool.status == "lost":
        return "lost"
    if has_unresolved_damage(tool):
        return "damaged"
    if tool.status == "repairing":
        return "repairing"
    if tool.loan_status == "on-loan":
        return "on-loan"
    if tool.repaired:
        return "repaired"
    return "normal"


def display_label(tool: Tool) -> str:
    return DISPLAY_LABELS[display_status(tool)]


def sync_availability(tool: Tool) -> Tool:
    tool.available = is_loanable(tool)
    return tool


def normalize_condition(raw: str | None) -> str:
    if not raw:
        return "used"
    return _CONDITION_ALIASES.get(raw.strip().lower(), "used")


def apply_incident_type(tool: Tool, incident_type: str) -> Tool:
    """Write the flags and the status tag for an incident type together."""
    if incident_type in DAMAGE_TYPES:
        tool.damaged = True
        tool.repaired = False
        tool.status = incident_type
    elif incident_type in REPAIR_TYPES:
        # damage flags untouched; the status alone blocks lending
        tool.status = "repairing"
    elif incident_type in TERMINAL_TYPES:
        tool.status = incident_type
    elif incident_type == "restored":
        restore_flags(tool)
    return sync_availability(tool)


def restore_flags(tool: Tool) -> Tool:
    if tool.damaged or tool.status in REPAIR_TYPES:
        tool.repaired = True
    tool.damaged = False
    tool.status = "normal"
    return sync_availability(tool)


def align_status_flags(tool: Tool, *, status_changed: bool, damaged_changed: bool) -> Tool:
    """Bring ``status`` and ``damaged``/``repaired`` back in line after a manual edit."""
    if status_changed and tool.status is not None:
        if tool.status in DAMAGE_TYPES:
            tool.damaged = True
            tool.repaired = False
        elif tool.status in REPAIR_TYPES:
            tool.status = "repairing"
        elif tool.status == "normal" and tool.damaged:
            tool.damaged = False
            tool.repaired = True
    elif damaged_changed:
        if tool.damaged:
            tool.repaired = False
            if tool.status in (None, "normal"):
                tool.status = "damaged"
        elif tool.status in DAMAGE_TYPES:
            tool.status = "normal"
    return sync_availability(tool)
