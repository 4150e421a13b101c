from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from .errors import InvalidArgumentError
from .utils import as_utc, clean_text


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


DEFAULT_BOARD_COLOR = "#0064FA"
DEFAULT_COLUMN_COLOR = "#E5E7EB"


class ColumnSpec(NamedTuple):
    name: str
    color: str = DEFAULT_COLUMN_COLOR
    wip_limit: Optional[int] = None


DEFAULT_COLUMNS = (
    ColumnSpec("To do", "#E5E7EB"),
    ColumnSpec("In progress", "#FEF3C7"),
    ColumnSpec("In review", "#DBEAFE"),
    ColumnSpec("Done", "#D1FAE5"),
)


# === Domain objects handed out by the stores ===


@dataclass
class Card:
    id: str
    board_id: str
    column_id: str
    title: str
    position: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    labels: List[str] = field(default_factory=list)
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    assignee_id: Optional[str] = None
    client_id: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    subtask_count: int = 0
    subtasks_completed: int = 0
    comment_count: int = 0
    attachment_count: int = 0
    version: int = 1


@dataclass
class Column:
    id: str
    board_id: str
    name: str
    position: str
    created_at: datetime
    updated_at: datetime
    color: str = DEFAULT_COLUMN_COLOR
    wip_limit: Optional[int] = None
    version: int = 1
    cards: List[Card] = field(default_factory=list)  # only filled by get_board


@dataclass
class Board:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    color: str = DEFAULT_BOARD_COLOR
    client_id: Optional[str] = None
    is_archived: bool = False
    version: int = 1
    columns: List[Column] = field(default_factory=list)


def sort_key(item: Card | Column) -> tuple:
    return (item.position, item.created_at, item.id)


# === Field validation shared by the stores ===


BOARD_FIELDS = frozenset({"name", "description", "color", "client_id", "is_archived"})
COLUMN_FIELDS = frozenset({"name", "color", "wip_limit"})
COUNTER_FIELDS = frozenset(
    {"subtask_count", "subtasks_completed", "comment_count", "attachment_count"}
)
CARD_FIELDS = frozenset(
    {
        "title",
        "description",
        "priority",
        "labels",
        "due_date",
        "start_date",
        "estimated_hours",
        "assignee_id",
        "client_id",
        "is_completed",
    }
) | COUNTER_FIELDS


def _check_known(kind: str, fields: Mapping[str, Any], allowed: frozenset) -> Dict[str, Any]:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise InvalidArgumentError(f"unknown {kind} field(s): {', '.join(unknown)}")
    return dict(fields)


def _flag(value: Any, name: str) -> bool:
    if value is None:
        raise InvalidArgumentError(f"{name} must be true or false", field=name)
    return bool(value)


def required_text(value: Optional[str], name: str) -> str:
    text = clean_text(value)
    if text is None:
        raise InvalidArgumentError(f"{name} must not be empty", field=name)
    return text


def normalize_board_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    out = _check_known("board", fields, BOARD_FIELDS)
    if "name" in out:
        out["name"] = required_text(out["name"], "name")
    if "description" in out:
        out["description"] = clean_text(out["description"])
    if "color" in out:
        out["color"] = clean_text(out["color"]) or DEFAULT_BOARD_COLOR
    if "is_archived" in out:
        out["is_archived"] = _flag(out["is_archived"], "is_archived")
    return out


def normalize_column_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    out = _check_known("column", fields, COLUMN_FIELDS)
    if "name" in out:
        out["name"] = required_text(out["name"], "name")
    if "color" in out:
        out["color"] = clean_text(out["color"]) or DEFAULT_COLUMN_COLOR
    if out.get("wip_limit") is not None and out["wip_limit"] < 1:
        raise InvalidArgumentError("wip_limit must be at least 1", field="wip_limit")
    return out


def normalize_card_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    out = _check_known("card", fields, CARD_FIELDS)
    if "title" in out:
        out["title"] = required_text(out["title"], "title")
    if "description" in out:
        out["description"] = clean_text(out["description"])
    if "priority" in out:
        try:
            out["priority"] = Priority(out["priority"])
        except ValueError:
            raise InvalidArgumentError(
                f"unknown priority {out['priority']!r}", field="priority"
            ) from None
    if "labels" in out:
        out["labels"] = [label.strip() for label in out["labels"] or [] if label.strip()]
    if out.get("estimated_hours") is not None and out["estimated_hours"] < 0:
        raise InvalidArgumentError("estimated_hours must not be negative", field="estimated_hours")
    for name in COUNTER_FIELDS & out.keys():
        if out[name] is None or out[name] < 0:
            raise InvalidArgumentError(f"{name} must be a non-negative integer", field=name)
    if "is_completed" in out:
        out["is_completed"] = _flag(out["is_completed"], "is_completed")
    for name in ("due_date", "start_date"):
        if name in out:
            out[name] = as_utc(out[name])
    return out


def apply_fields(target: Any, fields: Mapping[str, Any], now: datetime) -> None:
    """Copy normalized ``fields`` onto a card, column or board (domain or row).

    Toggling ``is_completed`` on a card stamps or clears ``completed_at``.
    """
    for name, value in fields.items():
        if name == "is_completed" and value != target.is_completed:
            target.completed_at = now if value else None
        setattr(target, name, value)
    target.updated_at = now
