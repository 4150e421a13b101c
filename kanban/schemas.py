from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from .models import Board, Card, Column, Priority
from .snapshot import BoardView, ColumnView


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}
    requestId: Optional[str] = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str


# === Boards ===


class ColumnSeed(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=16)
    wipLimit: Optional[int] = Field(default=None, ge=1)


class BoardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=140)
    description: Optional[str] = Field(default=None, max_length=2000)
    color: Optional[str] = Field(default=None, max_length=16)
    clientId: Optional[str] = None
    columns: Optional[list[ColumnSeed]] = None


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=140)
    description: Optional[str] = Field(default=None, max_length=2000)
    color: Optional[str] = Field(default=None, max_length=16)
    clientId: Optional[str] = None
    isArchived: Optional[bool] = None


class BoardOut(BaseModel):
    id: str
    name: str
    description: Optional[str]
    color: str
    clientId: Optional[str]
    isArchived: bool
    version: int
    createdAt: datetime
    updatedAt: datetime


class BoardList(BaseModel):
    boards: list[BoardOut]


# === Columns ===


class ColumnCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=16)
    wipLimit: Optional[int] = Field(default=None, ge=1)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=16)
    wipLimit: Optional[int] = Field(default=None, ge=1)


class ColumnMove(BaseModel):
    position: int = Field(ge=0)
    expectedVersion: Optional[int] = None


class ColumnOut(BaseModel):
    id: str
    boardId: str
    name: str
    color: str
    wipLimit: Optional[int]
    position: str
    version: int
    createdAt: datetime
    updatedAt: datetime


# === Cards ===


class CardCreate(BaseModel):
    columnId: str
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    priority: Priority = Priority.MEDIUM
    labels: Optional[list[str]] = None
    dueDate: Optional[datetime] = None
    startDate: Optional[datetime] = None
    estimatedHours: Optional[float] = Field(default=None, ge=0)
    assigneeId: Optional[str] = None
    clientId: Optional[str] = None


class CardUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    priority: Optional[Priority] = None
    labels: Optional[list[str]] = None
    dueDate: Optional[datetime] = None
    startDate: Optional[datetime] = None
    estimatedHours: Optional[float] = Field(default=None, ge=0)
    assigneeId: Optional[str] = None
    clientId: Optional[str] = None
    isCompleted: Optional[bool] = None
    subtaskCount: Optional[int] = Field(default=None, ge=0)
    subtasksCompleted: Optional[int] = Field(default=None, ge=0)
    commentCount: Optional[int] = Field(default=None, ge=0)
    attachmentCount: Optional[int] = Field(default=None, ge=0)


class CardMove(BaseModel):
    columnId: str
    position: int = Field(ge=0)
    expectedVersion: Optional[int] = None


class CardOut(BaseModel):
    id: str
    boardId: str
    columnId: str
    title: str
    description: Optional[str]
    priority: Priority
    labels: list[str]
    dueDate: Optional[datetime]
    startDate: Optional[datetime]
    estimatedHours: Optional[float]
    assigneeId: Optional[str]
    clientId: Optional[str]
    isCompleted: bool
    completedAt: Optional[datetime]
    subtaskCount: int
    subtasksCompleted: int
    commentCount: int
    attachmentCount: int
    position: str
    version: int
    createdAt: datetime
    updatedAt: datetime


# === Snapshot ===


class ColumnViewOut(ColumnOut):
    cards: list[CardOut]
    cardCount: int
    completedCount: int
    overLimit: bool


class BoardViewOut(BaseModel):
    board: BoardOut
    version: int
    columns: list[ColumnViewOut]
    cardCount: int
    completedCount: int


# === Conversion helpers ===

BOARD_FIELD_NAMES = {
    "name": "name",
    "description": "description",
    "color": "color",
    "clientId": "client_id",
    "isArchived": "is_archived",
}
COLUMN_FIELD_NAMES = {"name": "name", "color": "color", "wipLimit": "wip_limit"}
CARD_FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "priority": "priority",
    "labels": "labels",
    "dueDate": "due_date",
    "startDate": "start_date",
    "estimatedHours": "estimated_hours",
    "assigneeId": "assignee_id",
    "clientId": "client_id",
    "isCompleted": "is_completed",
    "subtaskCount": "subtask_count",
    "subtasksCompleted": "subtasks_completed",
    "commentCount": "comment_count",
    "attachmentCount": "attachment_count",
}


def to_fields(payload: BaseModel, names: Mapping[str, str]) -> dict[str, Any]:
    """Fields the client actually sent, renamed to store attribute names."""
    sent = payload.model_dump(exclude_unset=True)
    return {names[key]: value for key, value in sent.items() if key in names}


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        name=board.name,
        description=board.description,
        color=board.color,
        clientId=board.client_id,
        isArchived=board.is_archived,
        version=board.version,
        createdAt=board.created_at,
        updatedAt=board.updated_at,
    )


def _column_fields(column: Column) -> dict[str, Any]:
    return dict(
        id=column.id,
        boardId=column.board_id,
        name=column.name,
        color=column.color,
        wipLimit=column.wip_limit,
        position=column.position,
        version=column.version,
        createdAt=column.created_at,
        updatedAt=column.updated_at,
    )


def column_out(column: Column) -> ColumnOut:
    return ColumnOut(**_column_fields(column))


def card_out(card: Card) -> CardOut:
    return CardOut(
        id=card.id,
        boardId=card.board_id,
        columnId=card.column_id,
        title=card.title,
        description=card.description,
        priority=card.priority,
        labels=card.labels,
        dueDate=card.due_date,
        startDate=card.start_date,
        estimatedHours=card.estimated_hours,
        assigneeId=card.assignee_id,
        clientId=card.client_id,
        isCompleted=card.is_completed,
        completedAt=card.completed_at,
        subtaskCount=card.subtask_count,
        subtasksCompleted=card.subtasks_completed,
        commentCount=card.comment_count,
        attachmentCount=card.attachment_count,
        position=card.position,
        version=card.version,
        createdAt=card.created_at,
        updatedAt=card.updated_at,
    )


def column_view_out(view: ColumnView) -> ColumnViewOut:
    return ColumnViewOut(
        **_column_fields(view.column),
        cards=[card_out(c) for c in view.cards],
        cardCount=view.card_count,
        completedCount=view.completed_count,
        overLimit=view.over_limit,
    )


def board_view_out(view: BoardView) -> BoardViewOut:
    return BoardViewOut(
        board=board_out(view.board),
        version=view.version,
        columns=[column_view_out(c) for c in view.columns],
        cardCount=view.card_count,
        completedCount=view.completed_count,
    )
