"""Outbound notifications about card and column lifecycle changes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from .log import get_logger
from .utils import now_utc

logger = get_logger("activity")

CARD_CREATED = "card.created"
CARD_DELETED = "card.deleted"
COLUMN_CREATED = "column.created"
COLUMN_DELETED = "column.deleted"
BOARD_DELETED = "board.deleted"


@dataclass(frozen=True)
class ActivityEvent:
    action: str
    board_id: str
    subject_id: str
    actor: str
    details: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=now_utc)


class ActivitySink(ABC):
    @abstractmethod
    def record(self, event: ActivityEvent) -> None:
        ...


class LoggingActivitySink(ActivitySink):
    """Default sink: one log line per event."""

    def record(self, event: ActivityEvent) -> None:
        logger.info(
            "%s board=%s subject=%s actor=%s %s",
            event.action,
            event.board_id,
            event.subject_id,
            event.actor,
            event.details,
        )
