from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .log import get_logger
from .models import Board, Card, Column, Priority
from .storage import BoardStore

logger = get_logger("snapshot")


@dataclass
class CardFilter:
    search: Optional[str] = None
    priority: Optional[Priority] = None
    assignee_id: Optional[str] = None
    client_id: Optional[str] = None
    include_completed: bool = True

    def matches(self, card: Card) -> bool:
        if self.priority is not None and card.priority != self.priority:
            return False
        if self.assignee_id is not None and card.assignee_id != self.assignee_id:
            return False
        if self.client_id is not None and card.client_id != self.client_id:
            return False
        if not self.include_completed and card.is_completed:
            return False
        if self.search:
            needle = self.search.strip().lower()
            haystack = " ".join([card.title, card.description or "", *card.labels]).lower()
            if needle not in haystack:
                return False
        return True


@dataclass
class ColumnView:
    column: Column
    cards: List[Card]
    card_count: int
    completed_count: int
    over_limit: bool


@dataclass
class BoardView:
    board: Board
    columns: List[ColumnView] = field(default_factory=list)
    card_count: int = 0
    completed_count: int = 0

    @property
    def version(self) -> int:
        return self.board.version


class SnapshotService:
    """Consistent, fully ordered read of one board.

    Clients refetch this after every mutation instead of patching locally.
    Counts always describe the whole column, even when ``filters`` hide cards.
    """

    def __init__(self, store: BoardStore) -> None:
        self.store = store

    def snapshot(self, board_id: str, filters: Optional[CardFilter] = None) -> BoardView:
        board = self.store.get_board(board_id)
        view = BoardView(board=board)
        for column in board.columns:
            _check_order(column)
            completed = sum(1 for card in column.cards if card.is_completed)
            shown = [c for c in column.cards if filters.matches(c)] if filters else list(column.cards)
            view.columns.append(
                ColumnView(
                    column=column,
                    cards=shown,
                    card_count=len(column.cards),
                    completed_count=completed,
                    over_limit=column.wip_limit is not None and len(column.cards) > column.wip_limit,
                )
            )
            view.card_count += len(column.cards)
            view.completed_count += completed
        return view


def _check_order(column: Column) -> None:
    keys = [card.position for card in column.cards]
    if any(a >= b for a, b in zip(keys, keys[1:])):
        logger.warning("column %s has tied or unordered positions", column.id)
