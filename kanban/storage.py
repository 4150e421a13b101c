from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ConcurrentModificationError, ColumnNotEmptyError, InvalidArgumentError, NotFoundError
from .lexorank import allocate, spaced_keys, validate_key
from .models import (
    DEFAULT_BOARD_COLOR,
    DEFAULT_COLUMNS,
    Board,
    Card,
    Column,
    ColumnSpec,
    apply_fields,
    normalize_board_fields,
    normalize_card_fields,
    normalize_column_fields,
    required_text,
    sort_key,
)
from .utils import clean_text, new_uuid, now_utc

Assignments = Sequence[Tuple[str, str]]  # (item id, new position)


class BoardStore(ABC):
    """Durable state of boards, columns and cards.

    Every method is one atomic transaction. Reads hand out detached copies,
    with columns and cards ordered by ascending position. Writes to a card or
    column bump its ``version`` and the owning board's ``version``;
    renumbering only bumps the board.
    """

    # === Boards ===
    @abstractmethod
    def create_board(
        self,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        client_id: Optional[str] = None,
        columns: Optional[Sequence[ColumnSpec]] = None,
    ) -> Board:
        """Create a board with ``columns`` (the default lanes when omitted)."""

    @abstractmethod
    def list_boards(self, client_id: Optional[str] = None, include_archived: bool = False) -> List[Board]:
        """Boards newest first, each with its ordered columns and cards."""

    @abstractmethod
    def get_board(self, board_id: str) -> Board:
        """Full board with ordered columns and cards; ``NotFoundError`` if absent."""

    @abstractmethod
    def get_board_summary(self, board_id: str) -> Board:
        """Board fields only, ``columns`` left empty."""

    @abstractmethod
    def update_board(self, board_id: str, **fields: Any) -> Board:
        ...

    @abstractmethod
    def delete_board(self, board_id: str) -> None:
        """Delete the board together with its columns and cards."""

    # === Columns ===
    @abstractmethod
    def get_column(self, column_id: str) -> Column:
        """Column fields only, ``cards`` left empty."""

    @abstractmethod
    def list_columns(self, board_id: str) -> List[Column]:
        ...

    @abstractmethod
    def create_column(
        self,
        board_id: str,
        name: str,
        color: Optional[str] = None,
        wip_limit: Optional[int] = None,
        position: Optional[str] = None,
    ) -> Column:
        """Create a column at ``position``, or after the last column."""

    @abstractmethod
    def update_column(self, column_id: str, **fields: Any) -> Column:
        ...

    @abstractmethod
    def delete_column(self, column_id: str, cascade: bool = False) -> int:
        """Delete a column and return how many cards went with it.

        Raises ``ColumnNotEmptyError`` if the column owns cards and
        ``cascade`` is false.
        """

    @abstractmethod
    def apply_column_move(self, column_id: str, position: str, expected_version: int) -> Column:
        ...

    @abstractmethod
    def renumber_columns(self, board_id: str, assignments: Assignments) -> None:
        """Rewrite the positions of every column of a board at once."""

    # === Cards ===
    @abstractmethod
    def get_card(self, card_id: str) -> Card:
        ...

    @abstractmethod
    def list_cards(self, column_id: str) -> List[Card]:
        ...

    @abstractmethod
    def create_card(self, column_id: str, title: str, position: Optional[str] = None, **fields: Any) -> Card:
        """Create a card at ``position``, or after the column's last card."""

    @abstractmethod
    def update_card(self, card_id: str, **fields: Any) -> Card:
        ...

    @abstractmethod
    def delete_card(self, card_id: str) -> Card:
        """Remove a card and return its last state. Sibling keys are untouched."""

    @abstractmethod
    def apply_move(self, card_id: str, target_column_id: str, position: str, expected_version: int) -> Card:
        """Reassign a card's column and position in one transaction.

        Raises ``NotFoundError`` for a missing card or column and
        ``ConcurrentModificationError`` when the card's version is no longer
        ``expected_version`` or ``position`` is taken in the target column.
        """

    @abstractmethod
    def renumber_cards(self, column_id: str, assignments: Assignments) -> None:
        """Rewrite the positions of every card of a column at once."""


def check_assignments(kind: str, current_ids: set, assignments: Assignments) -> None:
    ids = [item_id for item_id, _ in assignments]
    keys = [validate_key(key) for _, key in assignments]
    if set(ids) != current_ids or len(ids) != len(current_ids):
        raise ConcurrentModificationError(f"{kind} changed while renumbering")
    if len(set(keys)) != len(keys):
        raise InvalidArgumentError("renumbering assigns duplicate positions")


class MemoryBoardStore(BoardStore):
    """In-memory store for boards, columns and cards.

    One re-entrant lock is the transaction boundary for every operation.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._boards: Dict[str, Board] = {}
        self._columns: Dict[str, Column] = {}
        self._cards: Dict[str, Card] = {}

    # --- helpers (caller holds the lock) ---
    def _board(self, board_id: str) -> Board:
        try:
            return self._boards[board_id]
        except KeyError:
            raise NotFoundError("Board", board_id) from None

    def _column(self, column_id: str) -> Column:
        try:
            return self._columns[column_id]
        except KeyError:
            raise NotFoundError("Column", column_id) from None

    def _card(self, card_id: str) -> Card:
        try:
            return self._cards[card_id]
        except KeyError:
            raise NotFoundError("Card", card_id) from None

    def _columns_of(self, board_id: str) -> List[Column]:
        return sorted((c for c in self._columns.values() if c.board_id == board_id), key=sort_key)

    def _cards_of(self, column_id: str) -> List[Card]:
        return sorted((c for c in self._cards.values() if c.column_id == column_id), key=sort_key)

    def _touch(self, board_id: str, now) -> None:
        board = self._boards[board_id]
        board.version += 1
        board.updated_at = now

    def _assemble(self, board: Board) -> Board:
        out = copy.deepcopy(board)
        out.columns = []
        for column in self._columns_of(board.id):
            column_copy = copy.deepcopy(column)
            column_copy.cards = [copy.deepcopy(c) for c in self._cards_of(column.id)]
            out.columns.append(column_copy)
        return out

    # === Board operations ===
    def create_board(self, name, description=None, color=None, client_id=None, columns=None) -> Board:
        now = now_utc()
        specs = DEFAULT_COLUMNS if columns is None else columns
        board = Board(
            id=new_uuid(),
            name=required_text(name, "name"),
            description=clean_text(description),
            color=clean_text(color) or DEFAULT_BOARD_COLOR,
            client_id=client_id,
            created_at=now,
            updated_at=now,
        )
        column_rows = []
        for spec, key in zip(specs, spaced_keys(len(specs))):
            fields = normalize_column_fields(spec._asdict())
            column = Column(
                id=new_uuid(), board_id=board.id, name="", position=key, created_at=now, updated_at=now
            )
            apply_fields(column, fields, now)
            column_rows.append(column)
        with self._lock:
            self._boards[board.id] = board
            for column in column_rows:
                self._columns[column.id] = column
            return self._assemble(board)

    def list_boards(self, client_id=None, include_archived=False) -> List[Board]:
        with self._lock:
            boards = [
                b
                for b in self._boards.values()
                if (client_id is None or b.client_id == client_id) and (include_archived or not b.is_archived)
            ]
            boards.sort(key=lambda b: (b.created_at, b.id), reverse=True)
            return [self._assemble(b) for b in boards]

    def get_board(self, board_id: str) -> Board:
        with self._lock:
            return self._assemble(self._board(board_id))

    def get_board_summary(self, board_id: str) -> Board:
        with self._lock:
            return copy.deepcopy(self._board(board_id))

    def update_board(self, board_id: str, **fields) -> Board:
        fields = normalize_board_fields(fields)
        with self._lock:
            board = self._board(board_id)
            apply_fields(board, fields, now_utc())
            board.version += 1
            return copy.deepcopy(board)

    def delete_board(self, board_id: str) -> None:
        with self._lock:
            self._board(board_id)
            column_ids = {c.id for c in self._columns.values() if c.board_id == board_id}
            for card_id in [cid for cid, c in self._cards.items() if c.column_id in column_ids]:
                del self._cards[card_id]
            for column_id in column_ids:
                del self._columns[column_id]
            del self._boards[board_id]

    # === Column operations ===
    def get_column(self, column_id: str) -> Column:
        with self._lock:
            return copy.deepcopy(self._column(column_id))

    def list_columns(self, board_id: str) -> List[Column]:
        with self._lock:
            self._board(board_id)
            return [copy.deepcopy(c) for c in self._columns_of(board_id)]

    def create_column(self, board_id, name, color=None, wip_limit=None, position=None) -> Column:
        fields = normalize_column_fields({"name": name, "color": color, "wip_limit": wip_limit})
        if position is not None:
            validate_key(position)
        now = now_utc()
        with self._lock:
            self._board(board_id)
            siblings = self._columns_of(board_id)
            if position is None:
                position = allocate(max((c.position for c in siblings), default=None), None)
            elif any(c.position == position for c in siblings):
                raise ConcurrentModificationError("column position already taken", position=position)
            column = Column(
                id=new_uuid(), board_id=board_id, name="", position=position, created_at=now, updated_at=now
            )
            apply_fields(column, fields, now)
            self._columns[column.id] = column
            self._touch(board_id, now)
            return copy.deepcopy(column)

    def update_column(self, column_id: str, **fields) -> Column:
        fields = normalize_column_fields(fields)
        now = now_utc()
        with self._lock:
            column = self._column(column_id)
            apply_fields(column, fields, now)
            column.version += 1
            self._touch(column.board_id, now)
            return copy.deepcopy(column)

    def delete_column(self, column_id: str, cascade: bool = False) -> int:
        with self._lock:
            column = self._column(column_id)
            cards = self._cards_of(column_id)
            if cards and not cascade:
                raise ColumnNotEmptyError(column_id, len(cards))
            for card in cards:
                del self._cards[card.id]
            del self._columns[column_id]
            self._touch(column.board_id, now_utc())
            return len(cards)

    def apply_column_move(self, column_id: str, position: str, expected_version: int) -> Column:
        validate_key(position)
        now = now_utc()
        with self._lock:
            column = self._column(column_id)
            if column.version != expected_version:
                raise ConcurrentModificationError(
                    f"Column '{column_id}' changed", expected=expected_version, actual=column.version
                )
            if any(c.position == position and c.id != column_id for c in self._columns_of(column.board_id)):
                raise ConcurrentModificationError("column position already taken", position=position)
            column.position = position
            column.version += 1
            column.updated_at = now
            self._touch(column.board_id, now)
            return copy.deepcopy(column)

    def renumber_columns(self, board_id: str, assignments: Assignments) -> None:
        with self._lock:
            self._board(board_id)
            check_assignments("board", {c.id for c in self._columns_of(board_id)}, assignments)
            for column_id, key in assignments:
                self._columns[column_id].position = key
            self._touch(board_id, now_utc())

    # === Card operations ===
    def get_card(self, card_id: str) -> Card:
        with self._lock:
            return copy.deepcopy(self._card(card_id))

    def list_cards(self, column_id: str) -> List[Card]:
        with self._lock:
            self._column(column_id)
            return [copy.deepcopy(c) for c in self._cards_of(column_id)]

    def create_card(self, column_id, title, position=None, **fields) -> Card:
        fields = normalize_card_fields({"title": title, **fields})
        if position is not None:
            validate_key(position)
        now = now_utc()
        with self._lock:
            column = self._column(column_id)
            siblings = self._cards_of(column_id)
            if position is None:
                position = allocate(max((c.position for c in siblings), default=None), None)
            elif any(c.position == position for c in siblings):
                raise ConcurrentModificationError("card position already taken", position=position)
            card = Card(
                id=new_uuid(),
                board_id=column.board_id,
                column_id=column_id,
                title="",
                position=position,
                created_at=now,
                updated_at=now,
            )
            apply_fields(card, fields, now)
            self._cards[card.id] = card
            self._touch(column.board_id, now)
            return copy.deepcopy(card)

    def update_card(self, card_id: str, **fields) -> Card:
        fields = normalize_card_fields(fields)
        now = now_utc()
        with self._lock:
            card = self._card(card_id)
            apply_fields(card, fields, now)
            card.version += 1
            self._touch(card.board_id, now)
            return copy.deepcopy(card)

    def delete_card(self, card_id: str) -> Card:
        with self._lock:
            card = self._card(card_id)
            del self._cards[card_id]
            self._touch(card.board_id, now_utc())
            return copy.deepcopy(card)

    def apply_move(self, card_id, target_column_id, position, expected_version) -> Card:
        validate_key(position)
        now = now_utc()
        with self._lock:
            card = self._card(card_id)
            target = self._column(target_column_id)
            if target.board_id != card.board_id:
                raise InvalidArgumentError("target column belongs to another board", columnId=target_column_id)
            if card.version != expected_version:
                raise ConcurrentModificationError(
                    f"Card '{card_id}' changed", expected=expected_version, actual=card.version
                )
            if any(c.position == position and c.id != card_id for c in self._cards_of(target_column_id)):
                raise ConcurrentModificationError("card position already taken", position=position)
            card.column_id = target_column_id
            card.position = position
            card.version += 1
            card.updated_at = now
            self._touch(card.board_id, now)
            return copy.deepcopy(card)

    def renumber_cards(self, column_id: str, assignments: Assignments) -> None:
        with self._lock:
            column = self._column(column_id)
            check_assignments("column", {c.id for c in self._cards_of(column_id)}, assignments)
            for card_id, key in assignments:
                self._cards[card_id].position = key
            self._touch(column.board_id, now_utc())
