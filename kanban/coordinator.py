from __future__ import annotations

import itertools
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .activity import (
    BOARD_DELETED,
    CARD_CREATED,
    CARD_DELETED,
    COLUMN_CREATED,
    COLUMN_DELETED,
    ActivityEvent,
    ActivitySink,
    LoggingActivitySink,
)
from .config import Settings
from .errors import ConcurrentModificationError, InvalidArgumentError, KeySpaceExhaustedError
from .lexorank import allocate, spaced_keys
from .locks import ColumnLocks, board_key, column_key
from .log import get_logger
from .models import Card, Column
from .storage import BoardStore

logger = get_logger("coordinator")


def _sibling_index(positions: Sequence[str], moving: Optional[str], index: int) -> int:
    """Translate an index into the container as it stands into an index
    among the siblings left once the moving item is taken out.

    ``positions`` includes the moving item's key when it is already in the
    container. The slot is the gap between ``positions[index - 1]`` and
    ``positions[index]``, so an item dropped further down its own container
    lands after the item currently at ``index - 1``.
    """
    index = max(0, min(index, len(positions)))
    if moving is not None and moving in positions and index > positions.index(moving):
        index -= 1
    return index


def _slot(keys: Sequence[str], index: int) -> Tuple[Optional[str], Optional[str]]:
    before = keys[index - 1] if index > 0 else None
    after = keys[index] if index < len(keys) else None
    return before, after


def _fits(position: str, before: Optional[str], after: Optional[str]) -> bool:
    return (before is None or before < position) and (after is None or position < after)


class MoveCoordinator:
    """Serializes ordering changes per column (per board for column order).

    Moves, creations and renumbering read the container, compute a key and
    write it while holding the container's lock, so two movers never compute
    a key from the same stale neighbours. Store errors propagate unchanged.
    """

    def __init__(
        self,
        store: BoardStore,
        *,
        lock_timeout: float = 5.0,
        key_max_length: int = 8,
        retry_limit: int = 3,
        activity: Optional[ActivitySink] = None,
    ) -> None:
        self.store = store
        self.locks = ColumnLocks(lock_timeout)
        self.key_max_length = key_max_length
        self.retry_limit = retry_limit
        self.activity = activity or LoggingActivitySink()
        self._tickets = itertools.count(1)
        self._latest: Dict[str, Tuple[int, int]] = {}  # card id -> (newest ticket, in flight)
        self._tickets_guard = threading.Lock()

    @classmethod
    def from_settings(
        cls, store: BoardStore, settings: Settings, activity: Optional[ActivitySink] = None
    ) -> MoveCoordinator:
        return cls(
            store,
            lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
            key_max_length=settings.KEY_MAX_LENGTH,
            retry_limit=settings.MOVE_RETRY_LIMIT,
            activity=activity,
        )

    # === Supersession tickets ===
    def _issue_ticket(self, card_id: str) -> int:
        with self._tickets_guard:
            ticket = next(self._tickets)
            _, pending = self._latest.get(card_id, (0, 0))
            self._latest[card_id] = (ticket, pending + 1)
            return ticket

    def _superseded(self, card_id: str, ticket: int) -> bool:
        with self._tickets_guard:
            return self._latest[card_id][0] > ticket

    def _retire_ticket(self, card_id: str) -> None:
        with self._tickets_guard:
            newest, pending = self._latest[card_id]
            if pending == 1:
                del self._latest[card_id]
            else:
                self._latest[card_id] = (newest, pending - 1)

    # === Key allocation ===
    def _allocate(self, keys: List[str], index: int, renumber: Callable[[], List[str]]) -> str:
        """Key for slot ``index`` among ``keys``, renumbering once if needed.

        ``renumber`` rewrites the container and returns the fresh sibling keys.
        Caller holds the container lock.
        """
        before, after = _slot(keys, index)
        try:
            return allocate(before, after, self.key_max_length)
        except KeySpaceExhaustedError:
            logger.debug("no room between %r and %r, renumbering", before, after)
        before, after = _slot(renumber(), index)
        return allocate(before, after)

    def _renumber_cards(self, column_id: str) -> List[Tuple[str, str]]:
        cards = self.store.list_cards(column_id)
        assignments = list(zip((c.id for c in cards), spaced_keys(len(cards))))
        self.store.renumber_cards(column_id, assignments)
        logger.info("renumbered %d card(s) in column %s", len(cards), column_id)
        return assignments

    def _renumber_columns(self, board_id: str) -> List[Tuple[str, str]]:
        columns = self.store.list_columns(board_id)
        assignments = list(zip((c.id for c in columns), spaced_keys(len(columns))))
        self.store.renumber_columns(board_id, assignments)
        logger.info("renumbered %d column(s) on board %s", len(columns), board_id)
        return assignments

    def _notify(self, action: str, board_id: str, subject_id: str, actor: str, **details: Any) -> None:
        try:
            self.activity.record(ActivityEvent(action, board_id, subject_id, actor, details))
        except Exception:
            # the write is already committed
            logger.exception("activity sink failed for %s %s", action, subject_id)

    # === Cards ===
    def move_card(
        self,
        card_id: str,
        target_column_id: str,
        target_index: int,
        expected_version: Optional[int] = None,
        mover: str = "anonymous",
    ) -> Card:
        """Move a card to ``target_index`` of ``target_column_id``.

        The index points into the target column as it currently stands: the
        card lands between the cards at ``target_index - 1`` and
        ``target_index``, clamped to the column's bounds. When a newer move of the same card
        arrives while this one waits for its locks, this one is dropped and
        the card's current state is returned.
        """
        ticket = self._issue_ticket(card_id)
        try:
            for _ in range(self.retry_limit):
                card = self.store.get_card(card_id)
                target = self.store.get_column(target_column_id)
                if target.board_id != card.board_id:
                    raise InvalidArgumentError(
                        "target column belongs to another board", columnId=target_column_id
                    )
                keys = {column_key(card.column_id), column_key(target_column_id)}
                with self.locks.hold(*keys, mover=mover):
                    if self._superseded(card_id, ticket):
                        logger.info("move of card %s by %s superseded", card_id, mover)
                        return self.store.get_card(card_id)
                    card = self.store.get_card(card_id)
                    if column_key(card.column_id) in keys:
                        return self._place_card(card, target_column_id, target_index, expected_version, mover)
                logger.debug("card %s left column while %s waited, retrying", card_id, mover)
            raise ConcurrentModificationError(f"Card '{card_id}' kept moving", id=card_id)
        finally:
            self._retire_ticket(card_id)

    def _place_card(
        self,
        card: Card,
        target_column_id: str,
        target_index: int,
        expected_version: Optional[int],
        mover: str,
    ) -> Card:
        if expected_version is not None and card.version != expected_version:
            raise ConcurrentModificationError(
                f"Card '{card.id}' changed", expected=expected_version, actual=card.version
            )
        cards = self.store.list_cards(target_column_id)
        keys = [c.position for c in cards if c.id != card.id]
        same_column = card.column_id == target_column_id
        index = _sibling_index([c.position for c in cards], card.position if same_column else None, target_index)
        if same_column and _fits(card.position, *_slot(keys, index)):
            logger.debug("card %s already at index %d of column %s", card.id, index, target_column_id)
            return card

        def renumber() -> List[str]:
            return [key for cid, key in self._renumber_cards(target_column_id) if cid != card.id]

        position = self._allocate(keys, index, renumber)
        moved = self.store.apply_move(card.id, target_column_id, position, card.version)
        logger.info(
            "card %s moved %s -> %s index=%d key=%s by %s",
            card.id,
            card.column_id,
            target_column_id,
            index,
            position,
            mover,
        )
        return moved

    def create_card(
        self,
        column_id: str,
        title: str,
        board_id: Optional[str] = None,
        mover: str = "anonymous",
        **fields: Any,
    ) -> Card:
        """Append a card to a column; ``board_id`` checks the column's owner."""
        column = self.store.get_column(column_id)
        if board_id is not None and column.board_id != board_id:
            self.store.get_board_summary(board_id)
            raise InvalidArgumentError("column belongs to another board", columnId=column_id)
        with self.locks.hold(column_key(column_id), mover=mover):
            keys = [c.position for c in self.store.list_cards(column_id)]
            position = self._allocate(
                keys, len(keys), lambda: [key for _, key in self._renumber_cards(column_id)]
            )
            card = self.store.create_card(column_id, title, position=position, **fields)
        self._notify(CARD_CREATED, card.board_id, card.id, mover, columnId=column_id, title=card.title)
        return card

    def delete_card(self, card_id: str, mover: str = "anonymous") -> Card:
        card = self.store.get_card(card_id)
        with self.locks.hold(column_key(card.column_id), mover=mover):
            deleted = self.store.delete_card(card_id)
        self._notify(CARD_DELETED, deleted.board_id, deleted.id, mover, columnId=deleted.column_id)
        return deleted

    def renumber_column(self, column_id: str, mover: str = "maintenance") -> None:
        self.store.get_column(column_id)
        with self.locks.hold(column_key(column_id), mover=mover):
            self._renumber_cards(column_id)

    # === Columns ===
    def create_column(
        self,
        board_id: str,
        name: str,
        color: Optional[str] = None,
        wip_limit: Optional[int] = None,
        mover: str = "anonymous",
    ) -> Column:
        with self.locks.hold(board_key(board_id), mover=mover):
            keys = [c.position for c in self.store.list_columns(board_id)]
            position = self._allocate(
                keys, len(keys), lambda: [key for _, key in self._renumber_columns(board_id)]
            )
            column = self.store.create_column(board_id, name, color, wip_limit, position=position)
        self._notify(COLUMN_CREATED, board_id, column.id, mover, name=column.name)
        return column

    def move_column(
        self,
        column_id: str,
        target_index: int,
        expected_version: Optional[int] = None,
        mover: str = "anonymous",
    ) -> Column:
        board_id = self.store.get_column(column_id).board_id
        with self.locks.hold(board_key(board_id), mover=mover):
            column = self.store.get_column(column_id)
            if expected_version is not None and column.version != expected_version:
                raise ConcurrentModificationError(
                    f"Column '{column_id}' changed", expected=expected_version, actual=column.version
                )
            columns = self.store.list_columns(board_id)
            keys = [c.position for c in columns if c.id != column_id]
            index = _sibling_index([c.position for c in columns], column.position, target_index)
            if _fits(column.position, *_slot(keys, index)):
                return column

            def renumber() -> List[str]:
                return [key for cid, key in self._renumber_columns(board_id) if cid != column_id]

            position = self._allocate(keys, index, renumber)
            moved = self.store.apply_column_move(column_id, position, column.version)
        logger.info("column %s moved to index %d key=%s by %s", column_id, index, position, mover)
        return moved

    # === Boards ===
    def delete_board(self, board_id: str, mover: str = "anonymous") -> None:
        """Delete a board with its columns and cards, then forget their locks."""
        columns = self.store.list_columns(board_id)
        keys = [board_key(board_id)] + [column_key(c.id) for c in columns]
        with self.locks.hold(*keys, mover=mover):
            board = self.store.get_board(board_id)
            keys = [board_key(board_id)] + [column_key(c.id) for c in board.columns]
            self.store.delete_board(board_id)
        for key in keys:
            self.locks.discard(key)
        for column in board.columns:
            for card in column.cards:
                self._notify(CARD_DELETED, board_id, card.id, mover, columnId=column.id)
            self._notify(COLUMN_DELETED, board_id, column.id, mover, cardsRemoved=len(column.cards))
        self._notify(BOARD_DELETED, board_id, board_id, mover, name=board.name)
        logger.info("board %s deleted by %s", board_id, mover)

    def delete_column(self, column_id: str, cascade: bool = False, mover: str = "anonymous") -> int:
        """Delete a column; with ``cascade`` its cards go too. Returns the card count."""
        column = self.store.get_column(column_id)
        with self.locks.hold(board_key(column.board_id), column_key(column_id), mover=mover):
            removed = self.store.delete_column(column_id, cascade=cascade)
        self.locks.discard(column_key(column_id))
        self._notify(COLUMN_DELETED, column.board_id, column_id, mover, cardsRemoved=removed)
        return removed
