from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    create_engine,
    event,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker

from .errors import ConcurrentModificationError, ColumnNotEmptyError, InvalidArgumentError, NotFoundError
from .lexorank import allocate, spaced_keys, validate_key
from .models import (
    DEFAULT_BOARD_COLOR,
    DEFAULT_COLUMNS,
    Board,
    Card,
    Column,
    Priority,
    apply_fields,
    normalize_board_fields,
    normalize_card_fields,
    normalize_column_fields,
    required_text,
    sort_key,
)
from .storage import Assignments, BoardStore, check_assignments
from .utils import as_utc, clean_text, new_uuid, now_utc


class UTCDateTime(TypeDecorator):
    """Timestamps stored in UTC and always loaded back timezone-aware.

    SQLite drops the offset of a ``DateTime(timezone=True)`` value.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Base(DeclarativeBase):
    pass


class BoardModel(Base):
    __tablename__ = "boards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(140))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(16), default=DEFAULT_BOARD_COLOR)
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)

    columns: Mapped[list[ColumnModel]] = relationship(back_populates="board", cascade="all, delete-orphan")


class ColumnModel(Base):
    __tablename__ = "columns"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    board_id: Mapped[str] = mapped_column(String(36), ForeignKey("boards.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(80))
    color: Mapped[str] = mapped_column(String(16))
    wip_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[str] = mapped_column(String(64))
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)

    board: Mapped[BoardModel] = relationship(back_populates="columns")
    cards: Mapped[list[CardModel]] = relationship(back_populates="column", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("board_id", "position", name="uq_columns_position"),)


class CardModel(Base):
    __tablename__ = "cards"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    board_id: Mapped[str] = mapped_column(String(36), ForeignKey("boards.id", ondelete="CASCADE"), index=True)
    column_id: Mapped[str] = mapped_column(String(36), ForeignKey("columns.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default=Priority.MEDIUM.value)
    labels: Mapped[list] = mapped_column(JSON, default=list)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    assignee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    subtask_count: Mapped[int] = mapped_column(Integer, default=0)
    subtasks_completed: Mapped[int] = mapped_column(Integer, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    attachment_count: Mapped[int] = mapped_column(Integer, default=0)
    position: Mapped[str] = mapped_column(String(64))
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), default=now_utc)

    column: Mapped[ColumnModel] = relationship(back_populates="cards")

    __table_args__ = (UniqueConstraint("column_id", "position", name="uq_cards_position"),)


def make_engine(url: str) -> Engine:
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )
    if url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# === Row -> domain conversion ===


def _card(row: CardModel) -> Card:
    return Card(
        id=row.id,
        board_id=row.board_id,
        column_id=row.column_id,
        title=row.title,
        position=row.position,
        created_at=row.created_at,
        updated_at=row.updated_at,
        description=row.description,
        priority=Priority(row.priority),
        labels=list(row.labels or []),
        due_date=row.due_date,
        start_date=row.start_date,
        estimated_hours=row.estimated_hours,
        assignee_id=row.assignee_id,
        client_id=row.client_id,
        is_completed=row.is_completed,
        completed_at=row.completed_at,
        subtask_count=row.subtask_count,
        subtasks_completed=row.subtasks_completed,
        comment_count=row.comment_count,
        attachment_count=row.attachment_count,
        version=row.version,
    )


def _column(row: ColumnModel, cards: Optional[List[CardModel]] = None) -> Column:
    return Column(
        id=row.id,
        board_id=row.board_id,
        name=row.name,
        position=row.position,
        created_at=row.created_at,
        updated_at=row.updated_at,
        color=row.color,
        wip_limit=row.wip_limit,
        version=row.version,
        cards=sorted((_card(c) for c in cards), key=sort_key) if cards is not None else [],
    )


def _board(row: BoardModel, with_columns: bool = False) -> Board:
    return Board(
        id=row.id,
        name=row.name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        description=row.description,
        color=row.color,
        client_id=row.client_id,
        is_archived=row.is_archived,
        version=row.version,
        columns=sorted((_column(c, c.cards) for c in row.columns), key=sort_key) if with_columns else [],
    )


class SqlBoardStore(BoardStore):
    """SQLAlchemy-backed store: one session transaction per operation.

    Positions are compared in Python, so ordering does not depend on the
    database collation. Unique ``(container, position)`` constraints reject
    ties written by a concurrent engine instance.
    """

    def __init__(self, url: str = "sqlite:///./kanban.db", engine: Optional[Engine] = None) -> None:
        self.engine = engine or make_engine(url)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

    # --- helpers ---
    def _get(self, session: Session, model: Any, item_id: str, resource: str) -> Any:
        row = session.get(model, item_id)
        if row is None:
            raise NotFoundError(resource, item_id)
        return row

    @staticmethod
    def _touch(session: Session, board_id: str, now: datetime) -> None:
        session.execute(
            update(BoardModel)
            .where(BoardModel.id == board_id)
            .values(version=BoardModel.version + 1, updated_at=now)
        )

    @staticmethod
    def _card_rows(session: Session, column_id: str) -> List[CardModel]:
        rows = session.scalars(select(CardModel).where(CardModel.column_id == column_id)).all()
        return sorted(rows, key=sort_key)

    @staticmethod
    def _column_rows(session: Session, board_id: str) -> List[ColumnModel]:
        rows = session.scalars(select(ColumnModel).where(ColumnModel.board_id == board_id)).all()
        return sorted(rows, key=sort_key)

    def _flush(self, session: Session, message: str, **details: Any) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConcurrentModificationError(message, **details) from exc

    # === Board operations ===
    def create_board(self, name, description=None, color=None, client_id=None, columns=None) -> Board:
        now = now_utc()
        specs = DEFAULT_COLUMNS if columns is None else columns
        with self.Session.begin() as session:
            row = BoardModel(
                id=new_uuid(),
                name=required_text(name, "name"),
                description=clean_text(description),
                color=clean_text(color) or DEFAULT_BOARD_COLOR,
                client_id=client_id,
                is_archived=False,
                version=1,
                created_at=now,
                updated_at=now,
            )
            for spec, key in zip(specs, spaced_keys(len(specs))):
                column = ColumnModel(id=new_uuid(), position=key, version=1, created_at=now)
                apply_fields(column, normalize_column_fields(spec._asdict()), now)
                row.columns.append(column)
            session.add(row)
            session.flush()
            return _board(row, with_columns=True)

    def list_boards(self, client_id=None, include_archived=False) -> List[Board]:
        with self.Session.begin() as session:
            query = select(BoardModel).order_by(BoardModel.created_at.desc(), BoardModel.id.desc())
            if client_id is not None:
                query = query.where(BoardModel.client_id == client_id)
            if not include_archived:
                query = query.where(BoardModel.is_archived.is_(False))
            return [_board(row, with_columns=True) for row in session.scalars(query).all()]

    def get_board(self, board_id: str) -> Board:
        with self.Session.begin() as session:
            return _board(self._get(session, BoardModel, board_id, "Board"), with_columns=True)

    def get_board_summary(self, board_id: str) -> Board:
        with self.Session.begin() as session:
            return _board(self._get(session, BoardModel, board_id, "Board"))

    def update_board(self, board_id: str, **fields) -> Board:
        fields = normalize_board_fields(fields)
        with self.Session.begin() as session:
            row = self._get(session, BoardModel, board_id, "Board")
            apply_fields(row, fields, now_utc())
            row.version += 1
            session.flush()
            return _board(row)

    def delete_board(self, board_id: str) -> None:
        with self.Session.begin() as session:
            session.delete(self._get(session, BoardModel, board_id, "Board"))

    # === Column operations ===
    def get_column(self, column_id: str) -> Column:
        with self.Session.begin() as session:
            return _column(self._get(session, ColumnModel, column_id, "Column"))

    def list_columns(self, board_id: str) -> List[Column]:
        with self.Session.begin() as session:
            self._get(session, BoardModel, board_id, "Board")
            return [_column(row) for row in self._column_rows(session, board_id)]

    def create_column(self, board_id, name, color=None, wip_limit=None, position=None) -> Column:
        fields = normalize_column_fields({"name": name, "color": color, "wip_limit": wip_limit})
        if position is not None:
            validate_key(position)
        now = now_utc()
        with self.Session.begin() as session:
            self._get(session, BoardModel, board_id, "Board")
            if position is None:
                keys = [row.position for row in self._column_rows(session, board_id)]
                position = allocate(max(keys, default=None), None)
            row = ColumnModel(id=new_uuid(), board_id=board_id, position=position, version=1, created_at=now)
            apply_fields(row, fields, now)
            session.add(row)
            self._flush(session, "column position already taken", position=position)
            self._touch(session, board_id, now)
            return _column(row)

    def update_column(self, column_id: str, **fields) -> Column:
        fields = normalize_column_fields(fields)
        now = now_utc()
        with self.Session.begin() as session:
            row = self._get(session, ColumnModel, column_id, "Column")
            apply_fields(row, fields, now)
            row.version += 1
            session.flush()
            self._touch(session, row.board_id, now)
            return _column(row)

    def delete_column(self, column_id: str, cascade: bool = False) -> int:
        with self.Session.begin() as session:
            row = self._get(session, ColumnModel, column_id, "Column")
            count = len(row.cards)
            if count and not cascade:
                raise ColumnNotEmptyError(column_id, count)
            board_id = row.board_id
            session.delete(row)
            session.flush()
            self._touch(session, board_id, now_utc())
            return count

    def apply_column_move(self, column_id: str, position: str, expected_version: int) -> Column:
        validate_key(position)
        now = now_utc()
        with self.Session.begin() as session:
            row = self._get(session, ColumnModel, column_id, "Column")
            if row.version != expected_version:
                raise ConcurrentModificationError(
                    f"Column '{column_id}' changed", expected=expected_version, actual=row.version
                )
            row.position = position
            row.version += 1
            row.updated_at = now
            self._flush(session, "column position already taken", position=position)
            self._touch(session, row.board_id, now)
            return _column(row)

    def renumber_columns(self, board_id: str, assignments: Assignments) -> None:
        with self.Session.begin() as session:
            self._get(session, BoardModel, board_id, "Board")
            rows = {row.id: row for row in self._column_rows(session, board_id)}
            check_assignments("board", set(rows), assignments)
            self._rewrite_positions(session, rows, assignments)
            self._touch(session, board_id, now_utc())

    @staticmethod
    def _rewrite_positions(session: Session, rows: dict, assignments: Assignments) -> None:
        # park every row on a unique temporary key first so the unique
        # constraint holds after each statement
        for item_id, _ in assignments:
            rows[item_id].position = f"~{item_id}"
        session.flush()
        for item_id, key in assignments:
            rows[item_id].position = key
        session.flush()

    # === Card operations ===
    def get_card(self, card_id: str) -> Card:
        with self.Session.begin() as session:
            return _card(self._get(session, CardModel, card_id, "Card"))

    def list_cards(self, column_id: str) -> List[Card]:
        with self.Session.begin() as session:
            self._get(session, ColumnModel, column_id, "Column")
            return [_card(row) for row in self._card_rows(session, column_id)]

    def create_card(self, column_id, title, position=None, **fields) -> Card:
        fields = normalize_card_fields({"title": title, **fields})
        if position is not None:
            validate_key(position)
        now = now_utc()
        with self.Session.begin() as session:
            column = self._get(session, ColumnModel, column_id, "Column")
            if position is None:
                keys = [row.position for row in self._card_rows(session, column_id)]
                position = allocate(max(keys, default=None), None)
            row = CardModel(
                id=new_uuid(),
                board_id=column.board_id,
                column_id=column_id,
                position=position,
                priority=Priority.MEDIUM.value,
                labels=[],
                is_completed=False,
                completed_at=None,
                subtask_count=0,
                subtasks_completed=0,
                comment_count=0,
                attachment_count=0,
                version=1,
                created_at=now,
            )
            apply_fields(row, _row_values(fields), now)
            session.add(row)
            self._flush(session, "card position already taken", position=position)
            self._touch(session, column.board_id, now)
            return _card(row)

    def update_card(self, card_id: str, **fields) -> Card:
        fields = normalize_card_fields(fields)
        now = now_utc()
        with self.Session.begin() as session:
            row = self._get(session, CardModel, card_id, "Card")
            apply_fields(row, _row_values(fields), now)
            row.version += 1
            session.flush()
            self._touch(session, row.board_id, now)
            return _card(row)

    def delete_card(self, card_id: str) -> Card:
        with self.Session.begin() as session:
            row = self._get(session, CardModel, card_id, "Card")
            card = _card(row)
            session.delete(row)
            session.flush()
            self._touch(session, card.board_id, now_utc())
            return card

    def apply_move(self, card_id, target_column_id, position, expected_version) -> Card:
        validate_key(position)
        now = now_utc()
        with self.Session.begin() as session:
            row = self._get(session, CardModel, card_id, "Card")
            target = self._get(session, ColumnModel, target_column_id, "Column")
            if target.board_id != row.board_id:
                raise InvalidArgumentError("target column belongs to another board", columnId=target_column_id)
            try:
                result = session.execute(
                    update(CardModel)
                    .where(CardModel.id == card_id, CardModel.version == expected_version)
                    .values(
                        column_id=target_column_id,
                        position=position,
                        version=CardModel.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError as exc:
                raise ConcurrentModificationError("card position already taken", position=position) from exc
            if result.rowcount != 1:
                raise ConcurrentModificationError(
                    f"Card '{card_id}' changed", expected=expected_version, actual=row.version
                )
            self._touch(session, row.board_id, now)
            session.refresh(row)
            return _card(row)

    def renumber_cards(self, column_id: str, assignments: Assignments) -> None:
        with self.Session.begin() as session:
            column = self._get(session, ColumnModel, column_id, "Column")
            rows = {row.id: row for row in self._card_rows(session, column_id)}
            check_assignments("column", set(rows), assignments)
            self._rewrite_positions(session, rows, assignments)
            self._touch(session, column.board_id, now_utc())


def _row_values(fields: dict) -> dict:
    if "priority" in fields:
        fields = {**fields, "priority": fields["priority"].value}
    return fields
