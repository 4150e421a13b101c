from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .activity import ActivitySink
from .auth import get_actor
from .config import Settings, settings as default_settings
from .coordinator import MoveCoordinator
from .db import SqlBoardStore
from .errors import BoardError
from .log import get_logger, setup_logging
from .middleware import RequestTimingMiddleware
from .models import ColumnSpec, Priority
from .schemas import (
    BOARD_FIELD_NAMES,
    CARD_FIELD_NAMES,
    COLUMN_FIELD_NAMES,
    BoardCreate,
    BoardList,
    BoardOut,
    BoardUpdate,
    BoardViewOut,
    CardCreate,
    CardMove,
    CardOut,
    CardUpdate,
    ColumnCreate,
    ColumnMove,
    ColumnOut,
    ColumnUpdate,
    ErrorBody,
    ErrorEnvelope,
    Health,
    Version,
    board_out,
    board_view_out,
    card_out,
    column_out,
    to_fields,
)
from .snapshot import CardFilter, SnapshotService
from .storage import BoardStore, MemoryBoardStore

logger = get_logger("api")

router = APIRouter()


# === Dependencies ===


def get_store(request: Request) -> BoardStore:
    return request.app.state.store


def get_coordinator(request: Request) -> MoveCoordinator:
    return request.app.state.coordinator


def get_snapshots(request: Request) -> SnapshotService:
    return request.app.state.snapshots


async def board_error_handler(request: Request, exc: BoardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorEnvelope(
        error=ErrorBody(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            requestId=getattr(request.state, "request_id", None),
        )
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# === Health & metadata ===


@router.get("/health", response_model=Health)
def health() -> Health:
    return Health()


@router.get("/version", response_model=Version)
def version() -> Version:
    return Version(version=__version__)


# === Board endpoints ===


@router.post("/boards", response_model=BoardViewOut, status_code=201)
def create_board(
    payload: BoardCreate,
    store: BoardStore = Depends(get_store),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    seeds = None
    if payload.columns is not None:
        seeds = [ColumnSpec(c.name, c.color, c.wipLimit) for c in payload.columns]
    board = store.create_board(payload.name, payload.description, payload.color, payload.clientId, seeds)
    return board_view_out(snapshots.snapshot(board.id))


@router.get("/boards", response_model=BoardList)
def list_boards(
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    include_archived: bool = Query(default=False, alias="includeArchived"),
    store: BoardStore = Depends(get_store),
):
    boards = store.list_boards(client_id=client_id, include_archived=include_archived)
    return BoardList(boards=[board_out(b) for b in boards])


@router.get("/boards/{board_id}", response_model=BoardViewOut)
def get_board(
    board_id: str,
    response: Response,
    search: Optional[str] = None,
    priority: Optional[Priority] = None,
    assignee_id: Optional[str] = Query(default=None, alias="assigneeId"),
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    include_completed: bool = Query(default=True, alias="includeCompleted"),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    filters = CardFilter(
        search=search,
        priority=priority,
        assignee_id=assignee_id,
        client_id=client_id,
        include_completed=include_completed,
    )
    view = snapshots.snapshot(board_id, filters)
    response.headers["ETag"] = f'"{view.version}"'
    return board_view_out(view)


@router.patch("/boards/{board_id}", response_model=BoardOut)
def update_board(board_id: str, payload: BoardUpdate, store: BoardStore = Depends(get_store)):
    board = store.update_board(board_id, **to_fields(payload, BOARD_FIELD_NAMES))
    return board_out(board)


@router.delete("/boards/{board_id}", status_code=204)
def delete_board(
    board_id: str,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    coordinator.delete_board(board_id, mover=actor)
    return Response(status_code=204)


# === Card endpoints ===


@router.post("/boards/{board_id}/cards", response_model=CardOut, status_code=201)
def create_card(
    board_id: str,
    payload: CardCreate,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    fields = to_fields(payload, CARD_FIELD_NAMES)
    fields.pop("title", None)
    card = coordinator.create_card(payload.columnId, payload.title, board_id=board_id, mover=actor, **fields)
    return card_out(card)


@router.patch("/cards/{card_id}", response_model=CardOut)
def update_card(card_id: str, payload: CardUpdate, store: BoardStore = Depends(get_store)):
    card = store.update_card(card_id, **to_fields(payload, CARD_FIELD_NAMES))
    return card_out(card)


@router.put("/cards/{card_id}/move", response_model=CardOut)
def move_card(
    card_id: str,
    payload: CardMove,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    card = coordinator.move_card(
        card_id,
        payload.columnId,
        payload.position,
        expected_version=payload.expectedVersion,
        mover=actor,
    )
    return card_out(card)


@router.delete("/cards/{card_id}", status_code=204)
def delete_card(
    card_id: str,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    coordinator.delete_card(card_id, mover=actor)
    return Response(status_code=204)


# === Column endpoints ===


@router.post("/boards/{board_id}/columns", response_model=ColumnOut, status_code=201)
def create_column(
    board_id: str,
    payload: ColumnCreate,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    column = coordinator.create_column(board_id, payload.name, payload.color, payload.wipLimit, mover=actor)
    return column_out(column)


@router.patch("/columns/{column_id}", response_model=ColumnOut)
def update_column(column_id: str, payload: ColumnUpdate, store: BoardStore = Depends(get_store)):
    column = store.update_column(column_id, **to_fields(payload, COLUMN_FIELD_NAMES))
    return column_out(column)


@router.put("/columns/{column_id}/move", response_model=ColumnOut)
def move_column(
    column_id: str,
    payload: ColumnMove,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    column = coordinator.move_column(
        column_id, payload.position, expected_version=payload.expectedVersion, mover=actor
    )
    return column_out(column)


@router.delete("/columns/{column_id}", status_code=204)
def delete_column(
    column_id: str,
    cascade: bool = False,
    actor: str = Depends(get_actor),
    coordinator: MoveCoordinator = Depends(get_coordinator),
):
    coordinator.delete_column(column_id, cascade=cascade, mover=actor)
    return Response(status_code=204)


# === Application ===


def build_store(settings: Settings) -> BoardStore:
    if settings.STORE_BACKEND == "memory":
        return MemoryBoardStore()
    if settings.STORE_BACKEND == "sql":
        return SqlBoardStore(settings.DATABASE_URL)
    raise ValueError(f"unknown STORE_BACKEND {settings.STORE_BACKEND!r}")


def create_app(
    settings: Settings = default_settings,
    store: Optional[BoardStore] = None,
    activity: Optional[ActivitySink] = None,
) -> FastAPI:
    setup_logging(settings.LOG_LEVEL)
    store = store or build_store(settings)

    app = FastAPI(title="Kanban Board Engine", version=__version__)
    app.state.settings = settings
    app.state.store = store
    app.state.coordinator = MoveCoordinator.from_settings(store, settings, activity)
    app.state.snapshots = SnapshotService(store)

    origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimingMiddleware)
    app.add_exception_handler(BoardError, board_error_handler)
    app.include_router(router)
    logger.info("board engine ready (store=%s, env=%s)", type(store).__name__, settings.APP_ENV)
    return app


app = create_app()
