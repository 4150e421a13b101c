from typing import Any, Optional


class BoardError(Exception):
    """Base class for every error the engine reports to its callers."""

    code = "board_error"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(BoardError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(message, resource=resource.lower(), id=resource_id)


class InvalidArgumentError(BoardError):
    code = "invalid_argument"
    status_code = 422


class ConcurrentModificationError(BoardError):
    """The item changed since the caller last observed it; refetch the board."""

    code = "concurrent_modification"
    status_code = 409


class ColumnNotEmptyError(BoardError):
    code = "column_not_empty"
    status_code = 409

    def __init__(self, column_id: str, card_count: int) -> None:
        super().__init__(
            f"Column '{column_id}' still holds {card_count} card(s)",
            id=column_id,
            cardCount=card_count,
        )


class KeySpaceExhaustedError(BoardError):
    """No key fits between two neighbours within the allowed resolution.

    Raised by the allocator and always recovered by renumbering.
    """

    code = "key_space_exhausted"
    status_code = 500

    def __init__(self, before: Optional[str], after: Optional[str]) -> None:
        super().__init__(
            f"no room between {before!r} and {after!r}", before=before, after=after
        )


class LockTimeoutError(BoardError):
    code = "board_busy"
    status_code = 503

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(
            "Board busy, retry", lock=key, timeoutSeconds=timeout
        )
