"""Position keys for ordered siblings.

Keys are strings of base-36 lowercase digits compared lexicographically.
No key ends with ``"0"``: with that rule a key strictly between any two
distinct keys always exists, so only the moved item is rewritten on insert.
"""

from typing import Optional

from .errors import InvalidArgumentError, KeySpaceExhaustedError

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(ALPHABET)
A2I = {ch: i for i, ch in enumerate(ALPHABET)}
I2A = {i: ch for i, ch in enumerate(ALPHABET)}
MIN = 0
MAX = BASE - 1


def validate_key(key: str) -> str:
    if not key or any(ch not in A2I for ch in key):
        raise InvalidArgumentError(f"invalid position key {key!r}", key=key)
    if key[-1] == I2A[MIN]:
        raise InvalidArgumentError(f"position key {key!r} ends with '0'", key=key)
    return key


def midpoint(left: str, right: Optional[str]) -> str:
    """Return a key strictly between ``left`` and ``right``.

    ``left`` may be ``""`` (unbounded below) and ``right`` may be ``None``
    (unbounded above). Requires ``left < right``.
    """
    if right is not None:
        # shared prefix, with ``left`` padded by the minimum digit
        n = 0
        while n < len(right) and (left[n] if n < len(left) else I2A[MIN]) == right[n]:
            n += 1
        if n:
            return right[:n] + midpoint(left[n:], right[n:])
    lo = A2I[left[0]] if left else MIN
    hi = A2I[right[0]] if right is not None else BASE
    if hi - lo > 1:
        return I2A[(lo + hi) // 2]
    if right is not None and len(right) > 1:
        return right[:1]
    return I2A[lo] + midpoint(left[1:], None)


def allocate(
    before: Optional[str], after: Optional[str], max_length: Optional[int] = None
) -> str:
    """Allocate a key for the slot between ``before`` and ``after``.

    Either neighbour may be ``None`` for a boundary insert; with both absent
    the middle digit is returned. Raises ``KeySpaceExhaustedError`` when the
    neighbours are tied or out of order, or when the new key would be longer
    than ``max_length``.
    """
    if before is not None and after is not None and before >= after:
        raise KeySpaceExhaustedError(before, after)
    key = midpoint(before or "", after)
    if max_length is not None and len(key) > max_length:
        raise KeySpaceExhaustedError(before, after)
    return key


def _encode(value: int, width: int) -> str:
    digits = []
    for _ in range(width):
        value, digit = divmod(value, BASE)
        digits.append(I2A[digit])
    return "".join(reversed(digits))


def spaced_keys(count: int) -> list[str]:
    """Return ``count`` ascending keys evenly spaced over a fixed width.

    The keys are the integers ``step, 2*step, ...`` written with the same
    number of digits; stripping trailing zeros keeps their order.
    """
    if count <= 0:
        return []
    width = 1
    while BASE**width < (count + 1) * BASE:
        width += 1
    step = BASE**width // (count + 1)
    return [_encode(step * (i + 1), width).rstrip(I2A[MIN]) for i in range(count)]
