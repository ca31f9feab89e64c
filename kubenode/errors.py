"""Error kinds understood by the HTTP handlers and controllers.

Errors are recognised through their ``__cause__`` chain as well, so a
``RuntimeError`` raised ``from`` a :class:`NotFoundError` still counts as
"not found".
"""

from __future__ import annotations

from typing import Optional


class NotFoundError(LookupError):
    """The requested object does not exist."""


class InvalidInputError(ValueError):
    """The caller supplied input that cannot be acted upon."""


class ConflictError(Exception):
    """The object was modified concurrently; retry with a fresh copy."""


def _chain(err: Optional[BaseException]):
    """Yield ``err`` and every exception it was raised from."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def _is_kind(err: Optional[BaseException], kind: type) -> bool:
    return any(isinstance(e, kind) for e in _chain(err))


def is_not_found(err: Optional[BaseException]) -> bool:
    """Return True if ``err`` or any of its causes is a :class:`NotFoundError`."""
    return _is_kind(err, NotFoundError)


def is_invalid_input(err: Optional[BaseException]) -> bool:
    """Return True if ``err`` or any of its causes is an :class:`InvalidInputError`."""
    return _is_kind(err, InvalidInputError)


def is_conflict(err: Optional[BaseException]) -> bool:
    """Return True if ``err`` or any of its causes is a :class:`ConflictError`."""
    return _is_kind(err, ConflictError)