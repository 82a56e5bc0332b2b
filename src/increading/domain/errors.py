"""
Error kinds raised by the engine.

The interface layers (CLI, HTTP) translate these into user-facing messages;
nothing below them swallows validation or not-found conditions.
"""


class IncreadingError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(IncreadingError):
    """Input rejected before any write (priority range, NaN, selection bounds)."""


class NotFoundError(IncreadingError):
    """No row matches the requested id; the caller should refresh its queue."""

    def __init__(self, kind: str, item_id: object):
        super().__init__(f"No {kind} with id {item_id!r}")
        self.kind = kind
        self.item_id = item_id


class PersistenceError(IncreadingError):
    """Database file or statement failure, or a row that does not match its table."""


class DuplicateImportError(IncreadingError):
    """The note is already imported, already managed, or tagged as another item kind."""


class StaleItemError(IncreadingError):
    """The stored item changed after the caller fetched it."""
