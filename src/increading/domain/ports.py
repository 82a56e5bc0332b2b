"""
Ports (interfaces) for the collaborators the review manager depends on.

These define the contract that infrastructure adapters must implement.
The application layer depends on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from .models import Card, Grade, SchedulingRecord


class NoteStore(ABC):
    """
    Port for reading and writing notes in the host vault.

    Notes are addressed by vault-relative, forward-slash references
    (e.g. ``increading/snippets/foo.md``).

    Implementations:
        - VaultNoteStore: plain files under a vault root directory.
    """

    @abstractmethod
    async def read(self, ref: str) -> str:
        pass

    @abstractmethod
    async def write(self, ref: str, text: str) -> None:
        pass

    @abstractmethod
    async def append(self, ref: str, text: str) -> None:
        pass

    @abstractmethod
    async def create(self, ref: str, text: str = "") -> str:
        """Create a new note (and its folders). Fails if the note already exists."""
        pass

    @abstractmethod
    async def delete(self, ref: str) -> None:
        pass

    @abstractmethod
    async def rename(self, ref: str, name: str) -> str:
        """Rename a note within its folder. Returns the new reference."""
        pass

    @abstractmethod
    async def resolve(self, ref: str) -> Path | None:
        """Return a handle to the note, or None when it does not exist."""
        pass

    @abstractmethod
    async def exists(self, ref: str) -> bool:
        pass

    @abstractmethod
    async def get_frontmatter(self, ref: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def update_frontmatter(self, ref: str, updates: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def make_link(self, target_ref: str) -> str:
        """Markdown link pointing at ``target_ref``."""
        pass


class CardScheduler(ABC):
    """
    Port for the card memory model.

    Implementations:
        - FsrsCardScheduler: wraps the ``fsrs`` package.
    """

    @abstractmethod
    def repeat(self, card: Card, now: datetime) -> dict[Grade, SchedulingRecord]:
        """
        Compute the outcome of every possible grade for ``card`` reviewed at ``now``.

        Returns:
            Mapping of grade to the updated card and its review-log entry.
        """
        pass
