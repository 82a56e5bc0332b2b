"""
Display models for reviewable items.

These are pure data structures with no I/O. Each entity converts to and from its
row form (see ``rows.py``) through a pair of static, mutually inverse functions.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Literal

from .rows import ArticleRow, CardReviewRow, CardRow, SnippetRow
from .timestamps import from_millis, to_millis


class State(IntEnum):
    New = 0
    Learning = 1
    Review = 2
    Relearning = 3


class Grade(IntEnum):
    Again = 1
    Hard = 2
    Good = 3
    Easy = 4


ItemKind = Literal["card", "snippet", "article"]


@dataclass
class Card:
    """
    A cloze flashcard whose text lives in the note at ``reference``.

    ``due`` is always set once the card exists; ``last_review`` is None until
    the first grading.
    """

    id: str
    reference: str
    created_at: datetime
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: int
    scheduled_days: int
    reps: int
    lapses: int
    state: State
    last_review: datetime | None = None
    dismissed: bool = False

    @classmethod
    def new(cls, card_id: str, reference: str, created_at: datetime) -> "Card":
        return cls(
            id=card_id,
            reference=reference,
            created_at=created_at,
            due=created_at,
            stability=0.0,
            difficulty=0.0,
            elapsed_days=0,
            scheduled_days=0,
            reps=0,
            lapses=0,
            state=State.New,
        )

    @staticmethod
    def row_to_display(row: CardRow) -> "Card":
        return Card(
            id=row.id,
            reference=row.reference,
            created_at=from_millis(row.created_at),
            due=from_millis(row.due),
            last_review=from_millis(row.last_review) if row.last_review is not None else None,
            stability=row.stability,
            difficulty=row.difficulty,
            elapsed_days=row.elapsed_days,
            scheduled_days=row.scheduled_days,
            reps=row.reps,
            lapses=row.lapses,
            state=State(row.state),
            dismissed=bool(row.dismissed),
        )

    @staticmethod
    def display_to_row(card: "Card") -> CardRow:
        return CardRow(
            id=card.id,
            reference=card.reference,
            created_at=to_millis(card.created_at),
            due=to_millis(card.due),
            last_review=to_millis(card.last_review) if card.last_review is not None else None,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=card.elapsed_days,
            scheduled_days=card.scheduled_days,
            reps=card.reps,
            lapses=card.lapses,
            state=int(card.state),
            dismissed=int(card.dismissed),
        )


@dataclass
class CardReview:
    """One immutable grading event. Memory fields hold the values *before* the review."""

    id: str
    card_id: str
    due: datetime
    review: datetime
    stability: float
    difficulty: float
    elapsed_days: int
    last_elapsed_days: int
    scheduled_days: int
    rating: Grade
    state: State

    @staticmethod
    def row_to_display(row: CardReviewRow) -> "CardReview":
        return CardReview(
            id=row.id,
            card_id=row.card_id,
            due=from_millis(row.due),
            review=from_millis(row.review),
            stability=row.stability,
            difficulty=row.difficulty,
            elapsed_days=row.elapsed_days,
            last_elapsed_days=row.last_elapsed_days,
            scheduled_days=row.scheduled_days,
            rating=Grade(row.rating),
            state=State(row.state),
        )

    @staticmethod
    def display_to_row(review: "CardReview") -> CardReviewRow:
        return CardReviewRow(
            id=review.id,
            card_id=review.card_id,
            due=to_millis(review.due),
            review=to_millis(review.review),
            stability=review.stability,
            difficulty=review.difficulty,
            elapsed_days=review.elapsed_days,
            last_elapsed_days=review.last_elapsed_days,
            scheduled_days=review.scheduled_days,
            rating=int(review.rating),
            state=int(review.state),
        )


@dataclass
class Snippet:
    """
    A passage extracted from another note.

    ``due`` is None exactly when the snippet is dismissed. ``priority`` is the
    stored x10 integer (10-50); ``parent`` is the snippet it was extracted from.
    """

    id: int
    reference: str
    due: datetime | None
    priority: int
    dismissed: bool = False
    parent: int | None = None

    @staticmethod
    def row_to_display(row: SnippetRow) -> "Snippet":
        return Snippet(
            id=row.id,
            reference=row.reference,
            due=from_millis(row.due) if row.due is not None else None,
            priority=row.priority,
            dismissed=bool(row.dismissed),
            parent=row.parent,
        )

    @staticmethod
    def display_to_row(snippet: "Snippet") -> SnippetRow:
        return SnippetRow(
            id=snippet.id,
            reference=snippet.reference,
            due=to_millis(snippet.due) if snippet.due is not None else None,
            priority=snippet.priority,
            dismissed=int(snippet.dismissed),
            parent=snippet.parent,
        )


@dataclass
class Article:
    """An imported note read incrementally. Same scheduling shape as a snippet."""

    id: int
    reference: str
    due: datetime | None
    priority: int
    dismissed: bool = False

    @staticmethod
    def row_to_display(row: ArticleRow) -> "Article":
        return Article(
            id=row.id,
            reference=row.reference,
            due=from_millis(row.due) if row.due is not None else None,
            priority=row.priority,
            dismissed=bool(row.dismissed),
        )

    @staticmethod
    def display_to_row(article: "Article") -> ArticleRow:
        return ArticleRow(
            id=article.id,
            reference=article.reference,
            due=to_millis(article.due) if article.due is not None else None,
            priority=article.priority,
            dismissed=int(article.dismissed),
        )


@dataclass
class ReviewItem:
    """A due item paired with the note that backs it."""

    kind: ItemKind
    item: Card | Snippet | Article
    note: str

    @property
    def due(self) -> datetime | None:
        return self.item.due


@dataclass
class DueQueue:
    """Result of a due fetch: the merged queue, its per-kind parts, and skipped orphans."""

    all: list[ReviewItem]
    cards: list[ReviewItem]
    snippets: list[ReviewItem]
    articles: list[ReviewItem]
    orphans: list[tuple[ItemKind, str]]


@dataclass(frozen=True)
class TextSelection:
    """Character offsets of a selection inside a note's text, end exclusive."""

    start: int
    end: int


@dataclass
class SchedulingRecord:
    """Outcome of grading a card one particular way."""

    card: Card
    log: CardReview
