"""
Row models: one per table, flat and primitive-typed exactly as stored.

The repository validates every fetched row against the model of its table, so a
missing column or a wrongly typed value fails fast instead of leaking into the
review logic.
"""

from pydantic import BaseModel, ConfigDict


class _Row(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CardRow(_Row):
    id: str
    reference: str
    created_at: int
    due: int
    last_review: int | None = None
    stability: float
    difficulty: float
    elapsed_days: int
    scheduled_days: int
    reps: int
    lapses: int
    state: int
    dismissed: int = 0


class CardReviewRow(_Row):
    id: str
    card_id: str
    due: int
    review: int
    stability: float
    difficulty: float
    elapsed_days: int
    last_elapsed_days: int
    scheduled_days: int
    rating: int
    state: int


class SnippetRow(_Row):
    id: int
    reference: str
    due: int | None
    dismissed: int = 0
    priority: int
    parent: int | None = None


class ArticleRow(_Row):
    id: int
    reference: str
    due: int | None
    dismissed: int = 0
    priority: int


class SnippetReviewRow(_Row):
    id: int
    snippet_id: int
    review_time: int


class ArticleReviewRow(_Row):
    id: int
    article_id: int
    review_time: int


ROW_MODELS: dict[str, type[_Row]] = {
    "card": CardRow,
    "card_review": CardReviewRow,
    "snippet": SnippetRow,
    "snippet_review": SnippetReviewRow,
    "article": ArticleRow,
    "article_review": ArticleReviewRow,
}


def table_columns(table: str) -> tuple[str, ...]:
    """Column names of a table, in schema order."""
    return tuple(ROW_MODELS[table].model_fields)
