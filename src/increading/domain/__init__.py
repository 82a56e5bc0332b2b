# Domain Package
from .models import (
    Article,
    Card,
    CardReview,
    DueQueue,
    Grade,
    ReviewItem,
    SchedulingRecord,
    Snippet,
    State,
    TextSelection,
)
from .ports import CardScheduler, NoteStore

__all__ = [
    "Article",
    "Card",
    "CardReview",
    "CardScheduler",
    "DueQueue",
    "Grade",
    "NoteStore",
    "ReviewItem",
    "SchedulingRecord",
    "Snippet",
    "State",
    "TextSelection",
]
