"""Stable, sortable identifiers for cards and card reviews."""

from ulid import ULID


def generate_card_id() -> str:
    """Generate a card ID using ULID."""
    return f"card_{ULID()}"


def generate_review_id() -> str:
    return f"review_{ULID()}"
