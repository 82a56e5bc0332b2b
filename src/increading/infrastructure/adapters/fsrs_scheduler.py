"""
FSRS Card Scheduler: Infrastructure adapter for the ``fsrs`` package.

Implements CardScheduler. The library owns the memory model (stability,
difficulty, next due date); this adapter translates between the stored card
shape and the library's native ``fsrs.Card`` and fills in the bookkeeping the
store keeps alongside it (reps, lapses, elapsed/scheduled days, log fields).
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from fsrs import Card as FsrsCard
from fsrs import Rating, Scheduler
from fsrs import State as FsrsState

from increading.application.id_service import generate_review_id
from increading.domain.models import Card, CardReview, Grade, SchedulingRecord, State
from increading.domain.ports import CardScheduler
from increading.domain.timestamps import truncate_to_millis

logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


def card_to_fsrs(card: Card) -> FsrsCard:
    """Translate a stored card into the library's native card."""
    due = card.due.astimezone(timezone.utc)
    if card.state == State.New:
        # The library models an unseen card as Learning with no memory state yet.
        return FsrsCard(card_id=0, state=FsrsState.Learning, step=0, due=due)

    in_steps = card.state in (State.Learning, State.Relearning)
    return FsrsCard(
        card_id=0,
        state=FsrsState(int(card.state)),
        step=0 if in_steps else None,
        stability=card.stability,
        difficulty=card.difficulty,
        due=due,
        last_review=card.last_review.astimezone(timezone.utc) if card.last_review else None,
    )


def fsrs_to_card(base: Card, native: FsrsCard) -> Card:
    """Copy the library's memory state onto ``base``, leaving bookkeeping untouched."""
    return replace(
        base,
        due=truncate_to_millis(native.due),
        stability=float(native.stability or 0.0),
        difficulty=float(native.difficulty or 0.0),
        state=State(native.state.value),
        last_review=truncate_to_millis(native.last_review) if native.last_review else None,
    )


class FsrsCardScheduler(CardScheduler):
    """
    Schedules cards with FSRS.

    Short-term learning steps are disabled, so a graded card moves straight to
    a day-based interval; fuzzing is off unless asked for.
    """

    def __init__(
        self,
        desired_retention: float = 0.9,
        enable_fuzzing: bool = False,
        scheduler: Scheduler | None = None,
        id_factory: Callable[[], str] = generate_review_id,
    ):
        self._scheduler = scheduler or Scheduler(
            desired_retention=desired_retention,
            learning_steps=(),
            relearning_steps=(),
            enable_fuzzing=enable_fuzzing,
        )
        self._id_factory = id_factory

    def repeat(self, card: Card, now: datetime) -> dict[Grade, SchedulingRecord]:
        now = truncate_to_millis(now.astimezone(timezone.utc))
        return {grade: self._schedule(card, grade, now) for grade in Grade}

    def _schedule(self, card: Card, grade: Grade, now: datetime) -> SchedulingRecord:
        native, _ = self._scheduler.review_card(card_to_fsrs(card), Rating(int(grade)), now)

        elapsed_days = max(0, (now - card.last_review).days) if card.last_review else 0
        scheduled_days = max(0, round((native.due - now) / _ONE_DAY))
        lapsed = grade == Grade.Again and card.state == State.Review

        updated = replace(
            fsrs_to_card(card, native),
            last_review=now,
            elapsed_days=elapsed_days,
            scheduled_days=scheduled_days,
            reps=card.reps + 1,
            lapses=card.lapses + (1 if lapsed else 0),
        )
        log = CardReview(
            id=self._id_factory(),
            card_id=card.id,
            due=card.due,
            review=now,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=elapsed_days,
            last_elapsed_days=card.elapsed_days,
            scheduled_days=scheduled_days,
            rating=grade,
            state=card.state,
        )
        logger.debug(
            f"[fsrs] {card.id} graded {grade.name}: {card.state.name} -> "
            f"{updated.state.name}, due in {scheduled_days}d"
        )
        return SchedulingRecord(card=updated, log=log)
