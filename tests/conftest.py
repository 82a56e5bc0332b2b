from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from increading.application.review_manager import ReviewManager
from increading.domain.models import Card, CardReview, Grade, SchedulingRecord, State
from increading.domain.ports import CardScheduler
from increading.infrastructure.adapters.vault_store import VaultNoteStore
from increading.infrastructure.db.repository import SQLiteRepository

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now += delta
        return self.now


class StubScheduler(CardScheduler):
    """Moves every graded card to Review, ``DAYS[grade]`` days out."""

    DAYS = {Grade.Again: 0, Grade.Hard: 1, Grade.Good: 3, Grade.Easy: 7}

    def repeat(self, card: Card, now: datetime) -> dict[Grade, SchedulingRecord]:
        records = {}
        for grade, days in self.DAYS.items():
            lapsed = grade == Grade.Again and card.state == State.Review
            updated = replace(
                card,
                due=now + timedelta(days=days),
                last_review=now,
                state=State.Review,
                stability=float(days),
                difficulty=5.0,
                elapsed_days=0,
                scheduled_days=days,
                reps=card.reps + 1,
                lapses=card.lapses + (1 if lapsed else 0),
            )
            log = CardReview(
                id=f"review_{card.id}_{card.reps}_{int(grade)}",
                card_id=card.id,
                due=card.due,
                review=now,
                stability=card.stability,
                difficulty=card.difficulty,
                elapsed_days=0,
                last_elapsed_days=card.elapsed_days,
                scheduled_days=days,
                rating=grade,
                state=card.state,
            )
            records[grade] = SchedulingRecord(card=updated, log=log)
        return records


def write_note(vault, ref: str, text: str):
    path = vault.joinpath(*ref.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def vault(tmp_path):
    """Creates a temporary directory acting as the note vault."""
    d = tmp_path / "vault"
    d.mkdir()
    return d


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Isolate config files and logs from the real home directory
    monkeypatch.setenv("HOME", str(home))
    for var in ("INCREADING_VAULT_ROOT", "INCREADING_DATA_DIR", "INCREADING_ROLLOVER_HOURS"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest_asyncio.fixture
async def repo(tmp_path):
    repository = await SQLiteRepository.start(tmp_path / "data" / "test.sqlite")
    yield repository
    repository.close()


@pytest.fixture
def notes(vault):
    return VaultNoteStore(vault)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return StubScheduler()


@pytest.fixture
def manager(repo, notes, scheduler, clock):
    return ReviewManager(repo, notes, scheduler, clock=clock)
