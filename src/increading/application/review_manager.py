"""
Review Manager: Application layer orchestrator.

Builds the due queue across cards, snippets and articles, records reviews,
reschedules text items by priority, and delegates card scheduling to the
CardScheduler port. Holds no state of its own: every call re-reads the
repository.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Any

from increading.application.id_service import generate_card_id
from increading.application.scheduling import (
    end_of_review_day,
    next_text_review_interval,
    validate_priority,
)
from increading.application.utils.text import (
    cloze_answer,
    create_title,
    find_cloze,
    generate_id,
    get_content_slice,
    hide_answer,
)
from increading.domain.constants import (
    ARTICLE_DIRECTORY,
    ARTICLE_TAG,
    CARD_DIRECTORY,
    CARD_TAG,
    DEFAULT_PRIORITY,
    DEFAULT_QUEUE_LIMIT,
    DEFAULT_ROLLOVER_HOURS,
    SNIPPET_DIRECTORY,
    SNIPPET_FIRST_REVIEW_DELAY,
    SNIPPET_SLICE_LENGTH,
    SNIPPET_TAG,
    SOURCE_PROPERTY_NAME,
)
from increading.domain.errors import (
    DuplicateImportError,
    IncreadingError,
    NotFoundError,
    PersistenceError,
    StaleItemError,
    ValidationError,
)
from increading.domain.models import (
    Article,
    Card,
    CardReview,
    DueQueue,
    Grade,
    ItemKind,
    ReviewItem,
    Snippet,
    TextSelection,
)
from increading.domain.ports import CardScheduler, NoteStore
from increading.domain.rows import table_columns
from increading.domain.timestamps import from_millis, now_utc, to_millis, truncate_to_millis
from increading.infrastructure.db.query_composer import QueryComposer
from increading.infrastructure.db.repository import SQLiteRepository
from increading.infrastructure.utils.text import normalize_tags, parse_frontmatter

logger = logging.getLogger(__name__)

_ENTITIES: dict[str, type[Card] | type[Snippet] | type[Article]] = {
    "card": Card,
    "snippet": Snippet,
    "article": Article,
}

# review log table and its foreign key, per text item kind
_TEXT_REVIEW_TABLES = {
    "snippet": ("snippet_review", "snippet_id"),
    "article": ("article_review", "article_id"),
}

_MANAGED_TAGS = {SNIPPET_TAG, ARTICLE_TAG, CARD_TAG}


def _item_id(item: Any) -> Any:
    return item.id if isinstance(item, (Card, Snippet, Article)) else item


class ReviewManager:
    """
    Application service behind every UI-facing operation.

    Collaborators are injected: the repository, the note store and the card
    scheduler. ``clock`` returns the current aware UTC time.
    """

    def __init__(
        self,
        repo: SQLiteRepository,
        notes: NoteStore,
        scheduler: CardScheduler,
        *,
        snippet_dir: str = SNIPPET_DIRECTORY,
        article_dir: str = ARTICLE_DIRECTORY,
        card_dir: str = CARD_DIRECTORY,
        rollover_hours: int = DEFAULT_ROLLOVER_HOURS,
        default_priority: int = DEFAULT_PRIORITY,
        default_limit: int = DEFAULT_QUEUE_LIMIT,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.repo = repo
        self.db = QueryComposer(repo)
        self.notes = notes
        self.scheduler = scheduler
        self.snippet_dir = snippet_dir.strip("/")
        self.article_dir = article_dir.strip("/")
        self.card_dir = card_dir.strip("/")
        self.rollover_hours = rollover_hours
        self.default_priority = validate_priority(default_priority)
        self.default_limit = default_limit
        self._clock = clock

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _decode(self, kind: str, row: dict[str, Any]):
        entity = _ENTITIES[kind]
        return entity.row_to_display(self.repo.decode_row(kind, row))

    async def _fetch_one(self, kind: str, item_id: Any):
        rows = await self.db.select(kind).where("id").eq(item_id).execute()
        if not rows:
            raise NotFoundError(kind, item_id)
        return self._decode(kind, rows[0])

    async def _fetch_all(self, kind: str, include_dismissed: bool = False) -> list:
        query = self.db.select(kind)
        if not include_dismissed:
            query = query.where("dismissed").eq(False)
        rows = await query.sort([("id", "ASC")]).execute()
        return [self._decode(kind, row) for row in rows]

    async def _fetch_due(self, kind: ItemKind, due_ms: int, limit: int) -> list[ReviewItem]:
        rows = await (
            self.db.select(kind)
            .where("dismissed")
            .eq(False)
            .and_("due")
            .lte(due_ms)
            .sort([("due", "ASC")])
            .limit(limit)
            .execute()
        )
        items = []
        for row in rows:
            try:
                items.append(ReviewItem(kind=kind, item=self._decode(kind, row), note=""))
            except PersistenceError as e:
                # One bad row must not block the whole queue.
                logger.error(f"Skipping unreadable {kind} row {row.get('id')!r}: {e}")
        return items

    async def _attach_notes(
        self, items: list[ReviewItem], orphans: list[tuple[ItemKind, str]]
    ) -> list[ReviewItem]:
        resolved = []
        for entry in items:
            path = await self.notes.resolve(entry.item.reference)
            if path is None:
                logger.warning(
                    f"Orphaned {entry.kind} {entry.item.id}: note {entry.item.reference!r} not found"
                )
                orphans.append((entry.kind, entry.item.reference))
                continue
            entry.note = str(path)
            resolved.append(entry)
        return resolved

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _moment(self, when: datetime | None) -> datetime:
        if when is None:
            return self._clock()
        if when.tzinfo is None:
            raise ValidationError(f"Timestamps must be timezone-aware; received {when!r}")
        return truncate_to_millis(when)

    def end_of_day(self, now: datetime | None = None) -> datetime:
        return end_of_review_day(now or self._clock(), self.rollover_hours)

    async def get_due(self, due_by: datetime | None = None, limit: int | None = None) -> DueQueue:
        """
        Everything due by ``due_by`` (default: the end of the current review day),
        up to ``limit`` items per kind, merged and sorted by due time.

        Rows whose note cannot be resolved are left in the database and reported
        in ``orphans`` instead of the queue.
        """
        due_by = self._moment(due_by) if due_by else self.end_of_day()
        limit = self.default_limit if limit is None else limit
        due_ms = to_millis(due_by)

        orphans: list[tuple[ItemKind, str]] = []
        cards = await self._attach_notes(await self._fetch_due("card", due_ms, limit), orphans)
        snippets = await self._attach_notes(
            await self._fetch_due("snippet", due_ms, limit), orphans
        )
        articles = await self._attach_notes(
            await self._fetch_due("article", due_ms, limit), orphans
        )

        merged = sorted([*cards, *snippets, *articles], key=lambda entry: entry.due)
        logger.info(
            f"Due by {due_by.isoformat()}: {len(cards)} cards, {len(snippets)} snippets, "
            f"{len(articles)} articles ({len(orphans)} orphaned)"
        )
        return DueQueue(
            all=merged, cards=cards, snippets=snippets, articles=articles, orphans=orphans
        )

    async def find_orphans(self) -> list[tuple[ItemKind, Any, str]]:
        """Active rows of every kind whose backing note no longer resolves."""
        orphans = []
        for kind in _ENTITIES:
            for item in await self._fetch_all(kind):
                if await self.notes.resolve(item.reference) is None:
                    orphans.append((kind, item.id, item.reference))
        return orphans

    async def dismiss_orphans(self) -> int:
        orphans = await self.find_orphans()
        async with self.repo.transaction():
            for kind, item_id, _ in orphans:
                await self._dismiss(kind, item_id)
        return len(orphans)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_card(self, card_id: str) -> Card:
        return await self._fetch_one("card", card_id)

    async def get_snippet(self, snippet_id: int) -> Snippet:
        return await self._fetch_one("snippet", snippet_id)

    async def get_article(self, article_id: int) -> Article:
        return await self._fetch_one("article", article_id)

    async def fetch_cards(self, include_dismissed: bool = False) -> list[Card]:
        return await self._fetch_all("card", include_dismissed)

    async def fetch_snippets(self, include_dismissed: bool = False) -> list[Snippet]:
        return await self._fetch_all("snippet", include_dismissed)

    async def fetch_articles(self, include_dismissed: bool = False) -> list[Article]:
        return await self._fetch_all("article", include_dismissed)

    async def find_snippet(self, reference: str) -> Snippet | None:
        rows = await self.db.select("snippet").where("reference").eq(reference).execute()
        return self._decode("snippet", rows[0]) if rows else None

    async def find_article(self, reference: str) -> Article | None:
        rows = await self.db.select("article").where("reference").eq(reference).execute()
        return self._decode("article", rows[0]) if rows else None

    async def get_note(self, item: ReviewItem | Card | Snippet | Article) -> str:
        """Text of the note backing an item."""
        entity = item.item if isinstance(item, ReviewItem) else item
        if await self.notes.resolve(entity.reference) is None:
            raise NotFoundError("note", entity.reference)
        return await self.notes.read(entity.reference)

    async def card_faces(self, card: Card | str) -> tuple[str, str]:
        """
        Front and back of a card: the note body with its cloze hidden, and the hidden text.
        """
        stored = card if isinstance(card, Card) else await self.get_card(card)
        _, body = parse_frontmatter(await self.get_note(stored))
        body = body.strip()
        return hide_answer(body), cloze_answer(body)

    async def card_history(self, card_id: str) -> list[CardReview]:
        await self._fetch_one("card", card_id)
        rows = await (
            self.db.select("card_review")
            .where("card_id")
            .eq(card_id)
            .sort([("review", "ASC")])
            .execute()
        )
        return [CardReview.row_to_display(self.repo.decode_row("card_review", r)) for r in rows]

    async def query(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        """Run a read-only statement directly against the repository."""
        if not sql.lstrip().upper().startswith(("SELECT", "WITH", "PRAGMA")):
            raise ValidationError("Only read queries are allowed")
        return await self.repo.query_read_only(sql, params or [])

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def create_card(self, source: str, selection: TextSelection) -> Card:
        """
        Turn a selection containing a cloze span into a card note and a fresh card row.
        """
        text = await self._selected_text(source, selection)
        if find_cloze(text) is None:
            raise ValidationError("A card needs a {{cloze}} span in the selected text")

        now = self._clock()
        ref = await self._create_note(
            self.card_dir,
            text,
            {"tags": [CARD_TAG], SOURCE_PROPERTY_NAME: self.notes.make_link(source)},
        )
        card = Card.new(generate_card_id(), ref, now)
        row = Card.display_to_row(card)
        try:
            await self.db.insert("card").columns(*table_columns("card")).values(
                row.model_dump()
            ).execute()
        except PersistenceError:
            await self.notes.delete(ref)
            raise
        logger.info(f"Created card {card.id} from {source}")
        return card

    async def review_card(
        self, card: Card, grade: Grade | int, review_time: datetime | None = None
    ) -> Card:
        """
        Grade a card and persist its new state together with the review log.

        The card is rescheduled from its stored state. If that state no longer
        matches ``card`` (another review landed in between), StaleItemError is
        raised and nothing is written.
        """
        try:
            grade = Grade(grade)
        except ValueError as e:
            raise ValidationError(f"Invalid grade {grade!r}") from e
        now = self._moment(review_time)

        async with self.repo.transaction():
            stored: Card = await self._fetch_one("card", card.id)
            if stored.dismissed:
                raise ValidationError(f"Card {card.id} is dismissed")
            if stored.reps != card.reps or stored.last_review != card.last_review:
                raise StaleItemError(f"Card {card.id} was reviewed since it was fetched")

            record = self.scheduler.repeat(stored, now)[grade]
            row = Card.display_to_row(record.card).model_dump(
                exclude={"id", "reference", "created_at", "dismissed"}
            )
            result = await (
                self.db.update("card")
                .set(row)
                .where("id")
                .eq(stored.id)
                .and_("reps")
                .eq(stored.reps)
                .execute()
            )
            if result.rowcount == 0:
                raise StaleItemError(f"Card {card.id} changed during review")

            log_row = CardReview.display_to_row(record.log).model_dump()
            await self.db.insert("card_review").columns(*table_columns("card_review")).values(
                log_row
            ).execute()

        logger.info(f"Reviewed card {card.id} as {grade.name}; next due {record.card.due}")
        return record.card

    async def dismiss_card(self, card: Card | str) -> None:
        await self._dismiss("card", _item_id(card))

    # ------------------------------------------------------------------
    # Snippets
    # ------------------------------------------------------------------

    async def create_snippet(
        self, source: str, selection: TextSelection, priority: int | None = None
    ) -> Snippet:
        """
        Save the selected text as a snippet note and queue it for tomorrow.

        A snippet taken from another snippet or an article records it as its
        parent and inherits its priority when none is given.
        """
        text = await self._selected_text(source, selection)
        parent = await self.find_snippet(source)
        if priority is None:
            inherited = parent or await self.find_article(source)
            priority = inherited.priority if inherited else self.default_priority
        priority = validate_priority(priority)

        now = self._clock()
        ref = await self._create_note(
            self.snippet_dir,
            text,
            {"tags": [SNIPPET_TAG], SOURCE_PROPERTY_NAME: self.notes.make_link(source)},
        )
        due = to_millis(now) + SNIPPET_FIRST_REVIEW_DELAY
        try:
            result = await self.db.insert("snippet").columns(
                "reference", "due", "priority", "dismissed", "parent"
            ).values(
                {
                    "reference": ref,
                    "due": due,
                    "priority": priority,
                    "dismissed": False,
                    "parent": parent.id if parent else None,
                }
            ).execute()
        except PersistenceError:
            await self.notes.delete(ref)
            raise

        logger.info(f"Snippet created: {get_content_slice(text, SNIPPET_SLICE_LENGTH, True)}")
        return Snippet(
            id=result.lastrowid,
            reference=ref,
            due=from_millis(due),
            priority=priority,
            parent=parent.id if parent else None,
        )

    async def review_snippet(
        self,
        snippet: Snippet | int,
        review_time: datetime | None = None,
        next_interval: timedelta | None = None,
    ) -> Snippet:
        return await self._review_text("snippet", _item_id(snippet), review_time, next_interval)

    async def reprioritize_snippet(self, snippet: Snippet | int, new_priority: int) -> Snippet:
        return await self._reprioritize("snippet", _item_id(snippet), new_priority)

    async def dismiss_snippet(self, snippet: Snippet | int) -> None:
        await self._dismiss("snippet", _item_id(snippet))

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    async def import_article(self, source: str, priority: int | None = None) -> Article:
        """
        Copy a note into the article folder and make it reviewable immediately.
        """
        priority = validate_priority(self.default_priority if priority is None else priority)
        if not await self.notes.exists(source):
            raise NotFoundError("note", source)
        if self._is_managed(source):
            raise DuplicateImportError(f"{source} is already managed")

        content = await self.notes.read(source)
        meta, _ = parse_frontmatter(content)
        if "__yaml_error__" in meta:
            raise ValidationError(
                f"Cannot import {source}: bad frontmatter ({meta['__yaml_error__']})"
            )
        tags = normalize_tags(meta.get("tags"))
        if _MANAGED_TAGS & set(tags):
            raise DuplicateImportError(f"{source} is already tagged as a snippet, card or article")

        source_link = self.notes.make_link(source)
        for article in await self.fetch_articles(include_dismissed=True):
            if await self.notes.resolve(article.reference) is None:
                continue
            existing = await self.notes.get_frontmatter(article.reference)
            if existing.get(SOURCE_PROPERTY_NAME) == source_link:
                raise DuplicateImportError(f"{source} was already imported as {article.reference}")

        name = PurePosixPath(source).name
        target = f"{self.article_dir}/{name}"
        if await self.notes.exists(target):
            target = f"{self.article_dir}/{PurePosixPath(name).stem} {generate_id()}.md"

        ref = await self.notes.create(target, content)
        now = self._clock()
        try:
            await self.notes.update_frontmatter(
                ref,
                {
                    "tags": [*tags, ARTICLE_TAG],
                    SOURCE_PROPERTY_NAME: meta.get(SOURCE_PROPERTY_NAME) or source_link,
                },
            )
            result = await self.db.insert("article").columns(
                "reference", "due", "priority", "dismissed"
            ).values(
                {"reference": ref, "due": to_millis(now), "priority": priority, "dismissed": False}
            ).execute()
        except (IncreadingError, OSError):
            await self.notes.delete(ref)
            raise

        logger.info(f"Imported {source} as article {result.lastrowid} at {ref}")
        return Article(id=result.lastrowid, reference=ref, due=now, priority=priority)

    async def review_article(
        self,
        article: Article | int,
        review_time: datetime | None = None,
        next_interval: timedelta | None = None,
    ) -> Article:
        return await self._review_text("article", _item_id(article), review_time, next_interval)

    async def reprioritize_article(self, article: Article | int, new_priority: int) -> Article:
        return await self._reprioritize("article", _item_id(article), new_priority)

    async def dismiss_article(self, article: Article | int) -> None:
        await self._dismiss("article", _item_id(article))

    async def rename_article(self, article: Article | int, new_name: str) -> Article:
        stored: Article = await self._fetch_one("article", _item_id(article))
        new_name = new_name.strip()
        if not new_name or "/" in new_name:
            raise ValidationError(f"Invalid article name {new_name!r}")

        try:
            new_ref = await self.notes.rename(stored.reference, new_name)
        except FileExistsError as e:
            raise ValidationError(str(e)) from e
        try:
            await self.db.update("article").set({"reference": new_ref}).where("id").eq(
                stored.id
            ).execute()
        except PersistenceError:
            await self.notes.rename(new_ref, PurePosixPath(stored.reference).name)
            raise
        logger.info(f"Renamed article {stored.id}: {stored.reference} -> {new_ref}")
        return replace(stored, reference=new_ref)

    # ------------------------------------------------------------------
    # Text item scheduling
    # ------------------------------------------------------------------

    async def _last_interval(self, kind: str, item: Snippet | Article) -> int | None:
        """Interval set at the last review: current due minus the last review time."""
        review_table, fk = _TEXT_REVIEW_TABLES[kind]
        rows = await (
            self.db.select(review_table)
            .columns("review_time")
            .where(fk)
            .eq(item.id)
            .sort([("review_time", "DESC")])
            .limit(1)
            .execute()
        )
        if not rows or item.due is None:
            return None
        return to_millis(item.due) - rows[0]["review_time"]

    async def _review_text(
        self,
        kind: str,
        item_id: int,
        review_time: datetime | None,
        next_interval: timedelta | None,
    ):
        now = self._moment(review_time)
        review_table, fk = _TEXT_REVIEW_TABLES[kind]

        async with self.repo.transaction():
            stored = await self._fetch_one(kind, item_id)
            if stored.dismissed:
                raise ValidationError(f"{kind.capitalize()} {item_id} is dismissed")

            if next_interval is not None:
                if next_interval < timedelta(0):
                    raise ValidationError(f"Interval must not be negative; received {next_interval}")
                interval_ms = next_interval // timedelta(milliseconds=1)
            else:
                last = await self._last_interval(kind, stored)
                interval_ms = next_text_review_interval(stored.priority, last)

            review_ms = to_millis(now)
            due = review_ms + interval_ms
            try:
                due_at = from_millis(due)
            except OverflowError as e:
                raise ValidationError(f"Interval of {interval_ms} ms is out of range") from e
            await self.db.insert(review_table).columns(fk, "review_time").values(
                {fk: stored.id, "review_time": review_ms}
            ).execute()
            await self.db.update(kind).set({"due": due}).where("id").eq(stored.id).execute()

        logger.info(f"Reviewed {kind} {stored.id}; next due {due_at.isoformat()}")
        return replace(stored, due=due_at)

    async def _reprioritize(self, kind: str, item_id: int, new_priority: Any):
        new_priority = validate_priority(new_priority)
        async with self.repo.transaction():
            stored = await self._fetch_one(kind, item_id)
            if stored.dismissed:
                # Dismissed items keep a NULL due.
                await self.db.update(kind).set({"priority": new_priority}).where("id").eq(
                    stored.id
                ).execute()
                return replace(stored, priority=new_priority)

            last = await self._last_interval(kind, stored)
            due = to_millis(self._clock()) + next_text_review_interval(new_priority, last)
            await self.db.update(kind).set({"priority": new_priority, "due": due}).where(
                "id"
            ).eq(stored.id).execute()

        logger.info(f"Reprioritized {kind} {stored.id}: {stored.priority} -> {new_priority}")
        return replace(stored, priority=new_priority, due=from_millis(due))

    async def _dismiss(self, kind: str, item_id: Any) -> None:
        values: dict[str, Any] = {"dismissed": True}
        if kind != "card":
            values["due"] = None
        result = await self.db.update(kind).set(values).where("id").eq(item_id).execute()
        if result.rowcount == 0:
            raise NotFoundError(kind, item_id)
        logger.info(f"Dismissed {kind} {item_id}")

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def _is_managed(self, ref: str) -> bool:
        path = PurePosixPath(ref)
        return any(
            path.is_relative_to(folder)
            for folder in (self.snippet_dir, self.article_dir, self.card_dir)
        )

    async def _selected_text(self, source: str, selection: TextSelection) -> str:
        if await self.notes.resolve(source) is None:
            raise NotFoundError("note", source)
        text = await self.notes.read(source)
        start, end = selection.start, selection.end
        if (
            isinstance(start, bool)
            or isinstance(end, bool)
            or not isinstance(start, int)
            or not isinstance(end, int)
            or not 0 <= start < end <= len(text)
        ):
            raise ValidationError(
                f"Invalid selection [{start}, {end}) for a note of length {len(text)}"
            )
        selected = text[start:end]
        if not selected.strip():
            raise ValidationError("No text was selected")
        return selected

    async def _create_note(self, folder: str, text: str, frontmatter: dict[str, Any]) -> str:
        ref = f"{folder}/{create_title(text, self._clock())}.md"
        await self.notes.create(ref)
        await self.notes.update_frontmatter(ref, frontmatter)
        await self.notes.append(ref, text)
        return ref
