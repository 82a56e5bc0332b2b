import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Annotated, Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from increading.application.config import resolve_config
from increading.application.factory import build_review_manager
from increading.application.review_manager import ReviewManager
from increading.application.scheduling import interval_from_days
from increading.consts import VERSION
from increading.domain.errors import (
    DuplicateImportError,
    IncreadingError,
    NotFoundError,
    PersistenceError,
    StaleItemError,
    ValidationError,
)
from increading.domain.models import Article, Card, Grade, ReviewItem, Snippet, TextSelection

logger = logging.getLogger("increading.server")

_STATUS_CODES: dict[type[IncreadingError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    PersistenceError: 500,
    DuplicateImportError: 409,
    StaleItemError: 409,
}


def to_http_error(e: IncreadingError) -> HTTPException:
    status = next(
        (code for kind, code in _STATUS_CODES.items() if isinstance(e, kind)),
        500,
    )
    if status >= 500:
        logger.error(f"Request failed: {e}", exc_info=True)
    else:
        logger.info(f"Request rejected ({status}): {e}")
    return HTTPException(status_code=status, detail=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"increading server v{VERSION} starting up...")
    yield
    # Shutdown
    manager = getattr(app.state, "manager", None)
    if manager is not None:
        manager.repo.close()
    logger.info("increading server shutting down...")


app = FastAPI(
    title="increading server",
    description="Review engine for the incremental-reading note plugin.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


async def get_manager(request: Request) -> ReviewManager:
    """The manager is built on first use from the resolved config and kept on app.state."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        try:
            manager = await build_review_manager(resolve_config())
        except IncreadingError as e:
            raise to_http_error(e) from e
        request.app.state.manager = manager
    return manager


Manager = Annotated[ReviewManager, Depends(get_manager)]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ItemResponse(BaseModel):
    kind: Literal["card", "snippet", "article"]
    id: str | int
    reference: str
    due: datetime | None
    dismissed: bool
    priority: int | None = None
    parent: int | None = None
    state: str | None = None
    reps: int | None = None
    lapses: int | None = None
    note: str | None = None


class OrphanResponse(BaseModel):
    kind: str
    reference: str
    id: str | int | None = None


class DueResponse(BaseModel):
    all: list[ItemResponse]
    cards: list[ItemResponse]
    snippets: list[ItemResponse]
    articles: list[ItemResponse]
    orphans: list[OrphanResponse]


class SelectionRequest(BaseModel):
    source: str
    start: int
    end: int


class SnippetRequest(SelectionRequest):
    priority: int | None = None


class CardReviewRequest(BaseModel):
    grade: Grade
    review_time: datetime | None = None
    # reps the caller saw; a mismatch means the card was reviewed elsewhere
    reps: int | None = None


class TextReviewRequest(BaseModel):
    review_time: datetime | None = None
    interval_days: float | None = Field(default=None, ge=0, allow_inf_nan=False)


class PriorityRequest(BaseModel):
    priority: int


class RenameRequest(BaseModel):
    name: str


class ImportRequest(BaseModel):
    source: str
    priority: int | None = None


def item_response(item: Card | Snippet | Article | ReviewItem) -> ItemResponse:
    note = None
    if isinstance(item, ReviewItem):
        note = item.note
        item = item.item
    if isinstance(item, Card):
        return ItemResponse(
            kind="card",
            id=item.id,
            reference=item.reference,
            due=item.due,
            dismissed=item.dismissed,
            state=item.state.name,
            reps=item.reps,
            lapses=item.lapses,
            note=note,
        )
    return ItemResponse(
        kind="snippet" if isinstance(item, Snippet) else "article",
        id=item.id,
        reference=item.reference,
        due=item.due,
        dismissed=item.dismissed,
        priority=item.priority,
        parent=getattr(item, "parent", None),
        note=note,
    )


def _interval(days: float | None) -> timedelta | None:
    return None if days is None else interval_from_days(days)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@app.get("/due", response_model=DueResponse)
async def get_due(manager: Manager, due_by: datetime | None = None, limit: int | None = None):
    """Everything due by ``due_by`` (default: end of the review day), merged by due time."""
    try:
        queue = await manager.get_due(due_by=due_by, limit=limit)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return DueResponse(
        all=[item_response(i) for i in queue.all],
        cards=[item_response(i) for i in queue.cards],
        snippets=[item_response(i) for i in queue.snippets],
        articles=[item_response(i) for i in queue.articles],
        orphans=[OrphanResponse(kind=k, reference=r) for k, r in queue.orphans],
    )


@app.get("/orphans", response_model=list[OrphanResponse])
async def get_orphans(manager: Manager):
    try:
        found = await manager.find_orphans()
    except IncreadingError as e:
        raise to_http_error(e) from e
    return [OrphanResponse(kind=k, id=i, reference=r) for k, i, r in found]


@app.post("/orphans/dismiss")
async def dismiss_orphans(manager: Manager):
    try:
        return {"dismissed": await manager.dismiss_orphans()}
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.get("/notes/{kind}/{item_id}")
async def get_note(manager: Manager, kind: Literal["card", "snippet", "article"], item_id: str):
    """Text of the note behind an item."""
    try:
        if kind == "card":
            item = await manager.get_card(item_id)
        elif not item_id.isdigit():
            raise ValidationError(f"{kind} ids are integers; received {item_id!r}")
        elif kind == "snippet":
            item = await manager.get_snippet(int(item_id))
        else:
            item = await manager.get_article(int(item_id))
        return {"reference": item.reference, "text": await manager.get_note(item)}
    except IncreadingError as e:
        raise to_http_error(e) from e


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@app.get("/cards", response_model=list[ItemResponse])
async def list_cards(manager: Manager, include_dismissed: bool = False):
    try:
        return [item_response(c) for c in await manager.fetch_cards(include_dismissed)]
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/cards", response_model=ItemResponse, status_code=201)
async def create_card(req: SelectionRequest, manager: Manager):
    try:
        card = await manager.create_card(req.source, TextSelection(req.start, req.end))
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(card)


@app.get("/cards/{card_id}", response_model=ItemResponse)
async def get_card(card_id: str, manager: Manager):
    try:
        return item_response(await manager.get_card(card_id))
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.get("/cards/{card_id}/history")
async def card_history(card_id: str, manager: Manager) -> list[dict[str, Any]]:
    try:
        reviews = await manager.card_history(card_id)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return [
        {
            "id": r.id,
            "due": r.due,
            "review": r.review,
            "rating": r.rating.name,
            "state": r.state.name,
            "stability": r.stability,
            "difficulty": r.difficulty,
            "elapsed_days": r.elapsed_days,
            "last_elapsed_days": r.last_elapsed_days,
            "scheduled_days": r.scheduled_days,
        }
        for r in reviews
    ]


@app.get("/cards/{card_id}/faces")
async def card_faces(card_id: str, manager: Manager) -> dict[str, str]:
    """Question side with the cloze hidden, and the answer it hides."""
    try:
        front, back = await manager.card_faces(card_id)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return {"id": card_id, "front": front, "back": back}


@app.post("/cards/{card_id}/review", response_model=ItemResponse)
async def review_card(card_id: str, req: CardReviewRequest, manager: Manager):
    try:
        card = await manager.get_card(card_id)
        if req.reps is not None and req.reps != card.reps:
            raise StaleItemError(f"Card {card_id} was reviewed since it was fetched")
        updated = await manager.review_card(card, req.grade, req.review_time)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(updated)


@app.post("/cards/{card_id}/dismiss")
async def dismiss_card(card_id: str, manager: Manager):
    try:
        await manager.dismiss_card(card_id)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return {"ok": True}


# ---------------------------------------------------------------------------
# Snippets
# ---------------------------------------------------------------------------


@app.get("/snippets", response_model=list[ItemResponse])
async def list_snippets(manager: Manager, include_dismissed: bool = False):
    try:
        return [item_response(s) for s in await manager.fetch_snippets(include_dismissed)]
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/snippets", response_model=ItemResponse, status_code=201)
async def create_snippet(req: SnippetRequest, manager: Manager):
    try:
        snippet = await manager.create_snippet(
            req.source, TextSelection(req.start, req.end), req.priority
        )
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(snippet)


@app.get("/snippets/by-reference", response_model=ItemResponse | None)
async def find_snippet(reference: str, manager: Manager):
    try:
        snippet = await manager.find_snippet(reference)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(snippet) if snippet else None


@app.get("/snippets/{snippet_id}", response_model=ItemResponse)
async def get_snippet(snippet_id: int, manager: Manager):
    try:
        return item_response(await manager.get_snippet(snippet_id))
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/snippets/{snippet_id}/review", response_model=ItemResponse)
async def review_snippet(snippet_id: int, req: TextReviewRequest, manager: Manager):
    try:
        snippet = await manager.review_snippet(
            snippet_id, req.review_time, _interval(req.interval_days)
        )
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(snippet)


@app.post("/snippets/{snippet_id}/prioritize", response_model=ItemResponse)
async def prioritize_snippet(snippet_id: int, req: PriorityRequest, manager: Manager):
    try:
        return item_response(await manager.reprioritize_snippet(snippet_id, req.priority))
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/snippets/{snippet_id}/dismiss")
async def dismiss_snippet(snippet_id: int, manager: Manager):
    try:
        await manager.dismiss_snippet(snippet_id)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return {"ok": True}


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


@app.get("/articles", response_model=list[ItemResponse])
async def list_articles(manager: Manager, include_dismissed: bool = False):
    try:
        return [item_response(a) for a in await manager.fetch_articles(include_dismissed)]
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/import", response_model=ItemResponse, status_code=201)
async def import_article(req: ImportRequest, manager: Manager):
    """Import a note as an article, due immediately."""
    logger.info(f"Import requested via API: {req.source}")
    try:
        article = await manager.import_article(req.source, req.priority)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(article)


@app.get("/articles/{article_id}", response_model=ItemResponse)
async def get_article(article_id: int, manager: Manager):
    try:
        return item_response(await manager.get_article(article_id))
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/articles/{article_id}/review", response_model=ItemResponse)
async def review_article(article_id: int, req: TextReviewRequest, manager: Manager):
    try:
        article = await manager.review_article(
            article_id, req.review_time, _interval(req.interval_days)
        )
    except IncreadingError as e:
        raise to_http_error(e) from e
    return item_response(article)


@app.post("/articles/{article_id}/prioritize", response_model=ItemResponse)
async def prioritize_article(article_id: int, req: PriorityRequest, manager: Manager):
    try:
        return item_response(await manager.reprioritize_article(article_id, req.priority))
    except IncreadingError as e:
        raise to_http_error(e) from e


@app.post("/articles/{article_id}/dismiss")
async def dismiss_article(article_id: int, manager: Manager):
    try:
        await manager.dismiss_article(article_id)
    except IncreadingError as e:
        raise to_http_error(e) from e
    return {"ok": True}


@app.post("/articles/{article_id}/rename", response_model=ItemResponse)
async def rename_article(article_id: int, req: RenameRequest, manager: Manager):
    try:
        return item_response(await manager.rename_article(article_id, req.name))
    except IncreadingError as e:
        raise to_http_error(e) from e
