"""increading CLI: review queue, item management, config and server commands."""

import asyncio
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from increading.application.config import AppConfig, resolve_config
from increading.application.factory import build_review_manager
from increading.application.review_manager import ReviewManager
from increading.application.scheduling import interval_from_days
from increading.application.utils.text import transform_priority
from increading.domain.errors import IncreadingError, ValidationError
from increading.domain.models import Grade, ReviewItem, TextSelection

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="increading: incremental reading and spaced repetition for a Markdown vault.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

review_app = typer.Typer(help="Review a due item.", no_args_is_help=True)
app.add_typer(review_app, name="review")

config_app = typer.Typer(help="Inspect increading configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def _set_verbosity(verbose: int) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.getLogger().setLevel(level)


LOG_FILE_NAME = "increading.log"
_file_handler: logging.FileHandler | None = None


def _log_to_file(log_dir: Path) -> None:
    """Mirror log records into ``log_dir`` so `increading logs` has something to show."""
    global _file_handler
    path = log_dir / LOG_FILE_NAME
    if _file_handler is not None:
        if Path(_file_handler.baseFilename) == path.absolute():
            return
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Cannot write logs to {log_dir}: {e}")
        return
    _file_handler = logging.FileHandler(path, encoding="utf-8", delay=True)
    _file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s:%(name)s:%(message)s")
    )
    logging.getLogger().addHandler(_file_handler)


class Kind(str, Enum):
    card = "card"
    snippet = "snippet"
    article = "article"


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    vault: Annotated[
        Path | None,
        typer.Option("--vault", help="Vault root. Defaults to 'vault_root' in config, or CWD."),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for increading."""
    ctx.ensure_object(dict)
    ctx.obj["vault_root"] = vault
    ctx.obj["verbose"] = verbose


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.find_root().obj or {}
    config = resolve_config({"vault_root": obj.get("vault_root"), "verbose": obj.get("verbose")})
    _set_verbosity(config.verbose)
    _log_to_file(config.log_dir)
    return config


def _run(ctx: typer.Context, action: Callable[[ReviewManager], Awaitable[T]]) -> T:
    """Build a manager, run ``action`` against it, and turn engine errors into exit code 1."""
    config = _config(ctx)

    async def run() -> T:
        manager = await build_review_manager(config)
        try:
            return await action(manager)
        finally:
            manager.repo.close()

    try:
        return asyncio.run(run())
    except IncreadingError as e:
        logger.debug(f"Command failed: {e!r}")
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e


def _parse_priority(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return transform_priority(value)
    except ValidationError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e


def _parse_grade(value: str) -> Grade:
    for grade in Grade:
        if value.lower() in (grade.name.lower(), str(grade.value)):
            return grade
    typer.secho(f"Error: unknown grade {value!r} (use again/hard/good/easy or 1-4)", fg="red", err=True)
    raise typer.Exit(1)


def _item_dict(entry: Any) -> dict[str, Any]:
    item = entry.item if isinstance(entry, ReviewItem) else entry
    data = {
        "id": item.id,
        "reference": item.reference,
        "due": item.due.isoformat() if item.due else None,
        "dismissed": item.dismissed,
    }
    if isinstance(entry, ReviewItem):
        data["kind"] = entry.kind
    if hasattr(item, "priority"):
        data["priority"] = item.priority
    if hasattr(item, "state"):
        data["state"] = item.state.name
    return data


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@app.command()
def due(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option(help="Maximum items per kind.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show everything due by the end of the current review day."""
    queue = _run(ctx, lambda m: m.get_due(limit=limit))

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "items": [_item_dict(entry) for entry in queue.all],
                    "orphans": [{"kind": k, "reference": r} for k, r in queue.orphans],
                },
                indent=2,
            )
        )
        return

    if not queue.all:
        typer.secho("Nothing due.", fg="green")
    for entry in queue.all:
        typer.echo(f"{entry.kind:<8} {entry.item.id!s:<34} {entry.due:%Y-%m-%d %H:%M}  {entry.item.reference}")
    if queue.orphans:
        typer.secho(
            f"{len(queue.orphans)} item(s) skipped: note missing. Run 'increading orphans'.",
            fg="yellow",
        )


@app.command("list")
def list_items(
    ctx: typer.Context,
    kind: Annotated[Kind, typer.Argument(help="Item kind.")],
    include_dismissed: Annotated[
        bool, typer.Option("--all", help="Include dismissed items.")
    ] = False,
):
    """List stored items of one kind as JSON."""

    async def action(m: ReviewManager):
        if kind == Kind.card:
            return await m.fetch_cards(include_dismissed)
        if kind == Kind.snippet:
            return await m.fetch_snippets(include_dismissed)
        return await m.fetch_articles(include_dismissed)

    items = _run(ctx, action)
    typer.echo(json.dumps([_item_dict(item) for item in items], indent=2))


@app.command()
def orphans(
    ctx: typer.Context,
    dismiss: Annotated[
        bool, typer.Option("--dismiss", help="Dismiss every orphaned item.")
    ] = False,
):
    """List items whose note no longer exists."""
    if dismiss:
        count = _run(ctx, lambda m: m.dismiss_orphans())
        typer.secho(f"Dismissed {count} orphaned item(s).", fg="green")
        return

    found = _run(ctx, lambda m: m.find_orphans())
    if not found:
        typer.secho("No orphans.", fg="green")
    for kind, item_id, reference in found:
        typer.echo(f"{kind:<8} {item_id!s:<34} {reference}")


# ---------------------------------------------------------------------------
# Review subgroup
# ---------------------------------------------------------------------------


@review_app.command("card")
def review_card(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id.")],
    grade: Annotated[str, typer.Argument(help="again, hard, good, easy (or 1-4).")],
):
    """Grade a card."""
    parsed = _parse_grade(grade)

    async def action(m: ReviewManager):
        return await m.review_card(await m.get_card(card_id), parsed)

    card = _run(ctx, action)
    typer.secho(f"Card {card.id} next due {card.due:%Y-%m-%d %H:%M} ({card.state.name})", fg="green")


def _parse_interval(days: float | None) -> timedelta | None:
    if days is None:
        return None
    try:
        return interval_from_days(days)
    except ValidationError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from e


@review_app.command("snippet")
def review_snippet(
    ctx: typer.Context,
    snippet_id: Annotated[int, typer.Argument(help="Snippet id.")],
    interval_days: Annotated[
        float | None, typer.Option("--interval-days", help="Schedule manually, in days.")
    ] = None,
):
    """Mark a snippet reviewed and schedule its next review."""
    interval = _parse_interval(interval_days)
    snippet = _run(ctx, lambda m: m.review_snippet(snippet_id, next_interval=interval))
    typer.secho(f"Snippet {snippet.id} next due {snippet.due:%Y-%m-%d %H:%M}", fg="green")


@review_app.command("article")
def review_article(
    ctx: typer.Context,
    article_id: Annotated[int, typer.Argument(help="Article id.")],
    interval_days: Annotated[
        float | None, typer.Option("--interval-days", help="Schedule manually, in days.")
    ] = None,
):
    """Mark an article reviewed and schedule its next review."""
    interval = _parse_interval(interval_days)
    article = _run(ctx, lambda m: m.review_article(article_id, next_interval=interval))
    typer.secho(f"Article {article.id} next due {article.due:%Y-%m-%d %H:%M}", fg="green")


@app.command()
def history(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id.")],
):
    """Show a card's review log as JSON."""
    reviews = _run(ctx, lambda m: m.card_history(card_id))
    typer.echo(
        json.dumps(
            [
                {
                    "id": r.id,
                    "review": r.review.isoformat(),
                    "rating": r.rating.name,
                    "state": r.state.name,
                    "scheduled_days": r.scheduled_days,
                }
                for r in reviews
            ],
            indent=2,
        )
    )


@app.command()
def show(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id.")],
    answer: Annotated[bool, typer.Option("--answer", help="Also print the hidden answer.")] = False,
):
    """Print a card's question with its cloze hidden."""
    front, back = _run(ctx, lambda m: m.card_faces(card_id))
    typer.echo(front)
    if answer:
        typer.secho(back, fg="green")


# ---------------------------------------------------------------------------
# Creating items
# ---------------------------------------------------------------------------


@app.command()
def snippet(
    ctx: typer.Context,
    source: Annotated[str, typer.Argument(help="Vault-relative path of the source note.")],
    start: Annotated[int, typer.Argument(help="Selection start offset.")],
    end: Annotated[int, typer.Argument(help="Selection end offset (exclusive).")],
    priority: Annotated[
        str | None, typer.Option(help="Priority 1.0-5.0. Inherited or default when omitted.")
    ] = None,
):
    """Save a passage of a note as a snippet."""
    stored = _parse_priority(priority)
    created = _run(ctx, lambda m: m.create_snippet(source, TextSelection(start, end), stored))
    typer.secho(f"Snippet {created.id} created: {created.reference}", fg="green")


@app.command()
def card(
    ctx: typer.Context,
    source: Annotated[str, typer.Argument(help="Vault-relative path of the source note.")],
    start: Annotated[int, typer.Argument(help="Selection start offset.")],
    end: Annotated[int, typer.Argument(help="Selection end offset (exclusive).")],
):
    """Make a cloze card from a passage containing {{...}}."""
    created = _run(ctx, lambda m: m.create_card(source, TextSelection(start, end)))
    typer.secho(f"Card {created.id} created: {created.reference}", fg="green")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    source: Annotated[str, typer.Argument(help="Vault-relative path of the note to import.")],
    priority: Annotated[str | None, typer.Option(help="Priority 1.0-5.0.")] = None,
):
    """Import a note as an article, due immediately."""
    stored = _parse_priority(priority)
    article = _run(ctx, lambda m: m.import_article(source, stored))
    typer.secho(f"Article {article.id} imported: {article.reference}", fg="green")


# ---------------------------------------------------------------------------
# Managing items
# ---------------------------------------------------------------------------


@app.command()
def prioritize(
    ctx: typer.Context,
    kind: Annotated[Kind, typer.Argument(help="snippet or article.")],
    item_id: Annotated[int, typer.Argument(help="Item id.")],
    priority: Annotated[str, typer.Argument(help="Priority 1.0-5.0.")],
):
    """Change a snippet's or article's priority and reschedule it."""
    if kind == Kind.card:
        typer.secho("Error: cards have no priority", fg="red", err=True)
        raise typer.Exit(1)
    stored = _parse_priority(priority)

    if kind == Kind.snippet:
        item = _run(ctx, lambda m: m.reprioritize_snippet(item_id, stored))
    else:
        item = _run(ctx, lambda m: m.reprioritize_article(item_id, stored))
    typer.secho(f"{kind.value.capitalize()} {item.id} priority {item.priority / 10:.1f}", fg="green")


@app.command()
def dismiss(
    ctx: typer.Context,
    kind: Annotated[Kind, typer.Argument(help="Item kind.")],
    item_id: Annotated[str, typer.Argument(help="Item id.")],
):
    """Dismiss an item so it is never scheduled again."""

    async def action(m: ReviewManager):
        if kind == Kind.card:
            return await m.dismiss_card(item_id)
        if not item_id.isdigit():
            raise ValidationError(f"{kind.value} ids are integers; received {item_id!r}")
        if kind == Kind.snippet:
            return await m.dismiss_snippet(int(item_id))
        return await m.dismiss_article(int(item_id))

    _run(ctx, action)
    typer.secho(f"Dismissed {kind.value} {item_id}.", fg="green")


@app.command()
def rename(
    ctx: typer.Context,
    article_id: Annotated[int, typer.Argument(help="Article id.")],
    name: Annotated[str, typer.Argument(help="New note name.")],
):
    """Rename an article's note."""
    article = _run(ctx, lambda m: m.rename_article(article_id, name))
    typer.secho(f"Article {article.id} is now {article.reference}", fg="green")


@app.command()
def query(
    ctx: typer.Context,
    sql: Annotated[str, typer.Argument(help="A read-only SQL statement.")],
):
    """Run a read-only SQL query against the database and print JSON rows."""
    rows = _run(ctx, lambda m: m.query(sql))
    typer.echo(json.dumps(rows, indent=2))


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8787,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Start the HTTP server the note-taking plugin talks to."""
    import uvicorn

    typer.echo(f"Starting increading server on http://{host}:{port}")
    uvicorn.run("increading.server:app", host=host, port=port, reload=reload)


@app.command()
def logs(ctx: typer.Context):
    """Open the log directory."""
    import subprocess

    config = _config(ctx)
    if not config.log_dir.exists():
        config.log_dir.mkdir(parents=True, exist_ok=True)

    if sys.platform == "darwin":
        subprocess.run(["open", str(config.log_dir)])
    elif sys.platform == "win32":
        os.startfile(str(config.log_dir))
    else:
        subprocess.run(["xdg-open", str(config.log_dir)])
