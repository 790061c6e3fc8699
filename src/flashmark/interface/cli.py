"""flashmark CLI: root commands and subgroup registration."""

import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer

from flashmark.application.config import resolve_config
from flashmark.domain.errors import FlashmarkError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="flashmark: local-first flashcards from markdown files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Register subgroups
# ---------------------------------------------------------------------------

config_app = typer.Typer(help="Manage flashmark configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def humanize_error(e: Exception) -> str:
    if isinstance(e, FlashmarkError):
        return str(e)
    if isinstance(e, json.JSONDecodeError):
        return f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})"
    if isinstance(e, FileNotFoundError):
        return f"File not found: {e.filename}"
    return f"{type(e).__name__}: {e}"


def _fail(e: Exception) -> None:
    typer.secho(f"Error: {humanize_error(e)}", fg="red", err=True)
    raise typer.Exit(1)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return str(value)


def _resolve_with_overrides(ctx: typer.Context | None = None, **overrides: Any):
    if ctx is not None and ctx.obj:
        overrides.setdefault("verbose", ctx.obj.get("verbose_bonus"))
    config = resolve_config(overrides)
    if config.verbose >= 2:
        logging.getLogger("flashmark").setLevel(logging.DEBUG)
    return config


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for flashmark."""
    ctx.ensure_object(dict)
    ctx.obj["verbose_bonus"] = verbose


# ---------------------------------------------------------------------------
# Pure commands
# ---------------------------------------------------------------------------


@app.command("parse")
def parse_file(
    file: Annotated[Path, typer.Argument(help="Markdown file to parse.")],
):
    """Parse a markdown file and print its cards as JSON."""
    from flashmark.application.parser import parse
    from flashmark.application.utils.fs import read_text

    try:
        result = parse(read_text(file))
    except (OSError, FlashmarkError) as e:
        _fail(e)

    _echo_json(
        {
            "records": [asdict(r) for r in result.records],
            "warnings": [asdict(w) for w in result.warnings],
        }
    )


@app.command("schedule")
def schedule_card(
    rating: Annotated[str, typer.Argument(help="Rating: 1-4 or again/hard/good/easy.")],
    algorithm: Annotated[str, typer.Option(help="Scheduling algorithm: sm2 or fsrs.")] = "sm2",
    state: Annotated[
        str | None, typer.Option(help="Current CardState as JSON. Defaults to a new card.")
    ] = None,
    now: Annotated[
        datetime | None, typer.Option(help="Review time (ISO 8601). Defaults to now, UTC.")
    ] = None,
):
    """Compute the next state of a card for one rating."""
    from flashmark.application.scheduling import initial_state, schedule
    from flashmark.domain.models import CardState, utc_now

    try:
        before = CardState.from_dict(json.loads(state)) if state else initial_state(algorithm)
        result = schedule(algorithm, before, rating, now or utc_now())
    except (ValueError, FlashmarkError) as e:
        _fail(e)

    _echo_json({"new_state": result.new_state.to_dict(), "next_due": result.next_due})


@app.command("compare")
def compare_answers(
    typed: Annotated[str, typer.Argument(help="What the user typed.")],
    correct: Annotated[str, typer.Argument(help="The card's answer.")],
    mode: Annotated[
        str, typer.Option(help="Matching mode: exact, case_insensitive or fuzzy.")
    ] = "fuzzy",
    threshold: Annotated[float, typer.Option(help="Fuzzy similarity threshold.")] = 0.8,
):
    """Compare a typed answer with the correct one."""
    from flashmark.application.matching import compare

    try:
        result = compare(typed, correct, mode, threshold)
    except FlashmarkError as e:
        _fail(e)

    _echo_json(asdict(result))
    if not result.is_correct:
        raise typer.Exit(2)


# ---------------------------------------------------------------------------
# Study commands
# ---------------------------------------------------------------------------


@app.command("decks")
def decks(ctx: typer.Context):
    """List decks with their new and due counts."""
    from flashmark.application.factory import device_id_for, get_card_store
    from flashmark.application.study_queue import list_decks

    config = _resolve_with_overrides(ctx)
    store = get_card_store(config)
    try:
        settings = store.get_settings()
        items = list_decks(store, device_id_for(config), settings.daily_reset_hour)
    finally:
        store.close()

    if not items:
        typer.secho("No cards yet. Run 'flashmark sync' first.", fg="yellow")
        return
    for deck in items:
        typer.echo(
            f"{deck.path}: {deck.card_count} cards, {deck.new_count} new, {deck.due_count} due"
        )


@app.command("due")
def due(
    ctx: typer.Context,
    deck: Annotated[str | None, typer.Argument(help="Deck path. Defaults to all decks.")] = None,
):
    """Show today's study queue."""
    from flashmark.application.factory import device_id_for, get_card_store
    from flashmark.application.review_service import ReviewService
    from flashmark.application.study_queue import build_study_queue

    config = _resolve_with_overrides(ctx)
    store = get_card_store(config)
    try:
        device_id = device_id_for(config)
        settings = ReviewService(store, device_id).effective_settings(deck)
        queue = build_study_queue(store, device_id, settings, deck_path=deck)
    finally:
        store.close()

    _echo_json(
        {
            "new_cards": [{"id": c.id, "question": c.question} for c in queue.new_cards],
            "review_cards": [{"id": c.id, "question": c.question} for c in queue.review_cards],
            "new_remaining": queue.new_remaining,
            "review_remaining": queue.review_remaining,
        }
    )


@app.command("review")
def review(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card to review.")],
    rating: Annotated[str, typer.Argument(help="Rating on the chosen scale.")],
    scale: Annotated[str, typer.Option(help="Rating scale: 4point or 2point.")] = "4point",
    typed: Annotated[
        str | None, typer.Option(help="Typed answer. Switches to typed answer mode.")
    ] = None,
):
    """Record one review and print the new schedule."""
    from flashmark.application.factory import device_id_for, get_card_store
    from flashmark.application.review_service import ReviewRequest, ReviewService
    from flashmark.domain.models import AnswerMode

    config = _resolve_with_overrides(ctx)
    store = get_card_store(config)
    try:
        service = ReviewService(store, device_id_for(config))
        outcome = service.submit_review(
            ReviewRequest(
                card_id=card_id,
                rating=rating,
                rating_scale=scale,
                answer_mode=AnswerMode.TYPED if typed is not None else AnswerMode.FLIP,
                typed_answer=typed,
            )
        )
    except FlashmarkError as e:
        _fail(e)
    finally:
        store.close()

    if outcome.match is not None:
        color = "green" if outcome.match.is_correct else "red"
        typer.secho(f"Similarity: {outcome.match.similarity:.2f}", fg=color)
    typer.echo(f"Next due: {outcome.next_due.isoformat()}")
    _echo_json(outcome.new_state.to_dict())


# ---------------------------------------------------------------------------
# Sync commands
# ---------------------------------------------------------------------------


@app.command()
def sync(
    ctx: typer.Context,
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="Folders or files to sync. Defaults to 'watched_paths', or CWD."),
    ] = None,
    remote: Annotated[
        str | None,
        typer.Option(help="Authority URL, or local:// for an in-process authority."),
    ] = None,
    delete_orphans: Annotated[
        bool | None,
        typer.Option(
            "--delete-orphans/--keep-orphans",
            help="Answer the orphan confirmation without prompting.",
        ),
    ] = None,
):
    """[bold green]Sync[/bold green] markdown files and reviews with the authority."""
    config = _resolve_with_overrides(ctx, watched_paths=paths or None, remote_url=remote)

    import asyncio

    from flashmark.application.factory import get_reconciler
    from flashmark.domain.sync.models import SyncStatusKind

    async def run():
        reconciler = get_reconciler(config)
        try:
            status = await reconciler.start_sync(config.remote_url, config.watched_paths)
            if status.kind is SyncStatusKind.AWAITING_ORPHAN_CONFIRMATION:
                typer.secho(
                    f"{len(status.orphans)} cards were removed from your files:", fg="yellow"
                )
                for orphan in status.orphans:
                    typer.echo(f"  [{orphan.card_id}] {orphan.question_preview}")
                confirm = delete_orphans
                if confirm is None:
                    confirm = typer.confirm("Delete them?", default=False)
                if confirm:
                    await reconciler.confirm_orphan_deletion([o.card_id for o in status.orphans])
                else:
                    await reconciler.skip_orphan_deletion()
                status = reconciler.get_sync_status()
            return status
        finally:
            reconciler.store.close()

    status = asyncio.run(run())
    if status.kind is SyncStatusKind.FAILED:
        typer.secho(f"Sync failed: {status.error}", fg="red", err=True)
        raise typer.Exit(1)

    stats = status.stats
    typer.secho("Sync complete.", fg="green")
    if stats is not None:
        typer.echo(
            f"Files: {stats.files_uploaded}  Created: {stats.cards_created}  "
            f"Updated: {stats.cards_updated}  Deleted: {stats.orphans_deleted}  "
            f"Reviews pushed: {stats.reviews_synced}  States pulled: {stats.states_pulled}"
        )


@app.command()
def status(ctx: typer.Context):
    """Show the last sync time and how many reviews are waiting to sync."""
    from flashmark.application.factory import get_card_store

    config = _resolve_with_overrides(ctx)
    store = get_card_store(config)
    try:
        state = store.get_sync_state()
    finally:
        store.close()

    last = state.last_sync_at.isoformat() if state.last_sync_at else "never"
    typer.echo(f"Last sync: {last}")
    typer.echo(f"Pending changes: {state.pending_changes}")


@app.command()
def register(
    ctx: typer.Context,
    name: Annotated[str | None, typer.Option(help="Human-readable device name.")] = None,
    remote: Annotated[str | None, typer.Option(help="Authority URL.")] = None,
):
    """Register this device with an authority and print its credentials."""
    config = _resolve_with_overrides(ctx, remote_url=remote)

    import asyncio

    from flashmark.infrastructure.adapters.http_remote import HttpSyncRemote

    async def run():
        client = HttpSyncRemote(config.remote_url, timeout=config.request_timeout)
        try:
            return await client.register_device(name)
        finally:
            await client.aclose()

    try:
        creds = asyncio.run(run())
    except FlashmarkError as e:
        _fail(e)

    typer.secho(f"Registered device {creds.device_id}", fg="green")
    typer.echo("Add these to ~/.config/flashmark/config.toml:")
    typer.echo(f'device_id = "{creds.device_id}"')
    typer.echo(f'device_token = "{creds.token}"')


@app.command()
def serve(
    ctx: typer.Context,
    host: Annotated[str | None, typer.Option(help="Interface to bind.")] = None,
    port: Annotated[int | None, typer.Option(help="Port to listen on.")] = None,
):
    """Run the identity authority as an HTTP server."""
    import uvicorn

    config = _resolve_with_overrides(ctx, host=host, port=port)
    typer.echo(f"Starting flashmark authority on http://{config.host}:{config.port}")
    uvicorn.run("flashmark.server:app", host=config.host, port=config.port)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = config.model_dump(mode="json")
    if d.get("device_token"):
        d["device_token"] = "***"
    typer.echo(json.dumps(d, indent=2))
