"""CLI entry point for the AI people directory enrichment pipeline.

Provides commands:
  - search: Resolve a name against the directory and the knowledge base
  - add: Create a person from a confirmed knowledge-base id and enrich it
  - enrich: Run (or re-run) enrichment for an existing person
  - show: Display a profile with related-record counts and score breakdown
  - list: List people by completeness
  - score: Recompute completeness and influence scores
  - sweep: Rescore everyone and refresh the lowest scorers
  - reevaluate: Retract stored content that no longer passes the filters
  - config: Manage credentials in the system keyring
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import httpx
import keyring
import typer
from keyring.errors import KeyringError, PasswordDeleteError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from aidir.config import CREDENTIAL_NAMES, SERVICE_NAME, EnrichmentConfig, load_config
from aidir.content.normalizer import ContentNormalizer
from aidir.database import Database
from aidir.identity.knowledgebase import KnowledgeBaseError, WikidataClient
from aidir.identity.resolver import IdentityResolver
from aidir.models import ResolutionStatus
from aidir.pipeline.events import EnrichmentEvent
from aidir.pipeline.orchestrator import RunReport, build_orchestrator
from aidir.sources.base import USER_AGENT
from aidir.store import AsyncPersonStore, PersonBusyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    help="AI People Directory - resolve, enrich and score profiles of people in AI",
    rich_markup_mode="rich",
)
config_app = typer.Typer(help="Manage credentials (system keyring, service: aidir)")
app.add_typer(config_app, name="config")

console = Console()

_STATUS_STYLES = {
    "pending": "yellow",
    "building": "blue",
    "ready": "green",
    "error": "red",
}
_OUTCOME_STYLES = {
    "success": "green",
    "partial": "yellow",
    "skipped": "dim",
    "failed": "red",
}


# ---------------------------------------------------------------------------
# Shared setup
# ---------------------------------------------------------------------------


def _setup_logging(debug: bool) -> None:
    root = logging.getLogger("aidir")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setLevel(logging.DEBUG if debug else logging.INFO)
        root.addHandler(handler)

    if debug:
        debug_dir = Path.home() / ".aidir"
        debug_dir.mkdir(exist_ok=True)
        fh = logging.FileHandler(debug_dir / "debug.log")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(fh)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_path: Annotated[
        Path | None,
        typer.Option("--db", "-d", help="Path to SQLite database"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="JSON file overriding configuration defaults"),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Verbose logging, also written to ~/.aidir/debug.log"),
    ] = False,
) -> None:
    """Load configuration shared by every command."""
    _setup_logging(debug)
    if ctx.invoked_subcommand == "config":
        return
    config = load_config(config_path)
    if db_path is not None:
        config.db_path = db_path
    ctx.obj = config


def _get_config(ctx: typer.Context) -> EnrichmentConfig:
    config = ctx.obj
    if not isinstance(config, EnrichmentConfig):
        console.print("[red]Error:[/red] configuration not loaded")
        raise typer.Exit(code=1)
    return config


def _http_client(config: EnrichmentConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=config.http_timeout_seconds,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )


def _run_with_store(
    config: EnrichmentConfig,
    fn: Callable[[AsyncPersonStore, httpx.AsyncClient], Awaitable[T]],
) -> T:
    async def _main() -> T:
        async with AsyncPersonStore(str(config.db_path)) as store, _http_client(config) as client:
            return await fn(store, client)

    return asyncio.run(_main())


def _print_report(report: RunReport) -> None:
    style = _STATUS_STYLES.get(report.status.value, "")
    console.print(
        Panel(
            f"Person [bold]{report.person_id}[/bold] -> [{style}]{report.status.value}[/{style}]"
            + (f"\n[red]{report.error}[/red]" if report.error else ""),
            title=f"Enrichment run ({report.event})",
        )
    )
    table = Table(title="Stages")
    table.add_column("Stage", style="bold")
    table.add_column("Outcome")
    table.add_column("Detail", overflow="fold")
    for stage, entry in report.stages.items():
        outcome = entry.get("outcome", "")
        outcome_style = _OUTCOME_STYLES.get(outcome, "")
        detail = ", ".join(
            f"{k}={v}" for k, v in entry.items() if k != "outcome" and v not in (None, [], {})
        )
        table.add_row(stage, f"[{outcome_style}]{outcome}[/{outcome_style}]", detail)
    console.print(table)
    if report.completeness is not None:
        console.print(
            f"[bold]Completeness:[/bold] {report.completeness}   "
            f"[bold]Influence:[/bold] {report.influence}"
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def search(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Name (any script) to resolve")],
) -> None:
    """Resolve a name: local directory first, then knowledge-base candidates."""
    config = _get_config(ctx)

    async def _search(store: AsyncPersonStore, client: httpx.AsyncClient):
        resolver = IdentityResolver(store, WikidataClient(client, config))
        return await resolver.resolve(name)

    try:
        result = _run_with_store(config, _search)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if result.status == ResolutionStatus.LOCAL:
        console.print(
            f"[green]Found in directory:[/green] person {result.person_ids[0]} "
            f"[bold]{result.canonical_name}[/bold] ({result.identity_key or 'no identity key'})"
        )
        return
    if result.status == ResolutionStatus.NOT_FOUND:
        console.print(f"[yellow]No match for[/yellow] {name!r}")
        if result.diagnostic:
            console.print(f"[dim]{result.diagnostic}[/dim]")
        raise typer.Exit(code=1)

    if result.person_ids:
        table = Table(title=f"Directory matches for {name!r}")
        table.add_column("Person", justify="right")
        for person_id in result.person_ids:
            table.add_row(str(person_id))
        console.print(table)
        console.print("[dim]Several local profiles match; pass a person id to enrich.[/dim]")
        return

    candidates = result.candidates or []
    table = Table(title=f"Knowledge-base candidates for {name!r}")
    table.add_column("ID", style="bold")
    table.add_column("Label")
    table.add_column("Description", overflow="fold")
    if candidates:
        for candidate in candidates:
            table.add_row(candidate.id, candidate.label, candidate.description)
    else:
        table.add_row(result.identity_key or "", result.canonical_name or "", result.description or "")
    console.print(table)
    console.print("Confirm with: [bold]aidir add <ID>[/bold]")


@app.command()
def add(
    ctx: typer.Context,
    qid: Annotated[str, typer.Argument(help="Confirmed knowledge-base id, e.g. Q42")],
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Display name (defaults to the knowledge-base label)"),
    ] = None,
) -> None:
    """Create a person from a confirmed knowledge-base id and run ``person/created``."""
    config = _get_config(ctx)

    async def _add(store: AsyncPersonStore, client: httpx.AsyncClient) -> RunReport | int:
        existing = await store.find_person_by_identity(qid)
        if existing is not None:
            return existing
        entity = await WikidataClient(client, config).get_entity(qid)
        if entity is None:
            raise LookupError(f"{qid} not found in the knowledge base")
        person_id = await store.create_person(
            name or entity.label,
            identity_key=entity.id,
            aliases=entity.aliases,
            description=entity.description,
            links=entity.links,
        )
        orchestrator = build_orchestrator(store, config, client)
        return await orchestrator.run(EnrichmentEvent.created(person_id, identity=entity.id))

    try:
        outcome = _run_with_store(config, _add)
    except (LookupError, ValueError, KnowledgeBaseError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if isinstance(outcome, int):
        console.print(f"[yellow]{qid} already exists as person {outcome}.[/yellow]")
        return
    _print_report(outcome)


@app.command()
def enrich(
    ctx: typer.Context,
    person_id: Annotated[int, typer.Argument(help="Person id")],
    identity: Annotated[
        str | None,
        typer.Option("--identity", "-i", help="Corrected knowledge-base id (clears old content)"),
    ] = None,
    alias: Annotated[
        list[str] | None,
        typer.Option("--alias", "-a", help="Extra alias (repeatable)"),
    ] = None,
    link: Annotated[
        list[str] | None,
        typer.Option("--link", "-l", help="Extra official link URL (repeatable)"),
    ] = None,
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Ignore incremental fetch windows"),
    ] = False,
) -> None:
    """Run enrichment for an existing person (``person/refresh``)."""
    config = _get_config(ctx)
    event = EnrichmentEvent.refresh(
        person_id,
        identity=identity,
        aliases=alias or [],
        links=link or [],
        force_refresh=refresh,
    )

    async def _enrich(store: AsyncPersonStore, client: httpx.AsyncClient) -> RunReport:
        return await build_orchestrator(store, config, client).run(event)

    try:
        report = _run_with_store(config, _enrich)
    except PersonBusyError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=2)
    except LookupError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    _print_report(report)
    if report.error:
        raise typer.Exit(code=1)


@app.command()
def show(
    ctx: typer.Context,
    person_id: Annotated[int, typer.Argument(help="Person id")],
) -> None:
    """Display a profile with counts, score breakdown and timeline."""
    config = _get_config(ctx)
    with Database(config.db_path) as db:
        person = db.get_person_summary(person_id)
        if person is None:
            console.print(f"[red]Person {person_id} not found[/red]")
            raise typer.Exit(code=1)
        timeline = db.get_timeline(person_id)

    style = _STATUS_STYLES.get(person["status"], "")
    lines = [
        f"[bold]{person['name']}[/bold]"
        + (f" ({person['english_name']})" if person.get("english_name") else ""),
        f"Status: [{style}]{person['status']}[/{style}]",
        f"Identity: {person.get('identity_key') or '-'}",
    ]
    if person.get("description"):
        lines.append(person["description"])
    if person.get("error_message"):
        lines.append(f"[red]{person['error_message']}[/red]")
    console.print(Panel("\n".join(lines), title=f"Person {person_id}"))

    counts = Table(title="Related records")
    counts.add_column("Kind", style="bold")
    counts.add_column("Count", justify="right")
    for source, n in sorted(person["content_counts"].items()):
        counts.add_row(f"content:{source}", str(n))
    counts.add_row("career events", str(person["career_event_count"]))
    counts.add_row("courses", str(person["course_count"]))
    counts.add_row("cards", str(person["card_count"]))
    console.print(counts)

    breakdown = Table(title=f"Completeness {person.get('completeness_score') or 0}")
    breakdown.add_column("Field", style="bold")
    breakdown.add_column("Points", justify="right")
    for field_name, points in person["score_breakdown"].items():
        breakdown.add_row(field_name, f"{points:g}")
    console.print(breakdown)
    console.print(f"[bold]Influence:[/bold] {person.get('influence_score') or 0}")

    if timeline:
        events = Table(title="Career timeline")
        events.add_column("Organization", style="bold")
        events.add_column("Role")
        events.add_column("Period")
        events.add_column("Source", style="dim")
        for event in timeline:
            end = "present" if event["is_current"] else (event["end_date"] or "?")
            start = event["start_date"] or "?"
            events.add_row(event["organization"], event["role"] or "", f"{start} - {end}", event["source"])
        console.print(events)


@app.command(name="list")
def list_people(
    ctx: typer.Context,
    status: Annotated[
        str | None,
        typer.Option("--status", help="Only people with this status"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Rows to show")] = 50,
) -> None:
    """List people ordered by completeness."""
    config = _get_config(ctx)
    with Database(config.db_path) as db:
        people = db.list_people(status=status, limit=limit)
        status_counts = db.get_status_counts()

    table = Table(title="People")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Completeness", justify="right")
    table.add_column("Influence", justify="right")
    for person in people:
        style = _STATUS_STYLES.get(person["status"], "")
        table.add_row(
            str(person["id"]),
            person["name"],
            f"[{style}]{person['status']}[/{style}]",
            str(person.get("completeness_score") or 0),
            f"{person.get('influence_score') or 0:g}",
        )
    console.print(table)
    console.print(
        "  ".join(f"{name}: {count}" for name, count in sorted(status_counts.items()))
    )


@app.command()
def score(
    ctx: typer.Context,
    person_id: Annotated[int | None, typer.Argument(help="Person id")] = None,
    all_people: Annotated[bool, typer.Option("--all", help="Rescore every person")] = False,
) -> None:
    """Recompute completeness and influence scores."""
    config = _get_config(ctx)
    if person_id is None and not all_people:
        console.print("[red]Error:[/red] pass a person id or --all")
        raise typer.Exit(code=1)

    async def _score(store: AsyncPersonStore, client: httpx.AsyncClient) -> list[tuple[int, Any, float]]:
        orchestrator = build_orchestrator(store, config, client)
        ids = await store.list_person_ids() if all_people else [person_id]
        results = []
        for pid in ids:
            result, influence = await orchestrator.rescore(pid)
            results.append((pid, result, influence))
        return results

    try:
        results = _run_with_store(config, _score)
    except LookupError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Scores")
    table.add_column("ID", justify="right")
    table.add_column("Completeness", justify="right")
    table.add_column("Grade")
    table.add_column("Influence", justify="right")
    table.add_column("Missing", style="dim", overflow="fold")
    for pid, result, influence in results:
        table.add_row(
            str(pid), str(result.total), result.grade, f"{influence:g}",
            ", ".join(result.missing_fields),
        )
    console.print(table)


@app.command()
def sweep(
    ctx: typer.Context,
    threshold: Annotated[int, typer.Option("--threshold", help="Refresh people scoring below this")] = 50,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum refresh runs")] = 10,
) -> None:
    """Rescore everyone and refresh the lowest scorers below the threshold."""
    config = _get_config(ctx)

    async def _sweep(store: AsyncPersonStore, client: httpx.AsyncClient) -> list[RunReport]:
        return await build_orchestrator(store, config, client).sweep(threshold, limit)

    reports = _run_with_store(config, _sweep)
    if not reports:
        console.print(f"[green]No profiles below {threshold}.[/green]")
        return
    for report in reports:
        _print_report(report)


@app.command()
def reevaluate(
    ctx: typer.Context,
    person_id: Annotated[int, typer.Argument(help="Person id")],
) -> None:
    """Retract stored content that no longer passes the language or identity filters."""
    config = _get_config(ctx)

    async def _reevaluate(store: AsyncPersonStore, client: httpx.AsyncClient) -> int:
        return await ContentNormalizer(store).reevaluate(person_id)

    try:
        removed = _run_with_store(config, _reevaluate)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Retracted {removed} content item(s) for person {person_id}")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def _check_credential_name(name: str) -> None:
    if name not in CREDENTIAL_NAMES:
        console.print(
            f"[red]Error:[/red] unknown credential {name!r}. "
            f"Known: {', '.join(CREDENTIAL_NAMES)}"
        )
        raise typer.Exit(code=1)


@config_app.command("set-key")
def set_key(
    name: Annotated[str, typer.Argument(help="Credential name, e.g. github_token")],
    value: Annotated[str, typer.Argument(help="Credential value")],
) -> None:
    """Store a credential in the system keyring (service: aidir)."""
    _check_credential_name(name)
    if not value.strip():
        console.print("[red]Error:[/red] value cannot be empty")
        raise typer.Exit(code=1)
    try:
        keyring.set_password(SERVICE_NAME, name, value.strip())
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to store {name}: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {name} stored in system keyring (service: {SERVICE_NAME})")


@config_app.command("get-key")
def get_key(
    name: Annotated[str, typer.Argument(help="Credential name")],
) -> None:
    """Display a stored credential (masked)."""
    _check_credential_name(name)
    value = keyring.get_password(SERVICE_NAME, name)
    if not value:
        console.print(
            f"[yellow]No {name} found in keyring.[/yellow]\n"
            f"Set it with: [bold]aidir config set-key {name} VALUE[/bold]"
        )
        raise typer.Exit(code=1)

    # Mask all but first 4 characters
    if len(value) > 4:
        masked = value[:4] + "*" * (len(value) - 4)
    else:
        masked = "*" * len(value)
    console.print(f"[green]{name}:[/green] {masked}")


@config_app.command("remove-key")
def remove_key(
    name: Annotated[str, typer.Argument(help="Credential name")],
) -> None:
    """Delete a stored credential from the system keyring."""
    _check_credential_name(name)
    try:
        keyring.delete_password(SERVICE_NAME, name)
    except PasswordDeleteError:
        console.print(f"[yellow]Warning:[/yellow] No {name} found in keyring. Nothing to remove.")
        return
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Failed to remove {name}: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {name} removed from system keyring")


if __name__ == "__main__":
    app()
