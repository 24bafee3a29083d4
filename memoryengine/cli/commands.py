"""CLI commands. Each command is a thin shell over one MemoryService call."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import BaseModel, Field, ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from memoryengine.cli import client
from memoryengine.errors import ErrorKind, MemoryEngineError, ProviderError, RateLimited, TransientError
from memoryengine.memory.types import MemoryType, UpdateCandidate, UpdateMode, UpdateResult
from memoryengine.pipeline.retry import RetryPolicy
from memoryengine.service import MemoryService, Segment

logger = logging.getLogger(__name__)

console = Console()

_RETRYABLE_KINDS = {
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.RATE_LIMITED: RateLimited,
}

_SCOPE_OPTION = typer.Option(
    ...,
    "--scope-id",
    envvar="MEMORY_SCOPE_ID",
    help="Scope (tenant) the command operates on.",
)
_IN_MEMORY_OPTION = typer.Option(
    False,
    "--in-memory",
    help="Use a throwaway in-process store instead of PostgreSQL.",
)


class ImportRecord(BaseModel):
    """One record of an import file."""

    text: str = Field(min_length=1)
    type: Optional[MemoryType] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    reason: str = "import"


def _run(in_memory: bool, fn):
    try:
        return client.run_with_service(in_memory, fn)
    except MemoryEngineError as exc:
        console.print(f"[red]{exc.kind.value}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def search(
    query: str = typer.Argument(..., help="Text to search for."),
    scope_id: str = _SCOPE_OPTION,
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0.0, max=1.0),
    limit: Optional[int] = typer.Option(None, "--limit", min=1),
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """Semantic search over the scope's current entries."""

    async def _search(service: MemoryService):
        return await service.search_similar_conversations(scope_id, query, threshold, limit)

    matches = _run(in_memory, _search)
    if not matches:
        console.print("[yellow]No matches.[/yellow]")
        return

    table = Table(title=f"Results for {query!r}")
    table.add_column("Similarity", justify="right")
    table.add_column("Type")
    table.add_column("Text")
    table.add_column("ID", style="dim")
    for match in matches:
        table.add_row(
            f"{match.similarity:.3f}", match.entry.type.value, match.entry.text, match.entry.id
        )
    console.print(table)


def update(
    text: str = typer.Argument(..., help="The new or corrected fact."),
    scope_id: str = _SCOPE_OPTION,
    memory_type: MemoryType = typer.Option(MemoryType.KNOWLEDGE, "--type"),
    mode: UpdateMode = typer.Option(UpdateMode.AUTO, "--mode"),
    reason: str = typer.Option("cli update", "--reason"),
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """Apply a conflict-aware update to the scope."""
    candidate = UpdateCandidate(
        scope_id=scope_id,
        text=text,
        type=memory_type,
        metadata={"source": "cli"},
        reason=reason,
    )

    async def _update(service: MemoryService):
        return await service.update_memory(scope_id, candidate, mode)

    result = _run(in_memory, _update)
    style = "green" if result.success else "red"
    lines = [f"[bold]{result.action}[/bold] ({result.state.value})"]
    if result.memory_id:
        lines.append(f"memory id: {result.memory_id}")
    if result.resolution is not None:
        lines.append(f"reason: {result.resolution.reason}")
        if result.resolution.needs_review:
            lines.append("[yellow]flagged for review[/yellow]")
    for group in result.conflicts:
        lines.append(f"conflict '{group.topic}': {len(group.members)} entr(ies)")
    if result.error is not None:
        lines.append(f"{result.error.value}: {result.error_message}")
    console.print(Panel("\n".join(lines), title="Update", border_style=style))
    if not result.success:
        raise typer.Exit(code=1)


def conflicts(
    scope_id: str = _SCOPE_OPTION,
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0.0, max=1.0),
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """List groups of near-duplicate or contradictory entries."""

    async def _conflicts(service: MemoryService):
        return await service.get_memory_conflicts(scope_id, threshold)

    groups = _run(in_memory, _conflicts)
    if not groups:
        console.print(Panel("[green]No conflicts found.[/green]", border_style="green"))
        return
    for group in groups:
        table = Table(title=f"{group.topic} (avg similarity {group.pairwise_similarity:.3f})")
        table.add_column("Text")
        table.add_column("Created", style="dim")
        for member in group.members:
            created = member.created_at.isoformat() if member.created_at else ""
            table.add_row(member.text, created)
        console.print(table)


def summary(
    scope_id: str = _SCOPE_OPTION,
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """Show entry counts by type for the scope."""

    async def _summary(service: MemoryService):
        return await service.get_business_knowledge_summary(scope_id)

    result = _run(in_memory, _summary)
    table = Table(title=f"Knowledge summary: {scope_id}")
    table.add_column("Type")
    table.add_column("Count", justify="right")
    for name, count in result.counts.items():
        table.add_row(name, str(count))
    table.add_row("[bold]current[/bold]", str(result.total_current))
    table.add_row("superseded", str(result.superseded))
    console.print(table)


def import_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of records."),
    scope_id: str = _SCOPE_OPTION,
    as_updates: bool = typer.Option(
        False,
        "--as-updates",
        help="Route each record through conflict-aware update instead of bulk insert.",
    ),
    retries: int = typer.Option(3, "--retries", min=1, help="Attempts on retryable provider errors."),
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """Load records ({"text", "type", "metadata", "confidence"}) into the scope."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON in {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not isinstance(payload, list):
        console.print(f"[red]{path} must contain a JSON list[/red]")
        raise typer.Exit(code=1)

    records: list[ImportRecord] = []
    for index, raw in enumerate(payload):
        try:
            records.append(ImportRecord.model_validate(raw))
        except ValidationError as exc:
            console.print(f"[red]Invalid record #{index} in {path}:[/red]\n{escape(str(exc))}")
            raise typer.Exit(code=1) from exc

    default_type = MemoryType.KNOWLEDGE if as_updates else MemoryType.CONVERSATION
    retry = RetryPolicy(max_attempts=retries)

    async def _import(service: MemoryService):
        if not as_updates:
            segments = [
                Segment(
                    text=r.text,
                    type=r.type or default_type,
                    metadata=r.metadata,
                    confidence=r.confidence,
                )
                for r in records
            ]
            entries = await retry.run(service.store_conversation_embeddings, scope_id, segments)
            return {"stored": len(entries)}

        async def _update(candidate: UpdateCandidate) -> UpdateResult:
            result = await service.update_memory(scope_id, candidate)
            # update_memory reports provider errors as results; raise the
            # retryable ones so the policy can try again
            if result.error in _RETRYABLE_KINDS:
                raise _RETRYABLE_KINDS[result.error](result.error_message or result.error.value)
            return result

        tally: dict[str, int] = {}
        for r in records:
            candidate = UpdateCandidate(
                scope_id=scope_id,
                text=r.text,
                type=r.type or default_type,
                metadata=r.metadata,
                confidence=r.confidence,
                reason=r.reason,
            )
            try:
                action = (await retry.run(_update, candidate)).action
            except ProviderError as exc:
                logger.warning("Import: giving up on record after %d attempt(s): %s", retries, exc)
                action = "failed"
            tally[action] = tally.get(action, 0) + 1
        return tally

    tally = _run(in_memory, _import)
    console.print(
        Panel(
            "\n".join(f"{action}: {count}" for action, count in sorted(tally.items())),
            title=f"Imported {len(records)} record(s)",
            border_style="green",
        )
    )


def delete_scope(
    scope_id: str = _SCOPE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    in_memory: bool = _IN_MEMORY_OPTION,
) -> None:
    """Remove every entry belonging to the scope."""
    if not yes:
        typer.confirm(f"Delete all memory for scope {scope_id!r}?", abort=True)

    async def _delete(service: MemoryService):
        return await service.delete_scope(scope_id)

    removed = _run(in_memory, _delete)
    console.print(f"[green]Deleted {removed} entr(ies) from {scope_id}.[/green]")
