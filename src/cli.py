"""지식 베이스 동기화 CLI 인터페이스.

동기화 실행, 인덱스 조회, 질의, 스케줄러 실행 명령어 제공.

종료 코드:
    0: 성공
    1: 입력 오류 (잘못된 인자, 필수 값 누락)
    2: 설정 오류 (API 키 누락, 콘텐츠 소스 없음)
    3: 연결/프로바이더 오류 (임베딩 또는 생성 프로바이더, 네트워크)
    4: 동기화 오류 (부분 실패, 실패 또는 취소된 실행, 락 경합)
    5: 내부 오류 (예상치 못한 예외)
"""

import json
import time
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import IntEnum
from typing import Iterator, List, NoReturn, Optional

import typer
from apscheduler.triggers.cron import CronTrigger
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import get_settings
from .container import Components, build_components
from .errors import (
    ConfigurationError,
    EmbeddingError,
    FatalProviderError,
    KnowledgeBaseError,
    TransientProviderError,
    ValidationError,
)
from .logging_config import configure_logging
from .models import SyncState, SyncStatus
from .scheduler import SyncScheduler
from .services.orchestrator import collect_status


class ExitCode(IntEnum):
    """CLI 작업을 위한 표준화된 종료 코드."""

    SUCCESS = 0
    INPUT_ERROR = 1
    CONFIG_ERROR = 2
    CONNECTION_ERROR = 3
    SYNC_ERROR = 4
    INTERNAL_ERROR = 5


def exit_code_for(error: KnowledgeBaseError) -> ExitCode:
    """오류를 종료 코드로 매핑합니다."""
    if isinstance(error, ValidationError):
        return ExitCode.INPUT_ERROR
    if isinstance(error, ConfigurationError):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, (TransientProviderError, FatalProviderError, EmbeddingError)):
        return ExitCode.CONNECTION_ERROR
    return ExitCode.SYNC_ERROR


app = typer.Typer(
    name="kb-sync",
    help="Knowledge base sync - index catalog content and answer questions from it",
    add_completion=False,
)

sync_app = typer.Typer(help="Sync operations")
index_app = typer.Typer(help="Index inspection and maintenance")
scheduler_app = typer.Typer(help="Scheduler operations")

app.add_typer(sync_app, name="sync")
app.add_typer(index_app, name="index")
app.add_typer(scheduler_app, name="scheduler")

console = Console()

STATUS_COLORS = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "running": "blue",
    "idle": "white",
}


# ==================== Helpers ====================


@contextmanager
def open_components() -> Iterator[Components]:
    """명령 하나를 위한 컴포넌트를 생성하고 끝나면 닫습니다."""
    try:
        components = build_components(get_settings())
    except KnowledgeBaseError as e:
        fail(e)
    try:
        yield components
    finally:
        components.close()


def fail(error: KnowledgeBaseError) -> NoReturn:
    console.print(f"[red]✗ {type(error).__name__}: {error.message}[/red]")
    raise typer.Exit(exit_code_for(error))


def _parse_since(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        since = datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid --since value: {value}. Use ISO 8601.[/red]")
        raise typer.Exit(ExitCode.INPUT_ERROR)
    return since if since.tzinfo else since.replace(tzinfo=UTC)


def _print_state(state: SyncState) -> ExitCode:
    """완료된 실행을 출력하고 그에 따른 종료 코드를 반환합니다."""
    exit_code = ExitCode.SUCCESS
    if state.status == SyncStatus.COMPLETED and not state.has_errors:
        console.print(f"[green]✓ {state.operation.value} completed successfully![/green]")
    elif state.status == SyncStatus.COMPLETED:
        console.print(f"[yellow]⚠ {state.operation.value} completed with errors.[/yellow]")
        exit_code = ExitCode.SYNC_ERROR
    elif state.status == SyncStatus.CANCELLED:
        console.print(f"[yellow]⚠ {state.operation.value} was cancelled.[/yellow]")
        exit_code = ExitCode.SYNC_ERROR
    else:
        console.print(f"[red]✗ {state.operation.value} failed: {state.error_message}[/red]")
        exit_code = ExitCode.SYNC_ERROR

    table = Table(title="Sync Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Run", state.id)
    table.add_row("Items Discovered", str(state.total_items))
    table.add_row("Items Processed", str(state.processed_items))
    table.add_row("Items Indexed", str(state.items_indexed))
    table.add_row("Items Removed", str(state.items_removed))
    table.add_row("Chunks Written", str(state.chunks_created))
    table.add_row("Embeddings Generated", str(state.embeddings_generated))
    table.add_row("Chunks Reused", str(state.chunks_reused))
    table.add_row("Errors", str(len(state.errors)))
    if state.duration_seconds is not None:
        table.add_row("Duration", f"{state.duration_seconds:.2f}s")

    console.print(table)

    if state.errors:
        console.print("\n[red]Errors:[/red]")
        for error in state.errors[:5]:
            target = f"{error.content_type}/{error.content_id}" if error.content_id else error.content_type or "-"
            console.print(f"  • [{target}] {error.error_type}: {error.message}")
        if len(state.errors) > 5:
            console.print(f"  ... and {len(state.errors) - 5} more")

    return exit_code


def _run_sync(description: str, run) -> None:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(description, total=None)
        try:
            state = run()
        except KnowledgeBaseError as e:
            progress.stop()
            fail(e)

    exit_code = _print_state(state)
    if exit_code != ExitCode.SUCCESS:
        raise typer.Exit(exit_code)


# ==================== Sync Commands ====================


@sync_app.command("full")
def sync_full(
    content_types: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Content type (repeatable)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", min=1, help="Items per batch"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-embed everything, bypassing dedup"),
):
    """Rebuild the knowledge base from the content source."""
    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)
        _run_sync(
            "Rebuilding knowledge base...",
            lambda: orchestrator.full_rebuild(content_types=content_types, batch_size=batch_size, force=force),
        )


@sync_app.command("incremental")
def sync_incremental(
    content_type: Optional[str] = typer.Option(None, "--type", "-t", help="Content type (all if omitted)"),
    since: Optional[str] = typer.Option(None, "--since", "-s", help="ISO 8601 lower bound"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", min=1, help="Items per batch"),
):
    """Index content modified since the last checkpoint."""
    since_value = _parse_since(since)
    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)
        _run_sync(
            "Updating knowledge base...",
            lambda: orchestrator.incremental_update(
                content_type=content_type,
                since=since_value,
                batch_size=batch_size,
            ),
        )


@sync_app.command("retry")
def sync_retry(
    run_id: Optional[str] = typer.Option(None, "--run", "-r", help="Run to retry (latest with failures)"),
):
    """Re-index only the items that failed in an earlier run."""
    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)
        _run_sync("Retrying failed items...", lambda: orchestrator.retry_failed(run_id=run_id))


@sync_app.command("maintenance")
def sync_maintenance():
    """Purge old inactive entries, repair fragments and rotate the error log."""
    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)
        _run_sync("Running maintenance...", orchestrator.run_maintenance)
        report = components.storage.get_maintenance_report() or {}
        console.print(
            f"  Purged: {report.get('purged_entries', 0)}  "
            f"Fragmented: {report.get('fragmented_items', 0)}  "
            f"Rotated errors: {report.get('rotated_errors', 0)}"
        )


@sync_app.command("status")
def sync_status(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Show the current sync state, lock lease and index counters."""
    with open_components() as components:
        status = collect_status(components.state_store, components.storage, components.vector_index)

    if as_json:
        console.print_json(json.dumps(status, default=str))
        return

    state = status["state"]
    lock = status["lock"]
    index = status["index"]
    remaining = status["estimated_seconds_remaining"]

    state_lines = "  No sync has run yet"
    if state:
        color = STATUS_COLORS.get(state["status"], "white")
        state_lines = (
            f"  Run: {state['id']}\n"
            f"  Operation: {state['operation']} ({state['trigger']})\n"
            f"  Status: [{color}]{state['status']}[/{color}]\n"
            f"  Progress: {state['processed_items']}/{state['total_items']} ({state['progress_percent']}%)\n"
            f"  Step: {state['current_operation'] or '-'}\n"
            f"  Errors: {len(state['errors'])}"
        )
        if remaining is not None:
            state_lines += f"\n  Estimated remaining: {remaining:.0f}s"

    panel_content = f"""
[bold cyan]Sync[/bold cyan]
{state_lines}

[bold cyan]Lock[/bold cyan]
  Held: {"Yes" if lock["held"] else "No"}
  Owner: {lock["owner"] or "-"}
  Expires: {lock["expires_at"] or "-"}

[bold cyan]Index[/bold cyan]
  Active chunks: {index["active_chunks"]}
  Inactive chunks: {index["inactive_chunks"]}
  Last write: {index["last_updated"] or "-"}
"""
    console.print(Panel(panel_content, title="Knowledge Base Status"))


@sync_app.command("history")
def sync_history(
    limit: int = typer.Option(10, "--limit", "-l", min=1, help="Number of runs to show"),
):
    """Show sync run history."""
    with open_components() as components:
        runs = components.storage.get_sync_history(limit=limit)

    if not runs:
        console.print("[yellow]No sync history.[/yellow]")
        return

    table = Table(title="Sync History")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Operation", style="magenta")
    table.add_column("Status")
    table.add_column("Trigger", style="blue")
    table.add_column("Processed", style="green")
    table.add_column("Errors", style="red")
    table.add_column("Started", style="yellow")
    table.add_column("Duration", style="white")

    for run in runs:
        color = STATUS_COLORS.get(run.status.value, "white")
        started = run.started_at.strftime("%Y-%m-%d %H:%M") if run.started_at else "-"
        duration = f"{run.duration_seconds:.1f}s" if run.duration_seconds is not None else "-"
        table.add_row(
            run.id[:8],
            run.operation.value,
            f"[{color}]{run.status.value}[/{color}]",
            run.trigger.value,
            str(run.processed_items),
            str(len(run.errors)),
            started,
            duration,
        )

    console.print(table)


@sync_app.command("cancel")
def sync_cancel():
    """Ask the running sync to stop after its current batch."""
    with open_components() as components:
        requested = components.state_store.request_cancel()

    if requested:
        console.print("[green]✓ Cancellation requested.[/green]")
    else:
        console.print("[yellow]No sync is running.[/yellow]")


# ==================== Index Commands ====================


@index_app.command("stats")
def index_stats():
    """Show index counters per content type."""
    with open_components() as components:
        stats = components.vector_index.get_stats()

    table = Table(title="Index Statistics")
    table.add_column("Content Type", style="cyan")
    table.add_column("Items", style="green")
    table.add_column("Chunks", style="green")

    for content_type, counts in stats["by_content_type"].items():
        table.add_row(content_type, str(counts["items"]), str(counts["chunks"]))

    console.print(table)
    console.print(
        f"Total: {stats['total_chunks']}  Active: {stats['active_chunks']}  "
        f"Inactive: {stats['inactive_chunks']}"
    )
    for model, chunks in stats["embedding_models"].items():
        console.print(f"  Model {model}: {chunks} chunks")


@index_app.command("clear")
def index_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every index entry and checkpoint."""
    if not yes:
        confirm = typer.confirm("Clear the entire knowledge base? This cannot be undone.")
        if not confirm:
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Exit(ExitCode.SUCCESS)

    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)
        _run_sync("Clearing knowledge base...", lambda: orchestrator.clear_knowledge_base(confirm=True))


# ==================== Query Commands ====================


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Search query"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=0, help="Number of results"),
    min_similarity: Optional[float] = typer.Option(None, "--min-similarity", "-m", help="Score floor"),
    content_types: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Content type filter"),
):
    """Search the knowledge base."""
    with open_components() as components:
        try:
            results = components.retrieval.retrieve(
                query,
                max_chunks=limit,
                min_similarity=min_similarity,
                content_types=content_types,
            )
        except KnowledgeBaseError as e:
            fail(e)

    if not results:
        console.print("[yellow]No results found.[/yellow]")
        return

    console.print(f"\n[bold]Found {len(results)} results for:[/bold] {query}\n")

    for i, result in enumerate(results, 1):
        text = result.text
        if len(text) > 200:
            text = text[:200] + "..."

        panel_content = f"""
[bold]Score:[/bold] {result.similarity_score:.4f}
[bold]Content:[/bold] {result.content_type}/{result.content_id}
[bold]Title:[/bold] {result.title or "Untitled"}
[bold]URL:[/bold] {result.metadata.get("url") or "-"}

{text}
"""
        console.print(Panel(panel_content, title=f"Result {i}"))


@app.command("ask")
def ask(
    query: str = typer.Argument(..., help="Customer question"),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Caller page context"),
):
    """Answer a question from the knowledge base."""
    with open_components() as components:
        try:
            responder = components.require_responder()
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task("Thinking...", total=None)
                response = responder.answer(query, caller_context=context)
        except KnowledgeBaseError as e:
            fail(e)

    kb = response.metadata.get("knowledge_base", {})
    console.print(Panel(response.text, title="Answer"))
    console.print(
        f"Model: {response.model}  Tokens: {response.input_tokens}/{response.output_tokens}  "
        f"Chunks: {kb.get('chunks_used', 0)}  Fallback: {'yes' if kb.get('used_fallback') else 'no'}"
    )
    for source in kb.get("content_sources", []):
        console.print(f"  • {source['content_type']}/{source['content_id']} {source.get('title') or ''}")


# ==================== Health Command ====================


@app.command("health")
def health(
    coverage: bool = typer.Option(True, "--coverage/--no-coverage", help="Compare against live source ids"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """Check knowledge base health."""
    with open_components() as components:
        report = components.health.check(include_coverage=coverage)

    if as_json:
        console.print_json(json.dumps(report.to_dict(), default=str))
    else:
        color = {"healthy": "green", "warning": "yellow", "critical": "red"}.get(report.status.value, "white")
        console.print(f"[{color}]Health: {report.status.value}[/{color}]")
        for alert in report.alerts:
            console.print(f"  • {alert}")
        if report.recommendations:
            console.print("\n[bold]Recommendations:[/bold]")
            for recommendation in report.recommendations:
                console.print(f"  • {recommendation}")

    if report.status.value == "critical":
        raise typer.Exit(ExitCode.SYNC_ERROR)


# ==================== Scheduler Commands ====================


@scheduler_app.command("start")
def scheduler_start(
    foreground: bool = typer.Option(True, "--foreground/--background", help="Block until interrupted"),
):
    """Start the sync scheduler."""
    with open_components() as components:
        try:
            orchestrator = components.require_orchestrator()
        except KnowledgeBaseError as e:
            fail(e)

        config = components.settings.scheduler
        scheduler = SyncScheduler(
            orchestrator,
            full_sync_cron=config.full_sync_cron,
            incremental_sync_cron=config.incremental_sync_cron,
            maintenance_cron=config.maintenance_cron,
            timezone=config.timezone,
            max_workers=config.max_workers,
        )
        try:
            scheduler.start()
        except ValueError as e:
            console.print(f"[red]Invalid cron expression: {e}[/red]")
            raise typer.Exit(ExitCode.CONFIG_ERROR)

        console.print("[green]✓ Scheduler started.[/green]")
        for job in scheduler.get_scheduled_jobs():
            next_run = job["next_run"].strftime("%Y-%m-%d %H:%M") if job["next_run"] else "-"
            console.print(f"  {job['id']}: {job['cron']} (next {next_run})")

        if foreground:
            console.print("[yellow]Running in foreground. Press Ctrl+C to stop.[/yellow]")
            try:
                while scheduler.is_running():
                    time.sleep(1)
            except KeyboardInterrupt:
                console.print("\n[yellow]Stopping scheduler...[/yellow]")
            finally:
                scheduler.stop()


@scheduler_app.command("status")
def scheduler_status():
    """Show the configured schedules and their next fire times."""
    config = get_settings().scheduler

    table = Table(title="Scheduled Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Cron", style="magenta")
    table.add_column("Next Run", style="yellow")

    now = datetime.now(UTC)
    for job_id, cron in (
        ("full_sync", config.full_sync_cron),
        ("incremental_sync", config.incremental_sync_cron),
        ("maintenance", config.maintenance_cron),
    ):
        try:
            next_run = CronTrigger.from_crontab(cron, timezone=config.timezone).get_next_fire_time(None, now)
        except ValueError as e:
            console.print(f"[red]Invalid cron expression for {job_id}: {e}[/red]")
            raise typer.Exit(ExitCode.CONFIG_ERROR)
        table.add_row(job_id, cron, next_run.strftime("%Y-%m-%d %H:%M %Z") if next_run else "-")

    console.print(table)
    console.print(f"Enabled: {'yes' if config.enabled else 'no'}  Timezone: {config.timezone}")


# ==================== Main Entry Point ====================


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output logs as JSON"),
):
    """Knowledge base sync CLI."""
    settings = get_settings()
    log_level = "DEBUG" if verbose else settings.log_level
    configure_logging(level=log_level, json_format=json_logs or settings.log_json, log_file=settings.log_file)


def cli():
    """CLI 진입점.

    처리되지 않은 오류를 종료 코드로 매핑합니다.
    """
    try:
        app()
    except KnowledgeBaseError as e:
        console.print(f"[red]{type(e).__name__}: {e.message}[/red]")
        raise SystemExit(exit_code_for(e))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/yellow]")
        raise SystemExit(ExitCode.SUCCESS)
    except Exception as e:
        console.print(f"[red]Internal error: {e}[/red]")
        raise SystemExit(ExitCode.INTERNAL_ERROR)


if __name__ == "__main__":
    cli()
