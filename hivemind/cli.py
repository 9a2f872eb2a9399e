"""Main CLI entry point for hivemind."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .canonicalize import ErrorReport
from .config import settings
from .errors import HiveMindError
from .services import Services, build_services
from .telemetry import summarize_statistics

console = Console()

T = TypeVar("T")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _run(ctx: click.Context, work: Callable[[Services], Awaitable[T]]) -> T:
    """Run ``work`` against the configured services, translating core errors."""

    async def runner() -> T:
        services = ctx.obj.get("services") or build_services(settings)
        try:
            return await work(services)
        finally:
            await services.aclose()

    try:
        return asyncio.run(runner())
    except click.ClickException:
        raise
    except HiveMindError as exc:
        raise click.ClickException(str(exc)) from exc


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Logging level (defaults to HIVEMIND_LOG_LEVEL)")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """HiveMind: multi-model consensus and time-travel debugging."""
    ctx.ensure_object(dict)
    configure_logging(log_level or settings.log_level)


@main.command(name="init-db")
def init_db() -> None:
    """Create the database tables."""
    asyncio.run(db.init_db())
    console.print("[green]Database schema created[/green]")


@main.command()
@click.argument("message")
@click.option("--stack-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="File holding the stack trace")
@click.option("--stack", "stack_text", default="", help="Stack trace text")
@click.option("--type", "error_type", default=None, help="Explicit error type")
@click.option("--language", default=None, help="Source language")
@click.option("--framework", default=None, help="Framework in use")
@click.option("--environment", default=None, help="Deployment environment (e.g. production)")
@click.option("--file", "file_path", default=None, help="File the error was raised in")
@click.option("--line", "line_number", type=int, default=None, help="Line the error was raised at")
@click.option("--user-id", default=None, help="Reporting user")
@click.option("--json", "as_json", is_flag=True, help="Print the raw diagnosis as JSON")
@click.pass_context
def analyze(
    ctx: click.Context,
    message: str,
    stack_file: Path | None,
    stack_text: str,
    error_type: str | None,
    language: str | None,
    framework: str | None,
    environment: str | None,
    file_path: str | None,
    line_number: int | None,
    user_id: str | None,
    as_json: bool,
) -> None:
    """Diagnose an error and recommend fixes.

    MESSAGE: The error message as reported
    """
    report = ErrorReport(
        error_message=message,
        stack_trace=stack_file.read_text() if stack_file else stack_text,
        error_type=error_type,
        file_path=file_path,
        line_number=line_number,
        language=language,
        framework=framework,
        environment=environment,
    )
    diagnosis = _run(ctx, lambda services: services.debugger.analyze_error(report, user_id=user_id))

    if as_json:
        _print_json(diagnosis.to_dict())
        return

    pattern = diagnosis.error_pattern
    console.print(
        Panel(
            f"[bold]{escape(diagnosis.diagnosis)}[/bold]\n\n"
            f"Category: [cyan]{pattern.category}[/cyan]  Severity: {pattern.severity}\n"
            f"Confidence: {diagnosis.confidence:.2f}\n"
            f"Estimated fix time: {diagnosis.estimated_fix_time}\n"
            f"Pattern: {diagnosis.pattern_id}\n"
            f"Occurrence: {diagnosis.occurrence_id}",
            title=f"Diagnosis: {pattern.signature}",
        )
    )

    if diagnosis.recommended_fixes:
        table = Table(title="Recommended Fixes")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Description")
        table.add_column("Success")
        table.add_column("Confidence")
        table.add_column("One-click")
        for fix in diagnosis.recommended_fixes:
            table.add_row(
                fix.id,
                fix.fix_type,
                fix.description[:60] + "..." if len(fix.description) > 60 else fix.description,
                f"{fix.success_rate:.0%}",
                f"{fix.confidence_score:.2f}",
                "yes" if fix.one_click_applicable else "no",
            )
        console.print(table)
    else:
        console.print("[yellow]No fixes available yet[/yellow]")

    for insight in diagnosis.insights:
        console.print(f"- {insight}")


@main.command(name="report-fix")
@click.argument("fix_id")
@click.argument("occurrence_id")
@click.option("--success/--failure", default=True, help="Whether the fix resolved the error")
@click.option("--time-ms", type=float, default=None, help="Time taken to fix, in milliseconds")
@click.pass_context
def report_fix(ctx: click.Context, fix_id: str, occurrence_id: str, success: bool, time_ms: float | None) -> None:
    """Record the outcome of applying a fix.

    FIX_ID: The applied fix
    OCCURRENCE_ID: The occurrence it was applied to
    """
    fix = _run(
        ctx,
        lambda services: services.debugger.report_fix_result(fix_id, occurrence_id, success, time_ms),
    )
    if fix is None:
        console.print(f"[red]Fix not found: {fix_id}[/red]")
        raise SystemExit(1)
    console.print(
        f"[green]Recorded[/green] fix {fix_id}: "
        f"{fix.success_count}/{fix.applied_count} successful, confidence {fix.confidence_score:.2f}"
    )


@main.command(name="apply-fix")
@click.argument("fix_id")
@click.option("--user-id", default=None, help="Applying user")
@click.option("--test-mode", is_flag=True, help="Only return the change set")
@click.pass_context
def apply_fix(ctx: click.Context, fix_id: str, user_id: str | None, test_mode: bool) -> None:
    """Fetch the change set of a one-click fix.

    FIX_ID: The fix to apply
    """
    result = _run(ctx, lambda services: services.debugger.apply_fix(fix_id, user_id=user_id, test_mode=test_mode))
    if not result.success:
        console.print(f"[red]{result.message}[/red]")
        raise SystemExit(1)

    console.print(f"[green]{result.message}[/green]")
    for change in result.applied_changes:
        console.print(
            Panel(
                f"[red]- {escape(str(change.get('before')))}[/red]\n[green]+ {escape(str(change.get('after')))}[/green]",
                title=f"{change.get('file')}:{change.get('line_number')}",
            )
        )


@main.command()
@click.argument("user_id")
@click.option("--limit", default=20, help="Number of occurrences to show")
@click.option("--offset", default=0, help="Occurrences to skip")
@click.pass_context
def history(ctx: click.Context, user_id: str, limit: int, offset: int) -> None:
    """List a user's analyzed errors, newest first.

    USER_ID: The reporting user
    """
    page = _run(ctx, lambda services: services.debugger.get_history(user_id, limit=limit, offset=offset))
    if not page.entries:
        console.print("[yellow]No errors recorded[/yellow]")
        return

    table = Table(title=f"Error History ({page.total} total)")
    table.add_column("Occurrence", style="cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Resolved")
    table.add_column("When")
    for entry in page.entries:
        table.add_row(
            entry["id"],
            entry["error_type"] or "-",
            entry["category"] or "-",
            "yes" if entry["resolved"] else "no",
            entry["timestamp"] or "-",
        )
    console.print(table)
    if page.has_more:
        console.print(f"[dim]More results: --offset {page.offset + page.limit}[/dim]")


@main.command()
@click.argument("prompt")
@click.option("--language", default="python", help="Target language")
@click.option("--threshold", type=click.FloatRange(0, 1), default=None, help="Agreement needed for consensus (0-1)")
@click.option("--user-id", default=None, help="Requesting user")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
@click.pass_context
def consensus(
    ctx: click.Context,
    prompt: str,
    language: str,
    threshold: float | None,
    user_id: str | None,
    as_json: bool,
) -> None:
    """Generate code with multi-model consensus.

    PROMPT: What to generate
    """

    async def work(services: Services):
        if threshold is not None:
            services.consensus.set_similarity_threshold(threshold)
        context = {"user_id": user_id} if user_id else None
        return await services.consensus.generate_with_consensus(prompt, language, context)

    result = _run(ctx, work)

    if as_json:
        _print_json(result.to_dict())
        return

    table = Table(title="Model Responses")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    table.add_column("Confidence")
    table.add_column("Latency")
    table.add_column("Tokens")
    for response in result.model_responses:
        table.add_row(
            response.provider,
            response.model,
            f"{response.confidence:.2f}",
            f"{response.latency_ms} ms",
            str(response.tokens_used),
        )
    console.print(table)
    for provider, reason in result.failures.items():
        console.print(f"[yellow]{provider} failed: {reason}[/yellow]")

    console.print(
        Panel(
            escape(result.final_response),
            title=f"{result.decision.value} (agreement {result.agreement:.2f}, confidence {result.confidence:.2f})",
            subtitle=result.explanation,
        )
    )


@main.command()
@click.option("--language", default=None, help="Only requests for this language")
@click.option("--user-id", default=None, help="Only requests by this user")
def stats(language: str | None, user_id: str | None) -> None:
    """Show consensus statistics."""

    async def load() -> list[dict[str, Any]]:
        async with db.get_session() as session:
            return await db.get_consensus_statistics(session, language=language, user_id=user_id)

    try:
        summary = summarize_statistics(asyncio.run(load()))
    except click.ClickException:
        raise
    except HiveMindError as exc:
        raise click.ClickException(str(exc)) from exc

    if summary["total_requests"] == 0:
        console.print("[yellow]No consensus requests recorded[/yellow]")
        return

    table = Table(title=f"Consensus Statistics ({summary['total_requests']} requests)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Consensus rate", f"{summary['consensus_rate']:.1%}")
    table.add_row("Voting rate", f"{summary['voting_rate']:.1%}")
    table.add_row("Fallback rate", f"{summary['fallback_rate']:.1%}")
    table.add_row("Avg agreement", f"{summary['avg_agreement']:.2f}")
    table.add_row("Avg confidence", f"{summary['avg_confidence']:.2f}")
    table.add_row("Avg latency", f"{summary['avg_latency']:.0f} ms")
    table.add_row("Avg tokens", f"{summary['avg_tokens']:.0f}")
    console.print(table)


if __name__ == "__main__":
    main()
