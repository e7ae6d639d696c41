"""
CLI command for applying a manifest.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import List, Optional

import structlog

from stackpilot.cli.ux import console
from stackpilot.config import get_settings
from stackpilot.core.errors import BlockedError, ExitCode, main_with_error_handling
from stackpilot.orchestration import ApplyReport, StepStatus
from stackpilot.orchestrator import DeploymentOrchestrator

logger = structlog.get_logger()

STATUS_STYLES = {
    StepStatus.SUCCESS: "[green]✓[/green]",
    StepStatus.SKIPPED: "[dim]-[/dim]",
    StepStatus.FAILED: "[red]✗[/red]",
    StepStatus.CANCELLED: "[yellow]⊘[/yellow]",
}


def print_apply_summary(report: ApplyReport) -> None:
    """Print one line per step followed by a totals line."""
    console.print()
    for result in report.results:
        detail = result.provider_id or ""
        if result.reason:
            detail = f"[dim]{result.reason}[/dim]"
        console.print(
            f"  {STATUS_STYLES[result.status]} {result.name:<24} "
            f"{result.status.value:<10} {detail}"
        )

    console.print()
    counts = report.counts()
    totals = ", ".join(f"{count} {status}" for status, count in counts.items() if count)
    duration = f" in {report.duration_seconds:.1f}s"
    if report.success:
        console.print(f"[bold green]Apply complete{duration}[/bold green] ({totals})")
    elif report.aborted:
        console.print(f"[bold yellow]Apply aborted{duration}[/bold yellow] ({totals})")
    else:
        console.print(f"[bold red]Apply finished with failures{duration}[/bold red] ({totals})")
    console.print()


def print_apply_json(report: ApplyReport) -> None:
    print(json.dumps(report.to_dict(), indent=2))


async def _apply_with_interrupt(orchestrator: DeploymentOrchestrator, reapply: List[str]) -> ApplyReport:
    """Run apply; the first SIGINT stops scheduling new steps."""
    abort = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _request_abort() -> None:
        logger.warning("abort_requested")
        abort.set()

    try:
        loop.add_signal_handler(signal.SIGINT, _request_abort)
    except (NotImplementedError, RuntimeError):
        pass  # no signal support on this loop; Ctrl-C raises KeyboardInterrupt instead
    try:
        return await orchestrator.apply(reapply=reapply, abort=abort)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@main_with_error_handling()
def apply_command(
    manifest: str,
    env: Optional[str] = None,
    output_format: str = "text",
    reapply: Optional[List[str]] = None,
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> int:
    """
    Apply a manifest.

    Args:
        manifest: Path to the manifest YAML file
        env: Environment overlay to use
        output_format: Output format (text, json)
        reapply: Resource names to update even when unchanged
        max_workers: Upper bound on concurrently running steps
        timeout: Overall run timeout in seconds

    Returns:
        Exit code (0 success, 11 failed steps, 2 aborted)
    """
    overrides = {}
    if max_workers is not None:
        overrides["max_workers"] = max_workers
    if timeout is not None:
        overrides["run_timeout"] = timeout
    settings = get_settings().model_copy(update=overrides)

    orchestrator = DeploymentOrchestrator(manifest, env=env, settings=settings)
    report = asyncio.run(_apply_with_interrupt(orchestrator, reapply or []))

    if output_format == "json":
        print_apply_json(report)
    else:
        print_apply_summary(report)

    if report.aborted:
        raise BlockedError(f"Apply aborted: {report.aborted}")
    if not report.success:
        return ExitCode.PROVIDER_ERROR
    return ExitCode.SUCCESS
