"""
CLI command for previewing what an apply would change.
"""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional

from stackpilot.cli.ux import console, header, print_table, warning
from stackpilot.core.errors import main_with_error_handling
from stackpilot.orchestration import Plan, PlanAction
from stackpilot.orchestrator import DeploymentOrchestrator

ACTION_STYLES = {
    PlanAction.CREATE: "[green]+ create[/green]",
    PlanAction.UPDATE: "[yellow]~ update[/yellow]",
    PlanAction.NOOP: "[dim]  no-op[/dim]",
}


def print_plan_summary(plan: Plan, manifest_name: str) -> None:
    header(f"Plan: {manifest_name}")
    rows = [
        [
            ACTION_STYLES[step.action],
            step.name,
            str(step.kind),
            ", ".join(step.depends_on) or "-",
        ]
        for step in plan.steps
    ]
    print_table(None, ["Action", "Resource", "Kind", "Depends on"], rows)

    counts = plan.counts()
    console.print(
        f"[bold]{counts['create']} to create, {counts['update']} to update, "
        f"{counts['no-op']} unchanged[/bold]"
    )
    if plan.orphaned:
        warning(
            "Recorded but no longer declared (left in place): " + ", ".join(plan.orphaned)
        )
    console.print()


def print_plan_json(plan: Plan, manifest_name: str) -> None:
    output = {"manifest": manifest_name, **plan.to_dict()}
    print(json.dumps(output, indent=2))


@main_with_error_handling()
def plan_command(
    manifest: str,
    env: Optional[str] = None,
    output_format: str = "text",
    reapply: Optional[List[str]] = None,
) -> int:
    """
    Show the plan for a manifest without calling any provider.

    Returns:
        Exit code (0 for success)
    """
    orchestrator = DeploymentOrchestrator(manifest, env=env)
    plan = asyncio.run(orchestrator.plan(reapply=reapply or ()))

    if output_format == "json":
        print_plan_json(plan, orchestrator.manifest.name)
    else:
        print_plan_summary(plan, orchestrator.manifest.name)
    return 0
