"""
CLI commands for inspecting and editing recorded state.
"""

from __future__ import annotations

import asyncio
import json

from stackpilot.cli.ux import print_key_value, print_table, success, warning
from stackpilot.config import get_settings
from stackpilot.core.errors import ExitCode, ValidationError, main_with_error_handling
from stackpilot.state import ResourceRecord, StateStore, open_state_store


async def _with_store(action):
    store: StateStore = await open_state_store(get_settings())
    try:
        return await action(store)
    finally:
        await store.close()


@main_with_error_handling()
def state_list_command(output_format: str = "text") -> int:
    records: list[ResourceRecord] = asyncio.run(_with_store(lambda s: s.list_records()))
    records.sort(key=lambda r: r.name)

    if output_format == "json":
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return ExitCode.SUCCESS

    if not records:
        warning("No resources recorded")
        return ExitCode.SUCCESS
    rows = [
        [r.name, str(r.kind), r.provider_id, r.fingerprint[:12], r.applied_at.isoformat()]
        for r in records
    ]
    print_table("Recorded resources", ["Name", "Kind", "Provider ID", "Fingerprint", "Applied"], rows)
    return ExitCode.SUCCESS


@main_with_error_handling()
def state_show_command(name: str, output_format: str = "text") -> int:
    record = asyncio.run(_with_store(lambda s: s.get(name)))
    if record is None:
        raise ValidationError(f"No recorded resource named '{name}'", {"resource": name})

    if output_format == "json":
        print(json.dumps(record.to_dict(), indent=2))
    else:
        print_key_value({k: str(v) for k, v in record.to_dict().items()}, title=name)
    return ExitCode.SUCCESS


@main_with_error_handling()
def state_forget_command(name: str) -> int:
    """Drop a record without touching the provider."""
    removed = asyncio.run(_with_store(lambda s: s.delete(name)))
    if not removed:
        raise ValidationError(f"No recorded resource named '{name}'", {"resource": name})
    success(f"Forgot {name}; the provider resource was left in place")
    return ExitCode.SUCCESS
