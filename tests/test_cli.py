"""Tests for the stackpilot CLI commands."""

import asyncio
import json
import textwrap
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from stackpilot.cli.apply import apply_command
from stackpilot.cli.main import build_parser, main
from stackpilot.cli.migrate import migrate_command
from stackpilot.cli.plan import plan_command
from stackpilot.cli.state import state_forget_command, state_list_command, state_show_command
from stackpilot.config import get_settings
from stackpilot.core.errors import ExitCode
from stackpilot.orchestration import ApplyReport, PlanAction, StepResult, StepStatus
from stackpilot.state import JsonStateStore, ResourceRecord

MANIFEST = textwrap.dedent(
    """
    name: webapp
    resources:
      - kind: network
        name: network
        config:
          cidr_block: 10.0.0.0/16
      - kind: storage_bucket
        name: assets
        config:
          bucket: webapp-assets
    """
)


@pytest.fixture
def state_path(tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    monkeypatch.setenv("STACKPILOT_STATE_PATH", str(path))
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / "stack.yaml"
    path.write_text(MANIFEST)
    return str(path)


def seed(path, name="network"):
    asyncio.run(
        JsonStateStore(path).put(
            ResourceRecord(
                name=name,
                kind="network",
                provider_id="vpc-1",
                fingerprint="stale",
                applied_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )
    )


def report_with(*statuses, aborted=None):
    results = [
        StepResult(name=f"r{i}", kind="network", action=PlanAction.CREATE, status=status)
        for i, status in enumerate(statuses)
    ]
    return ApplyReport(results=results, aborted=aborted, duration_seconds=1.5)


class TestPlanCommand:
    """Tests for plan_command."""

    def test_json_output(self, manifest, state_path, capsys):
        """Test JSON plan lists every step with its action."""
        seed(state_path)

        exit_code = plan_command(manifest, output_format="json")

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["manifest"] == "webapp"
        assert [(s["name"], s["action"]) for s in data["steps"]] == [
            ("network", "update"),
            ("assets", "create"),
        ]

    def test_text_output(self, manifest, state_path):
        """Test text plan renders without error."""
        assert plan_command(manifest) == 0

    def test_missing_manifest_exit_code(self, state_path, tmp_path):
        """Test a missing manifest maps to the configuration exit code."""
        assert plan_command(str(tmp_path / "missing.yaml")) == ExitCode.CONFIG_ERROR

    def test_invalid_manifest_exit_code(self, state_path, tmp_path):
        """Test an invalid manifest maps to the validation exit code."""
        path = tmp_path / "bad.yaml"
        path.write_text("name: x\nresources:\n  - {kind: teleporter, name: t}\n")

        assert plan_command(str(path)) == ExitCode.VALIDATION_ERROR


class TestApplyCommand:
    """Tests for apply_command exit codes."""

    @pytest.mark.parametrize(
        "report, expected",
        [
            (report_with(StepStatus.SUCCESS, StepStatus.SKIPPED), ExitCode.SUCCESS),
            (report_with(StepStatus.SUCCESS, StepStatus.FAILED), ExitCode.PROVIDER_ERROR),
            (report_with(StepStatus.SUCCESS, StepStatus.CANCELLED, aborted="aborted by request"), ExitCode.BLOCKED),
        ],
    )
    def test_exit_codes(self, manifest, state_path, report, expected):
        """Test the report outcome decides the exit code."""
        with patch("stackpilot.cli.apply.DeploymentOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.apply = AsyncMock(return_value=report)

            assert apply_command(manifest) == expected

    def test_overrides_reach_settings(self, manifest, state_path, capsys):
        """Test --max-workers and --timeout override settings."""
        with patch("stackpilot.cli.apply.DeploymentOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.apply = AsyncMock(return_value=report_with(StepStatus.SUCCESS))

            apply_command(manifest, output_format="json", max_workers=4, timeout=60, reapply=["network"])

        settings = orchestrator_class.call_args.kwargs["settings"]
        assert settings.max_workers == 4
        assert settings.run_timeout == 60
        assert orchestrator_class.return_value.apply.await_args.kwargs["reapply"] == ["network"]
        assert json.loads(capsys.readouterr().out)["success"] is True


class TestMigrateCommand:
    """Tests for migrate_command."""

    def test_applies_and_reports(self, tmp_path, state_path, capsys):
        """Test migrations are applied to the database and recorded in state."""
        sql = tmp_path / "sql"
        sql.mkdir()
        (sql / "V1__init.sql").write_text("CREATE TABLE users (id INTEGER PRIMARY KEY);")
        url = f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"

        assert migrate_command(str(sql), url, output_format="json") == 0
        assert json.loads(capsys.readouterr().out)["applied"] == ["1"]

        assert migrate_command(str(sql), url, show_info=True, output_format="json") == 0
        assert json.loads(capsys.readouterr().out)[0]["state"] == "applied"

    def test_edited_migration_conflicts(self, tmp_path, state_path):
        """Test a changed applied migration exits with the conflict code."""
        sql = tmp_path / "sql"
        sql.mkdir()
        (sql / "V1__init.sql").write_text("CREATE TABLE users (id INTEGER PRIMARY KEY);")
        url = f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"
        migrate_command(str(sql), url)
        (sql / "V1__init.sql").write_text("CREATE TABLE users (id TEXT);")

        assert migrate_command(str(sql), url) == ExitCode.CONFLICT_ERROR


class TestStateCommands:
    """Tests for the state subcommands."""

    def test_list_json(self, state_path, capsys):
        """Test recorded resources are listed."""
        seed(state_path)

        assert state_list_command(output_format="json") == 0
        assert [r["name"] for r in json.loads(capsys.readouterr().out)] == ["network"]

    def test_show_unknown(self, state_path):
        """Test showing an unknown record is a validation error."""
        assert state_show_command("ghost") == ExitCode.VALIDATION_ERROR

    def test_forget(self, state_path):
        """Test forget removes only the record."""
        seed(state_path)

        assert state_forget_command("network") == 0
        assert state_forget_command("network") == ExitCode.VALIDATION_ERROR


class TestMain:
    """Tests for argument parsing and dispatch."""

    def test_parser_apply_options(self):
        """Test apply options are parsed."""
        args = build_parser().parse_args(
            ["apply", "stack.yaml", "--env", "prod", "--reapply", "a", "b", "--max-workers", "3", "--timeout", "120"]
        )

        assert args.command == "apply"
        assert args.reapply == ["a", "b"]
        assert args.max_workers == 3
        assert args.timeout == 120.0

    def test_main_dispatches_plan(self):
        """Test main exits with the command's exit code."""
        with patch("stackpilot.cli.main.configure_from_settings"), patch(
            "stackpilot.cli.plan.plan_command", MagicMock(return_value=0)
        ) as plan:
            with pytest.raises(SystemExit) as exc_info:
                main(["plan", "stack.yaml", "--output", "json"])

        assert exc_info.value.code == 0
        plan.assert_called_once_with("stack.yaml", env=None, output_format="json", reapply=None)

    def test_main_without_command_prints_help(self, capsys):
        """Test no subcommand prints help and exits non-zero."""
        with patch("stackpilot.cli.main.configure_from_settings"):
            with pytest.raises(SystemExit) as exc_info:
                main([])

        assert exc_info.value.code == 1
        assert "usage" in capsys.readouterr().out
