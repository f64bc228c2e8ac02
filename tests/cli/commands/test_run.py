import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bye_bye_flag.cli.commands.run import run
from bye_bye_flag.exceptions import PrerequisiteError
from bye_bye_flag.models.summary import FlagResult, FlagStatus, RunSummary


def _summary(flags):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return RunSummary.build(
        start_time=now,
        end_time=now,
        concurrency=2,
        max_prs=5,
        dry_run=True,
        fetcher_type="manual",
        total_fetched=len(flags),
        flags=flags,
        log_dir="/logs/run",
        remaining=0,
    )


@pytest.fixture
def flags_file(tmp_path):
    path = tmp_path / "flags.json"
    path.write_text(json.dumps([
        {"key": "new-checkout", "keepBranch": "enabled", "createdBy": "alice"},
        {"key": "old-banner", "keepBranch": "disabled"},
    ]))
    return path


@pytest.fixture
def orchestrator_class():
    """Patch the orchestrator, agent runtime and signal handling for the run command."""
    with patch('bye_bye_flag.cli.commands.run.Orchestrator') as mock_class, \
            patch('bye_bye_flag.cli.commands.run.resolve_agent_runtime') as mock_runtime, \
            patch('bye_bye_flag.cli.commands.run.default_tracker'):
        mock_runtime.return_value = MagicMock(kind="claude")
        mock_class.return_value.run = AsyncMock(return_value=_summary([
            FlagResult("new-checkout", FlagStatus.COMPLETE, pr_urls=["https://github.com/acme/svc-a/pull/1"]),
        ]))
        yield mock_class


class TestRunCommand:
    """Smoke tests for run command."""

    def test_run_with_input(self, cli_runner, repos_dir, flags_file, orchestrator_class):
        """Test a dry run driven by an input file."""
        result = cli_runner.invoke(run, [
            '--target-repos', str(repos_dir), '--input', str(flags_file), '--dry-run',
        ])

        assert result.exit_code == 0, result.output
        assert orchestrator_class.call_args.kwargs["dry_run"] is True
        settings = orchestrator_class.call_args.args[1]
        assert settings.concurrency == 2
        assert settings.max_prs == 5

        flags = orchestrator_class.return_value.run.await_args.args[0]
        assert [f.key for f in flags] == ["new-checkout", "old-banner"]
        assert orchestrator_class.return_value.run.await_args.kwargs["fetcher_type"] == "manual"
        assert "bye-bye-flag Run Complete" in result.output
        assert "new-checkout: https://github.com/acme/svc-a/pull/1" in result.output

    def test_failed_flag_exits_non_zero(self, cli_runner, repos_dir, flags_file, orchestrator_class):
        """Test that any failed flag makes the command exit 1."""
        orchestrator_class.return_value.run.return_value = _summary([
            FlagResult("new-checkout", FlagStatus.FAILED, error="Agent timed out"),
        ])

        result = cli_runner.invoke(run, ['--target-repos', str(repos_dir), '--input', str(flags_file)])

        assert result.exit_code == 1
        assert "new-checkout: Agent timed out" in result.output

    def test_manual_fetcher_requires_input(self, cli_runner, repos_dir, orchestrator_class):
        """Test that the manual fetcher without --input is an error."""
        result = cli_runner.invoke(run, ['--target-repos', str(repos_dir)])

        assert result.exit_code == 1
        assert "Manual fetcher requires --input flag" in result.output
        orchestrator_class.assert_not_called()

    def test_missing_config(self, cli_runner, tmp_path, flags_file):
        """Test that a missing config file exits with an error."""
        result = cli_runner.invoke(run, ['--target-repos', str(tmp_path / "nowhere"), '--input', str(flags_file)])

        assert result.exit_code == 1
        assert "Missing required config file" in result.output

    def test_run_abort(self, cli_runner, repos_dir, flags_file, orchestrator_class):
        """Test that a run-level error is reported and exits 1."""
        orchestrator_class.return_value.run.side_effect = PrerequisiteError("Prerequisites not met")

        result = cli_runner.invoke(run, ['--target-repos', str(repos_dir), '--input', str(flags_file)])

        assert result.exit_code == 1
        assert "Error: Prerequisites not met" in result.output

    def test_invalid_input_file(self, cli_runner, repos_dir, tmp_path, orchestrator_class):
        """Test that a malformed flag list is rejected before any work."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([{"key": "x", "keepBranch": "sometimes"}]))

        result = cli_runner.invoke(run, ['--target-repos', str(repos_dir), '--input', str(path)])

        assert result.exit_code == 1
        assert "Invalid flag list" in result.output
        orchestrator_class.assert_not_called()
