"""Tests for the command-line interface."""

import argparse
from unittest.mock import AsyncMock, patch

import pytest

from leadflow.config import ConfigError
from leadflow.main import create_parser, main, parse_date
from leadflow.models import TaskStatus
from leadflow.orchestrator import TaskResult


def make_result(status: TaskStatus) -> TaskResult:
    return TaskResult(
        task_id="task-1",
        task_type="full_enrichment",
        status=status,
        total=2,
        succeeded=1 if status == TaskStatus.COMPLETED else 0,
        failed=1 if status == TaskStatus.COMPLETED else 2,
    )


class TestParser:
    """Tests for argument parsing."""

    def test_enrich_arguments(self):
        """Test the enrich subcommand with several leads."""
        args = create_parser().parse_args(
            ["enrich", "--user-id", "user-1", "--type", "email_generation", "lead-1", "lead-2"]
        )

        assert args.command == "enrich"
        assert args.task_type == "email_generation"
        assert args.lead_ids == ["lead-1", "lead-2"]
        assert args.business_profile_id is None

    def test_enrich_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["enrich", "--user-id", "u", "--type", "sms", "lead-1"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_parse_date(self):
        assert parse_date("2026-10-01").day == 1
        with pytest.raises(argparse.ArgumentTypeError):
            parse_date("yesterday")


class TestMain:
    """Tests for main() exit codes."""

    def test_missing_database_url(self):
        """Test that a missing DATABASE_URL exits with 1."""
        with patch("leadflow.main.setup_logging"), patch("leadflow.main.config") as mock_config:
            mock_config.validate_for_database.side_effect = ConfigError("DATABASE_URL is required")

            assert main(["run-task", "--task-id", "task-1"]) == 1

    @pytest.mark.parametrize(
        "status,code",
        [(TaskStatus.COMPLETED, 0), (TaskStatus.FAILED, 1)],
    )
    def test_run_task_exit_code(self, status, code):
        """Test that the exit code follows the task's final status."""
        with patch("leadflow.main.setup_logging"), \
                patch("leadflow.main.config"), \
                patch("leadflow.main.run_task", new=AsyncMock(return_value=make_result(status))), \
                patch("leadflow.main.close_database", new=AsyncMock()):
            assert main(["run-task", "--task-id", "task-1"]) == code

    def test_skipped_task(self):
        """Test that an unclaimed task exits with 1."""
        with patch("leadflow.main.setup_logging"), \
                patch("leadflow.main.config"), \
                patch("leadflow.main.run_task", new=AsyncMock(return_value=None)), \
                patch("leadflow.main.close_database", new=AsyncMock()):
            assert main(["run-task", "--task-id", "task-1"]) == 1

    def test_unexpected_error(self):
        with patch("leadflow.main.setup_logging"), \
                patch("leadflow.main.config"), \
                patch("leadflow.main.run_enrich", new=AsyncMock(side_effect=RuntimeError("db down"))), \
                patch("leadflow.main.close_database", new=AsyncMock()):
            assert main(["enrich", "--user-id", "user-1", "lead-1"]) == 1

    def test_serve_starts_uvicorn(self):
        """Test that serve hands the app path to uvicorn."""
        with patch("leadflow.main.setup_logging"), patch("uvicorn.run") as run:
            assert main(["serve", "--port", "9000"]) == 0

        assert run.call_args.args[0] == "leadflow.api:app"
        assert run.call_args.kwargs["port"] == 9000
