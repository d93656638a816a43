"""Tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from premortem.apikey import ApiKeyValidationError
from premortem.cli import main
from premortem.config import Config
from tests.conftest import make_metrics


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A valid JSON config with a temporary archive dir."""
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "webhookUrl": "https://hooks.test/webhook",
                "anthropicApiKey": "sk-ant-test",
                "thresholds": {"memoryPercent": 90, "cpuPercent": 80},
                "archiveDir": str(tmp_path / "archive"),
            }
        )
    )
    return path


class TestMainCommand:
    """Tests for running the daemon from the command line."""

    @pytest.mark.parametrize("flag", ["--help", "-h"])
    def test_help(self, runner: CliRunner, flag: str) -> None:
        result = runner.invoke(main, [flag])

        assert result.exit_code == 0
        assert "--config" in result.output
        assert "--version" in result.output

    @pytest.mark.parametrize("flag", ["--version", "-v"])
    def test_version(self, runner: CliRunner, flag: str) -> None:
        result = runner.invoke(main, [flag])

        assert result.exit_code == 0
        assert "premortem" in result.output
        assert "1.0.0" in result.output

    def test_missing_config_exits_nonzero(self, runner: CliRunner) -> None:
        """Running without --config prints usage and exits 1."""
        with patch("premortem.daemon.run_daemon", new_callable=AsyncMock) as mock_run:
            result = runner.invoke(main, [])

        assert result.exit_code == 1
        assert "--config argument is required" in result.output
        assert "Usage:" in result.output
        mock_run.assert_not_awaited()

    def test_runs_daemon_with_loaded_config(self, runner: CliRunner, config_file: Path) -> None:
        with patch("premortem.daemon.run_daemon", new_callable=AsyncMock) as mock_run:
            result = runner.invoke(main, ["--config", str(config_file)])

        assert result.exit_code == 0
        mock_run.assert_awaited_once()
        config = mock_run.await_args.args[0]
        assert isinstance(config, Config)
        assert config.webhook_url == "https://hooks.test/webhook"
        assert config.thresholds.memory_percent == 90
        assert config.thresholds.disk_percent is None

    def test_invalid_config_exits_nonzero(self, runner: CliRunner, tmp_path: Path) -> None:
        """A config without a webhook URL is a startup failure."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"anthropicApiKey": "k", "thresholds": {}}))

        with patch("premortem.daemon.run_daemon", new_callable=AsyncMock) as mock_run:
            result = runner.invoke(main, ["--config", str(path)])

        assert result.exit_code == 1
        assert "Failed to start daemon" in result.output
        mock_run.assert_not_awaited()

    def test_missing_config_file_exits_nonzero(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(main, ["--config", str(tmp_path / "absent.json")])
        assert result.exit_code == 1

    def test_daemon_failure_exits_nonzero(self, runner: CliRunner, config_file: Path) -> None:
        """Errors raised while the daemon starts are reported and exit 1."""
        with patch(
            "premortem.daemon.run_daemon",
            new_callable=AsyncMock,
            side_effect=RuntimeError("heartbeat down"),
        ):
            result = runner.invoke(main, ["--config", str(config_file)])

        assert result.exit_code == 1
        assert "heartbeat down" in result.output

    def test_validate_key_success(self, runner: CliRunner, config_file: Path) -> None:
        with (
            patch("premortem.apikey.validate_api_key", new_callable=AsyncMock) as mock_validate,
            patch("premortem.daemon.run_daemon", new_callable=AsyncMock) as mock_run,
        ):
            result = runner.invoke(main, ["--config", str(config_file), "--validate-key"])

        assert result.exit_code == 0
        mock_validate.assert_awaited_once_with("sk-ant-test")
        mock_run.assert_awaited_once()

    def test_validate_key_failure_blocks_start(self, runner: CliRunner, config_file: Path) -> None:
        """An invalid API key stops the daemon from starting."""
        with (
            patch(
                "premortem.apikey.validate_api_key",
                new_callable=AsyncMock,
                side_effect=ApiKeyValidationError("Invalid Anthropic API key."),
            ),
            patch("premortem.daemon.run_daemon", new_callable=AsyncMock) as mock_run,
        ):
            result = runner.invoke(main, ["--config", str(config_file), "--validate-key"])

        assert result.exit_code == 1
        assert "Invalid Anthropic API key" in result.output
        mock_run.assert_not_awaited()

    def test_key_not_validated_by_default(self, runner: CliRunner, config_file: Path) -> None:
        with (
            patch("premortem.apikey.validate_api_key", new_callable=AsyncMock) as mock_validate,
            patch("premortem.daemon.run_daemon", new_callable=AsyncMock),
        ):
            runner.invoke(main, ["--config", str(config_file)])

        mock_validate.assert_not_awaited()


class TestInitCommand:
    """Tests for the init command."""

    def test_init_writes_loadable_config(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-from-env")
        path = tmp_path / "premortem.toml"

        result = runner.invoke(main, ["init", str(path), "--webhook-url", "https://hooks.test/x"])

        assert result.exit_code == 0
        assert "Created config" in result.output

        config = Config.load(path, validate_archive=False)
        assert config.webhook_url == "https://hooks.test/x"
        assert config.anthropic_api_key == "sk-ant-from-env"
        assert config.thresholds.memory_percent == 90
        assert config.thresholds.disk_percent == 90
        assert config.thresholds.cpu_percent == 90

    def test_init_refuses_to_overwrite(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "premortem.toml"
        path.write_text("# mine\n")

        result = runner.invoke(main, ["init", str(path)])

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert path.read_text() == "# mine\n"

    def test_init_force_overwrites(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "premortem.toml"
        path.write_text("# mine\n")

        result = runner.invoke(main, ["init", str(path), "--force"])

        assert result.exit_code == 0
        assert "webhookUrl" in path.read_text()


class TestCheckCommand:
    """Tests for the check command."""

    def test_check_reports_breach(self, runner: CliRunner, config_file: Path) -> None:
        with patch(
            "premortem.collector.collect_system_metrics",
            return_value=make_metrics(memory=95, disk=60, cpu=40, processes=123),
        ):
            result = runner.invoke(main, ["check", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Memory:    95%" in result.output
        assert "Processes: 123" in result.output
        assert "Breach: memory at 95% (threshold: 90%)" in result.output

    def test_check_no_breach(self, runner: CliRunner, config_file: Path) -> None:
        with patch(
            "premortem.collector.collect_system_metrics",
            return_value=make_metrics(memory=50, cpu=40),
        ):
            result = runner.invoke(main, ["check", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "No thresholds breached." in result.output

    def test_check_does_not_create_archive_dir(
        self, runner: CliRunner, config_file: Path, tmp_path: Path
    ) -> None:
        with patch("premortem.collector.collect_system_metrics", return_value=make_metrics()):
            runner.invoke(main, ["check", "--config", str(config_file)])

        assert not (tmp_path / "archive").exists()

    def test_check_bad_config(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[]")

        result = runner.invoke(main, ["check", "--config", str(path)])

        assert result.exit_code == 1
        assert "JSON object" in result.output
