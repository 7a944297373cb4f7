"""
Tests for the CLI interface.
"""
import asyncio
import os
import tempfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from box_configurator.cli.main import app, EXIT_CODE_OK, EXIT_CODE_FAIL
from box_configurator.config.loader import NetSuiteConfig, Settings
from box_configurator.core.retry import RetryPolicy
from box_configurator.errors import ConfigError, RemoteError
from box_configurator.netsuite.gateway import MockNetSuiteGateway
from box_configurator.services.configuration import ConfigurationService
from box_configurator.storage.repository import ConfigurationRepository, initialize_schema

runner = CliRunner()


@pytest.fixture
def db_path():
    """Temporary database path."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "cli.db")


@pytest.fixture
def mock_settings(db_path):
    """Patch settings loading to a mock-mode configuration."""
    settings = Settings(
        netsuite=NetSuiteConfig(mock=True, credentials=None),
        retry=RetryPolicy(),
        db_path=db_path,
    )
    with patch('box_configurator.cli.main.load_settings', return_value=settings) as mock_load, \
            patch('box_configurator.cli.main.configure_logging'):
        yield mock_load


@pytest.fixture
def configuration(db_path, mock_settings):
    """A configuration with one priced line."""
    initialize_schema(db_path)
    service = ConfigurationService(ConfigurationRepository(db_path), MockNetSuiteGateway())
    config = asyncio.run(service.create_configuration("123"))
    service.add_line_item(config.id, "1001", "0-102023", 10, 57.63, tariff_percent=5)
    return config


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_banner(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_OK
        assert "Box Sale Configurator" in result.output

    def test_init_creates_database(self, db_path, mock_settings):
        result = runner.invoke(app, ["init"])

        assert result.exit_code == EXIT_CODE_OK
        assert "Database initialized" in result.output
        assert os.path.exists(db_path)

    def test_settings_option_passed_through(self, mock_settings):
        runner.invoke(app, ["init", "--settings", "custom.yaml"])
        mock_settings.assert_called_once_with("custom.yaml")

    def test_init_reports_config_error(self):
        with patch('box_configurator.cli.main.load_settings',
                   side_effect=ConfigError("Missing NetSuite credentials: NETSUITE_TOKEN_ID")):
            result = runner.invoke(app, ["init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "NETSUITE_TOKEN_ID" in result.output

    def test_summary_missing_settings_file(self, tmp_path):
        with patch('box_configurator.cli.main.configure_logging'):
            result = runner.invoke(app, ["summary", "cfg-1", "--settings", str(tmp_path / "missing.yaml")])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Settings file not found" in result.output

    def test_status_invalid_settings_yaml(self, tmp_path):
        settings_file = tmp_path / "settings.yaml"
        settings_file.write_text("netsuite: mock: true\n", encoding="utf-8")

        with patch('box_configurator.cli.main.configure_logging'):
            result = runner.invoke(app, ["status", "sub-1", "--settings", str(settings_file)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid YAML" in result.output

    def test_summary(self, configuration):
        result = runner.invoke(app, ["summary", configuration.id])

        assert result.exit_code == EXIT_CODE_OK
        assert "$576.30" in result.output
        assert "$823.30" in result.output
        assert "$28.82" in result.output
        assert "30.00%" in result.output

    def test_summary_unknown_configuration(self, db_path, mock_settings):
        initialize_schema(db_path)
        result = runner.invoke(app, ["summary", "missing"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration not found" in result.output

    def test_submit_and_status(self, configuration):
        """Submit through the mock gateway, then look the submission up."""
        result = runner.invoke(app, ["submit", configuration.id])

        assert result.exit_code == EXIT_CODE_OK
        assert "SUCCESS" in result.output
        assert f"{configuration.id}_v2" in result.output

        submission_id = result.output.split("Submission ")[1].split()[0]
        status = runner.invoke(app, ["status", submission_id])
        assert status.exit_code == EXIT_CODE_OK
        assert "SUCCESS" in status.output

    def test_submit_failure_exits_nonzero(self, configuration):
        with patch.object(MockNetSuiteGateway, 'write_estimate_lines',
                          side_effect=RemoteError(400, "Invalid item")):
            result = runner.invoke(app, ["submit", configuration.id])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "400" in result.output

    def test_status_of_failed_submission_exits_nonzero(self, configuration, mock_settings):
        with patch.object(MockNetSuiteGateway, 'write_estimate_lines',
                          side_effect=RemoteError(500, "Internal")):
            runner.invoke(app, ["submit", configuration.id])

        from box_configurator.storage.repository import SubmissionRepository
        submission = SubmissionRepository(mock_settings.return_value.db_path).get_by_key(
            f"{configuration.id}_v2"
        )
        result = runner.invoke(app, ["status", submission.id])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "FAILED" in result.output

    def test_status_unknown_submission(self, db_path, mock_settings):
        initialize_schema(db_path)
        result = runner.invoke(app, ["status", "missing"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Submission not found" in result.output
