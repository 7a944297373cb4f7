"""
CLI interface for the Box Sale Configurator.

Operator access to the database, pricing summaries and NetSuite submission.
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from box_configurator.config.loader import Settings, load_settings
from box_configurator.core.pricing import ConfigSummary
from box_configurator.errors import BoxConfiguratorError, ConfigError
from box_configurator.logging_config import configure_logging
from box_configurator.netsuite.gateway import build_gateway
from box_configurator.services.configuration import ConfigurationService
from box_configurator.services.submission import SubmissionPipeline
from box_configurator.storage.models import Submission, SubmissionStatus
from box_configurator.storage.repository import (
    ConfigurationRepository,
    SubmissionRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

SettingsOption = typer.Option(None, "--settings", "-s", help="Path to a YAML settings file")


def _load(settings_path: Optional[str]) -> Settings:
    try:
        settings = load_settings(settings_path)
    except (FileNotFoundError, yaml.YAMLError) as e:
        raise ConfigError(str(e))
    configure_logging(level=logging.INFO)
    return settings


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Box Sale Configurator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Box Sale Configurator - Use --help to see available commands")


@app.command()
def init(settings_path: Optional[str] = SettingsOption):
    """Initialize the configurator database."""
    try:
        settings = _load(settings_path)
        initialize_schema(settings.db_path)
        console.print(f"[green]✓[/] Database initialized at {settings.db_path}")
    except Exception as e:
        _fail(f"initializing database: {e}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def summary(
    config_id: str = typer.Argument(..., help="Configuration id"),
    settings_path: Optional[str] = SettingsOption,
):
    """Show pricing summary for a configuration."""
    try:
        settings = _load(settings_path)
        service = ConfigurationService(ConfigurationRepository(settings.db_path))
        config = service.get_configuration(config_id)
        result = service.get_summary(config_id)
    except BoxConfiguratorError as e:
        _fail(str(e))

    console.print(f"\n[bold]Configuration {config.id}[/bold] (version {config.version}, {config.status.value})")
    _display_summary(result)
    sys.exit(EXIT_CODE_OK)


@app.command()
def submit(
    config_id: str = typer.Argument(..., help="Configuration id"),
    settings_path: Optional[str] = SettingsOption,
):
    """Submit a configuration's line items to its NetSuite estimate."""
    try:
        settings = _load(settings_path)
        pipeline = SubmissionPipeline(
            ConfigurationRepository(settings.db_path),
            SubmissionRepository(settings.db_path),
            build_gateway(settings),
        )
        result = asyncio.run(pipeline.submit_configuration(config_id))
    except BoxConfiguratorError as e:
        _fail(str(e))

    _display_submission(result)
    sys.exit(EXIT_CODE_OK)


@app.command()
def status(
    submission_id: str = typer.Argument(..., help="Submission id"),
    settings_path: Optional[str] = SettingsOption,
):
    """Show the state of a submission."""
    try:
        settings = _load(settings_path)
        pipeline = SubmissionPipeline(
            ConfigurationRepository(settings.db_path),
            SubmissionRepository(settings.db_path),
            build_gateway(settings),
        )
        result = pipeline.get_submission_status(submission_id)
    except BoxConfiguratorError as e:
        _fail(str(e))

    _display_submission(result)
    sys.exit(EXIT_CODE_OK if result.status != SubmissionStatus.FAILED else EXIT_CODE_FAIL)


def _format_currency(amount) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _display_summary(result: ConfigSummary):
    """Display configuration totals as a table."""
    table = Table(show_header=False)
    table.add_column("Figure")
    table.add_column("Value", justify="right")
    table.add_row("Lines", str(result.line_count))
    table.add_row("Total quantity", str(result.total_quantity))
    table.add_row("Equipment cost", _format_currency(result.total_equipment_cost))
    table.add_row("Total price", _format_currency(result.total_price))
    table.add_row("Shipping", _format_currency(result.shipping_fee))
    table.add_row("Subtotal", _format_currency(result.subtotal))
    table.add_row("Margin", f"{result.overall_margin * 100:.2f}%")
    console.print(table)


def _display_submission(result: Submission):
    colors = {
        SubmissionStatus.SUCCESS: "green",
        SubmissionStatus.FAILED: "red",
        SubmissionStatus.IN_PROGRESS: "yellow",
    }
    color = colors[result.status]
    console.print(f"\n[bold]Submission {result.id}[/bold]")
    console.print(f"Status: [{color}]{result.status.value}[/]")
    console.print(f"Idempotency key: {result.idempotency_key}")
    console.print(f"Attempts: {result.attempts}")
    if result.netsuite_estimate_id:
        console.print(f"NetSuite estimate: {result.netsuite_estimate_id}")
    if result.error_message:
        console.print(f"Error: {result.error_message}")


if __name__ == "__main__":
    app()
