"""CLI commands for premortem."""

import asyncio
from pathlib import Path

import click

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.version_option(None, "-v", "--version", package_name="premortem", prog_name="premortem")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Path to configuration file (required to run the daemon)",
)
@click.option("--validate-key", is_flag=True, help="Check the Anthropic API key before starting")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, validate_key: bool) -> None:
    """System monitoring and intelligent diagnostics.

    Polls memory, disk and CPU usage and, when a threshold is breached, runs a
    diagnostic agent whose findings are streamed to your webhook.

    Example:

        premortem --config ./config.json
    """
    if ctx.invoked_subcommand is not None:
        return

    if config_path is None:
        click.echo("Error: --config argument is required", err=True)
        click.echo(ctx.get_help())
        raise SystemExit(1)

    from premortem import logging as console
    from premortem.apikey import validate_api_key
    from premortem.config import Config
    from premortem.daemon import run_daemon

    try:
        console.info(f"Loading configuration from {config_path}")
        config = Config.load(config_path)
        console.config_loaded(str(config_path), config.webhook_url, config.polling_interval)

        if validate_key:
            asyncio.run(validate_api_key(config.anthropic_api_key))
            console.info("API key valid", console.Icon.OK)

        asyncio.run(run_daemon(config))
    except Exception as e:
        console.startup_failed(str(e))
        raise SystemExit(1)


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--webhook-url", default="https://example.com/webhook", help="Webhook URL")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(path: Path, webhook_url: str, force: bool) -> None:
    """Write a starter TOML config to PATH."""
    import os

    from premortem.config import Config, ThresholdConfig

    if path.exists() and not force:
        click.echo(f"Error: {path} already exists (use --force to overwrite)", err=True)
        raise SystemExit(1)

    cfg = Config(
        webhook_url=webhook_url,
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        thresholds=ThresholdConfig(memory_percent=90, disk_percent=90, cpu_percent=90),
    )
    cfg.save(path)
    click.echo(f"Created config at {path}")


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(path_type=Path),
    help="Path to configuration file",
)
def check(config_path: Path) -> None:
    """Take one metrics snapshot and evaluate thresholds."""
    from premortem.collector import collect_system_metrics
    from premortem.config import Config
    from premortem.monitor import check_thresholds

    try:
        cfg = Config.load(config_path, validate_archive=False)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    metrics = collect_system_metrics()
    click.echo(f"Memory:    {metrics.memory_percent}%")
    click.echo(f"Disk:      {metrics.disk_percent}%")
    click.echo(f"CPU:       {metrics.cpu_percent}%")
    click.echo(f"Processes: {metrics.process_count}")

    breach = check_thresholds(metrics, cfg.thresholds)
    if breach is None:
        click.echo("\nNo thresholds breached.")
    else:
        click.echo(
            f"\nBreach: {breach.type.value} at {breach.current_value}% "
            f"(threshold: {breach.threshold_value}%)"
        )
