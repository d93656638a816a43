"""Console logging with Rich formatting, plus structlog setup.

Console output is for humans watching the daemon. Structured events from
``structlog.get_logger()`` go to a JSON Lines file once configure() has run.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from premortem.config import Config

_console = Console(highlight=False)

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    BREACH = "[bold bright_red]▲[/]"
    AGENT = "🔎"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def config_loaded(path: str, webhook_url: str, polling_interval: int) -> None:
    """Log config summary."""
    info(f"Config: [cyan]{path}[/]")
    info(f"Webhook: [cyan]{webhook_url}[/], polling every [cyan]{polling_interval}[/]ms")


def daemon_starting() -> None:
    info("Premortem daemon starting...", Icon.WAIT)


def daemon_started(polling_interval: int) -> None:
    info(f"Monitoring started [dim](interval: {polling_interval}ms)[/]", Icon.OK)


def daemon_stopped() -> None:
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def heartbeat_started(url: str, interval: int) -> None:
    info(f"Heartbeat to [cyan]{url}[/] every {interval}ms", Icon.HEARTBEAT)


def breach_detected(breach_type: str, current: int, threshold: int) -> None:
    """Log a threshold breach that launched a diagnostic session."""
    warn(
        f"Threshold breach: [bold]{breach_type}[/] at [bright_red]{current}%[/] "
        f"[dim](threshold: {threshold}%)[/]",
        Icon.BREACH,
    )


def agent_started(session_id: str) -> None:
    info(f"Diagnostic agent running [dim](session {session_id})[/]", Icon.AGENT)


def agent_completed() -> None:
    info("Agent completed - resetting daemon state", Icon.OK)


def agent_failed(error_msg: str) -> None:
    error(f"Agent error: {error_msg}", Icon.FAIL)


def monitoring_failed(error_msg: str) -> None:
    error(f"Monitoring error: {error_msg}", Icon.FAIL)


def startup_failed(error_msg: str) -> None:
    error(f"Failed to start daemon: {error_msg}", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Route structlog events to a rotating JSON Lines file in the archive dir.

    Args:
        config: Application config with paths
    """
    config.archive_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("daemon"),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("daemon"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
