"""Configuration system for premortem."""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path

import tomlkit

DEFAULT_ARCHIVE_DIR = "~/.premortem-logs"
DEFAULT_POLLING_INTERVAL = 10000  # Milliseconds
DEFAULT_HEARTBEAT_INTERVAL = 60000  # Milliseconds


@dataclass
class ThresholdConfig:
    """Per-metric ceilings. A value of None means the metric is not checked.

    process_name is accepted for forward compatibility but never evaluated.
    """

    memory_percent: int | None = None
    disk_percent: int | None = None
    cpu_percent: int | None = None
    process_name: str | None = None


@dataclass
class AgentConfig:
    """Diagnostic agent configuration."""

    custom_prompt: str | None = None
    model: str = "claude-sonnet-4-5"
    max_turns: int = 25
    command_timeout: int = 60  # Seconds per shell command run by the agent


@dataclass
class HeartbeatConfig:
    """Liveness reporting to an external monitor."""

    url: str
    process_name: str
    interval: int = DEFAULT_HEARTBEAT_INTERVAL


@dataclass
class Config:
    """Main configuration container."""

    webhook_url: str
    anthropic_api_key: str
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    agent: AgentConfig = field(default_factory=AgentConfig)
    heartbeat: HeartbeatConfig | None = None
    archive_dir: Path = field(default_factory=lambda: Path(DEFAULT_ARCHIVE_DIR).expanduser())

    @property
    def log_path(self) -> Path:
        """Daemon JSON log path."""
        return self.archive_dir / "daemon.log"

    def to_dict(self) -> dict:
        """Return the config in its on-disk (camelCase) shape."""
        thresholds = {
            key: value
            for key, value in (
                ("memoryPercent", self.thresholds.memory_percent),
                ("diskPercent", self.thresholds.disk_percent),
                ("cpuPercent", self.thresholds.cpu_percent),
                ("processName", self.thresholds.process_name),
            )
            if value is not None
        }
        agent = {
            "model": self.agent.model,
            "maxTurns": self.agent.max_turns,
            "commandTimeout": self.agent.command_timeout,
        }
        if self.agent.custom_prompt is not None:
            agent["customPrompt"] = self.agent.custom_prompt

        data = {
            "webhookUrl": self.webhook_url,
            "anthropicApiKey": self.anthropic_api_key,
            "pollingInterval": self.polling_interval,
            "archiveDir": str(self.archive_dir),
            "thresholds": thresholds,
            "agentConfig": agent,
        }
        if self.heartbeat is not None:
            data["heartbeat"] = {
                "url": self.heartbeat.url,
                "processName": self.heartbeat.process_name,
                "interval": self.heartbeat.interval,
            }
        return data

    def save(self, path: Path) -> None:
        """Save config to TOML file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()
        doc = tomlkit.document()
        doc.add(tomlkit.comment("premortem configuration"))
        for key in ("webhookUrl", "anthropicApiKey", "pollingInterval", "archiveDir"):
            doc.add(key, data[key])
        doc.add(tomlkit.nl())
        for section in ("thresholds", "agentConfig", "heartbeat"):
            if section not in data:
                continue
            table = tomlkit.table()
            for key, value in data[section].items():
                table.add(key, value)
            doc.add(section, table)
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path, *, validate_archive: bool = True) -> "Config":
        """Load config from a JSON file (or TOML, by suffix).

        Missing optional values fall back to the dataclass defaults.

        Raises:
            ValueError: If the file can't be read or parsed, or a required
                field is missing or has the wrong type.
        """
        data = _read_file(path)
        if not isinstance(data, dict):
            raise ValueError("Config file must contain a valid JSON object")

        if not isinstance(data.get("webhookUrl"), str):
            raise ValueError('Config must include "webhookUrl" as a string')
        if not isinstance(data.get("anthropicApiKey"), str):
            raise ValueError('Config must include "anthropicApiKey" as a string')
        if not isinstance(data.get("thresholds"), dict):
            raise ValueError('Config must include "thresholds" as an object')

        polling_interval = _interval(data.get("pollingInterval"), DEFAULT_POLLING_INTERVAL)

        archive_value = data.get("archiveDir")
        if isinstance(archive_value, str) and archive_value:
            archive_dir = _expand_path(archive_value)
        else:
            archive_dir = _expand_path(DEFAULT_ARCHIVE_DIR)
        if validate_archive:
            validate_archive_dir(archive_dir)

        return cls(
            webhook_url=data["webhookUrl"],
            anthropic_api_key=data["anthropicApiKey"],
            thresholds=_load_thresholds(data["thresholds"]),
            polling_interval=polling_interval,
            agent=_load_agent_config(data.get("agentConfig")),
            heartbeat=_load_heartbeat_config(data.get("heartbeat")),
            archive_dir=archive_dir,
        )


def _read_file(path: Path) -> object:
    """Parse a config file as TOML or JSON based on its suffix."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Failed to read or parse config file at {path}: {e}") from e

    if path.suffix == ".toml":
        try:
            return tomlkit.parse(text).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to read or parse config file at {path}: {e}") from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to read or parse config file at {path}: {e}") from e


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _interval(value: object, default: int) -> int:
    """Millisecond interval, falling back to `default` unless at least 1."""
    if not _is_number(value) or value < 1:
        return default
    return int(value)


def _expand_path(path: str) -> Path:
    return Path(path).expanduser()


def validate_archive_dir(archive_dir: Path) -> None:
    """Create the archive directory if needed and verify it is writable."""
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ValueError(f"Failed to create archive directory: {archive_dir}. Error: {e}") from e

    probe = archive_dir / f".premortem-test-{int(time.time() * 1000)}"
    try:
        probe.write_text("test")
        probe.unlink()
    except OSError as e:
        raise ValueError(f"Archive directory is not writable: {archive_dir}. Error: {e}") from e


def _threshold_value(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if not _is_number(value):
        raise ValueError(f'Threshold "{key}" must be a number, got {value!r}')
    return int(value)


def _load_thresholds(data: dict) -> ThresholdConfig:
    """Load thresholds, leaving unconfigured metrics as None."""
    process_name = data.get("processName")
    return ThresholdConfig(
        memory_percent=_threshold_value(data, "memoryPercent"),
        disk_percent=_threshold_value(data, "diskPercent"),
        cpu_percent=_threshold_value(data, "cpuPercent"),
        process_name=process_name if isinstance(process_name, str) else None,
    )


def _load_agent_config(data: object) -> AgentConfig:
    """Load agent config, using dataclass defaults for missing fields."""
    d = AgentConfig()
    if not isinstance(data, dict):
        return d

    custom_prompt = data.get("customPrompt")
    model = data.get("model")
    max_turns = data.get("maxTurns")
    command_timeout = data.get("commandTimeout")

    return AgentConfig(
        custom_prompt=custom_prompt if isinstance(custom_prompt, str) else d.custom_prompt,
        model=model if isinstance(model, str) else d.model,
        max_turns=int(max_turns) if _is_number(max_turns) else d.max_turns,
        command_timeout=int(command_timeout) if _is_number(command_timeout) else d.command_timeout,
    )


def _load_heartbeat_config(data: object) -> HeartbeatConfig | None:
    """Load heartbeat config. Incomplete blocks disable the heartbeat."""
    if not isinstance(data, dict):
        return None

    url = data.get("url")
    process_name = data.get("processName")
    if not isinstance(url, str) or not isinstance(process_name, str):
        return None

    interval = _interval(data.get("interval"), DEFAULT_HEARTBEAT_INTERVAL)

    return HeartbeatConfig(url=url, process_name=process_name, interval=interval)
