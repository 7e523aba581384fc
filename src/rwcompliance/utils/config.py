"""Configuration loading and validation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class AppConfig:
    """Harness-wide settings."""

    log_level: str = "INFO"
    debug: bool = False  # Log every captured request at info level


@dataclass
class EndpointConfig:
    """Scripted mock endpoint (the receiver a sender talks to)."""

    host: str = "127.0.0.1"
    port: int = 0  # 0 picks a free port
    finished_status: int = 410
    finished_body: str = "Test finished"


@dataclass
class ScrapeConfig:
    """Scrape target served to the sender under test."""

    host: str = "127.0.0.1"
    port: int = 0
    exposition_format: str = "openmetrics"  # or "text"


@dataclass
class ScenarioConfig:
    """Defaults applied to every scenario run."""

    timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.05
    job_name: str = "test"
    protocol_version: str = "2.0.0"
    stop_grace_seconds: float = 10.0


@dataclass
class ClientConfig:
    """Remote-write client used against a receiver under test."""

    url: str = "http://127.0.0.1:9090/api/v1/write"
    user_agent: str = "rwcompliance/0.1.0"
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 10.0


@dataclass
class Config:
    """Root configuration object."""

    app: AppConfig = field(default_factory=AppConfig)
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    scrape: ScrapeConfig = field(default_factory=ScrapeConfig)
    scenario: ScenarioConfig = field(default_factory=ScenarioConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _dict_to_dataclass(cls: type, data: dict[str, Any] | None) -> Any:
    """Recursively convert a dictionary to a dataclass instance.

    Unknown keys are ignored so that older harness versions can read newer
    config files.
    """
    if data is None:
        return cls()

    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs = {}

    for key, value in data.items():
        if key not in field_types:
            continue

        field_type = field_types[key]

        if hasattr(field_type, "__dataclass_fields__") and isinstance(value, dict):
            kwargs[key] = _dict_to_dataclass(field_type, value)
        else:
            kwargs[key] = value

    return cls(**kwargs)


def config_from_dict(data: dict[str, Any]) -> Config:
    """Build a Config from an already-parsed mapping."""
    return Config(
        app=_dict_to_dataclass(AppConfig, data.get("app")),
        endpoint=_dict_to_dataclass(EndpointConfig, data.get("endpoint")),
        scrape=_dict_to_dataclass(ScrapeConfig, data.get("scrape")),
        scenario=_dict_to_dataclass(ScenarioConfig, data.get("scenario")),
        client=_dict_to_dataclass(ClientConfig, data.get("client")),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, searches default locations.

    Returns:
        Config object with all settings.
    """
    search_paths = [
        Path(config_path) if config_path else None,
        Path("config/rwcompliance.yaml"),
        Path("/etc/rwcompliance/config.yaml"),
        Path.home() / ".config" / "rwcompliance" / "config.yaml",
    ]

    config_file = None
    for path in search_paths:
        if path and path.exists():
            config_file = path
            break

    if config_file is None:
        return Config()

    with open(config_file) as f:
        data = yaml.safe_load(f) or {}

    return config_from_dict(data)
