"""YAML engine configuration loader."""
from dataclasses import dataclass
from pathlib import Path

import yaml

from homework_sync.db import DEFAULT_DB_PATH


@dataclass
class EngineConfig:
    """Engine settings. The defaults match the production network profile."""
    backend: str = "sqlite"  # "sqlite" or "memory"
    db_path: str = DEFAULT_DB_PATH
    simulate_network: bool = False
    min_latency: float = 0.5
    max_latency: float = 3.0
    failure_rate: float = 0.1
    call_timeout: float = 5.0
    retry_attempts: int = 3
    retry_base_delay: float = 0.25
    retry_max_delay: float = 2.0
    background_attempts: int = 5
    progress_throttle: float = 0.5
    log_level: str = "INFO"


_SECTIONS = {
    "store": {"backend": "backend", "db_path": "db_path"},
    "network": {
        "simulate": "simulate_network",
        "min_latency": "min_latency",
        "max_latency": "max_latency",
        "failure_rate": "failure_rate",
        "call_timeout": "call_timeout",
    },
    "retry": {
        "attempts": "retry_attempts",
        "base_delay": "retry_base_delay",
        "max_delay": "retry_max_delay",
        "background_attempts": "background_attempts",
    },
    "progress": {"throttle": "progress_throttle"},
    "logging": {"level": "log_level"},
}


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load engine configuration from a YAML file.

    If no path is given, returns the default configuration.
    """
    if path is None:
        return EngineConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must be a YAML mapping")

    config = EngineConfig()
    for section, fields in _SECTIONS.items():
        values = raw.get(section, {})
        if not isinstance(values, dict):
            continue
        for key, attr in fields.items():
            if key in values:
                setattr(config, attr, values[key])

    if config.backend not in ("sqlite", "memory"):
        raise ValueError(f"Unknown store backend: {config.backend!r}")
    if config.retry_attempts < 1:
        raise ValueError("retry.attempts must be at least 1")
    return config
