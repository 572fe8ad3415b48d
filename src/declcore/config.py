"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .errors import error_configuration


LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables for a graph run.

    max_workers:   size of the scheduler's thread pool
    max_errors:    stop scheduling new nodes after this many failures (0 = never)
    max_instances: largest expansion a single resource template may produce (0 = no cap)
    log_level:     level used by ``configure_logging`` when no filter is given
    """
    max_workers: int = 4
    max_errors: int = 0
    max_instances: int = 0
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ("max_workers", "max_errors", "max_instances"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise error_configuration(f"'{name}' must be a non-negative integer, got {value!r}")
        if self.max_workers < 1:
            raise error_configuration("'max_workers' must be at least 1")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise error_configuration(
                f"'log_level' must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        object.__setattr__(self, "log_level", self.log_level.upper())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EngineConfig:
        """Build a config from a mapping; unknown keys are an error."""
        if not isinstance(data, Mapping):
            raise error_configuration(
                f"engine configuration must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise error_configuration(
                f"unknown configuration key '{unknown[0]}'",
                hints=[f"valid keys: {', '.join(sorted(known))}"])
        return cls(**dict(data))

    @classmethod
    def load(cls, path: Path | str) -> EngineConfig:
        """
        Load configuration from a YAML file.

        The document may hold the settings at the top level or under an
        ``engine`` key.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise error_configuration(f"configuration file not found: {config_path}")
        with config_path.open("r", encoding="utf-8") as fp:
            try:
                data = yaml.safe_load(fp) or {}
            except yaml.YAMLError as exc:
                raise error_configuration(f"invalid YAML in {config_path}: {exc}") from exc
        if isinstance(data, Mapping) and isinstance(data.get("engine"), Mapping):
            data = data["engine"]
        return cls.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
