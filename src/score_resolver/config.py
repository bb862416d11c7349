"""Configuration for the batch score resolver."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

import yaml


@dataclass
class ResolverConfig:
    """Configuration for resolving scores.

    Attributes:
        cache_path: Path to the JSON file holding the score cache
        ttl_hours: Hours a cached score stays valid
        max_concurrency: Maximum simultaneous external fetches
        fetch_timeout: Seconds before an external fetch counts as failed
        rate_limit: Requests per minute against the review source
        http_timeout: Per-request HTTP timeout in seconds
        user_agent: User-Agent header for review page requests
        verbose: Enable verbose logging
    """

    cache_path: str = ".cache.scores.json"
    ttl_hours: float = 24.0
    max_concurrency: int = 4
    fetch_timeout: float = 30.0
    rate_limit: int = 30
    http_timeout: float = 20.0
    user_agent: str = "score-resolver/1.0 (async)"
    verbose: bool = False

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_hours * 3600

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolverConfig:
        """Create config from a dictionary (e.g., loaded from YAML).

        Unknown keys are rejected so typos do not pass silently.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary for serialization."""
        return {
            "cache_path": self.cache_path,
            "ttl_hours": self.ttl_hours,
            "max_concurrency": self.max_concurrency,
            "fetch_timeout": self.fetch_timeout,
            "rate_limit": self.rate_limit,
            "http_timeout": self.http_timeout,
            "user_agent": self.user_agent,
            "verbose": self.verbose,
        }


def load_config_file(path: str) -> ResolverConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        ResolverConfig built from the file; an empty file gives the defaults.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not a mapping or has unknown keys
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return ResolverConfig()
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return ResolverConfig.from_dict(data)
