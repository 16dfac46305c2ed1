"""
Configuration loading for scorefeed.

Loads non-secret settings from config.yaml, secrets from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from scorefeed.freshness import DataCategory


class DatasetConfig(BaseModel):
    """One dataset served by the origin."""

    name: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    path: str = "/"
    ttl_seconds: int = Field(default=5400, ge=1)
    category: DataCategory = DataCategory.schedule
    # Filtered keys and derived datasets (those with a source) are served
    # through the named view over the raw payload.
    source: Optional[str] = None
    view: Optional[Literal["schedule", "points", "matches"]] = None
    hot: bool = False


class AppConfig(BaseModel):
    """Application configuration. Secrets come from env vars, rest from YAML."""

    # Secrets (from environment only)
    upstream_api_key: Optional[str] = None

    # Upstream scraping service
    upstream_base_url: str = "http://localhost:3001"
    fetch_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=5.0, ge=0)

    # Origin cache
    max_keys: int = Field(default=10, ge=1)
    refresh_interval: float = Field(default=7200.0, ge=0)
    fallback_path: Optional[str] = None

    datasets: list[DatasetConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_datasets(self) -> "AppConfig":
        names = [d.name for d in self.datasets]
        duplicates = [n for n in names if names.count(n) > 1]
        if duplicates:
            raise ValueError(f"Duplicate dataset names: {set(duplicates)}")
        for dataset in self.datasets:
            if dataset.source is None:
                continue
            source = self.get_dataset(dataset.source)
            if source is None:
                raise ValueError(
                    f"Dataset '{dataset.name}' has unknown source '{dataset.source}'"
                )
            if source.source is not None:
                raise ValueError(f"Dataset '{dataset.name}' has a derived source")
            if dataset.view is None:
                raise ValueError(f"Derived dataset '{dataset.name}' needs a view")
        return self

    def get_dataset(self, name: str) -> DatasetConfig | None:
        """Look up a dataset config by name."""
        for dataset in self.datasets:
            if dataset.name == name:
                return dataset
        return None


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from YAML file + environment variables.

    Args:
        config_path: Path to config.yaml. If None, reads CONFIG_PATH env var
                     (default: config.yaml in current directory).

    Returns:
        Validated AppConfig instance.
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    # Inject secrets from environment (never from YAML)
    config_data = {
        **raw,
        "upstream_api_key": os.environ.get("UPSTREAM_API_KEY"),
    }

    return AppConfig(**config_data)
