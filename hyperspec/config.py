"""
Configuration for hyperspec.

Uses pydantic-settings for environment variable loading; every setting
can be given as HYPERSPEC_<NAME>.

Invariants:
    - All settings have sensible defaults for local use
    - Artifact directories are always resolved under a spec root

How to change safely:
    - Add new settings with defaults that keep existing builds unchanged
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Builder configuration loaded from environment."""

    # Output layout
    spec_root: str = Field(default="./spec", description="Root for generated artifacts")
    schema_dir: str = Field(default="schema", description="Schema artifact directory")
    db_dir: str = Field(default="db", description="Storage-binding artifact directory")
    dispatch_dir: str = Field(default="dispatch", description="Dispatch artifact directory")

    # Compilation
    allow_breaking: bool = Field(
        default=False,
        description="Overwrite persisted manifests even on breaking changes",
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: Literal["text", "json"] = Field(default="text", description="text or json")

    model_config = {"env_prefix": "HYPERSPEC_"}

    def schema_path(self, root: str | Path) -> Path:
        """Schema artifact directory under root."""
        return Path(root) / self.schema_dir

    def db_path(self, root: str | Path) -> Path:
        """Storage-binding artifact directory under root."""
        return Path(root) / self.db_dir

    def dispatch_path(self, root: str | Path) -> Path:
        """Dispatch artifact directory under root."""
        return Path(root) / self.dispatch_dir


def setup_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Loaded settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
