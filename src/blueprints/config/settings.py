"""Application settings.

All configuration is sourced from environment variables (and optionally `.env`).
Every field has a default so the compiler runs without any environment.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed environment-backed settings for BluePrints."""

    model_config = SettingsConfigDict(
        env_prefix="BLUEPRINTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Graph metadata fallbacks
    project_name: str = "BluePrints"
    feature_name: str = "Feature"

    # Expansion
    detect_mode_entries: bool = Field(
        default=True,
        description="Synthesize solo/host/guest entry points for mode-choice decisions",
    )
    infer_system_steps: bool = True
    use_branch_hints: bool = True
    add_edge_cases: bool = Field(
        default=True,
        description="Add a disconnected System node for each unparsed E: line",
    )

    # Validation
    strict_validation: bool = True
    allow_disconnected: bool = False
    allow_empty_system_lane: bool = False
    max_label_length: int = Field(default=100, ge=1)
    inferred_ratio_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
