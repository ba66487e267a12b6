# src/gapscout/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/gapscout/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `GOOGLE_MAPS_API_KEY`, `OPENAI_API_KEY`, `CENSUS_API_KEY`)
- an external YAML file via `GAPSCOUT_CONFIG_PATH`

Design rule:
- Tuning knobs (intervals, cooldowns, dataset year) live in YAML, not hard-coded in logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any
from gapscout.core.env import load_dotenv_if_present

import yaml
from pydantic import BaseModel, Field

from gapscout.core.geo import DEFAULT_COVERAGE_RADIUS_M


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `gapscout.config`."""
    text = resources.files("gapscout.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "GapScout"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class CoverageSettings(BaseModel):
    default_radius_m: float = Field(DEFAULT_COVERAGE_RADIUS_M, gt=0)


class SearchSettings(BaseModel):
    min_interval_seconds: float = Field(2.0, ge=0)
    quota_cooldown_seconds: float = Field(60.0, ge=0)
    max_results: int = Field(20, ge=1, le=20)
    ready_poll_interval_seconds: float = Field(0.1, gt=0)
    ready_max_attempts: int = Field(50, ge=1)
    request_key_decimals: int = Field(4, ge=0)


class CensusSettings(BaseModel):
    geo_url: str
    base_url: str
    year: int = 2022
    dataset: str = "acs/acs5"
    variables: list[str] = Field(
        default_factory=lambda: [
            "NAME",
            "B19013_001E",
            "B01003_001E",
            "B15003_022E",
            "B15003_023E",
            "B15003_024E",
            "B15003_025E",
            "B25077_001E",
            "B08303_001E",
        ]
    )
    api_key: str | None = None


class PlacesSettings(BaseModel):
    base_url: str
    api_key: str | None = None


class AnalysisSettings(BaseModel):
    base_url: str
    model: str = "gpt-4o"
    max_tokens: int = 4000
    temperature: float = Field(0.7, ge=0, le=2)
    timeout_seconds: float = 60
    use_mock: bool = False
    api_key: str | None = None


class IngestionSettings(BaseModel):
    census: CensusSettings
    places: PlacesSettings
    analysis: AnalysisSettings


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    coverage: CoverageSettings = Field(default_factory=CoverageSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    ingestion: IngestionSettings


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("GAPSCOUT_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    ingestion = data.setdefault("ingestion", {})
    for section, env_name in (
        ("places", "GOOGLE_MAPS_API_KEY"),
        ("analysis", "OPENAI_API_KEY"),
        ("census", "CENSUS_API_KEY"),
    ):
        value = os.getenv(env_name)
        if value:
            ingestion.setdefault(section, {})["api_key"] = value

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("GAPSCOUT_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")


def public_settings(settings: Settings) -> dict[str, Any]:
    """Settings payload safe to show to clients (API keys redacted)."""
    payload = settings.model_dump(mode="json")
    for section in payload.get("ingestion", {}).values():
        if isinstance(section, dict) and "api_key" in section:
            section["api_key"] = "***" if section["api_key"] else None
    return payload
