# src/nearmatch/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/nearmatch/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `NEARMATCH_MATCH_RADIUS_M`, `GEMINI_API_KEY`)
- an external YAML file via `NEARMATCH_CONFIG_PATH`

Design rule:
- Tuning knobs (radius, post cap, clustering bands, reply delay) live in YAML,
  not hard-coded in engine logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from nearmatch.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `nearmatch.config`."""
    text = resources.files("nearmatch.config").joinpath(filename).read_text(encoding="utf-8")
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
    name: str = "NearMatch"
    timezone: str = "UTC"
    http_timeout_seconds: float = 10
    log_level: str = "INFO"


class QuickPublishSettings(BaseModel):
    title: str = "Crossed glances"
    description: str = "You caught my attention, you seemed lovely and interesting."
    tags: list[str] = Field(default_factory=lambda: ["eye_contact"])


class PostsSettings(BaseModel):
    max_own_posts: int = Field(5, ge=1)
    quick_publish: QuickPublishSettings = Field(default_factory=QuickPublishSettings)


class VisibilitySettings(BaseModel):
    match_radius_m: float = Field(150.0, gt=0)


class ZoomBand(BaseModel):
    below_zoom: float
    threshold_m: float = Field(..., gt=0)


class ClusteringSettings(BaseModel):
    bands: list[ZoomBand] = Field(
        default_factory=lambda: [
            ZoomBand(below_zoom=14, threshold_m=556.0),
            ZoomBand(below_zoom=16, threshold_m=111.0),
        ]
    )
    default_threshold_m: float = Field(22.0, gt=0)

    @model_validator(mode="after")
    def _thresholds_coarsen_when_zoomed_out(self) -> "ClusteringSettings":
        ordered = sorted(self.bands, key=lambda b: b.below_zoom)
        # The default applies above the last band, so it must be the finest threshold.
        thresholds = [b.threshold_m for b in ordered] + [self.default_threshold_m]
        for coarser, finer in zip(thresholds, thresholds[1:]):
            if finer >= coarser:
                raise ValueError("clustering thresholds must decrease as zoom increases")
        self.bands = ordered
        return self


class ChatSettings(BaseModel):
    reply_delay_seconds: float = Field(2.5, ge=0)
    match_system_text: str = "It's a match!"
    fallback_opener: str = "Hi! I'm glad we found each other."
    reply_lines: list[str] = Field(
        default_factory=lambda: ["Haha! Totally. Are you still around?"]
    )


class LocationSettings(BaseModel):
    fallback_lat: float = Field(19.4326, ge=-90, le=90)
    fallback_lon: float = Field(-99.1332, ge=-180, le=180)


class GeminiSettings(BaseModel):
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.5-flash"
    api_key: str | None = None


class GeneratorSettings(BaseModel):
    provider: Literal["mock", "gemini"] = "mock"
    candidate_count: int = Field(4, ge=0, le=50)
    spread_m: float = Field(150.0, gt=0)
    seed: int | None = None
    simulate_inbound_like: bool = True
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)


class EventsSettings(BaseModel):
    max_buffered: int = Field(200, ge=1)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    posts: PostsSettings = Field(default_factory=PostsSettings)
    visibility: VisibilitySettings = Field(default_factory=VisibilitySettings)
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    events: EventsSettings = Field(default_factory=EventsSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("NEARMATCH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    radius = os.getenv("NEARMATCH_MATCH_RADIUS_M")
    if radius:
        data.setdefault("visibility", {})["match_radius_m"] = float(radius)

    delay = os.getenv("NEARMATCH_REPLY_DELAY_SECONDS")
    if delay:
        data.setdefault("chat", {})["reply_delay_seconds"] = float(delay)

    provider = os.getenv("NEARMATCH_GENERATOR_PROVIDER")
    if provider:
        data.setdefault("generator", {})["provider"] = provider

    api_key = os.getenv("GEMINI_API_KEY")
    if api_key:
        data.setdefault("generator", {}).setdefault("gemini", {})["api_key"] = api_key

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("NEARMATCH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
