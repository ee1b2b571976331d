from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "treatment_planner" / "data"
SQLITE_PATH = DATA_DIR / "clinics.sqlite"

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    app_env: str = "development"
    log_level: str = "INFO"
    database_url: str = f"sqlite:///{SQLITE_PATH}"

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    generation_timeout_s: float = Field(default=30.0, ge=1.0, le=120.0)

    match_radius_km: float = 50.0
    match_limit: int = 10
    strict_treatment_filter: bool = True
    fallback_treatment_weight: int = 15

    currency: str = "EUR"
    # {"5": {"crown": 450, "implant": 900, "graft": 350}, ...}
    scenario_cost_overrides: Dict[int, Dict[str, float]] = {}

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator(
        "generation_timeout_s",
        "match_radius_km",
        "match_limit",
        "fallback_treatment_weight",
        mode="before",
    )
    @classmethod
    def _coerce_empty_numbers(cls, value, info):
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("scenario_cost_overrides", mode="before")
    @classmethod
    def _parse_overrides(cls, value):
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_settings()
    if settings.database_url.startswith("sqlite:///"):
        Path(settings.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(settings.database_url)


@lru_cache(maxsize=1)
def get_text_generator():
    """Gemini-backed generator, or None when no API key is configured."""
    from .services.text_generation import GeminiTextGenerator

    settings = get_settings()
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; AI plan drafting and fallback matching are disabled")
        return None
    return GeminiTextGenerator(
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        timeout_s=settings.generation_timeout_s,
    )
