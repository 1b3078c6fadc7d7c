# Settings: load from .env at project root when the app starts.
# Existing environment variables always win over .env values.

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_project_root = Path(__file__).resolve().parents[2]

DEFAULT_CENSUS_API_BASE_URL = "https://api.census.gov/data"
DEFAULT_ZIP_GEOCODER_BASE_URL = "https://api.zippopotam.us/us"


def _load_dotenv() -> None:
    """Load .env from project root or cwd, first one found."""
    for path in (_project_root / ".env", Path.cwd() / ".env"):
        if path.is_file():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        k, _, v = line.partition("=")
                        v = v.strip().strip('"').strip("'")
                        os.environ.setdefault(k.strip(), v)
            break


def _env(name: str, default: str) -> str:
    return (os.getenv(name, default) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number. Got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer. Got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    census_api_base_url: str
    acs_year: str
    dataset: str
    profile_group: str
    zip_geocoder_base_url: str
    timeout: float
    cors_origins: tuple[str, ...]
    max_sessions: int
    log_level: str


def load_settings() -> Settings:
    _load_dotenv()

    raw_origins = _env("CORS_ORIGINS", "*")
    origins = tuple(origin.strip() for origin in raw_origins.split(",") if origin.strip())

    max_sessions = _env_int("DASHBOARD_MAX_SESSIONS", 1024)
    if max_sessions < 1:
        raise ValueError(f"DASHBOARD_MAX_SESSIONS must be at least 1. Got {max_sessions}")

    return Settings(
        census_api_base_url=_env("CENSUS_API_BASE_URL", DEFAULT_CENSUS_API_BASE_URL).rstrip("/"),
        acs_year=_env("CENSUS_ACS_YEAR", "2023"),
        dataset=_env("CENSUS_DATASET", "acs/acs5/profile").strip("/"),
        profile_group=_env("CENSUS_PROFILE_GROUP", "DP02"),
        zip_geocoder_base_url=_env("ZIP_GEOCODER_BASE_URL", DEFAULT_ZIP_GEOCODER_BASE_URL).rstrip("/"),
        timeout=_env_float("HTTP_TIMEOUT_SECONDS", 20.0),
        cors_origins=origins or ("*",),
        max_sessions=max_sessions,
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )
