from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_CENSUS_API_BASE_URL, DEFAULT_ZIP_GEOCODER_BASE_URL, Settings
from .schemas import Coordinates, FieldEntry, KeyStats, RecordPreview

logger = logging.getLogger(__name__)

USER_AGENT = "census-explorer/0.1"

# DP02 profile columns shown on the stat cards. Population and households
# both read DP02_0001E.
POPULATION_KEY = "DP02_0001E"
MEDIAN_AGE_KEY = "DP02_0028E"
HOUSEHOLDS_KEY = "DP02_0001E"
EDUCATION_KEY = "DP02_0068PE"

NOT_AVAILABLE = "N/A"
RECORD_PREVIEW_LIMIT = 20

# Geographic centre of the contiguous United States.
FALLBACK_COORDINATES = Coordinates(lat=39.8283, lon=-98.5795)

PROFILE_FETCH_FAILED_MESSAGE = "Failed to fetch Census data"
MISSING_ZIP_MESSAGE = "Please enter a zip code"
MISSING_API_KEY_MESSAGE = "Please enter your Census API key"

CensusTable = list[list[Any]]
CensusRecord = dict[str, Any]


@dataclass(frozen=True)
class ApiConfig:
    census_api_base_url: str = DEFAULT_CENSUS_API_BASE_URL
    acs_year: str = "2023"
    dataset: str = "acs/acs5/profile"
    profile_group: str = "DP02"
    zip_geocoder_base_url: str = DEFAULT_ZIP_GEOCODER_BASE_URL
    timeout: float = 20.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ApiConfig:
        return cls(
            census_api_base_url=settings.census_api_base_url,
            acs_year=settings.acs_year,
            dataset=settings.dataset,
            profile_group=settings.profile_group,
            zip_geocoder_base_url=settings.zip_geocoder_base_url,
            timeout=settings.timeout,
        )


class UpstreamAPIError(RuntimeError):
    """Raised by request_json. ``status_code`` is set only for non-success responses."""

    def __init__(self, stage: str, message: str, status_code: int | None = None):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message
        self.status_code = status_code


class SearchValidationError(ValueError):
    pass


class FetchError(RuntimeError):
    """The demographic profile could not be fetched. The message is shown to the user as-is."""


class GeocodeError(RuntimeError):
    pass


@dataclass(frozen=True)
class SearchResult:
    zip_code: str
    record: CensusRecord | None
    stats: KeyStats | None
    coordinates: Coordinates


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


def request_json(
    client: httpx.Client,
    url: str,
    *,
    params: dict[str, Any] | None,
    stage: str,
    config: ApiConfig,
) -> Any:
    headers = {"User-Agent": USER_AGENT}
    # Never log params: the census stage carries the caller's API key.
    logger.debug("GET %s (stage=%s)", url, stage)
    try:
        response = client.get(url, params=params, timeout=config.timeout, headers=headers)
    except httpx.RequestError as exc:
        raise UpstreamAPIError(stage, f"Network error: {exc!s}") from exc

    status = response.status_code
    logger.info("Upstream %s responded with HTTP %s", stage, status)
    if not response.is_success:
        raise UpstreamAPIError(
            stage,
            f"HTTP {status}: {_short_error_text(response.text)}",
            status_code=status,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamAPIError(
            stage, f"Invalid JSON in upstream response (HTTP {status})"
        ) from exc


def build_profile_url(config: ApiConfig) -> str:
    return f"{config.census_api_base_url}/{config.acs_year}/{config.dataset}"


def build_profile_params(zip_code: str, api_key: str, config: ApiConfig) -> dict[str, str]:
    return {
        "get": f"group({config.profile_group})",
        "for": f"zip code tabulation area:{zip_code}",
        "key": api_key,
    }


def fetch_profile_table(
    client: httpx.Client,
    *,
    zip_code: str,
    api_key: str,
    config: ApiConfig,
) -> CensusTable:
    try:
        payload = request_json(
            client,
            build_profile_url(config),
            params=build_profile_params(zip_code, api_key, config),
            stage="census_profile",
            config=config,
        )
    except UpstreamAPIError as exc:
        if exc.status_code is not None:
            raise FetchError(PROFILE_FETCH_FAILED_MESSAGE) from exc
        raise FetchError(exc.message) from exc

    if not isinstance(payload, list) or not all(isinstance(row, list) for row in payload):
        raise FetchError("Census API returned an unexpected response body")
    return payload


def geocode_zip(client: httpx.Client, *, zip_code: str, config: ApiConfig) -> Coordinates:
    url = f"{config.zip_geocoder_base_url}/{quote(zip_code, safe='')}"
    try:
        payload = request_json(client, url, params=None, stage="zip_geocode", config=config)
    except UpstreamAPIError as exc:
        raise GeocodeError(str(exc)) from exc

    places = payload.get("places") if isinstance(payload, dict) else None
    if not isinstance(places, list) or not places or not isinstance(places[0], dict):
        raise GeocodeError(f"No places listed for zip code {zip_code!r}")

    first = places[0]
    try:
        return Coordinates(lat=float(first["latitude"]), lon=float(first["longitude"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise GeocodeError(f"Unusable coordinates for zip code {zip_code!r}: {exc!s}") from exc


def table_to_record(table: CensusTable | None) -> CensusRecord | None:
    if not table or len(table) < 2:
        return None

    headers = table[0]
    values = table[1]
    return {
        header: values[index] if index < len(values) else None
        for index, header in enumerate(headers)
    }


def _stat_value(record: CensusRecord, key: str) -> str:
    value = record.get(key)
    return str(value) if value else NOT_AVAILABLE


def extract_key_stats(record: CensusRecord | None) -> KeyStats | None:
    if record is None:
        return None

    return KeyStats(
        total_population=_stat_value(record, POPULATION_KEY),
        median_age=_stat_value(record, MEDIAN_AGE_KEY),
        households=_stat_value(record, HOUSEHOLDS_KEY),
        education=_stat_value(record, EDUCATION_KEY),
    )


_WORD_START = re.compile(r"\b\w", re.ASCII)


def format_field_name(field: str) -> str:
    return _WORD_START.sub(lambda match: match.group(0).upper(), field.replace("_", " "))


def build_record_preview(
    record: CensusRecord | None,
    limit: int = RECORD_PREVIEW_LIMIT,
) -> RecordPreview | None:
    if record is None:
        return None

    entries = [
        FieldEntry(
            key=key,
            label=format_field_name(key),
            value=None if value is None else str(value),
        )
        for key, value in list(record.items())[:limit]
    ]
    total = len(record)
    return RecordPreview(entries=entries, total=total, remaining=max(0, total - limit))


def validate_search_input(zip_code: str, api_key: str) -> None:
    if not zip_code.strip():
        raise SearchValidationError(MISSING_ZIP_MESSAGE)
    if not api_key.strip():
        raise SearchValidationError(MISSING_API_KEY_MESSAGE)


def run_search(
    client: httpx.Client,
    *,
    zip_code: str,
    api_key: str,
    config: ApiConfig,
) -> SearchResult:
    """Fetch the DP02 profile for a zip code, then locate it on the map.

    Raises SearchValidationError before any request is made, and FetchError when
    the profile request fails. Geocoding is best-effort: any failure there is
    replaced by FALLBACK_COORDINATES.
    """
    validate_search_input(zip_code, api_key)
    zip_code = zip_code.strip()
    api_key = api_key.strip()

    table = fetch_profile_table(client, zip_code=zip_code, api_key=api_key, config=config)
    record = table_to_record(table)

    try:
        coordinates = geocode_zip(client, zip_code=zip_code, config=config)
    except GeocodeError as exc:
        logger.info("Could not get coordinates for zip code %s: %s", zip_code, exc)
        coordinates = FALLBACK_COORDINATES

    return SearchResult(
        zip_code=zip_code,
        record=record,
        stats=extract_key_stats(record),
        coordinates=coordinates,
    )
