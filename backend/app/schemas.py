from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ZipSearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    zip_code: str = Field(default="", max_length=20)
    api_key: str = Field(default="", max_length=200)


class ErrorResponse(BaseModel):
    detail: str


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    def as_pair(self) -> list[float]:
        return [self.lat, self.lon]


class KeyStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_population: str
    median_age: str
    households: str
    education: str


class FieldEntry(BaseModel):
    key: str
    label: str
    value: str | None = None


class RecordPreview(BaseModel):
    entries: list[FieldEntry] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)


class DashboardView(BaseModel):
    """Everything the dashboard page needs to render one session's state."""

    zip_code: str = ""
    searched_zip: str | None = None
    error: str = ""
    loading: bool = False
    stats: KeyStats | None = None
    coordinates: Coordinates | None = None
    record: RecordPreview | None = None
