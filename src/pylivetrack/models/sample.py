"""Location fix and sample models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pylivetrack.ingestion.normalize import clean_payload, normalize_timestamp_ms, safe_float
from pylivetrack.models._base import LiveTrackBaseModel


class FixOptions(LiveTrackBaseModel):
    """Options passed to a location provider for each fix request.

    Parameters
    ----------
    high_accuracy : bool
        Request the provider's most precise (and slowest) fix.
    timeout_ms : int
        Milliseconds to wait for a fix.
    max_cache_age_ms : int
        Oldest cached fix the provider may return, ``0`` for a fresh one.
    """

    high_accuracy: bool = True
    timeout_ms: int = Field(default=10_000, gt=0)
    max_cache_age_ms: int = Field(default=0, ge=0)

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


class Fix(BaseModel):
    """A single resolved position as reported by a provider.

    Accepts the usual payload spellings (``lat``/``lng``, ``heading``/``course``,
    ``accuracy``) and the browser-style ``{"coords": {...}, "timestamp": ...}``
    envelope. Sentinel values are dropped so the field default is used.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    accuracy_m : float
        Horizontal accuracy radius in metres.
    speed_mps : float or None
        Provider-reported ground speed in metres per second.
    heading_deg : float or None
        Provider-reported heading in degrees from true north.
    timestamp_ms : int or None
        Fix timestamp in epoch milliseconds.
    raw : dict
        Payload as received.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    latitude: float = Field(ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat", "gpsLatitude"))
    longitude: float = Field(
        ge=-180.0,
        le=180.0,
        validation_alias=AliasChoices("longitude", "lng", "lon", "gpsLongitude"),
    )
    accuracy_m: float = Field(default=0.0, ge=0.0, validation_alias=AliasChoices("accuracy_m", "accuracy", "hAcc"))
    speed_mps: float | None = Field(default=None, validation_alias=AliasChoices("speed_mps", "speed", "gpsSpeed"))
    heading_deg: float | None = Field(
        default=None,
        validation_alias=AliasChoices("heading_deg", "heading", "course", "direction"),
    )
    timestamp_ms: int | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp_ms", "timestamp", "time", "gpsTimestamp"),
    )
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _merge_coords(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        for nested_key in ("coords", "data"):
            nested = values.get(nested_key)
            if isinstance(nested, dict):
                merged.update(nested)
        cleaned = clean_payload(merged)
        cleaned.setdefault("raw", values)
        return cleaned

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        parsed = safe_float(value)
        if parsed is None:
            raise ValueError(f"coordinate is not numeric: {value!r}")
        return parsed

    @field_validator("accuracy_m", mode="before")
    @classmethod
    def _coerce_accuracy(cls, value: Any) -> float:
        parsed = safe_float(value)
        return 0.0 if parsed is None else parsed

    @field_validator("speed_mps", "heading_deg", mode="before")
    @classmethod
    def _coerce_optional_floats(cls, value: Any) -> float | None:
        parsed = safe_float(value)
        # Negative speed is how several receivers say "unknown".
        if parsed is not None and parsed < 0:
            return None
        return parsed

    @field_validator("timestamp_ms", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        return normalize_timestamp_ms(value)

    @property
    def coord(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


class LocationSample(LiveTrackBaseModel):
    """An enriched, immutable location sample.

    Produced once per sampling tick by the :class:`~pylivetrack.sampler.Sampler`.
    """

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    speed_kmh: float = Field(default=0.0, ge=0.0)
    heading_deg: float = 0.0
    timestamp_ms: int
    accuracy_m: float = Field(default=0.0, ge=0.0)

    @property
    def coord(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)
