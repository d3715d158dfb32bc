"""Tracker configuration for pylivetrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pylivetrack.exceptions import LiveTrackConfigError
from pylivetrack.models.sample import FixOptions


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise LiveTrackConfigError(f"{env_key} must be numeric, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Parameters
    ----------
    fetch_high_accuracy : bool
        Ask the provider for its most precise fix on one-shot fetches.
    fetch_timeout_ms : int
        Milliseconds to wait for a one-shot fix before giving up.
    fetch_max_cache_age_ms : int
        Oldest cached fix (in ms) a one-shot fetch may return.
        ``0`` forces a fresh fix.
    watch_high_accuracy : bool
        High accuracy flag for continuous watches.
    watch_timeout_ms : int
        Per-fix timeout hint passed to the provider while watching.
        The watch itself never times out.
    watch_max_cache_age_ms : int
        Oldest cached fix a watch may deliver.
    abort_on_publish_failure : bool
        Stop the session when a sample cannot be published while tracking.
        When ``False`` the failure is only reported.
    mqtt_host : str
        Broker the vehicle GPS units publish to.
    mqtt_port : int
        Broker port.
    mqtt_topic : str
        Topic carrying JSON fixes for the tracked vehicle.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_tls : bool
        Enable TLS on the broker connection.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_client_id : str
        Client id; empty lets the broker assign one.
    http_base_url : str
        Base URL of a GPS gateway exposing
        ``/vehicles/{vehicle_id}/position``.
    http_token : str or None
        Bearer token for the gateway.
    http_poll_interval : float
        Seconds between gateway polls while watching.
    """

    fetch_high_accuracy: bool = True
    fetch_timeout_ms: int = 10_000
    fetch_max_cache_age_ms: int = 0
    watch_high_accuracy: bool = True
    watch_timeout_ms: int = 5_000
    watch_max_cache_age_ms: int = 1_000
    abort_on_publish_failure: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic: str = "vehicles/+/position"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_keepalive: int = 60
    mqtt_client_id: str = ""
    http_base_url: str = "http://localhost:8080"
    http_token: str | None = None
    http_poll_interval: float = 2.0

    def __post_init__(self) -> None:
        for name in ("fetch_timeout_ms", "watch_timeout_ms"):
            if getattr(self, name) <= 0:
                raise LiveTrackConfigError(f"{name} must be positive")
        for name in ("fetch_max_cache_age_ms", "watch_max_cache_age_ms"):
            if getattr(self, name) < 0:
                raise LiveTrackConfigError(f"{name} must not be negative")
        if self.http_poll_interval <= 0:
            raise LiveTrackConfigError("http_poll_interval must be positive")

    def fetch_options(self) -> FixOptions:
        """Options for the one-shot fix that validates provider access."""
        return FixOptions(
            high_accuracy=self.fetch_high_accuracy,
            timeout_ms=self.fetch_timeout_ms,
            max_cache_age_ms=self.fetch_max_cache_age_ms,
        )

    def watch_options(self) -> FixOptions:
        """Options for continuous sampling."""
        return FixOptions(
            high_accuracy=self.watch_high_accuracy,
            timeout_ms=self.watch_timeout_ms,
            max_cache_age_ms=self.watch_max_cache_age_ms,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``LIVETRACK_*`` environment variables.

        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "LIVETRACK_MQTT_HOST": "mqtt_host",
            "LIVETRACK_MQTT_TOPIC": "mqtt_topic",
            "LIVETRACK_MQTT_USERNAME": "mqtt_username",
            "LIVETRACK_MQTT_PASSWORD": "mqtt_password",
            "LIVETRACK_MQTT_CLIENT_ID": "mqtt_client_id",
            "LIVETRACK_HTTP_BASE_URL": "http_base_url",
            "LIVETRACK_HTTP_TOKEN": "http_token",
        }
        _ENV_INT_MAP = {
            "LIVETRACK_FETCH_TIMEOUT_MS": "fetch_timeout_ms",
            "LIVETRACK_FETCH_MAX_CACHE_AGE_MS": "fetch_max_cache_age_ms",
            "LIVETRACK_WATCH_TIMEOUT_MS": "watch_timeout_ms",
            "LIVETRACK_WATCH_MAX_CACHE_AGE_MS": "watch_max_cache_age_ms",
            "LIVETRACK_MQTT_PORT": "mqtt_port",
            "LIVETRACK_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        _ENV_BOOL_MAP = {
            "LIVETRACK_FETCH_HIGH_ACCURACY": ("fetch_high_accuracy", True),
            "LIVETRACK_WATCH_HIGH_ACCURACY": ("watch_high_accuracy", True),
            "LIVETRACK_ABORT_ON_PUBLISH_FAILURE": ("abort_on_publish_failure", False),
            "LIVETRACK_MQTT_TLS": ("mqtt_tls", False),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, int)

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        # poll interval is fractional, handle separately
        poll_env = env.get("LIVETRACK_HTTP_POLL_INTERVAL")
        if poll_env is not None and "http_poll_interval" not in overrides:
            config_kwargs["http_poll_interval"] = _env_number("LIVETRACK_HTTP_POLL_INTERVAL", poll_env, float)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
