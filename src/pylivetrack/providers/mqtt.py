"""MQTT location provider.

Vehicle GPS units publish JSON fixes to a broker topic. This provider runs a
threaded paho-mqtt client, parses each payload into a :class:`Fix` on the
network thread and hands it to the asyncio loop with
``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import (
    LocationError,
    LocationTimeoutError,
    PermissionDeniedError,
    ProviderFailureError,
    UnsupportedError,
)
from pylivetrack.models.sample import Fix, FixOptions
from pylivetrack.providers.base import ErrorCallback, FixCallback

_logger = logging.getLogger(__name__)

# MQTT v5 CONNACK reason codes meaning "credentials refused".
_AUTH_REASON_CODES = frozenset({134, 135})


@dataclass(slots=True)
class _Watch:
    on_fix: FixCallback
    on_error: ErrorCallback


def _now_ms() -> int:
    return int(time.time() * 1000)


def decode_fix_payload(payload: bytes) -> Fix:
    """Decode an MQTT payload into a :class:`Fix`.

    Raises ``ValueError`` (or :class:`pydantic.ValidationError`, a subclass)
    when the payload is not a JSON object with usable coordinates.
    """
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("MQTT payload is not a JSON object")
    return Fix.model_validate(parsed)


def resolve_topic(topic: str, vehicle_id: str | None) -> str:
    """Substitute the single-level wildcard with the tracked vehicle id."""
    if vehicle_id and "+" in topic:
        return topic.replace("+", vehicle_id, 1)
    return topic


class MqttLocationProvider:
    """Threaded paho-mqtt provider that emits fixes onto an asyncio loop.

    The broker connection is opened lazily on the first fetch or watch and
    released once no watch or pending fetch remains.
    """

    name = "mqtt"

    def __init__(
        self,
        config: TrackerConfig,
        *,
        vehicle_id: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._topic = resolve_topic(config.mqtt_topic, vehicle_id)
        self._loop = loop
        self._clock_ms = clock_ms
        self._client: mqtt.Client | None = None
        self._running = False
        self._connect_error: LocationError | None = None
        self._last_fix: Fix | None = None
        self._last_fix_at_ms: int | None = None
        self._watch_ids = itertools.count(1)
        self._watches: dict[int, _Watch] = {}
        self._waiters: list[asyncio.Future[Fix]] = []

    @property
    def topic(self) -> str:
        return self._topic

    def is_available(self) -> bool:
        return bool(self._config.mqtt_host and self._topic)

    # ------------------------------------------------------------------
    # Runtime lifecycle
    # ------------------------------------------------------------------

    def _ensure_started(self) -> None:
        if not self.is_available():
            raise UnsupportedError("No MQTT broker or topic configured", provider=self.name)
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if self._running:
            return
        self._connect_error = None
        _logger.debug(
            "MQTT provider start host=%s port=%s topic=%s",
            self._config.mqtt_host,
            self._config.mqtt_port,
            self._topic,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._config.mqtt_client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(_logger)
        if self._config.mqtt_username:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        if self._config.mqtt_tls:
            client.tls_set()

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        client.connect_async(self._config.mqtt_host, self._config.mqtt_port, keepalive=self._config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True

    def _stop(self) -> None:
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                _logger.debug("MQTT provider disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT provider network loop stopped")

    def _release_if_idle(self) -> None:
        if not self._watches and not self._waiters:
            self._stop()

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        c: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            _logger.warning("MQTT connect refused: %s", reason_code)
            error: LocationError
            if reason_code.value in _AUTH_REASON_CODES:
                error = PermissionDeniedError(f"Broker refused credentials: {reason_code}", provider=self.name)
            else:
                error = ProviderFailureError(f"Broker refused connection: {reason_code}", provider=self.name)
            self._call_in_loop(self._report_error, error)
            return
        _logger.debug("MQTT connected, subscribing topic=%s", self._topic)
        c.subscribe(self._topic, qos=0)

    def _on_connect_fail(self, _client: mqtt.Client, _userdata: Any) -> None:
        _logger.warning("MQTT connection to %s:%s failed", self._config.mqtt_host, self._config.mqtt_port)
        error = ProviderFailureError(
            f"Cannot reach broker {self._config.mqtt_host}:{self._config.mqtt_port}",
            provider=self.name,
        )
        self._call_in_loop(self._report_error, error)

    def _on_message(self, _c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            fix = decode_fix_payload(msg.payload)
        except (ValueError, UnicodeDecodeError, ValidationError):
            _logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
            return
        _logger.debug("MQTT fix topic=%s lat=%s lng=%s", msg.topic, fix.latitude, fix.longitude)
        self._call_in_loop(self._handle_fix, fix)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if self._running:
            _logger.debug("MQTT disconnected: %s", reason_code)
            error = ProviderFailureError(f"Broker connection lost: {reason_code}", provider=self.name)
            self._call_in_loop(self._report_error, error)

    def _call_in_loop(self, fn: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    # ------------------------------------------------------------------
    # Loop-side dispatch
    # ------------------------------------------------------------------

    def _handle_fix(self, fix: Fix) -> None:
        self._last_fix = fix
        self._last_fix_at_ms = self._clock_ms()
        self._connect_error = None

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(fix)

        for watch in list(self._watches.values()):
            watch.on_fix(fix)

    def _report_error(self, error: LocationError) -> None:
        if isinstance(error, PermissionDeniedError):
            self._connect_error = error
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(error)

        for watch in list(self._watches.values()):
            watch.on_error(error)

    def _cached_fix(self, options: FixOptions) -> Fix | None:
        if options.max_cache_age_ms <= 0 or self._last_fix is None or self._last_fix_at_ms is None:
            return None
        if self._clock_ms() - self._last_fix_at_ms > options.max_cache_age_ms:
            return None
        return self._last_fix

    # ------------------------------------------------------------------
    # LocationProvider
    # ------------------------------------------------------------------

    async def get_position(self, options: FixOptions) -> Fix:
        cached = self._cached_fix(options)
        if cached is not None:
            return cached

        self._ensure_started()
        if self._connect_error is not None:
            raise self._connect_error

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[Fix] = loop.create_future()
        self._waiters.append(waiter)
        try:
            async with asyncio.timeout(options.timeout_s):
                return await waiter
        except TimeoutError as exc:
            raise LocationTimeoutError(
                f"No fix on {self._topic} within {options.timeout_ms} ms",
                provider=self.name,
            ) from exc
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            self._release_if_idle()

    def watch_position(self, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        self._ensure_started()
        watch_id = next(self._watch_ids)
        self._watches[watch_id] = _Watch(on_fix=on_fix, on_error=on_error)

        cached = self._cached_fix(options)
        if cached is not None and self._loop is not None:
            self._loop.call_soon(self._deliver_cached, watch_id, cached)
        return watch_id

    def _deliver_cached(self, watch_id: int, fix: Fix) -> None:
        watch = self._watches.get(watch_id)
        if watch is not None:
            watch.on_fix(fix)

    def clear_watch(self, watch_id: int) -> None:
        if self._watches.pop(watch_id, None) is None:
            return
        self._release_if_idle()

    async def close(self) -> None:
        self._watches.clear()
        for waiter in self._waiters:
            if not waiter.done():
                waiter.cancel()
        self._waiters.clear()
        self._stop()
