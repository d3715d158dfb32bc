"""HTTP gateway location provider.

Polls ``GET {base_url}/vehicles/{vehicle_id}/position`` on a GPS gateway.
Watches run one polling task each and only emit fixes that changed since the
previous poll.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any

import aiohttp
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

USER_AGENT = "pylivetrack/1"


class HttpLocationProvider:
    """Provider backed by an HTTP GPS gateway.

    Usage::

        async with HttpLocationProvider(config, vehicle_id="BUS-12") as provider:
            fix = await provider.get_position(config.fetch_options())
    """

    name = "http"

    def __init__(
        self,
        config: TrackerConfig,
        vehicle_id: str,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._vehicle_id = vehicle_id
        self._external_session = session is not None
        self._http = session
        self._watch_ids = itertools.count(1)
        self._watches: dict[int, asyncio.Task[None]] = {}

    async def __aenter__(self) -> HttpLocationProvider:
        self._require_session()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def endpoint(self) -> str:
        return f"/vehicles/{self._vehicle_id}/position"

    def is_available(self) -> bool:
        return bool(self._config.http_base_url and self._vehicle_id)

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    async def _fetch_fix(self, options: FixOptions) -> Fix:
        if not self.is_available():
            raise UnsupportedError("No GPS gateway configured", provider=self.name)

        http = self._require_session()
        url = f"{self._config.http_base_url.rstrip('/')}{self.endpoint}"
        headers: dict[str, str] = {"accept": "application/json", "user-agent": USER_AGENT}
        if self._config.http_token:
            headers["authorization"] = f"Bearer {self._config.http_token}"
        params = {
            "highAccuracy": "1" if options.high_accuracy else "0",
            "maximumAge": str(options.max_cache_age_ms),
        }
        timeout = aiohttp.ClientTimeout(total=options.timeout_s)

        _logger.debug("GET %s", url)

        try:
            async with http.get(url, params=params, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                status = resp.status
        except TimeoutError as exc:
            raise LocationTimeoutError(
                f"No fix from {self.endpoint} within {options.timeout_ms} ms",
                provider=self.name,
            ) from exc
        except aiohttp.ClientError as exc:
            raise ProviderFailureError(f"Request to {self.endpoint} failed: {exc}", provider=self.name) from exc

        if status in (401, 403):
            raise PermissionDeniedError(f"HTTP {status} from {self.endpoint}", provider=self.name)
        if status in (404, 501):
            raise UnsupportedError(f"HTTP {status} from {self.endpoint}", provider=self.name)
        if status == 504:
            raise LocationTimeoutError(f"Gateway timed out resolving {self.endpoint}", provider=self.name)
        if status != 200:
            raise ProviderFailureError(f"HTTP {status} from {self.endpoint}: {text[:200]}", provider=self.name)

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderFailureError(f"Invalid JSON from {self.endpoint}: {text[:200]}", provider=self.name) from exc
        if not isinstance(body, dict):
            raise ProviderFailureError(f"Unexpected payload from {self.endpoint}", provider=self.name)

        try:
            return Fix.model_validate(body)
        except ValidationError as exc:
            raise ProviderFailureError(f"Unusable fix from {self.endpoint}: {exc}", provider=self.name) from exc

    async def get_position(self, options: FixOptions) -> Fix:
        return await self._fetch_fix(options)

    def watch_position(self, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        if not self.is_available():
            raise UnsupportedError("No GPS gateway configured", provider=self.name)
        watch_id = next(self._watch_ids)
        self._watches[watch_id] = asyncio.get_running_loop().create_task(
            self._poll(watch_id, options, on_fix, on_error),
            name=f"http-watch-{watch_id}",
        )
        return watch_id

    async def _poll(self, watch_id: int, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> None:
        last_key: tuple[Any, ...] | None = None
        while True:
            try:
                fix = await self._fetch_fix(options)
            except LocationError as exc:
                _logger.debug("HTTP watch %d poll failed: %s", watch_id, exc)
                if isinstance(exc, LocationTimeoutError):
                    # Timeouts belong to one-shot fetches; while watching a slow
                    # poll is a transient provider failure.
                    exc = ProviderFailureError(str(exc), provider=self.name)
                on_error(exc)
            else:
                key = (fix.timestamp_ms, fix.latitude, fix.longitude)
                if key != last_key:
                    last_key = key
                    on_fix(fix)
            await asyncio.sleep(self._config.http_poll_interval)

    def clear_watch(self, watch_id: int) -> None:
        task = self._watches.pop(watch_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        tasks = list(self._watches.values())
        self._watches.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if not self._external_session and self._http is not None:
            await self._http.close()
        self._http = None
