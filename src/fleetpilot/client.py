"""Async HTTP client for the SpaceTraders API.

Every request passes through the fleet's RequestScheduler. Rate limits are
absorbed here (fleet-wide cooldown, then retry); transient server and
transport errors are retried on a bounded backoff schedule. Everything else
is raised as an ApiError carrying an ErrorKind the ship actors act on.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx

from fleetpilot.config import Settings
from fleetpilot.fleet.scheduler import Priority, RequestScheduler
from fleetpilot.models import Meta

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """How the fleet should react to a failed call."""

    RATE_LIMITED = "rate_limited"
    COOLDOWN = "cooldown"
    INVALID_STATE = "invalid_state"
    CARGO_FULL = "cargo_full"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    UNAUTHORIZED = "unauthorized"
    OTHER = "other"


# Game error codes → kind. Unlisted codes fall back to the HTTP status.
_CODE_KINDS: dict[int, ErrorKind] = {
    429: ErrorKind.RATE_LIMITED,
    3000: ErrorKind.TRANSIENT,
    4000: ErrorKind.COOLDOWN,
    4101: ErrorKind.UNAUTHORIZED,
    4103: ErrorKind.UNAUTHORIZED,
    4104: ErrorKind.UNAUTHORIZED,
    4113: ErrorKind.UNAUTHORIZED,
    4203: ErrorKind.INVALID_STATE,   # insufficient fuel for navigation
    4204: ErrorKind.INVALID_STATE,   # already at destination
    4214: ErrorKind.INVALID_STATE,   # ship in transit
    4217: ErrorKind.CARGO_FULL,
    4219: ErrorKind.INVALID_STATE,   # waypoint has no market
    4228: ErrorKind.CARGO_FULL,
    4236: ErrorKind.INVALID_STATE,   # ship not in orbit
    4244: ErrorKind.INVALID_STATE,   # ship not docked
    4600: ErrorKind.INSUFFICIENT_FUNDS,
    4602: ErrorKind.INVALID_STATE,   # good not sold here
    4604: ErrorKind.INVALID_STATE,   # trade volume exceeded
}


def classify(code: int, status: int) -> ErrorKind:
    """Map a game error code and HTTP status onto an ErrorKind."""
    if code in _CODE_KINDS:
        return _CODE_KINDS[code]
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 401:
        return ErrorKind.UNAUTHORIZED
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status >= 500:
        return ErrorKind.TRANSIENT
    if status == 409:
        return ErrorKind.INVALID_STATE
    return ErrorKind.OTHER


class ApiError(Exception):
    """Raised when the API returns an error response."""

    def __init__(
        self,
        message: str,
        code: int,
        data: dict[str, Any] | None = None,
        *,
        status: int = 0,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.data = data or {}
        self.kind = kind or classify(code, status)

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT)


class SpaceTradersClient:
    """Async HTTP client for the SpaceTraders API."""

    def __init__(
        self,
        settings: Settings,
        *,
        scheduler: RequestScheduler,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self._scheduler = scheduler
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=settings.request_timeout,
            transport=transport,
        )

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SpaceTradersClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _backoff(self, attempt: int) -> float:
        schedule = self.settings.backoff_schedule or (1.0,)
        return schedule[min(attempt, len(schedule) - 1)]

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None,
        params: dict[str, Any] | None,
        priority: Priority,
    ) -> httpx.Response:
        """One HTTP round trip holding a scheduler slot."""
        async with self._scheduler.slot(priority):
            logger.debug("%s %s params=%s json=%s", method, path, params, json)
            return await self._client.request(method, path, json=json, params=params)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        priority: Priority = Priority.NORMAL,
    ) -> dict[str, Any]:
        transient_attempts = 0
        rate_limited_attempts = 0

        while True:
            try:
                response = await self._send(
                    method, path, json=json, params=params, priority=priority,
                )
            except httpx.TransportError as exc:
                if transient_attempts >= self.settings.max_retries:
                    raise ApiError(
                        f"Transport error on {method} {path}: {exc}",
                        code=0, kind=ErrorKind.TRANSIENT,
                    ) from exc
                wait = self._backoff(transient_attempts)
                transient_attempts += 1
                logger.warning(
                    "Transport error on %s %s: %s, retry %d/%d in %.1fs...",
                    method, path, exc, transient_attempts, self.settings.max_retries, wait,
                )
                await asyncio.sleep(wait)
                continue

            if response.status_code == 204:
                self._scheduler.record_success()
                return {}

            try:
                body = response.json()
            except ValueError as exc:
                if response.status_code >= 500 and transient_attempts < self.settings.max_retries:
                    wait = self._backoff(transient_attempts)
                    transient_attempts += 1
                    logger.warning(
                        "Server error %d on %s %s (non-JSON body), retry %d/%d in %.1fs...",
                        response.status_code, method, path,
                        transient_attempts, self.settings.max_retries, wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                kind = ErrorKind.MALFORMED
                if response.status_code >= 400:
                    kind = classify(0, response.status_code)
                raise ApiError(
                    f"Malformed response from {method} {path}",
                    code=response.status_code, status=response.status_code, kind=kind,
                ) from exc

            logger.debug("Response %d: %s", response.status_code, body)

            if isinstance(body, dict) and "error" in body:
                err = body["error"]
                # API sometimes returns error as a plain string instead of dict
                if isinstance(err, str):
                    code = response.status_code
                    message = err
                    data: dict[str, Any] = {}
                else:
                    code = err.get("code", response.status_code)
                    message = err.get("message", "Unknown API error")
                    data = err.get("data") or {}
                error = ApiError(message, code=code, data=data, status=response.status_code)

                if (
                    error.kind == ErrorKind.RATE_LIMITED
                    and rate_limited_attempts < self.settings.rate_limit_retries
                ):
                    rate_limited_attempts += 1
                    retry_after = _retry_after(response, data)
                    self._scheduler.penalize(retry_after)
                    logger.info(
                        "Rate limited on %s %s, retry %d/%d after fleet cooldown",
                        method, path, rate_limited_attempts, self.settings.rate_limit_retries,
                    )
                    continue

                if (
                    error.kind == ErrorKind.TRANSIENT
                    and transient_attempts < self.settings.max_retries
                ):
                    wait = self._backoff(transient_attempts)
                    transient_attempts += 1
                    logger.warning(
                        "Server error %d on %s %s, retry %d/%d in %.1fs...",
                        code, method, path, transient_attempts, self.settings.max_retries, wait,
                    )
                    await asyncio.sleep(wait)
                    continue

                raise error

            if response.status_code >= 400:
                raise ApiError(
                    f"HTTP {response.status_code} on {method} {path}",
                    code=response.status_code, status=response.status_code,
                )

            self._scheduler.record_success()
            return body

    async def get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        priority: Priority = Priority.LOW,
    ) -> dict[str, Any]:
        return await self._request("GET", path, params=params, priority=priority)

    async def post(
        self,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        priority: Priority = Priority.NORMAL,
    ) -> dict[str, Any]:
        return await self._request("POST", path, json=json, params=params, priority=priority)

    async def patch(
        self,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        priority: Priority = Priority.NORMAL,
    ) -> dict[str, Any]:
        return await self._request("PATCH", path, json=json, priority=priority)

    async def get_paginated(
        self,
        path: str,
        *,
        limit: int = 20,
        params: dict[str, Any] | None = None,
        priority: Priority = Priority.BACKGROUND,
    ) -> tuple[list[dict[str, Any]], Meta]:
        """Fetch all pages from a paginated endpoint."""
        all_items: list[dict[str, Any]] = []
        page = 1
        extra_params = params or {}

        while True:
            body = await self.get(
                path,
                params={**extra_params, "page": page, "limit": limit},
                priority=priority,
            )
            data = body.get("data", [])
            meta = Meta.model_validate(body.get("meta", {"total": 0, "page": 1, "limit": limit}))

            all_items.extend(data)

            if len(all_items) >= meta.total or not data:
                break
            page += 1

        return all_items, meta


def _retry_after(response: httpx.Response, data: dict[str, Any]) -> float | None:
    """Server-provided wait for a 429, from the header or the error payload."""
    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    value = data.get("retryAfter")
    if isinstance(value, (int, float)):
        return float(value)
    return None
