"""Simulation dispatcher.

Maps a mode plus its parameters onto one of eight response behaviours.
Everything here works on plain data (``SimulationRequest`` in,
``SimulationResponse`` out) so the HTTP layer stays a thin adapter.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from faultsim.app.core.config import Settings, settings as default_settings
from faultsim.app.core.logging import get_log_context, get_logger
from faultsim.app.exceptions import SimulatedCrashError
from faultsim.app.services.rate_limiter import FixedWindowRateLimiter

logger = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
CORRUPT_JSON_BODY = "{ invalid json"
TIMEOUT_NOTE = "This should have timed out client-side."


class Mode(str, Enum):
    """Failure behaviour selected by the ``mode`` query parameter."""
    OK = "ok"
    SLOW = "slow"
    TIMEOUT = "timeout"
    ERROR500 = "error500"
    ERROR503 = "error503"
    CORRUPT_JSON = "corruptJson"
    RESET = "reset"
    RATELIMIT = "ratelimit"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Mode":
        """Resolve a raw mode string; anything unrecognised means ``ok``."""
        try:
            return cls(raw)
        except ValueError:
            return cls.OK


def _int_param(raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        try:
            # "1500.0" style values
            return int(float(raw))
        except (ValueError, OverflowError):
            return default


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """Client identity: first X-Forwarded-For hop, then X-Real-IP."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return "unknown"


@dataclass(frozen=True)
class SimulationRequest:
    """Resolved mode and parameters for a single simulated request."""
    mode: Mode
    request_id: str
    client_ip: str = "unknown"
    delay_ms: int = 1500
    error_status: int = 500
    limit: int = 5
    window_ms: int = 60000
    path: str = "/api/sim"
    query: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def rate_limit_key(self) -> str:
        return f"{self.client_ip}::ratelimit"

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, str],
        request_id: str,
        client_ip: str = "unknown",
        config: Optional[Settings] = None,
        path: str = "/api/sim",
    ) -> "SimulationRequest":
        """Build a request from query parameters.

        Unusable values never produce an error: they fall back to the
        configured default or are clamped into range.
        """
        config = config or default_settings

        delay_ms = _int_param(params.get("delayMs"), config.sim_default_delay_ms)
        delay_ms = min(max(delay_ms, 0), config.sim_max_delay_ms)

        error_status = _int_param(params.get("status"), config.sim_default_error_status)
        if not 400 <= error_status <= 599:
            error_status = config.sim_default_error_status

        limit = max(_int_param(params.get("limit"), config.sim_default_limit), 1)
        window_ms = max(_int_param(params.get("windowMs"), config.sim_default_window_ms), 1000)

        return cls(
            mode=Mode.parse(params.get("mode")),
            request_id=request_id,
            client_ip=client_ip,
            delay_ms=delay_ms,
            error_status=error_status,
            limit=limit,
            window_ms=window_ms,
            path=path,
            query=dict(params),
        )


@dataclass
class SimulationResponse:
    """What the transport should send back. Header order is preserved."""
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    is_failure: bool = False

    @classmethod
    def from_json(
        cls,
        payload: dict[str, Any],
        request_id: str,
        status_code: int = 200,
        extra_headers: Optional[Mapping[str, str]] = None,
    ) -> "SimulationResponse":
        headers = {"x-request-id": request_id}
        headers.update(extra_headers or {})
        headers["content-type"] = JSON_CONTENT_TYPE
        return cls(
            status_code=status_code,
            headers=headers,
            body=json.dumps(payload, separators=(",", ":")),
            is_failure=status_code >= 400,
        )

    @classmethod
    def from_text(
        cls,
        text: str,
        request_id: str,
        status_code: int,
        extra_headers: Optional[Mapping[str, str]] = None,
    ) -> "SimulationResponse":
        headers = {"x-request-id": request_id}
        headers.update(extra_headers or {})
        headers["content-type"] = TEXT_CONTENT_TYPE
        return cls(
            status_code=status_code,
            headers=headers,
            body=text,
            is_failure=status_code >= 400,
        )


class Simulator:
    """Produces the simulated response for each mode.

    Owns no state of its own; the rate limit table lives in the injected
    ``FixedWindowRateLimiter``.
    """

    def __init__(
        self,
        limiter: FixedWindowRateLimiter,
        config: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.limiter = limiter
        self.config = config or default_settings
        self._sleep = sleep
        self._handlers = {
            Mode.OK: self._ok,
            Mode.SLOW: self._slow,
            Mode.TIMEOUT: self._timeout,
            Mode.ERROR500: self._error,
            Mode.ERROR503: self._error,
            Mode.CORRUPT_JSON: self._corrupt_json,
            Mode.RESET: self._reset,
            Mode.RATELIMIT: self._ratelimit,
        }

    def build_request(
        self,
        params: Mapping[str, str],
        headers: Mapping[str, str],
        request_id: str,
        path: str = "/api/sim",
    ) -> SimulationRequest:
        return SimulationRequest.from_params(
            params,
            request_id=request_id,
            client_ip=resolve_client_ip(headers),
            config=self.config,
            path=path,
        )

    async def run(self, sim: SimulationRequest) -> SimulationResponse:
        """Dispatch ``sim`` to its mode handler.

        Raises:
            SimulatedCrashError: for ``mode=reset``
        """
        started = time.monotonic()
        logger.info(
            "request.start",
            extra=get_log_context(
                request_id=sim.request_id,
                mode=sim.mode.value,
                client_ip=sim.client_ip,
                path=sim.path,
                query=sim.query,
            ),
        )
        response = await self._handlers[sim.mode](sim, started)
        logger.info(
            "request.end",
            extra=get_log_context(
                request_id=sim.request_id,
                mode=sim.mode.value,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
                status_code=response.status_code,
            ),
        )
        return response

    async def _ok(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        return SimulationResponse.from_json(
            {"ok": True, "id": sim.request_id, "mode": sim.mode.value},
            sim.request_id,
        )

    async def _slow(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        await self._sleep(sim.delay_ms / 1000)
        return SimulationResponse.from_json(
            {"ok": True, "id": sim.request_id, "mode": sim.mode.value, "delayMs": sim.delay_ms},
            sim.request_id,
        )

    async def _timeout(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        # Long enough that a client with a sane timeout gives up first
        hold_ms = max(sim.delay_ms, self.config.sim_timeout_floor_ms)
        await self._sleep(hold_ms / 1000)
        return SimulationResponse.from_json(
            {"ok": True, "id": sim.request_id, "mode": sim.mode.value, "note": TIMEOUT_NOTE},
            sim.request_id,
        )

    async def _error(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        status_code = 503 if sim.mode is Mode.ERROR503 else sim.error_status
        return SimulationResponse.from_text(
            f"Simulated error ({status_code})",
            sim.request_id,
            status_code=status_code,
        )

    async def _corrupt_json(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        return SimulationResponse(
            status_code=200,
            headers={"x-request-id": sim.request_id, "content-type": JSON_CONTENT_TYPE},
            body=CORRUPT_JSON_BODY,
            is_failure=True,
        )

    async def _reset(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        raise SimulatedCrashError(
            request_id=sim.request_id,
            mode=sim.mode.value,
            started=started,
        )

    async def _ratelimit(self, sim: SimulationRequest, started: float) -> SimulationResponse:
        decision = await self.limiter.check(sim.rate_limit_key, sim.limit, sim.window_ms)

        headers = {
            "x-ratelimit-limit": str(decision.limit),
            "x-ratelimit-remaining": str(decision.remaining),
            "x-ratelimit-reset": str(int(decision.reset_at)),
        }

        if not decision.allowed:
            headers["retry-after"] = str(decision.retry_after(self.limiter.clock()))
            logger.warning(
                "Simulated rate limit exceeded",
                extra=get_log_context(
                    request_id=sim.request_id,
                    mode=sim.mode.value,
                    client_ip=sim.client_ip,
                ),
            )
            return SimulationResponse.from_text(
                "Too Many Requests",
                sim.request_id,
                status_code=429,
                extra_headers=headers,
            )

        return SimulationResponse.from_json(
            {
                "ok": True,
                "id": sim.request_id,
                "mode": sim.mode.value,
                "message": f"Allowed ({decision.remaining} remaining)",
            },
            sim.request_id,
            extra_headers=headers,
        )
