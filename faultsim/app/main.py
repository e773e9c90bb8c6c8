import asyncio
import time
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from faultsim.app.api.sim import router as sim_router
from faultsim.app.core.config import Settings, settings as default_settings
from faultsim.app.core.logging import get_log_context, get_logger, setup_logging
from faultsim.app.exceptions import SimulatedCrashError
from faultsim.app.middleware.request_id import RequestIdMiddleware
from faultsim.app.services.rate_limiter import FixedWindowRateLimiter
from faultsim.app.services.simulator import Simulator


async def _sweep_rate_limits(limiter: FixedWindowRateLimiter, interval: float) -> None:
    """Periodically drop rate limit entries whose window has ended."""
    logger = get_logger(__name__)
    while True:
        await asyncio.sleep(interval)
        try:
            await limiter.cleanup()
        except Exception:
            logger.exception("Rate limit sweep failed")


def create_app(
    config: Optional[Settings] = None,
    simulator: Optional[Simulator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to use (defaults to the environment-backed settings)
        simulator: Pre-built simulator, mainly for tests

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings

    setup_logging()
    logger = get_logger(__name__)

    if simulator is None:
        limiter = FixedWindowRateLimiter(max_entries=config.rate_limit_max_entries)
        simulator = Simulator(limiter, config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Starts the rate limit sweeper on startup and cancels it on shutdown.
        """
        sweeper = None
        interval = config.rate_limit_sweep_interval_seconds
        if interval > 0:
            sweeper = asyncio.create_task(
                _sweep_rate_limits(app.state.simulator.limiter, interval)
            )

        logger.info(
            "Application startup complete",
            extra={
                "sweep_interval_seconds": interval,
                "max_entries": config.rate_limit_max_entries,
                "debug_mode": config.debug,
            },
        )

        yield

        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Failure Mode Playground",
        description="Simulates latency, timeouts, 5xx errors, corrupt JSON, crashes and rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.simulator = simulator
    app.state.settings = config

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )

    # Outermost so the id exists before the CORS layer forwards the request
    app.add_middleware(RequestIdMiddleware)

    app.include_router(sim_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Liveness check with the size of the rate limit table."""
        limiter = request.app.state.simulator.limiter
        return {
            "status": "ok",
            "components": {
                "rate_limiter": {"status": "ok", "tracked_keys": len(limiter)},
            },
        }

    @app.exception_handler(SimulatedCrashError)
    async def simulated_crash_handler(request: Request, exc: SimulatedCrashError) -> JSONResponse:
        """Turn ``mode=reset`` into a bare 500 without simulation headers."""
        request.state.crashed = True
        duration_ms = None
        if exc.started is not None:
            duration_ms = round((time.monotonic() - exc.started) * 1000, 1)
        logger.error(
            "request.crash",
            extra=get_log_context(
                request_id=exc.request_id,
                mode=exc.mode,
                duration_ms=duration_ms,
            ),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "simulated_crash", "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if config.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
