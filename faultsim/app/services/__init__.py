"""Simulation services: the fixed-window rate limiter and the mode dispatcher."""

from faultsim.app.services.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitDecision,
    RateLimitEntry,
)
from faultsim.app.services.simulator import (
    Mode,
    SimulationRequest,
    SimulationResponse,
    Simulator,
)

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "RateLimitEntry",
    "Mode",
    "SimulationRequest",
    "SimulationResponse",
    "Simulator",
]
