"""API endpoints package for the simulator."""

from faultsim.app.api.sim import router as sim_router

__all__ = [
    "sim_router",
]
