"""Simulation endpoint.

``GET /api/sim?mode=...`` hands the query string to the ``Simulator`` and
sends back whatever it produced, byte for byte, including bodies that are
deliberately not valid JSON.
"""

from fastapi import APIRouter, Depends, Request, Response

from faultsim.app.middleware.request_id import get_request_id
from faultsim.app.services.simulator import Simulator

router = APIRouter(prefix="/api", tags=["simulation"])


def get_simulator(request: Request) -> Simulator:
    """Simulator owned by the running application."""
    return request.app.state.simulator


@router.get("/sim")
async def simulate(
    request: Request,
    simulator: Simulator = Depends(get_simulator),
) -> Response:
    """Emulate the failure mode selected by the ``mode`` query parameter.

    Query parameters: ``mode``, ``delayMs``, ``status``, ``limit``,
    ``windowMs``. Unknown modes behave like ``ok``.
    """
    sim = simulator.build_request(
        request.query_params,
        request.headers,
        request_id=get_request_id(request),
        path=request.url.path,
    )
    result = await simulator.run(sim)

    # No media_type: the simulated content-type goes out untouched
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
    )
