"""pm_oracle REST endpoints.

GET  /oracle/status               — configuration, eligible markets, sweep checkpoint
POST /oracle/resolve/{market_id}  — run the decision engine for one market now
"""

from fastapi import APIRouter, Request

from src.bootstrap import get_container
from src.pm_common.response import ApiResponse, success_response
from src.pm_market.application.schemas import MarketOut

router = APIRouter(prefix="/oracle", tags=["oracle"])


@router.get("/status")
async def oracle_status(request: Request) -> ApiResponse:
    container = get_container(request)
    engine = container.decision_engine
    eligible = await engine.eligible_markets()
    return success_response(
        {
            "enabled": engine.enabled,
            "decision_service_configured": engine.decision_service_configured,
            "signer_configured": engine.signer_configured,
            "eligible_market_count": len(eligible),
            "markets": [MarketOut.from_domain(m).model_dump() for m in eligible],
            "checkpoint": container.checkpoint.snapshot(),
        },
        request,
    )


@router.post("/resolve/{market_id}")
async def resolve_market(market_id: str, request: Request) -> ApiResponse:
    """409 while a resolution sweep holds the guard; 503 if the oracle is disabled."""
    result = await get_container(request).decision_engine.resolve_now(market_id)
    return success_response(result.as_dict(), request)
