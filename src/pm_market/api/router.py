"""pm_market REST endpoints.

POST /markets                          — register a market (optionally anchored)
GET  /markets                          — list, optional status filter
GET  /markets/{market_id}              — full detail
POST /markets/{market_id}/anchor       — set chain_id once
GET  /markets/{market_id}/positions    — all positions in a market
POST /markets/{market_id}/trades       — record a trade (opens/merges a position)
POST /positions/{position_id}/exit     — explicit exit
GET  /users/{address}/positions        — a user's positions
GET  /users/{address}/stats            — a user's aggregate P&L
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from src.bootstrap import get_container
from src.pm_common.enums import MarketStatus
from src.pm_common.response import ApiResponse, success_response
from src.pm_market.application.schemas import (
    AnchorRequest,
    ExitRequest,
    MarketCreateRequest,
    MarketOut,
    PositionOut,
    TradeRequest,
    UserStatsOut,
)
from src.pm_market.application.service import MarketService

router = APIRouter(tags=["markets"])


def get_market_service(request: Request) -> MarketService:
    return get_container(request).market_service


MarketServiceDep = Annotated[MarketService, Depends(get_market_service)]


@router.post("/markets")
async def register_market(
    body: MarketCreateRequest, request: Request, service: MarketServiceDep
) -> ApiResponse:
    market = await service.register_market(body.to_domain())
    return success_response(MarketOut.from_domain(market).model_dump(), request)


@router.get("/markets")
async def list_markets(
    request: Request,
    service: MarketServiceDep,
    status: MarketStatus | None = Query(None, description="Filter by status. Default: all."),
) -> ApiResponse:
    markets = await service.list_markets(status)
    return success_response([MarketOut.from_domain(m).model_dump() for m in markets], request)


@router.get("/markets/{market_id}")
async def get_market(market_id: str, request: Request, service: MarketServiceDep) -> ApiResponse:
    market = await service.get_market(market_id)
    return success_response(MarketOut.from_domain(market).model_dump(), request)


@router.post("/markets/{market_id}/anchor")
async def anchor_market(
    market_id: str, body: AnchorRequest, request: Request, service: MarketServiceDep
) -> ApiResponse:
    market = await service.anchor_chain_id(market_id, body.chain_id)
    return success_response(MarketOut.from_domain(market).model_dump(), request)


@router.get("/markets/{market_id}/positions")
async def list_market_positions(
    market_id: str, request: Request, service: MarketServiceDep
) -> ApiResponse:
    positions = await service.list_market_positions(market_id)
    return success_response([PositionOut.from_domain(p).model_dump() for p in positions], request)


@router.post("/markets/{market_id}/trades")
async def record_trade(
    market_id: str, body: TradeRequest, request: Request, service: MarketServiceDep
) -> ApiResponse:
    position = await service.record_trade(
        body.user_address, market_id, body.outcome, body.shares, body.cost
    )
    return success_response(PositionOut.from_domain(position).model_dump(), request)


@router.post("/positions/{position_id}/exit")
async def exit_position(
    position_id: str, body: ExitRequest, request: Request, service: MarketServiceDep
) -> ApiResponse:
    position = await service.exit_position(position_id, body.proceeds)
    return success_response(PositionOut.from_domain(position).model_dump(), request)


@router.get("/users/{address}/positions")
async def list_user_positions(
    address: str, request: Request, service: MarketServiceDep
) -> ApiResponse:
    positions = await service.list_user_positions(address)
    return success_response([PositionOut.from_domain(p).model_dump() for p in positions], request)


@router.get("/users/{address}/stats")
async def get_user_stats(address: str, request: Request, service: MarketServiceDep) -> ApiResponse:
    stats = await service.get_user_stats(address)
    return success_response(UserStatsOut.from_domain(stats).model_dump(), request)
