"""
Leaderboard API Routes

Ranked winners across both prediction ledgers, paged and enriched with
Farcaster profiles.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from models.leaderboard import LeaderboardType, TimeFrame
from services.leaderboard import (
    LeaderboardConfigError,
    LeaderboardUnavailableError,
    leaderboard_service,
)
from utils.logger import api_logger as logger
from utils.validation import normalize_address

router = APIRouter(tags=["Leaderboard"])

VALID_TYPES = [t.value for t in LeaderboardType]
VALID_TIMEFRAMES = [t.value for t in TimeFrame]


def _parse_filters(lb_type: str, timeframe: str) -> tuple[LeaderboardType, TimeFrame]:
    if lb_type not in VALID_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid type. Must be one of: {VALID_TYPES}",
        )
    if timeframe not in VALID_TIMEFRAMES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid timeframe. Must be one of: {VALID_TIMEFRAMES}",
        )
    return LeaderboardType(lb_type), TimeFrame(timeframe)


def _parse_address(address: Optional[str]) -> Optional[str]:
    try:
        return normalize_address(address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _config_error_response(e: LeaderboardConfigError) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": f"Server configuration error: Missing {e.setting}",
            "details": f"{e.setting} must be set to compute the leaderboard.",
        },
    )


def _unavailable_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "Failed to fetch leaderboard",
            "details": "Please try again later.",
        },
    )


@router.get("/leaderboard")
async def get_leaderboard(
    lb_type: str = Query(default="accuracy", alias="type"),
    timeframe: str = Query(default="all"),
    refresh: bool = Query(default=False, description="Invalidate caches and recompute"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, alias="pageSize"),
    user_address: Optional[str] = Query(default=None, alias="userAddress"),
):
    """
    Get the ranked winners leaderboard.

    Served from cache when fresh; otherwise recomputed from chain. When the
    recomputation fails the last snapshot is served regardless of age.
    """
    try:
        parsed_type, parsed_timeframe = _parse_filters(lb_type, timeframe)
        requester = _parse_address(user_address)

        result = await leaderboard_service.get_page(
            parsed_type,
            parsed_timeframe,
            page=page,
            page_size=page_size,
            user_address=requester,
            refresh=refresh,
        )
        return result.to_response()
    except HTTPException:
        raise
    except LeaderboardConfigError as e:
        return _config_error_response(e)
    except LeaderboardUnavailableError:
        return _unavailable_response()
    except Exception as e:
        logger.error("Leaderboard request failed", error=str(e), error_type=type(e).__name__)
        return _unavailable_response()


@router.get("/leaderboard/user/{address}")
async def get_leaderboard_user(
    address: str,
    lb_type: str = Query(default="accuracy", alias="type"),
    timeframe: str = Query(default="all"),
):
    """Get a single wallet's ranked, enriched entry."""
    try:
        parsed_type, parsed_timeframe = _parse_filters(lb_type, timeframe)
        requester = _parse_address(address)

        entry = await leaderboard_service.get_user_entry(
            requester, parsed_type, parsed_timeframe
        )
        if entry is None:
            raise HTTPException(status_code=404, detail="Address is not ranked")
        return {"data": entry.model_dump(mode="json"), "userRank": entry.rank}
    except HTTPException:
        raise
    except LeaderboardConfigError as e:
        return _config_error_response(e)
    except LeaderboardUnavailableError:
        return _unavailable_response()
    except Exception as e:
        logger.error("Leaderboard user lookup failed", error=str(e), address=address)
        return _unavailable_response()
