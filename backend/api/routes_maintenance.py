"""
Maintenance API Routes

Administrative cache management for the leaderboard.
"""

from typing import Optional

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field

from config import settings
from services.leaderboard import leaderboard_service
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger(__name__)
router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


# ==================== REQUEST MODELS ====================


class FlushLeaderboardRequest(BaseModel):
    """Request for a manual leaderboard cache flush."""

    include_identities: bool = Field(
        default=False,
        description="Also forget cached Farcaster identities (memory and database)",
    )
    confirm: bool = Field(
        default=False,
        description="Must be true to acknowledge the flush",
    )


def _check_admin_token(token: Optional[str]) -> None:
    expected = settings.ADMIN_TOKEN
    if expected and token != expected:
        raise HTTPException(status_code=403, detail="Invalid admin token")


# ==================== ENDPOINTS ====================


@router.post("/leaderboard/flush")
async def flush_leaderboard(
    request: FlushLeaderboardRequest,
    x_admin_token: Optional[str] = Header(default=None),
):
    """
    Expire every cached leaderboard snapshot.

    Snapshots are marked expired rather than deleted, so the next request
    recomputes but can still fall back to them if the chain is unreachable.
    """
    _check_admin_token(x_admin_token)
    if not request.confirm:
        raise HTTPException(
            status_code=400,
            detail="This operation is destructive. Set confirm=true to proceed.",
        )

    try:
        flushed = await leaderboard_service.flush(
            include_identities=request.include_identities
        )
        logger.warning(
            "Manual leaderboard flush executed",
            include_identities=request.include_identities,
            **flushed,
        )
        return {
            "status": "success",
            "timestamp": utcnow().isoformat(),
            "flushed": flushed,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Manual leaderboard flush failed", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/leaderboard/stats")
async def leaderboard_cache_stats(x_admin_token: Optional[str] = Header(default=None)):
    """Cache sizes, hit counts, rate limiter state and configuration completeness."""
    _check_admin_token(x_admin_token)
    return await leaderboard_service.get_stats()
