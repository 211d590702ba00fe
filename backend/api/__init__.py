from .routes_leaderboard import router as leaderboard_router
from .routes_maintenance import router as maintenance_router

__all__ = ["leaderboard_router", "maintenance_router"]
