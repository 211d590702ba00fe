from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import traceback

from config import settings
from api import leaderboard_router, maintenance_router
from models.database import init_database
from services.identity_cache import identity_cache
from services.leaderboard import leaderboard_service
from utils.logger import setup_logging, get_logger
from utils.utcnow import utcnow

# Setup logging
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting leaderboard service...")

    missing = settings.missing_upstream_settings()
    if missing:
        # Not fatal: cached snapshots can still be served, misses return 500
        logger.warning("Leaderboard upstream settings missing", missing=missing)

    if settings.IDENTITY_PERSISTENCE_ENABLED:
        try:
            await init_database()
            logger.info("Database initialized")
            await identity_cache.load_from_db()
        except Exception as e:
            logger.error("Identity persistence unavailable", error=str(e))

    yield

    logger.info("Shutting down leaderboard service...")
    await leaderboard_service.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Leaderboard",
    description="Prediction market winners leaderboard across V1 and V2 ledgers",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500, content={"error": "Internal server error", "details": str(exc)}
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API routes
app.include_router(leaderboard_router, prefix="/api")
app.include_router(maintenance_router, prefix="/api")


# Health checks
@app.get("/health")
async def health_check():
    """Liveness plus configuration and cache state"""
    stats = await leaderboard_service.get_stats()
    return {
        "status": "ok" if stats["configured"] else "degraded",
        "timestamp": utcnow().isoformat(),
        **stats,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        # Single worker: caches and in-flight computations live in-process.
        timeout_keep_alive=30,
    )
