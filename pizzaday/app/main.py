import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pizzaday.app.core.limiter import limiter
from pizzaday.app.api import public, admin, admin_auth, realtime
from pizzaday.app.api.deps import get_session, get_slot_locks, require_admin_token
from pizzaday.app.services.notifications import EventPublisher
from pizzaday.app.services.reservations import ReservationEngine
from pizzaday.app.core.logging import setup_logging, get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.core.metrics import PrometheusMiddleware, get_metrics_response

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# Use JSON format in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    timezone=settings.TIMEZONE,
)


async def _sweep_scheduler():
    """Background task: release stale held reservations every SWEEP_INTERVAL_SECONDS."""
    from pizzaday.app.core.database import async_session

    max_age = timedelta(seconds=settings.RESERVATION_HOLD_TTL_SECONDS)
    while True:
        await asyncio.sleep(settings.SWEEP_INTERVAL_SECONDS)
        try:
            redis = await EventPublisher.get_redis()
            engine = ReservationEngine(async_session, get_slot_locks(), EventPublisher(redis))
            released = await engine.sweep_stale_holds(max_age)
            if released:
                logger.info("Sweep scheduler: released stale reservations", count=released)
        except SQLAlchemyError as e:
            logger.error("Sweep scheduler: database error", error=str(e))
        except Exception as e:
            logger.error("Sweep scheduler: unexpected error", error=str(e), exc_info=e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: start the reservation sweep
    - Shutdown: stop it, close Redis
    """
    logger.info("Application starting up", version="1.0.0")
    sweep_task = asyncio.create_task(_sweep_scheduler())
    yield
    sweep_task.cancel()
    logger.info("Application shutting down")
    await EventPublisher.close()


app = FastAPI(title="Pizza Day Backend", lifespan=lifespan)

# Use shared limiter (routers use the same instance for @limiter.limit)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS must be added first so it runs last on the response
ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=ALLOWED_ORIGINS != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(PrometheusMiddleware)

app.include_router(public.router, prefix="/public", tags=["public"])
# Admin login - no token (registered first so /admin/login stays open)
app.include_router(admin_auth.router, prefix="/admin", tags=["admin"])
app.include_router(
    admin.router,
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_token)],
)
app.include_router(realtime.router, tags=["realtime"])


@app.get("/")
async def root():
    return {"status": "ok"}


async def _check_database(session: AsyncSession) -> str:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check: database unreachable", error=str(e))
        return f"error: {e}"
    return "ok"


async def _check_redis() -> str:
    try:
        redis = await EventPublisher.get_redis()
        await redis.ping()
    except Exception as e:
        logger.error("Health check: redis unreachable", error=str(e))
        return f"error: {e}"
    return "ok"


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Database and Redis reachability, for orchestration health checks."""
    checks = {"database": await _check_database(session), "redis": await _check_redis()}
    healthy = all(v == "ok" for v in checks.values())
    return {"status": "healthy" if healthy else "unhealthy", "version": "1.0.0", "checks": checks}


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    return get_metrics_response(openmetrics=openmetrics)
