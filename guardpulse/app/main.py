"""
FastAPI application entry point.

Run with:
    uvicorn guardpulse.app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from guardpulse.app.core.config import settings
from guardpulse.app.core.logging_config import setup_logging, get_logger
from guardpulse.app.core.errors import register_error_handlers
from guardpulse.app.core.middleware import RequestContextMiddleware
from guardpulse.app.core.health import HealthStatus, run_health_check
from guardpulse.app.core.redis_client import close_redis, get_redis, ping_redis
from guardpulse.app.db.repository import SqlAlchemyRepository
from guardpulse.app.db.session import build_engine, build_session_factory, close_db, init_db
from guardpulse.app.alerts.channels.email_alert import build_email_client
from guardpulse.app.alerts.channels.sms_gateway import build_sms_client
from guardpulse.app.api.deps import AlertEngine, wire_engine

# ── API routers ──
from guardpulse.app.api.v1.incidents import router as incident_router
from guardpulse.app.api.v1.buffer import router as buffer_router
from guardpulse.app.api.v1.alerts import router as alert_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)

EngineFactory = Callable[[], Awaitable[AlertEngine]]

SHUTDOWN_DRAIN_SECONDS = 15.0


async def build_alert_engine() -> AlertEngine:
    """Wire the engine against real infrastructure from settings."""
    db_engine = build_engine()
    if not settings.is_production:
        await init_db(db_engine)
    repository = SqlAlchemyRepository(build_session_factory(db_engine))
    redis = await get_redis()

    engine = wire_engine(
        repository,
        redis,
        sms_client=build_sms_client(),
        email_client=build_email_client(),
        db_engine=db_engine,
    )
    await engine.runtime_config.refresh()
    return engine


async def shutdown_alert_engine(engine: AlertEngine) -> None:
    await engine.task_runner.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    if engine.db_engine is not None:
        await close_db(engine.db_engine)
    await close_redis()


def create_app(engine_factory: Optional[EngineFactory] = None) -> FastAPI:
    """Build the app; ``engine_factory`` replaces the production wiring (tests)."""

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        engine = await (engine_factory or build_alert_engine)()
        app.state.engine = engine
        logger.info(
            "Alert engine ready (sms=%s, email=%s)",
            engine.sms_configured, engine.email_configured,
        )
        yield
        logger.info("Shutting down %s", settings.APP_NAME)
        await shutdown_alert_engine(engine)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Guardian alert engine. Turns ward incidents (falls, SOS, thrown "
            "devices, forced shutdowns) into concurrent guardian notifications "
            "with SMS → console fallback, keeps a short pre-incident buffer of "
            "location and sensor samples, and records a per-guardian delivery "
            "audit trail."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(incident_router)
    app.include_router(buffer_router)
    app.include_router(alert_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "incident-reporting",
                "guardian-fan-out",
                "channel-fallback",
                "pre-incident-buffer",
                "delivery-audit",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        engine: AlertEngine = app.state.engine
        report = await run_health_check(
            engine=engine.db_engine,
            redis=engine.redis,
            sms_configured=engine.sms_configured,
            email_configured=engine.email_configured,
            task_runner=engine.task_runner,
        )
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness probe — engine wired and Redis reachable."""
        engine: Optional[AlertEngine] = getattr(app.state, "engine", None)
        if engine is None or not await ping_redis(engine.redis):
            return JSONResponse(status_code=503, content={"status": "not_ready"})
        return {"status": "ready"}

    return app


app = create_app()
