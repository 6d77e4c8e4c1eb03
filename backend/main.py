from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api import deps
from app.api.endpoints import admin, auth, billing, contexts, credits, messages, profiles, public
from app.core.database import engine, Base, SessionLocal
from app.core.settings import settings
from app.services.credits.holds import HoldSweeper
from app.services.credits.service import get_credit_service
import app.models.account  # noqa: F401
import app.models.context_addon  # noqa: F401
import app.models.credit_hold  # noqa: F401
import app.models.credit_transaction  # noqa: F401
import app.models.message_log  # noqa: F401
import app.models.saved_context  # noqa: F401
import app.models.target_profile  # noqa: F401
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="LinkedIn Outreach API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

_sweeper: HoldSweeper | None = None


@app.on_event("startup")
async def startup() -> None:
    global _sweeper
    if settings.is_production and settings.session_secret == "dev-session-secret-change-me":
        raise RuntimeError("SESSION_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    service = get_credit_service()
    _sweeper = HoldSweeper(service.holds, SessionLocal, interval_s=settings.hold_sweep_interval_s)
    _sweeper.start()
    logger.info("app.started hold_backend=%s hold_ttl_s=%s", service.holds.backend, settings.hold_ttl_s)


@app.on_event("shutdown")
async def shutdown() -> None:
    global _sweeper
    if _sweeper is not None:
        await _sweeper.stop()
        _sweeper = None
    await deps.close_clients()


# API Routes
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(profiles.router, prefix="/api", tags=["profiles"])
app.include_router(messages.router, prefix="/api", tags=["messages"])
app.include_router(contexts.router, prefix="/api", tags=["contexts"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(public.router, prefix="/api", tags=["public"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
