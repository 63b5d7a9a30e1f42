import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.exceptions import AppException, app_exception_handler
from core.limiter import limiter
from database import connect_db, close_db
from services import intent_dispatcher
from services.broadcaster import broadcaster

# Routers
from routers import parcels, agents, admin, live

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    logger.info("Courier API started")
    yield
    # Shutdown : laisser partir les notifications en cours
    await intent_dispatcher.drain()
    await close_db()
    logger.info("Courier API stopped")


app = FastAPI(
    title="Courier API",
    description="Cycle de vie des colis : réservation, collecte, livraison et suivi en direct",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Erreurs métier
app.add_exception_handler(AppException, app_exception_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers (le suivi public est dans parcels)
app.include_router(parcels.router, prefix="/api/parcels", tags=["Parcels"])
app.include_router(agents.router, prefix="/api/agents", tags=["Agents"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(live.router, tags=["Live"])


@app.get("/health", tags=["Health"])
async def health():
    return {
        "status": "ok",
        "app": "courier",
        "version": "1.0.0",
        "live_connections": broadcaster.connection_count,
    }
