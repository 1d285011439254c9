"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import audit, changes, sync
from config import settings
from database import init_db
from logging_config import setup_logging
from services.sync_service import get_sync_orchestrator

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, optionally start periodic sync, stop it on shutdown."""
    try:
        init_db()
    except Exception:
        logger.error("Database initialization failed on startup", exc_info=True)
        raise

    orchestrator = None
    if settings.SYNC_AUTOSTART:
        try:
            orchestrator = get_sync_orchestrator()
            orchestrator.start()
        except Exception:
            logger.warning("Sync autostart failed", exc_info=True)
    yield

    if orchestrator is not None:
        orchestrator.stop()


app = FastAPI(
    title="Directory Sync Manager",
    description="Keeps an LDAP directory in line with the identity provider",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(sync.router)
app.include_router(changes.router)
app.include_router(audit.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
