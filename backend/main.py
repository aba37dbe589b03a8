"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api import ledger, links, sync
from database import init_db
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing ledger tables on startup."""
    init_db()
    logger.info("Ledger database ready")
    yield


app = FastAPI(
    title="Clerk",
    description="Plaid transaction sync into a local double-entry ledger",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(sync.router)
app.include_router(links.router)
app.include_router(ledger.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
