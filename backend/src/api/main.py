"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import register_error_handlers
from .routes import chat
from ..services.config import get_config
from ..services.database import init_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler to run startup tasks."""
    db_path = init_database()
    logger.info(f"Startup complete: database ready at {db_path}")
    yield


app = FastAPI(
    title="TaskNotes Chat API",
    description="Streaming chat assistant with tool calling over notes and tasks",
    version="0.1.0",
    lifespan=lifespan,
)

config = get_config()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(chat.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


__all__ = ["app"]
