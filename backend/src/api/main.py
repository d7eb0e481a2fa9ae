"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import register_error_handlers
from .routes import folders, pages, search, system
from ..services.document_store import DocumentStore

logger = logging.getLogger(__name__)


def create_app(store: Optional[DocumentStore] = None) -> FastAPI:
    """
    Build the HTTP adapter around a document store.

    The store is created from environment configuration unless one is passed
    in, which is how tests get an isolated instance per case.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        document_store = store or DocumentStore()
        logger.info("Running startup: preparing storage root %s", document_store.root)
        await document_store.initialize()
        app.state.document_store = document_store
        logger.info("Startup complete: document store ready")
        try:
            yield
        finally:
            await document_store.close()

    app = FastAPI(
        title="Document Store API",
        description="Markdown pages in folders, versioned with git",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(folders.router, tags=["folders"])
    app.include_router(pages.router, tags=["pages"])
    app.include_router(search.router, tags=["search"])
    app.include_router(system.router, tags=["system"])
    return app


app = create_app()

__all__ = ["app", "create_app"]
