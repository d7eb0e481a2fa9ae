"""Request-scoped access to the shared document store."""

from __future__ import annotations

from fastapi import Request

from ..services.document_store import DocumentStore


def get_document_store(request: Request) -> DocumentStore:
    """Return the store created by the application lifespan."""
    return request.app.state.document_store


__all__ = ["get_document_store"]
