"""HTTP API routes for search operations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...models.document import SearchResult
from ...services.document_store import DocumentStore
from ..dependencies import get_document_store

router = APIRouter()


@router.get("/api/search", response_model=list[SearchResult])
async def search_pages(
    q: str = Query("", max_length=256),
    limit: int = Query(50, ge=1, le=200),
    store: DocumentStore = Depends(get_document_store),
):
    """Substring search across all pages. An empty query returns no results."""
    return await store.search_pages(q, max_results=limit)
