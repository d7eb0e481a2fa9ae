"""System routes for health and diagnostics."""

from fastapi import APIRouter, Depends

from ...models.document import HealthStatus
from ...services.document_store import DocumentStore
from ..dependencies import get_document_store

router = APIRouter()


@router.get("/api/health", response_model=HealthStatus)
async def health(store: DocumentStore = Depends(get_document_store)):
    """Report storage location, cache size and queued commits."""
    return HealthStatus(
        status="ok",
        storage_root=str(store.root),
        cache_entries=store.cache_stats()["size"],
        pending_commits=store.version_control.pending_commits,
    )
