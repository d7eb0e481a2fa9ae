"""HTTP API routes for page and page-version operations."""

from __future__ import annotations

from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from ...models.document import (
    CommitInfo,
    FileNode,
    MoveResult,
    OperationResult,
    PageContent,
    PageCreate,
    PageMove,
    PageUpdate,
    RenameRequest,
    VersionContent,
)
from ...services.document_store import DocumentStore
from ...services.errors import NotFoundError
from ..dependencies import get_document_store

router = APIRouter()


@router.get("/api/pages", response_model=list[FileNode])
async def list_pages(
    folder: Optional[str] = Query(None, description="Folder to list ('' or '/' for root)"),
    store: DocumentStore = Depends(get_document_store),
):
    """List the pages of one folder (non-recursive)."""
    return await store.get_pages(folder or "")


@router.post("/api/pages", response_model=OperationResult, status_code=201)
async def create_page(payload: PageCreate, store: DocumentStore = Depends(get_document_store)):
    """Create a new page. Fails with 409 if the page already exists."""
    try:
        await store.get_page_content(payload.path)
        raise HTTPException(
            status_code=409,
            detail={
                "error": "page_already_exists",
                "message": f"A page named '{payload.path}' already exists.",
            },
        )
    except NotFoundError:
        pass

    path = await store.create_page(payload.path, payload.content)
    return OperationResult(message="Page created successfully", path=path)


@router.put("/api/pages/rename", response_model=OperationResult)
async def rename_page(payload: RenameRequest, store: DocumentStore = Depends(get_document_store)):
    new_path = await store.rename_page(payload.old_path, payload.new_path)
    return OperationResult(
        message="Page renamed successfully", old_path=payload.old_path, new_path=new_path
    )


@router.put("/api/pages/move", response_model=MoveResult)
async def move_page(payload: PageMove, store: DocumentStore = Depends(get_document_store)):
    """Move a page into another folder, keeping its file name."""
    new_path = await store.move_page(payload.old_path, payload.new_folder_path or "")
    return MoveResult(new_path=new_path)


@router.get("/api/pages/{path:path}/history", response_model=list[CommitInfo])
async def get_page_history(path: str, store: DocumentStore = Depends(get_document_store)):
    """Revisions of a page, newest first."""
    return await store.get_page_history(unquote(path))


@router.get("/api/pages/{path:path}/diff", response_class=PlainTextResponse)
async def get_page_diff(
    path: str,
    from_hash: str = Query(..., alias="from"),
    to_hash: str = Query(..., alias="to"),
    store: DocumentStore = Depends(get_document_store),
):
    return await store.get_page_diff(unquote(path), from_hash, to_hash)


@router.get("/api/pages/{path:path}/versions/{revision}", response_model=VersionContent)
async def get_page_version(
    path: str, revision: str, store: DocumentStore = Depends(get_document_store)
):
    """Page content as recorded by one revision."""
    return await store.get_page_version(unquote(path), revision)


@router.post("/api/pages/{path:path}/versions/{revision}/restore", response_model=OperationResult)
async def restore_page_version(
    path: str, revision: str, store: DocumentStore = Depends(get_document_store)
):
    """Restore a page to an earlier revision, recorded as a new revision."""
    page_path = unquote(path)
    new_hash = await store.restore_page_version(page_path, revision)
    return OperationResult(message="Page restored successfully", path=page_path, hash=new_hash)


@router.get("/api/pages/{path:path}", response_model=PageContent)
async def get_page(path: str, store: DocumentStore = Depends(get_document_store)):
    page_path = unquote(path)
    content = await store.get_page_content(page_path)
    return PageContent(path=page_path, content=content)


@router.put("/api/pages/{path:path}", response_model=OperationResult)
async def update_page(
    path: str, payload: PageUpdate, store: DocumentStore = Depends(get_document_store)
):
    """Replace the content of an existing page."""
    page_path = await store.update_page(unquote(path), payload.content)
    return OperationResult(message="Page updated successfully", path=page_path)


@router.delete("/api/pages/{path:path}", response_model=OperationResult)
async def delete_page(path: str, store: DocumentStore = Depends(get_document_store)):
    page_path = unquote(path)
    await store.delete_page(page_path)
    return OperationResult(message="Page deleted successfully", path=page_path)
