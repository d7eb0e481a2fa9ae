"""HTTP API routes for folder operations."""

from __future__ import annotations

from urllib.parse import unquote

from fastapi import APIRouter, Depends

from ...models.document import FolderCreate, FolderNode, OperationResult, RenameRequest
from ...services.document_store import DocumentStore
from ..dependencies import get_document_store

router = APIRouter()


@router.get("/api/folders", response_model=FolderNode)
async def get_folder_tree(store: DocumentStore = Depends(get_document_store)):
    """Return the complete folder tree."""
    return await store.get_folder_tree()


@router.post("/api/folders", response_model=OperationResult, status_code=201)
async def create_folder(
    payload: FolderCreate, store: DocumentStore = Depends(get_document_store)
):
    """Create a folder (parents included)."""
    path = await store.create_folder(payload.path)
    return OperationResult(message="Folder created successfully", path=path)


@router.put("/api/folders/rename", response_model=OperationResult)
async def rename_folder(
    payload: RenameRequest, store: DocumentStore = Depends(get_document_store)
):
    new_path = await store.rename_folder(payload.old_path, payload.new_path)
    return OperationResult(
        message="Folder renamed successfully", old_path=payload.old_path, new_path=new_path
    )


@router.delete("/api/folders/{path:path}", response_model=OperationResult)
async def delete_folder(path: str, store: DocumentStore = Depends(get_document_store)):
    """Delete a folder and everything below it."""
    folder_path = unquote(path)
    await store.delete_folder(folder_path)
    return OperationResult(message="Folder deleted successfully", path=folder_path)
