"""Folder, page and revision models."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class FolderNode(BaseModel):
    """A directory under the storage root, with its sub-folders."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "root",
                "path": "/",
                "type": "folder",
                "children": [
                    {"name": "Projects", "path": "Projects", "type": "folder", "children": []}
                ],
            }
        }
    )

    name: str
    path: str = Field(..., description="Root-relative path ('/' for the storage root)")
    type: Literal["folder"] = "folder"
    children: List["FolderNode"] = Field(default_factory=list)


class FileNode(BaseModel):
    """A markdown page inside one folder."""

    name: str
    path: str = Field(..., description="Root-relative path including the .md extension")
    type: Literal["file"] = "file"
    created_at: datetime
    modified_at: datetime


class CommitInfo(BaseModel):
    """One revision touching a page."""

    hash: str = Field(..., description="Opaque revision identifier")
    date: str
    message: str
    author: str


class VersionContent(CommitInfo):
    """A revision together with the page content it recorded."""

    content: str


class SearchResult(BaseModel):
    path: str
    title: str
    snippet: str = Field(..., description="Text surrounding the first match")
    matches: int = Field(..., ge=1)


class FolderCreate(BaseModel):
    path: str = Field(..., min_length=1)


class RenameRequest(BaseModel):
    old_path: str = Field(..., min_length=1)
    new_path: str = Field(..., min_length=1)


class PageCreate(BaseModel):
    path: str = Field(..., min_length=1)
    content: str = ""


class PageUpdate(BaseModel):
    content: str


class PageMove(BaseModel):
    old_path: str = Field(..., min_length=1)
    new_folder_path: Optional[str] = Field(default="", description="Destination folder ('' for root)")


class PageContent(BaseModel):
    path: str
    content: str


class MoveResult(BaseModel):
    success: bool = True
    new_path: str


class OperationResult(BaseModel):
    message: str
    path: Optional[str] = None
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    hash: Optional[str] = None


class HealthStatus(BaseModel):
    status: str
    storage_root: str
    cache_entries: int
    pending_commits: int


FolderNode.model_rebuild()

__all__ = [
    "FolderNode",
    "FileNode",
    "CommitInfo",
    "VersionContent",
    "SearchResult",
    "FolderCreate",
    "RenameRequest",
    "PageCreate",
    "PageUpdate",
    "PageMove",
    "PageContent",
    "MoveResult",
    "OperationResult",
    "HealthStatus",
]
