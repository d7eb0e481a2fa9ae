"""Pydantic models for data validation and serialization."""

from .document import (
    CommitInfo,
    FileNode,
    FolderCreate,
    FolderNode,
    HealthStatus,
    MoveResult,
    OperationResult,
    PageContent,
    PageCreate,
    PageMove,
    PageUpdate,
    RenameRequest,
    SearchResult,
    VersionContent,
)

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
