"""Domain errors raised by the document store."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status


class DocumentStoreError(Exception):
    """Base class for document store failures.

    Carries a machine-readable ``error`` code and the HTTP status the API
    layer should answer with.
    """

    error = "document_store_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        *,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail or {}


class PathTraversalError(DocumentStoreError):
    """The requested path resolves outside the storage root."""

    error = "path_traversal"
    status_code = status.HTTP_400_BAD_REQUEST


class RootDeletionError(DocumentStoreError):
    """The storage root itself cannot be deleted or renamed."""

    error = "root_protected"
    status_code = status.HTTP_400_BAD_REQUEST


class NotAFolderError(DocumentStoreError):
    """A folder operation targeted something that is not a directory."""

    error = "not_a_folder"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DocumentStoreError):
    error = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class DestinationExistsError(DocumentStoreError):
    error = "destination_exists"
    status_code = status.HTTP_409_CONFLICT


class VersionNotFoundError(DocumentStoreError):
    """The revision does not contain the requested path."""

    error = "version_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class CommitError(DocumentStoreError):
    """A version-control command failed."""

    error = "commit_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "DocumentStoreError",
    "PathTraversalError",
    "RootDeletionError",
    "NotAFolderError",
    "NotFoundError",
    "DestinationExistsError",
    "VersionNotFoundError",
    "CommitError",
]
