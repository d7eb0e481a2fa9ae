"""Service layer for the versioned document store."""

from .cache import TTLCache, content_key, pages_key, tree_key
from .config import AppConfig, get_config, reload_config
from .document_store import DocumentStore
from .errors import (
    CommitError,
    DestinationExistsError,
    DocumentStoreError,
    NotAFolderError,
    NotFoundError,
    PathTraversalError,
    RootDeletionError,
    VersionNotFoundError,
)
from .paths import PathResolver, normalize_relative, resolve_within
from .version_control import GitBackend, VersionControlBackend, VersionControlService

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "TTLCache",
    "tree_key",
    "pages_key",
    "content_key",
    "PathResolver",
    "resolve_within",
    "normalize_relative",
    "VersionControlBackend",
    "GitBackend",
    "VersionControlService",
    "DocumentStore",
    "DocumentStoreError",
    "PathTraversalError",
    "RootDeletionError",
    "NotAFolderError",
    "NotFoundError",
    "DestinationExistsError",
    "VersionNotFoundError",
    "CommitError",
]
