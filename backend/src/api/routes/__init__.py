"""HTTP API route handlers."""

from . import folders, pages, search, system

__all__ = ["folders", "pages", "search", "system"]
