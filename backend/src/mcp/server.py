"""FastMCP server exposing folder, page and version tools to AI agents."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

# Load environment variables from .env file
load_dotenv()

from ..services.document_store import PAGE_EXTENSION, DocumentStore

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Personal wiki tools. Paths are relative to the storage root, use '/' separators, "
    "and '' or '/' names the root. Pages are '.md' files; every create, update, delete "
    "and move is recorded as a git revision. Revision hashes from get_page_history are "
    "opaque and must be passed back unchanged."
)


class _StoreProvider:
    """Creates and initializes the document store on first use."""

    def __init__(self, store: Optional[DocumentStore] = None) -> None:
        self._store = store
        self._ready = False
        self._lock = asyncio.Lock()

    async def get(self) -> DocumentStore:
        async with self._lock:
            if self._store is None:
                self._store = DocumentStore()
            if not self._ready:
                await self._store.initialize()
                self._ready = True
        return self._store

    async def close(self) -> None:
        """Flush queued commits. The store stays usable and restarts its worker on demand."""
        async with self._lock:
            if self._store is not None and self._ready:
                await self._store.close()


def _log_tool(tool_name: str, start_time: float, **extra: Any) -> None:
    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "MCP tool called",
        extra={"tool_name": tool_name, "duration_ms": f"{duration_ms:.2f}", **extra},
    )


def _ensure_extension(path: str) -> str:
    return path if path.endswith(PAGE_EXTENSION) else f"{path}{PAGE_EXTENSION}"


def create_mcp_server(store: Optional[DocumentStore] = None) -> FastMCP:
    """Build an MCP server whose tools operate on ``store`` (created lazily if None)."""
    provider = _StoreProvider(store)

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            logger.info("MCP server shutting down: flushing queued commits")
            await provider.close()

    server = FastMCP("document-store", instructions=INSTRUCTIONS, lifespan=lifespan)

    @server.tool(name="list_folders", description="Return the folder tree of the wiki.")
    async def list_folders() -> Dict[str, Any]:
        start_time = time.time()
        tree = await (await provider.get()).get_folder_tree()
        _log_tool("list_folders", start_time)
        return tree.model_dump()

    @server.tool(name="create_folder", description="Create a folder (parents included).")
    async def create_folder(
        path: str = Field(..., description="Folder path, e.g. 'Projects/2024'."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        created = await (await provider.get()).create_folder(path)
        _log_tool("create_folder", start_time, folder=created)
        return {"path": created, "created": True}

    @server.tool(
        name="delete_folder",
        description="Delete a folder and every page below it. The root cannot be deleted.",
    )
    async def delete_folder(
        path: str = Field(..., description="Folder path to delete."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        await (await provider.get()).delete_folder(path)
        _log_tool("delete_folder", start_time, folder=path)
        return {"path": path, "deleted": True}

    @server.tool(
        name="rename_folder",
        description="Rename or move a folder. Fails if the new path already exists.",
    )
    async def rename_folder(
        old_path: str = Field(..., description="Current folder path."),
        new_path: str = Field(..., description="New folder path."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        renamed = await (await provider.get()).rename_folder(old_path, new_path)
        _log_tool("rename_folder", start_time, folder=old_path, new_path=renamed)
        return {"old_path": old_path, "new_path": renamed}

    @server.tool(name="list_pages", description="List the pages of one folder (non-recursive).")
    async def list_pages(
        folder: str = Field(default="", description="Folder path; '' for the root."),
    ) -> List[Dict[str, Any]]:
        start_time = time.time()
        pages = await (await provider.get()).get_pages(folder)
        _log_tool("list_pages", start_time, folder=folder or "(root)", result_count=len(pages))
        return [page.model_dump(mode="json") for page in pages]

    @server.tool(name="get_page", description="Read the full content of a page by its path.")
    async def get_page(
        path: str = Field(..., description="Page path, e.g. 'folder/page.md'."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        content = await (await provider.get()).get_page_content(path)
        _log_tool("get_page", start_time, page_path=path)
        return {"path": path, "content": content}

    @server.tool(
        name="create_page",
        description="Create a page with the given markdown content. '.md' is appended if missing.",
    )
    async def create_page(
        path: str = Field(..., description="Path for the new page."),
        content: str = Field(default="", description="Markdown content."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        created = await (await provider.get()).create_page(_ensure_extension(path), content)
        _log_tool("create_page", start_time, page_path=created)
        return {"path": created, "created": True}

    @server.tool(name="update_page", description="Replace the entire content of an existing page.")
    async def update_page(
        path: str = Field(..., description="Path of the page to update."),
        content: str = Field(..., description="New markdown content."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        updated = await (await provider.get()).update_page(path, content)
        _log_tool("update_page", start_time, page_path=updated)
        return {"path": updated, "updated": True}

    @server.tool(name="delete_page", description="Delete a page.")
    async def delete_page(
        path: str = Field(..., description="Path of the page to delete."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        await (await provider.get()).delete_page(path)
        _log_tool("delete_page", start_time, page_path=path)
        return {"path": path, "deleted": True}

    @server.tool(
        name="rename_page",
        description="Rename a page. '.md' is appended to the new name if missing.",
    )
    async def rename_page(
        old_path: str = Field(..., description="Current page path."),
        new_path: str = Field(..., description="New page path."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        renamed = await (await provider.get()).rename_page(old_path, _ensure_extension(new_path))
        _log_tool("rename_page", start_time, page_path=old_path, new_path=renamed)
        return {"old_path": old_path, "new_path": renamed}

    @server.tool(
        name="move_page",
        description="Move a page into another folder. Fails if the destination name is taken.",
    )
    async def move_page(
        path: str = Field(..., description="Current page path."),
        folder: str = Field(default="", description="Destination folder; '' for the root."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        new_path = await (await provider.get()).move_page(path, folder)
        _log_tool("move_page", start_time, page_path=path, new_path=new_path)
        return {"old_path": path, "new_path": new_path}

    @server.tool(
        name="search_pages",
        description="Case-insensitive search across all pages; returns snippets and match counts.",
    )
    async def search_pages(
        query: str = Field(..., min_length=1, description="Text to look for."),
        max_results: int = Field(default=20, ge=1, description="Maximum results to return."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        results = await (await provider.get()).search_pages(query)
        _log_tool("search_pages", start_time, result_count=len(results))
        return {
            "results": [result.model_dump() for result in results[:max_results]],
            "total": len(results),
        }

    @server.tool(name="get_page_history", description="List revisions of a page, newest first.")
    async def get_page_history(
        path: str = Field(..., description="Page path."),
    ) -> List[Dict[str, Any]]:
        start_time = time.time()
        history = await (await provider.get()).get_page_history(path)
        _log_tool("get_page_history", start_time, page_path=path, result_count=len(history))
        return [commit.model_dump() for commit in history]

    @server.tool(name="get_page_version", description="Read a page as recorded by one revision.")
    async def get_page_version(
        path: str = Field(..., description="Page path."),
        revision: str = Field(..., description="Revision hash from get_page_history."),
    ) -> Dict[str, Any]:
        start_time = time.time()
        version = await (await provider.get()).get_page_version(path, revision)
        _log_tool("get_page_version", start_time, page_path=path, revision=revision)
        return version.model_dump()

    return server


mcp = create_mcp_server()

__all__ = ["mcp", "create_mcp_server"]


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", "stdio").strip().lower() or "stdio"

    if transport == "http":
        port = int(os.getenv("MCP_PORT", "8001"))
        host = os.getenv("MCP_HOST", "127.0.0.1")
        logger.info(
            "Starting MCP server",
            extra={"transport": transport, "host": host, "port": port},
        )
        mcp.run(transport=transport, host=host, port=port)
    else:
        logger.info("Starting MCP server", extra={"transport": transport})
        mcp.run(transport=transport)
