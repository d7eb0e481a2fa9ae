"""Folder and page operations over the versioned storage root."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional

from ..models.document import CommitInfo, FileNode, FolderNode, SearchResult, VersionContent
from .cache import TTLCache, content_key, pages_key, tree_key, TREE_PREFIX
from .config import AppConfig, get_config
from .errors import (
    DestinationExistsError,
    DocumentStoreError,
    NotAFolderError,
    NotFoundError,
    RootDeletionError,
    VersionNotFoundError,
)
from .paths import PathResolver
from .version_control import GitBackend, VersionControlService

logger = logging.getLogger(__name__)

PAGE_EXTENSION = ".md"
ROOT_NAME = "root"
ROOT_PATH = "/"
SNIPPET_CONTEXT = 50


def _sort_key(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _parent(relative_path: str) -> str:
    parent = PurePosixPath(relative_path).parent.as_posix()
    return "" if parent == "." else parent


def _join(folder: str, name: str) -> str:
    return f"{folder}/{name}" if folder else name


def _read_text(path: Path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return handle.read()


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.write(content)


def _path_kind(path: Path) -> Optional[str]:
    if path.is_dir():
        return "folder"
    if path.is_file():
        return "page"
    if path.exists():
        return "other"
    return None


def _list_subfolders(path: Path) -> List[str]:
    with os.scandir(path) as entries:
        return [
            entry.name
            for entry in entries
            if entry.is_dir(follow_symlinks=False) and not entry.name.startswith(".")
        ]


def _list_pages(path: Path) -> List[Dict[str, Any]]:
    pages = []
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.name.startswith(".") or not entry.name.endswith(PAGE_EXTENSION):
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            stat = entry.stat()
            created = getattr(stat, "st_birthtime", stat.st_ctime)
            pages.append({"name": entry.name, "created": created, "modified": stat.st_mtime})
    return pages


def _make_snippet(content: str, index: int, length: int) -> str:
    start = max(0, index - SNIPPET_CONTEXT)
    end = min(len(content), index + length + SNIPPET_CONTEXT)
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


class DocumentStore:
    """
    Public entry point for folder and page CRUD.

    Every mutation follows the same order: resolve the path, change the
    filesystem, invalidate the cache keys it affects, then record a commit.
    With ``sync_commits`` the commit is awaited and its failure propagates;
    otherwise it is queued and failures are only logged.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        cache: Optional[TTLCache] = None,
        version_control: Optional[VersionControlService] = None,
        sync_commits: Optional[bool] = None,
    ) -> None:
        self.config = config or get_config()
        self.resolver = PathResolver(self.config.storage_root)
        self.root = self.resolver.root
        self.cache = cache or TTLCache(ttl_seconds=self.config.cache_ttl_seconds)
        self.version_control = version_control or VersionControlService(
            self.root,
            GitBackend(
                self.root,
                binary=self.config.git_binary,
                timeout=self.config.git_timeout_seconds,
            ),
            author_name=self.config.git_author_name,
            author_email=self.config.git_author_email,
            queue_size=self.config.commit_queue_size,
        )
        self.sync_commits = self.config.sync_commits if sync_commits is None else sync_commits

    async def initialize(self) -> None:
        """Prepare the storage root and record any edits made while offline."""
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
        await self.version_control.initialize()
        await self.version_control.commit_pending_changes()

    async def close(self) -> None:
        await self.version_control.close()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    # Folders

    async def get_folder_tree(self, path: str = "") -> FolderNode:
        absolute = self.resolver.resolve(path)
        relative = self.resolver.relative(absolute)
        key = tree_key(relative)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(key)
        await self._require_folder(absolute, path)
        tree = await self._scan_folder(absolute, relative)
        self.cache.set_if_current(key, tree, generation)
        return tree

    async def _scan_folder(self, absolute: Path, relative: str) -> FolderNode:
        names = await asyncio.to_thread(_list_subfolders, absolute)
        children = await asyncio.gather(
            *(self._scan_folder(absolute / name, _join(relative, name)) for name in names)
        )
        return FolderNode(
            name=PurePosixPath(relative).name if relative else ROOT_NAME,
            path=relative or ROOT_PATH,
            children=sorted(children, key=lambda child: _sort_key(child.name)),
        )

    async def create_folder(self, path: str) -> str:
        absolute = self.resolver.resolve(path)
        relative = self.resolver.relative(absolute)
        if await self._kind(absolute) not in (None, "folder"):
            raise NotAFolderError(f"A page already occupies {path}", detail={"path": path})

        await self._run_fs(path, absolute.mkdir, parents=True, exist_ok=True)
        self.cache.invalidate(TREE_PREFIX)
        logger.info("Created folder %s", relative or ROOT_PATH)
        return relative

    async def delete_folder(self, path: str) -> None:
        absolute = self.resolver.resolve(path)
        if self.resolver.is_root(absolute):
            raise RootDeletionError("Cannot delete root folder", detail={"path": path})
        relative = self.resolver.relative(absolute)
        await self._require_folder(absolute, path)

        await asyncio.to_thread(shutil.rmtree, absolute)
        self._invalidate_folder(relative)
        logger.info("Deleted folder %s", relative)
        await self._record([relative], f"Deleted folder: {relative}")

    async def rename_folder(self, old_path: str, new_path: str) -> str:
        old_absolute = self.resolver.resolve(old_path)
        new_absolute = self.resolver.resolve(new_path)
        if self.resolver.is_root(old_absolute) or self.resolver.is_root(new_absolute):
            raise RootDeletionError("Cannot rename root folder", detail={"old_path": old_path})
        old_relative = self.resolver.relative(old_absolute)
        new_relative = self.resolver.relative(new_absolute)

        await self._require_folder(old_absolute, old_path)
        if await self._kind(new_absolute) is not None:
            raise DestinationExistsError(
                f"Destination already exists: {new_path}", detail={"path": new_path}
            )
        if old_absolute in new_absolute.parents:
            raise DocumentStoreError(
                "Cannot move a folder into itself",
                error="invalid_destination",
                detail={"old_path": old_path, "new_path": new_path},
            )

        await self._run_fs(new_path, new_absolute.parent.mkdir, parents=True, exist_ok=True)
        await self._run_fs(new_path, os.rename, old_absolute, new_absolute)
        self._invalidate_folder(old_relative)
        self._invalidate_folder(new_relative)
        logger.info("Renamed folder %s -> %s", old_relative, new_relative)
        await self._record(
            [old_relative, new_relative], f"Renamed folder: {old_relative} -> {new_relative}"
        )
        return new_relative

    # Pages

    async def get_pages(self, folder: str = "") -> List[FileNode]:
        absolute = self.resolver.resolve(folder)
        relative = self.resolver.relative(absolute)
        key = pages_key(relative)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(key)
        await self._require_folder(absolute, folder)
        entries = await asyncio.to_thread(_list_pages, absolute)
        pages = [
            FileNode(
                name=entry["name"],
                path=_join(relative, entry["name"]),
                created_at=_timestamp(entry["created"]),
                modified_at=_timestamp(entry["modified"]),
            )
            for entry in sorted(entries, key=lambda item: _sort_key(item["name"]))
        ]
        self.cache.set_if_current(key, pages, generation)
        return pages

    async def create_page(self, path: str, content: str = "") -> str:
        absolute, relative = self._resolve_page(path)
        if await self._kind(absolute) == "folder":
            raise DestinationExistsError(f"A folder already occupies {path}", detail={"path": path})

        await self._run_fs(path, _write_text, absolute, content)
        self._invalidate_page(relative)
        # The write may have created parent folders.
        self.cache.invalidate(TREE_PREFIX)
        logger.info("Created page %s", relative)
        await self._record([relative], f"Created page: {relative}")
        return relative

    async def get_page_content(self, path: str) -> str:
        absolute, relative = self._resolve_page(path)
        key = content_key(relative)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(key)
        try:
            content = await asyncio.to_thread(_read_text, absolute)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise NotFoundError(f"Page not found: {path}", detail={"path": path}) from exc
        self.cache.set_if_current(key, content, generation)
        return content

    async def update_page(self, path: str, content: str) -> str:
        absolute, relative = self._resolve_page(path)
        await self._require_page(absolute, path)

        await self._run_fs(path, _write_text, absolute, content)
        self._invalidate_page(relative)
        logger.info("Updated page %s", relative)
        await self._record([relative], f"Updated page: {relative}")
        return relative

    async def delete_page(self, path: str) -> None:
        absolute, relative = self._resolve_page(path)
        await self._require_page(absolute, path)

        await asyncio.to_thread(absolute.unlink)
        self._invalidate_page(relative)
        logger.info("Deleted page %s", relative)
        await self._record([relative], f"Deleted page: {relative}")

    async def rename_page(self, old_path: str, new_path: str) -> str:
        old_absolute, old_relative = self._resolve_page(old_path)
        new_absolute, new_relative = self._resolve_page(new_path)
        await self._relocate_page(old_absolute, new_absolute, old_path, new_path)
        self._invalidate_page(old_relative)
        self._invalidate_page(new_relative)
        self.cache.invalidate(TREE_PREFIX)
        logger.info("Renamed page %s -> %s", old_relative, new_relative)
        await self._record(
            [old_relative, new_relative], f"Renamed page: {old_relative} -> {new_relative}"
        )
        return new_relative

    async def move_page(self, old_path: str, new_folder_path: str = "") -> str:
        """Move a page into another folder, keeping its file name. Returns the new path."""
        old_absolute, old_relative = self._resolve_page(old_path)
        folder_absolute = self.resolver.resolve(new_folder_path)
        folder_relative = self.resolver.relative(folder_absolute)
        new_relative = _join(folder_relative, old_absolute.name)
        new_absolute, new_relative = self._resolve_page(new_relative)

        await self._relocate_page(old_absolute, new_absolute, old_path, new_relative)
        self._invalidate_page(old_relative)
        self._invalidate_page(new_relative)
        self.cache.invalidate(TREE_PREFIX)
        logger.info("Moved page %s -> %s", old_relative, new_relative)
        await self._record(
            [old_relative, new_relative], f"Moved page: {old_relative} -> {new_relative}"
        )
        return new_relative

    async def _relocate_page(
        self, old_absolute: Path, new_absolute: Path, old_path: str, new_path: str
    ) -> None:
        await self._require_page(old_absolute, old_path)
        if await self._kind(new_absolute) is not None:
            raise DestinationExistsError(
                "A file with this name already exists in the destination folder",
                detail={"path": new_path},
            )
        await self._run_fs(new_path, new_absolute.parent.mkdir, parents=True, exist_ok=True)
        await self._run_fs(new_path, os.rename, old_absolute, new_absolute)

    # Versions

    async def get_page_history(self, path: str) -> List[CommitInfo]:
        _, relative = self._resolve_page(path)
        return await self.version_control.get_file_history(relative)

    async def get_page_version(self, path: str, revision: str) -> VersionContent:
        _, relative = self._resolve_page(path)
        version = await self.version_control.get_file_at_commit(relative, revision)
        if version is None:
            raise VersionNotFoundError(
                f"Version {revision} not found for {relative}",
                detail={"path": relative, "hash": revision},
            )
        return version

    async def restore_page_version(self, path: str, revision: str) -> Optional[str]:
        """Restore a page to ``revision`` and record the restoration as a new commit."""
        _, relative = self._resolve_page(path)
        await self.version_control.restore_file_to_commit(relative, revision)
        self._invalidate_page(relative)
        self.cache.invalidate(TREE_PREFIX)
        logger.info("Restored page %s to %s", relative, revision[:7])
        return await self._record([relative], f"Restored {relative} to version {revision[:7]}")

    async def get_page_diff(self, path: str, from_revision: str, to_revision: str) -> str:
        _, relative = self._resolve_page(path)
        return await self.version_control.get_diff(relative, from_revision, to_revision)

    # Search

    async def search_pages(self, query: str, max_results: Optional[int] = None) -> List[SearchResult]:
        """Case-insensitive substring search over every page, most matches first."""
        term = (query or "").strip().lower()
        if not term:
            return []

        folders: List[str] = []
        stack = [await self.get_folder_tree()]
        while stack:
            node = stack.pop()
            folders.append("" if node.path == ROOT_PATH else node.path)
            stack.extend(node.children)

        results: List[SearchResult] = []
        for folder in sorted(folders):
            try:
                pages = await self.get_pages(folder)
            except DocumentStoreError as exc:
                logger.warning("Skipping folder %s during search: %s", folder, exc.message)
                continue
            for page in pages:
                try:
                    content = await self.get_page_content(page.path)
                except DocumentStoreError as exc:
                    logger.warning("Skipping page %s during search: %s", page.path, exc.message)
                    continue
                lowered = content.lower()
                matches = lowered.count(term)
                if not matches:
                    continue
                results.append(
                    SearchResult(
                        path=page.path,
                        title=page.name[: -len(PAGE_EXTENSION)],
                        snippet=_make_snippet(content, lowered.index(term), len(term)),
                        matches=matches,
                    )
                )

        results.sort(key=lambda result: -result.matches)
        if max_results is not None:
            results = results[:max_results]
        return results

    # Internals

    def _resolve_page(self, path: str) -> tuple[Path, str]:
        absolute = self.resolver.resolve(path)
        if self.resolver.is_root(absolute):
            raise NotFoundError("A page path is required", detail={"path": path})
        return absolute, self.resolver.relative(absolute)

    async def _kind(self, absolute: Path) -> Optional[str]:
        return await asyncio.to_thread(_path_kind, absolute)

    async def _require_folder(self, absolute: Path, path: str) -> None:
        kind = await self._kind(absolute)
        if kind is None:
            raise NotFoundError(f"Folder not found: {path}", detail={"path": path})
        if kind != "folder":
            raise NotAFolderError(f"Not a folder: {path}", detail={"path": path})

    async def _require_page(self, absolute: Path, path: str) -> None:
        if await self._kind(absolute) != "page":
            raise NotFoundError(f"Page not found: {path}", detail={"path": path})

    async def _run_fs(self, path: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a filesystem mutation in a worker thread.

        A page sitting where a folder is needed makes ``mkdir`` or ``rename``
        fail with FileExistsError/NotADirectoryError; that becomes NotAFolderError.
        """
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (FileExistsError, NotADirectoryError) as exc:
            raise NotAFolderError(
                f"A page is in the way of {path}", detail={"path": path}
            ) from exc

    def _invalidate_page(self, relative: str) -> None:
        self.cache.invalidate_key(content_key(relative))
        self.cache.invalidate_key(pages_key(_parent(relative)))

    def _invalidate_folder(self, relative: str) -> None:
        self.cache.invalidate(TREE_PREFIX)
        self.cache.invalidate(pages_key(relative))
        self.cache.invalidate(content_key(relative + "/"))
        self.cache.invalidate_key(pages_key(_parent(relative)))

    async def _record(self, paths: List[str], message: str) -> Optional[str]:
        if self.sync_commits:
            return await self.version_control.commit_files(paths, message)
        future = await self.version_control.enqueue(paths, message)
        future.add_done_callback(_log_commit_failure)
        return None


def _log_commit_failure(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Git commit failed: %s", exc, exc_info=exc)


__all__ = ["DocumentStore", "PAGE_EXTENSION"]
