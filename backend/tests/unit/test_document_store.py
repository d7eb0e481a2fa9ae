"""DocumentStore tests against a real git repository in a temporary root."""

from __future__ import annotations

import asyncio
import logging
import shutil
import threading
from pathlib import Path
from typing import Optional, Sequence

import pytest

from backend.src.services import document_store as document_store_module
from backend.src.services.config import AppConfig
from backend.src.services.document_store import DocumentStore
from backend.src.services.errors import (
    CommitError,
    DestinationExistsError,
    NotAFolderError,
    NotFoundError,
    PathTraversalError,
    RootDeletionError,
    VersionNotFoundError,
)
from backend.src.services.version_control import (
    EXTERNAL_CHANGES_MESSAGE,
    GitBackend,
    VersionControlService,
)

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


class RejectingGitBackend(GitBackend):
    """Git backend whose commits always fail."""

    async def commit(self, message: str, paths: Optional[Sequence[str]] = None) -> str:
        raise CommitError(f"commit rejected: {message}")


def make_config(tmp_path: Path, *, sync_commits: bool = True) -> AppConfig:
    return AppConfig(storage_root=tmp_path / "data", sync_commits=sync_commits)


@pytest.fixture
async def store(tmp_path: Path):
    document_store = DocumentStore(make_config(tmp_path))
    await document_store.initialize()
    yield document_store
    await document_store.close()


async def committed_paths(store: DocumentStore, commit_hash: str) -> list[str]:
    backend = store.version_control.backend
    _, stdout, _ = await backend._git("show", "--no-renames", "--name-only", "--format=", commit_hash)
    return [line for line in stdout.decode("utf-8").splitlines() if line]


@pytest.mark.asyncio
async def test_initialize_creates_repository(store: DocumentStore) -> None:
    assert (store.root / ".git").is_dir()
    assert await store.version_control.backend.is_repository()


@pytest.mark.asyncio
async def test_initialize_commits_files_added_while_offline(tmp_path: Path) -> None:
    root = tmp_path / "data"
    (root / "Inbox").mkdir(parents=True)
    (root / "Inbox" / "dropped.md").write_text("# Dropped", encoding="utf-8")
    document_store = DocumentStore(make_config(tmp_path))

    await document_store.initialize()

    history = await document_store.get_page_history("Inbox/dropped.md")
    assert [commit.message for commit in history] == [EXTERNAL_CHANGES_MESSAGE]
    await document_store.close()


@pytest.mark.asyncio
async def test_page_history_newest_first(store: DocumentStore) -> None:
    await store.create_folder("Projects")
    await store.create_page("Projects/Notes.md", "# Notes")
    await store.update_page("Projects/Notes.md", "# Notes\n\nmore")

    history = await store.get_page_history("Projects/Notes.md")

    assert [commit.message for commit in history] == [
        "Updated page: Projects/Notes.md",
        "Created page: Projects/Notes.md",
    ]
    assert all(len(commit.hash) == 40 for commit in history)
    first = await store.get_page_version("Projects/Notes.md", history[1].hash)
    assert first.content == "# Notes"
    assert first.hash == history[1].hash


@pytest.mark.asyncio
async def test_restore_records_a_new_version(store: DocumentStore) -> None:
    await store.create_page("Notes.md", "A")
    v1 = (await store.get_page_history("Notes.md"))[0].hash
    await store.update_page("Notes.md", "B")
    v2 = (await store.get_page_history("Notes.md"))[0].hash

    v3 = await store.restore_page_version("Notes.md", v1)

    assert await store.get_page_content("Notes.md") == "A"
    history = await store.get_page_history("Notes.md")
    assert [commit.hash for commit in history] == [v3, v2, v1]
    assert history[0].message == f"Restored Notes.md to version {v1[:7]}"
    assert (await store.get_page_version("Notes.md", v2)).content == "B"


@pytest.mark.asyncio
async def test_unknown_version_is_rejected(store: DocumentStore) -> None:
    await store.create_page("Notes.md", "A")
    first = (await store.get_page_history("Notes.md"))[0].hash

    with pytest.raises(VersionNotFoundError):
        await store.get_page_version("Notes.md", "0" * 40)
    with pytest.raises(VersionNotFoundError):
        await store.get_page_version("Other.md", first)
    with pytest.raises(VersionNotFoundError):
        await store.restore_page_version("Other.md", first)


@pytest.mark.asyncio
async def test_page_content_is_byte_exact(store: DocumentStore) -> None:
    content = "line one\r\nline two\n\n  trailing  "
    await store.create_page("exact.md", content)

    assert await store.get_page_content("exact.md") == content
    assert (store.root / "exact.md").read_bytes() == content.encode("utf-8")
    first = (await store.get_page_history("exact.md"))[0].hash
    assert (await store.get_page_version("exact.md", first)).content == content


@pytest.mark.asyncio
async def test_move_page_into_folder(store: DocumentStore) -> None:
    await store.create_page("Projects/Notes.md", "# Notes")
    await store.create_folder("Archive")

    new_path = await store.move_page("Projects/Notes.md", "Archive")

    assert new_path == "Archive/Notes.md"
    assert not (store.root / "Projects" / "Notes.md").exists()
    assert await store.get_page_content("Archive/Notes.md") == "# Notes"
    history = await store.get_page_history("Archive/Notes.md")
    assert history[0].message == "Moved page: Projects/Notes.md -> Archive/Notes.md"
    assert sorted(await committed_paths(store, history[0].hash)) == [
        "Archive/Notes.md",
        "Projects/Notes.md",
    ]


@pytest.mark.asyncio
async def test_move_page_refuses_occupied_destination(store: DocumentStore) -> None:
    await store.create_page("Projects/Notes.md", "source")
    await store.create_page("Archive/Notes.md", "already here")

    with pytest.raises(DestinationExistsError):
        await store.move_page("Projects/Notes.md", "Archive")

    assert await store.get_page_content("Projects/Notes.md") == "source"
    assert await store.get_page_content("Archive/Notes.md") == "already here"


@pytest.mark.asyncio
async def test_rename_page_commits_both_paths(store: DocumentStore) -> None:
    await store.create_page("a.md", "text")

    new_path = await store.rename_page("a.md", "b.md")

    assert new_path == "b.md"
    renamed = (await store.get_page_history("b.md"))[0]
    assert renamed.message == "Renamed page: a.md -> b.md"
    assert (await store.get_page_history("a.md"))[0].hash == renamed.hash
    assert sorted(await committed_paths(store, renamed.hash)) == ["a.md", "b.md"]
    with pytest.raises(NotFoundError):
        await store.get_page_content("a.md")


@pytest.mark.asyncio
async def test_concurrent_updates_produce_one_commit_each(store: DocumentStore) -> None:
    paths = [f"Batch/page-{index}.md" for index in range(6)]
    for path in paths:
        await store.create_page(path, "draft")

    await asyncio.gather(*(store.update_page(path, f"final {path}") for path in paths))

    for path in paths:
        history = await store.get_page_history(path)
        assert [commit.message for commit in history] == [
            f"Updated page: {path}",
            f"Created page: {path}",
        ]
        assert await committed_paths(store, history[0].hash) == [path]
    assert await store.version_control.backend.status() == []


@pytest.mark.asyncio
async def test_reads_after_writes_see_new_content(store: DocumentStore) -> None:
    await store.create_page("Notes.md", "one")
    assert await store.get_page_content("Notes.md") == "one"
    assert [page.name for page in await store.get_pages("")] == ["Notes.md"]

    await store.update_page("Notes.md", "two")
    await store.create_page("Other.md", "")
    await store.create_folder("Later")

    assert await store.get_page_content("Notes.md") == "two"
    assert [page.name for page in await store.get_pages("")] == ["Notes.md", "Other.md"]
    assert [child.name for child in (await store.get_folder_tree()).children] == ["Later"]


@pytest.mark.asyncio
async def test_reads_are_served_from_cache(store: DocumentStore) -> None:
    await store.create_page("Notes.md", "cached")
    await store.get_page_content("Notes.md")

    (store.root / "Notes.md").write_text("edited behind the store", encoding="utf-8")

    assert await store.get_page_content("Notes.md") == "cached"
    store.cache.clear()
    assert await store.get_page_content("Notes.md") == "edited behind the store"


@pytest.mark.asyncio
async def test_folder_tree_sorted_and_hides_metadata(store: DocumentStore) -> None:
    for name in ("gamma", "Alpha", "beta", "beta/inner", ".hidden"):
        await store.create_folder(name)

    tree = await store.get_folder_tree()

    assert tree.name == "root"
    assert tree.path == "/"
    assert [child.name for child in tree.children] == ["Alpha", "beta", "gamma"]
    beta = tree.children[1]
    assert beta.path == "beta"
    assert [child.path for child in beta.children] == ["beta/inner"]


@pytest.mark.asyncio
async def test_get_pages_lists_markdown_only(store: DocumentStore) -> None:
    await store.create_page("Docs/b.md", "b")
    await store.create_page("Docs/A.md", "a")
    await store.create_page("Docs/Sub/deep.md", "deep")
    (store.root / "Docs" / "image.png").write_bytes(b"\x89PNG")

    pages = await store.get_pages("Docs")

    assert [page.path for page in pages] == ["Docs/A.md", "Docs/b.md"]
    assert all(page.type == "file" for page in pages)
    assert pages[0].modified_at.tzinfo is not None


@pytest.mark.asyncio
async def test_delete_folder_commits_removed_pages(store: DocumentStore) -> None:
    await store.create_page("Projects/x.md", "x")

    await store.delete_folder("Projects")

    assert not (store.root / "Projects").exists()
    history = await store.get_page_history("Projects/x.md")
    assert history[0].message == "Deleted folder: Projects"
    assert [child.name for child in (await store.get_folder_tree()).children] == []


@pytest.mark.asyncio
async def test_rename_folder_moves_pages(store: DocumentStore) -> None:
    await store.create_page("Old/x.md", "x")
    await store.get_page_content("Old/x.md")

    await store.rename_folder("Old", "New")

    assert await store.get_page_content("New/x.md") == "x"
    with pytest.raises(NotFoundError):
        await store.get_page_content("Old/x.md")
    history = await store.get_page_history("New/x.md")
    assert history[0].message == "Renamed folder: Old -> New"


@pytest.mark.asyncio
async def test_root_cannot_be_deleted(store: DocumentStore) -> None:
    for alias in ("", "/", "."):
        with pytest.raises(RootDeletionError):
            await store.delete_folder(alias)
    assert store.root.is_dir()


@pytest.mark.asyncio
async def test_missing_and_wrong_kind_targets(store: DocumentStore) -> None:
    await store.create_page("a.md", "a")

    with pytest.raises(NotFoundError):
        await store.get_page_content("missing.md")
    with pytest.raises(NotFoundError):
        await store.update_page("missing.md", "x")
    with pytest.raises(NotFoundError):
        await store.delete_page("missing.md")
    with pytest.raises(NotFoundError):
        await store.delete_folder("nope")
    with pytest.raises(NotFoundError):
        await store.get_pages("nope")
    with pytest.raises(NotAFolderError):
        await store.get_pages("a.md")
    with pytest.raises(NotAFolderError):
        await store.delete_folder("a.md")


@pytest.mark.asyncio
async def test_paths_outside_root_are_rejected(store: DocumentStore, tmp_path: Path) -> None:
    with pytest.raises(PathTraversalError):
        await store.create_page("../escape.md", "nope")
    with pytest.raises(PathTraversalError):
        await store.get_page_content("../../etc/passwd")
    with pytest.raises(PathTraversalError):
        await store.create_page(".git/hooks/pre-commit", "nope")

    assert not (tmp_path / "escape.md").exists()


@pytest.mark.asyncio
async def test_delete_page_records_commit(store: DocumentStore) -> None:
    await store.create_page("gone.md", "bye")

    await store.delete_page("gone.md")

    assert not (store.root / "gone.md").exists()
    history = await store.get_page_history("gone.md")
    assert history[0].message == "Deleted page: gone.md"


@pytest.mark.asyncio
async def test_search_orders_by_match_count(store: DocumentStore) -> None:
    await store.create_page("fruit/a.md", "apple and another apple")
    await store.create_page("b.md", "An Apple a day")
    await store.create_page("c.md", "nothing relevant")

    results = await store.search_pages("APPLE")

    assert [(result.path, result.matches) for result in results] == [
        ("fruit/a.md", 2),
        ("b.md", 1),
    ]
    assert results[0].title == "a"
    assert await store.search_pages("   ") == []
    assert len(await store.search_pages("apple", max_results=1)) == 1


@pytest.mark.asyncio
async def test_search_snippet_is_trimmed_around_first_match(store: DocumentStore) -> None:
    await store.create_page("long.md", "x" * 100 + "needle" + "y" * 100)

    (result,) = await store.search_pages("needle")

    assert result.snippet == "..." + "x" * 50 + "needle" + "y" * 50 + "..."


@pytest.mark.asyncio
async def test_fire_and_forget_commits_land_eventually(tmp_path: Path) -> None:
    document_store = DocumentStore(make_config(tmp_path, sync_commits=False))
    await document_store.initialize()

    assert await document_store.create_page("later.md", "soon") == "later.md"
    await document_store.version_control.wait_for_commits()

    history = await document_store.get_page_history("later.md")
    assert [commit.message for commit in history] == ["Created page: later.md"]
    await document_store.close()


@pytest.mark.asyncio
async def test_fire_and_forget_failure_is_logged(tmp_path: Path, caplog) -> None:
    config = make_config(tmp_path, sync_commits=False)
    version_control = VersionControlService(
        config.storage_root, RejectingGitBackend(config.storage_root)
    )
    document_store = DocumentStore(config, version_control=version_control)
    await document_store.initialize()
    caplog.set_level(logging.ERROR)

    await document_store.create_page("doomed.md", "kept on disk")
    await version_control.wait_for_commits()
    await asyncio.sleep(0)

    assert (document_store.root / "doomed.md").read_text(encoding="utf-8") == "kept on disk"
    assert "Git commit failed" in caplog.text
    await document_store.close()


@pytest.mark.asyncio
async def test_sync_commit_failure_propagates_after_write(tmp_path: Path) -> None:
    config = make_config(tmp_path, sync_commits=True)
    version_control = VersionControlService(
        config.storage_root, RejectingGitBackend(config.storage_root)
    )
    document_store = DocumentStore(config, version_control=version_control)
    await document_store.initialize()

    with pytest.raises(CommitError):
        await document_store.create_page("written.md", "still written")

    assert (document_store.root / "written.md").read_text(encoding="utf-8") == "still written"
    await document_store.close()


@pytest.mark.asyncio
async def test_read_racing_a_write_does_not_cache_old_content(
    store: DocumentStore, monkeypatch
) -> None:
    await store.create_page("n.md", "old")
    read_started = threading.Event()
    release_read = threading.Event()
    original_read = document_store_module._read_text

    def slow_read(path: Path) -> str:
        content = original_read(path)
        read_started.set()
        release_read.wait(timeout=5)
        return content

    monkeypatch.setattr(document_store_module, "_read_text", slow_read)
    reader = asyncio.create_task(store.get_page_content("n.md"))
    assert await asyncio.to_thread(read_started.wait, 5)
    monkeypatch.setattr(document_store_module, "_read_text", original_read)

    await store.update_page("n.md", "new")
    release_read.set()

    assert await reader == "old"
    assert await store.get_page_content("n.md") == "new"


@pytest.mark.asyncio
async def test_listing_racing_a_create_does_not_cache_old_listing(
    store: DocumentStore, monkeypatch
) -> None:
    await store.create_page("Docs/a.md", "a")
    scan_started = threading.Event()
    release_scan = threading.Event()
    original_list = document_store_module._list_pages

    def slow_list(path: Path):
        pages = original_list(path)
        scan_started.set()
        release_scan.wait(timeout=5)
        return pages

    monkeypatch.setattr(document_store_module, "_list_pages", slow_list)
    reader = asyncio.create_task(store.get_pages("Docs"))
    assert await asyncio.to_thread(scan_started.wait, 5)
    monkeypatch.setattr(document_store_module, "_list_pages", original_list)

    await store.create_page("Docs/b.md", "b")
    release_scan.set()

    assert [page.name for page in await reader] == ["a.md"]
    assert [page.name for page in await store.get_pages("Docs")] == ["a.md", "b.md"]


@pytest.mark.asyncio
async def test_page_in_place_of_folder_is_rejected(store: DocumentStore) -> None:
    await store.create_page("a.md", "a")
    await store.create_page("B.md", "b")

    with pytest.raises(NotAFolderError):
        await store.create_page("a.md/b.md", "nested")
    with pytest.raises(NotAFolderError):
        await store.move_page("a.md", "B.md")
    with pytest.raises(NotAFolderError):
        await store.rename_page("a.md", "B.md/a.md")
    with pytest.raises(NotAFolderError):
        await store.create_folder("a.md/sub")

    assert await store.get_page_content("a.md") == "a"
    assert await store.get_page_content("B.md") == "b"


@pytest.mark.asyncio
async def test_existence_checks_run_off_the_event_loop(store: DocumentStore, monkeypatch) -> None:
    loop_thread = threading.get_ident()
    callers = []
    original_kind = document_store_module._path_kind

    def recording_kind(path: Path):
        callers.append(threading.get_ident())
        return original_kind(path)

    monkeypatch.setattr(document_store_module, "_path_kind", recording_kind)

    await store.create_page("Notes.md", "x")
    await store.update_page("Notes.md", "y")
    await store.get_folder_tree()
    await store.move_page("Notes.md", "Archive")
    await store.delete_folder("Archive")

    assert callers
    assert loop_thread not in callers
