"""Git-backed version history for the storage root.

All repository mutations (staging, committing, restoring a path) run through a
single FIFO queue drained by one worker task, so concurrent document writes
never interleave git commands against the same index. Read-only queries
(log, show, diff) bypass the queue.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..models.document import CommitInfo, VersionContent
from .errors import CommitError, VersionNotFoundError

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60.0
EXTERNAL_CHANGES_MESSAGE = "External changes detected"

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"--format=%H{_FIELD_SEP}%aI{_FIELD_SEP}%an{_FIELD_SEP}%s{_RECORD_SEP}"


def _is_valid_revision(revision: str) -> bool:
    return bool(revision) and not revision.startswith("-") and ":" not in revision and "\x00" not in revision


def _touches(entries: Sequence[str], path: str) -> bool:
    prefix = path.rstrip("/") + "/"
    return any(entry == path or entry.startswith(prefix) for entry in entries)


def _parse_log(output: str) -> List[CommitInfo]:
    commits: List[CommitInfo] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        commit_hash, date, author, message = record.split(_FIELD_SEP, 3)
        commits.append(CommitInfo(hash=commit_hash, date=date, message=message, author=author))
    return commits


class VersionControlBackend(abc.ABC):
    """Capability interface over the repository holding the storage root."""

    @abc.abstractmethod
    async def is_repository(self) -> bool:
        """Return True when the root is already the top of a work tree."""

    @abc.abstractmethod
    async def init(self) -> None:
        pass

    @abc.abstractmethod
    async def configure_identity(self, name: str, email: str) -> None:
        pass

    @abc.abstractmethod
    async def status(self, paths: Optional[Sequence[str]] = None) -> List[str]:
        """Return root-relative paths with uncommitted changes (staged or not)."""

    @abc.abstractmethod
    async def add(self, paths: Optional[Sequence[str]] = None) -> None:
        """Stage additions, modifications and removals for ``paths`` (everything if None)."""

    @abc.abstractmethod
    async def commit(self, message: str, paths: Optional[Sequence[str]] = None) -> str:
        """Commit ``paths`` only (the whole index if None) and return the new hash."""

    @abc.abstractmethod
    async def log(self, path: str) -> List[CommitInfo]:
        """Revisions touching ``path``, newest first."""

    @abc.abstractmethod
    async def revision_info(self, revision: str) -> Optional[CommitInfo]:
        pass

    @abc.abstractmethod
    async def show_at_revision(self, path: str, revision: str) -> Optional[str]:
        """Content of ``path`` at ``revision``, or None if it did not exist there."""

    @abc.abstractmethod
    async def checkout_path_at_revision(self, path: str, revision: str) -> None:
        pass

    @abc.abstractmethod
    async def diff(self, path: str, from_revision: str, to_revision: str) -> str:
        pass


class GitBackend(VersionControlBackend):
    """Backend that shells out to the git CLI."""

    def __init__(
        self,
        root: Path | str,
        *,
        binary: str = "git",
        timeout: float = GIT_TIMEOUT_SECONDS,
    ) -> None:
        self.root = Path(root)
        self.binary = binary
        self.timeout = timeout

    async def _git(self, *args: str, check: bool = True) -> tuple[int, bytes, bytes]:
        """Run a git command in the root. Raises CommitError on failure when ``check``."""
        cmd = [
            self.binary,
            "--literal-pathspecs",
            "-c",
            "core.quotepath=off",
            "-c",
            "core.autocrlf=false",
            "-c",
            "commit.gpgsign=false",
            *args,
        ]
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise CommitError(
                f"Unable to run {self.binary}: {exc}", detail={"command": args[0]}
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommitError(
                f"git {args[0]} timed out after {self.timeout}s",
                detail={"command": list(args)},
            ) from exc

        if check and process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CommitError(
                f"git {args[0]} failed: {message}",
                detail={"command": list(args), "returncode": process.returncode, "stderr": message},
            )
        return process.returncode, stdout, stderr

    async def is_repository(self) -> bool:
        if not (self.root / ".git").exists():
            return False
        returncode, stdout, _ = await self._git("rev-parse", "--show-toplevel", check=False)
        if returncode != 0:
            return False
        toplevel = stdout.decode("utf-8", errors="replace").strip()
        return Path(toplevel).resolve() == self.root.resolve()

    async def init(self) -> None:
        await self._git("init")

    async def configure_identity(self, name: str, email: str) -> None:
        await self._git("config", "--local", "user.name", name)
        await self._git("config", "--local", "user.email", email)

    async def status(self, paths: Optional[Sequence[str]] = None) -> List[str]:
        args = ["status", "--porcelain", "-z", "--untracked-files=all"]
        if paths:
            args.extend(["--", *paths])
        _, stdout, _ = await self._git(*args)
        entries: List[str] = []
        fields = stdout.decode("utf-8", errors="replace").split("\x00")
        index = 0
        while index < len(fields):
            item = fields[index]
            index += 1
            if len(item) < 4:
                continue
            code, path = item[:2], item[3:]
            entries.append(path)
            # Renames and copies carry the original path as an extra field.
            if "R" in code or "C" in code:
                if index < len(fields) and fields[index]:
                    entries.append(fields[index])
                index += 1
        return entries

    async def add(self, paths: Optional[Sequence[str]] = None) -> None:
        if paths:
            await self._git("add", "--all", "--", *paths)
        else:
            await self._git("add", "--all", ".")

    async def commit(self, message: str, paths: Optional[Sequence[str]] = None) -> str:
        args = ["commit", "--quiet", "-m", message]
        if paths:
            args.extend(["--", *paths])
        await self._git(*args)
        _, stdout, _ = await self._git("rev-parse", "HEAD")
        return stdout.decode("utf-8").strip()

    async def log(self, path: str) -> List[CommitInfo]:
        _, stdout, _ = await self._git("log", _LOG_FORMAT, "--", path)
        return _parse_log(stdout.decode("utf-8", errors="replace"))

    async def revision_info(self, revision: str) -> Optional[CommitInfo]:
        returncode, stdout, _ = await self._git(
            "log", "-n", "1", _LOG_FORMAT, revision, "--", check=False
        )
        if returncode != 0:
            return None
        commits = _parse_log(stdout.decode("utf-8", errors="replace"))
        return commits[0] if commits else None

    async def show_at_revision(self, path: str, revision: str) -> Optional[str]:
        returncode, stdout, _ = await self._git("show", f"{revision}:{path}", check=False)
        if returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace")

    async def checkout_path_at_revision(self, path: str, revision: str) -> None:
        await self._git("checkout", revision, "--", path)

    async def diff(self, path: str, from_revision: str, to_revision: str) -> str:
        _, stdout, _ = await self._git("diff", f"{from_revision}..{to_revision}", "--", path)
        return stdout.decode("utf-8", errors="replace")


@dataclass
class _Job:
    label: str
    run: Callable[[], Awaitable[Any]]
    future: asyncio.Future = field(repr=False)


class VersionControlService:
    """
    Records document mutations as commits and answers history queries.

    Mutations are serialized through a bounded FIFO queue consumed by a single
    worker task. Each job resolves its own future, so a caller awaiting a
    commit sees that commit's error while later jobs keep running.
    """

    def __init__(
        self,
        root: Path | str,
        backend: Optional[VersionControlBackend] = None,
        *,
        author_name: str = "Docstore",
        author_email: str = "docstore@local",
        queue_size: int = 100,
    ) -> None:
        self.root = Path(root)
        self.backend = backend or GitBackend(self.root)
        self.author_name = author_name
        self.author_email = author_email
        self.queue_size = queue_size
        self._queue: Optional[asyncio.Queue[_Job]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._pending = 0

    @property
    def pending_commits(self) -> int:
        return self._pending

    async def initialize(self) -> None:
        """Ensure a repository exists at the root; safe to call repeatedly."""
        self.root.mkdir(parents=True, exist_ok=True)
        if await self.backend.is_repository():
            return
        await self.backend.init()
        await self.backend.configure_identity(self.author_name, self.author_email)
        logger.info("Initialized repository at %s", self.root)

    async def commit_pending_changes(self) -> Optional[str]:
        """Commit files changed outside the application as one revision."""

        async def _run() -> Optional[str]:
            if not await self.backend.status():
                return None
            await self.backend.add()
            commit_hash = await self.backend.commit(EXTERNAL_CHANGES_MESSAGE)
            logger.info("Committed external changes as %s", commit_hash[:7])
            return commit_hash

        future = await self._submit("external changes", _run)
        return await future

    async def enqueue(self, paths: Sequence[str], message: str) -> asyncio.Future:
        """Queue a commit of ``paths`` and return its future without awaiting it."""
        targets = [path for path in dict.fromkeys(paths) if path]
        return await self._submit(message, lambda: self._commit_paths(targets, message))

    async def commit_files(self, paths: Sequence[str], message: str) -> Optional[str]:
        """Queue a commit and wait for it. Returns the hash, or None if nothing changed."""
        if not paths:
            return None
        future = await self.enqueue(paths, message)
        return await future

    async def commit_file(self, path: str, message: str) -> Optional[str]:
        return await self.commit_files([path], message)

    async def get_file_history(self, path: str) -> List[CommitInfo]:
        try:
            return await self.backend.log(path)
        except CommitError as exc:
            # Repositories without any commit yet fail here; treat as no history.
            logger.debug("No history for %s: %s", path, exc.message)
            return []

    async def get_file_at_commit(self, path: str, revision: str) -> Optional[VersionContent]:
        if not _is_valid_revision(revision):
            return None
        info = await self.backend.revision_info(revision)
        if info is None:
            return None
        content = await self.backend.show_at_revision(path, revision)
        if content is None:
            return None
        return VersionContent(**info.model_dump(), content=content)

    async def restore_file_to_commit(self, path: str, revision: str) -> None:
        """
        Overwrite the working copy of ``path`` with its content at ``revision``.

        Nothing is committed; the caller records the restoration separately.
        """
        if not _is_valid_revision(revision) or (
            await self.backend.show_at_revision(path, revision) is None
        ):
            raise VersionNotFoundError(
                f"Version {revision} does not contain {path}",
                detail={"path": path, "hash": revision},
            )
        future = await self._submit(
            f"restore {path}",
            lambda: self.backend.checkout_path_at_revision(path, revision),
        )
        await future

    async def get_diff(self, path: str, from_revision: str, to_revision: str) -> str:
        if not (_is_valid_revision(from_revision) and _is_valid_revision(to_revision)):
            return ""
        try:
            return await self.backend.diff(path, from_revision, to_revision)
        except CommitError as exc:
            logger.debug("Diff failed for %s: %s", path, exc.message)
            return ""

    async def wait_for_commits(self) -> None:
        """Block until every queued job has settled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.wait_for_commits()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _commit_paths(self, paths: List[str], message: str) -> Optional[str]:
        changed = await self.backend.status(paths)
        targets = [path for path in paths if _touches(changed, path)]
        if not targets:
            logger.debug("Nothing to commit for %s", ", ".join(paths))
            return None
        await self.backend.add(targets)
        commit_hash = await self.backend.commit(message, targets)
        logger.info("Committed %s: %s", commit_hash[:7], message)
        return commit_hash

    async def _submit(self, label: str, run: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(self._queue))
        future = asyncio.get_running_loop().create_future()
        self._pending += 1
        await self._queue.put(_Job(label=label, run=run, future=future))
        return future

    async def _drain(self, queue: asyncio.Queue[_Job]) -> None:
        while True:
            job = await queue.get()
            try:
                if job.future.cancelled():
                    continue
                result = await job.run()
                if not job.future.done():
                    job.future.set_result(result)
            except asyncio.CancelledError:
                job.future.cancel()
                raise
            except Exception as exc:
                if not job.future.done():
                    job.future.set_exception(exc)
            finally:
                self._pending -= 1
                queue.task_done()


__all__ = [
    "VersionControlBackend",
    "GitBackend",
    "VersionControlService",
    "EXTERNAL_CHANGES_MESSAGE",
]
