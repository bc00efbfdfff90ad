"""Staging cache for remote block repositories.

The staging area holds one checkout per source id and survives across runs.
Reconciling a context against it follows a small state machine:

- not cached: clone the requested ref; failure aborts the pipeline;
- cached: try to update to the requested ref; failure only degrades to the
  checkout already on disk;
- local: nothing to do.

Whatever the path taken, the block's source path must exist afterwards.
"""

from __future__ import annotations

import asyncio
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from blockport.core.exceptions import (
    CloneFailed,
    InvalidSource,
    MissingSourceFiles,
    UpdateFailed,
)
from blockport.core.logging.logger import get_logger

if TYPE_CHECKING:
    from blockport.blocks.source import AcquisitionContext

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    exists: bool
    path: Path


class CacheStore(Protocol):
    """Where staged repositories live, keyed by source id."""

    @property
    def root(self) -> Path: ...

    def resolve(self, source_id: str) -> CacheEntry: ...

    def reserve(self, source_id: str) -> Path: ...


class FilesystemCacheStore:
    """Cache store backed by a directory tree, one subdirectory per source id."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def _slot(self, source_id: str) -> Path:
        slot = (self._root / source_id).resolve()
        try:
            slot.relative_to(self._root.resolve())
        except ValueError as exc:
            raise InvalidSource(f"Source id escapes the staging area: {source_id}") from exc
        return slot

    def resolve(self, source_id: str) -> CacheEntry:
        slot = self._slot(source_id)
        return CacheEntry(exists=slot.is_dir() and any(slot.iterdir()), path=slot)

    def reserve(self, source_id: str) -> Path:
        """Create the parent of the slot so a clone can populate it."""
        slot = self._slot(source_id)
        slot.parent.mkdir(parents=True, exist_ok=True)
        return slot


class GitClient(Protocol):
    def clone(self, repo: str, destination: Path, branch: str | None) -> None: ...

    def update(self, checkout: Path, branch: str | None) -> None: ...


class SubprocessGitClient:
    """Runs the git binary; each call blocks until git exits."""

    def __init__(self, executable: str = "git") -> None:
        self._executable = executable

    def clone(self, repo: str, destination: Path, branch: str | None) -> None:
        args = [
            self._executable,
            "clone",
            repo,
            str(destination),
            "--single-branch",
            "--recurse-submodules",
        ]
        if branch:
            args.extend(["-b", branch])
        error = _run_git(args)
        if error is not None:
            raise CloneFailed(f"Failed to clone {repo}", error)

    def update(self, checkout: Path, branch: str | None) -> None:
        commands = [["fetch"], ["pull"]]
        if branch:
            commands.insert(1, ["checkout", branch])
        for command in commands:
            error = _run_git([self._executable, "-C", str(checkout), *command])
            if error is not None:
                raise UpdateFailed(f"git {command[0]} failed in {checkout}", error)


def _run_git(args: list[str]) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=False)
    except OSError as exc:
        return str(exc)
    if result.returncode != 0:
        return result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
    return None


class CacheState(str, Enum):
    NOT_CACHED = "not_cached"
    CACHED_STALE = "cached_stale"
    LOCAL = "local"


class ReconcileStatus(str, Enum):
    CLONED = "cloned"
    UPDATED = "updated"
    STALE = "stale"
    LOCAL = "local"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    warning: UpdateFailed | None = None


def cache_state(ctx: "AcquisitionContext") -> CacheState:
    if ctx.is_local:
        return CacheState.LOCAL
    return CacheState.CACHED_STALE if ctx.repo_exists else CacheState.NOT_CACHED


class RepositoryCacheManager:
    """Reconciles the staging directory of a context with its remote source."""

    def __init__(self, store: CacheStore, git: GitClient | None = None) -> None:
        self.store = store
        self._git = git or SubprocessGitClient()

    async def reconcile(self, ctx: "AcquisitionContext") -> ReconcileOutcome:
        state = cache_state(ctx)
        if state is CacheState.LOCAL:
            outcome = ReconcileOutcome(ReconcileStatus.LOCAL)
        elif state is CacheState.NOT_CACHED:
            outcome = await self._clone(ctx)
        else:
            outcome = await self._update(ctx)

        if not ctx.source_path.exists():
            raise MissingSourceFiles(
                f"{ctx.source_path} doesn't exist",
                "The block path was not found in the fetched source.",
            )
        return outcome

    async def _clone(self, ctx: "AcquisitionContext") -> ReconcileOutcome:
        assert ctx.source_id is not None and ctx.repo is not None
        destination = self.store.reserve(ctx.source_id)
        logger.info(
            "Cloning block repository",
            data={"repo": ctx.repo, "branch": ctx.branch, "destination": str(destination)},
        )
        try:
            await asyncio.to_thread(self._git.clone, ctx.repo, destination, ctx.branch)
        except CloneFailed:
            # a populated slot must always mean a completed clone
            shutil.rmtree(destination, ignore_errors=True)
            raise
        except Exception as exc:
            shutil.rmtree(destination, ignore_errors=True)
            raise CloneFailed(f"Failed to clone {ctx.repo}", str(exc)) from exc
        ctx.staging_dir = destination
        ctx.repo_exists = True
        return ReconcileOutcome(ReconcileStatus.CLONED)

    async def _update(self, ctx: "AcquisitionContext") -> ReconcileOutcome:
        assert ctx.staging_dir is not None
        try:
            await asyncio.to_thread(self._git.update, ctx.staging_dir, ctx.branch)
        except Exception as exc:  # noqa: BLE001
            warning = (
                exc
                if isinstance(exc, UpdateFailed)
                else UpdateFailed(f"Failed to update {ctx.staging_dir}", str(exc))
            )
            logger.warning(
                "Block repository update failed, using the cached checkout",
                data={"source_id": ctx.source_id, "error": warning.message},
            )
            return ReconcileOutcome(ReconcileStatus.STALE, warning=warning)
        return ReconcileOutcome(ReconcileStatus.UPDATED)


def clear_staging_area(root: Path) -> bool:
    """Remove every staged repository. Returns False when there was nothing to remove."""
    root = root.expanduser().resolve()
    if root == Path(root.anchor) or root == Path.home().resolve():
        raise ValueError(f"Refusing to clear {root}")
    if not root.exists():
        return False
    shutil.rmtree(root)
    logger.info("Cleared staging area", data={"root": str(root)})
    return True
