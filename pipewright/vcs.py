"""Thin async wrapper over the ``git`` command line."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .contracts import VersionControlError
from .process import CommandResult, run_command

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60.0


class GitAdapter:
    """Runs git commands against a working directory."""

    def __init__(self, remote: str = "origin", timeout: float = GIT_TIMEOUT_SECONDS) -> None:
        self.remote = remote
        self.timeout = timeout

    async def _git(self, cwd: str | Path, *args: str, check: bool = True) -> CommandResult:
        try:
            result = await run_command(["git", *args], cwd, self.timeout)
        except FileNotFoundError as exc:
            raise VersionControlError(f"git executable not found: {exc}") from exc
        if check and not result.ok:
            raise VersionControlError(
                f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr}"
            )
        return result

    async def is_dirty(self, cwd: str | Path) -> bool:
        result = await self._git(cwd, "status", "--porcelain")
        return bool(result.stdout)

    async def stage_all(self, cwd: str | Path) -> None:
        await self._git(cwd, "add", "-A")

    async def commit(self, cwd: str | Path, message: str) -> str:
        """Commit staged changes and return the new HEAD hash."""
        await self._git(cwd, "commit", "-m", message)
        return await self.head_sha(cwd)

    async def head_sha(self, cwd: str | Path) -> str:
        result = await self._git(cwd, "rev-parse", "HEAD")
        return result.stdout

    async def current_branch(self, cwd: str | Path) -> str:
        result = await self._git(cwd, "rev-parse", "--abbrev-ref", "HEAD")
        return result.stdout

    async def remote_sha(self, cwd: str | Path, branch: str) -> Optional[str]:
        """Return the hash of ``<remote>/<branch>``, or ``None`` if unknown."""
        result = await self._git(
            cwd, "rev-parse", "--verify", "--quiet", f"{self.remote}/{branch}", check=False
        )
        return result.stdout if result.ok and result.stdout else None

    async def push(self, cwd: str | Path, branch: str) -> None:
        await self._git(cwd, "push", self.remote, branch)

    async def is_ancestor(self, cwd: str | Path, sha: str, ref: str = "HEAD") -> bool:
        """True when ``sha`` names a commit reachable from ``ref``."""
        result = await self._git(cwd, "merge-base", "--is-ancestor", sha, ref, check=False)
        return result.ok
