"""Build verification for a working tree.

The verifier looks for a package manifest, installs dependencies, then runs
either the manifest's build script or a type-check-only pass. A tree with
neither is considered to build.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .config import BuildConfig
from .constants import MAX_DIAGNOSTIC_LINES
from .contracts import CommandTimeoutError
from .process import run_command

logger = logging.getLogger(__name__)

ERROR_MARKER = re.compile(r"\berror\b|ERR!|\bfailed\b|\bTS\d{4}\b", re.IGNORECASE)


class BuildResult(BaseModel):
    success: bool
    error: Optional[str] = None
    phase: Optional[str] = None
    command: Optional[str] = None


def extract_diagnostics(output: str, max_lines: int = MAX_DIAGNOSTIC_LINES) -> str:
    """Return up to ``max_lines`` error lines from ``output``.

    Falls back to the last ``max_lines`` non-empty lines when nothing matches.
    """
    lines = [line.rstrip() for line in output.splitlines() if line.strip()]
    matches = [line for line in lines if ERROR_MARKER.search(line)]
    selected = matches[:max_lines] if matches else lines[-max_lines:]
    return "\n".join(selected)


class BuildVerifier:
    """Checks that a working tree installs and builds."""

    def __init__(self, config: Optional[BuildConfig] = None) -> None:
        self.config = config or BuildConfig()

    def _read_manifest(self, root: Path) -> Optional[dict]:
        manifest = root / self.config.manifest
        if not manifest.is_file():
            return None
        try:
            return json.loads(manifest.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Unreadable manifest {manifest}: {exc}")
            return {}

    def _is_typed(self, root: Path, manifest: Optional[dict]) -> bool:
        if (root / self.config.typecheck_config).is_file():
            return True
        if not manifest:
            return False
        dep = self.config.typecheck_dependency
        return dep in (manifest.get("dependencies") or {}) or dep in (
            manifest.get("devDependencies") or {}
        )

    async def _run(self, phase: str, args: list[str], root: Path, timeout: float) -> BuildResult:
        command = " ".join(args)
        try:
            result = await run_command(args, root, timeout)
        except CommandTimeoutError as exc:
            logger.warning(f"{phase} timed out in {root}")
            return BuildResult(success=False, error=str(exc), phase=phase, command=command)
        except FileNotFoundError as exc:
            return BuildResult(
                success=False, error=f"{command}: {exc}", phase=phase, command=command
            )
        if result.ok:
            return BuildResult(success=True, phase=phase, command=command)
        diagnostic = extract_diagnostics(result.output) or f"{command} exited with {result.returncode}"
        return BuildResult(success=False, error=diagnostic, phase=phase, command=command)

    async def verify(self, working_dir: str | Path) -> BuildResult:
        root = Path(working_dir)
        manifest = self._read_manifest(root)

        if manifest is not None:
            install = await self._run(
                "install", self.config.install_command, root, self.config.install_timeout
            )
            if not install.success:
                return install
            if (manifest.get("scripts") or {}).get("build"):
                return await self._run(
                    "build", self.config.build_command, root, self.config.build_timeout
                )

        if self._is_typed(root, manifest):
            return await self._run(
                "typecheck", self.config.typecheck_command, root, self.config.build_timeout
            )

        logger.info(f"No build or type-check configured for {root}; skipping verification")
        return BuildResult(success=True)
