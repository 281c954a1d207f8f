"""Shared fixtures: scripted stages, a fake build verifier and a fake git."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import pytest

from pipewright.build import BuildResult
from pipewright.capabilities import StageRegistry
from pipewright.config import InterruptConfig, PipewrightConfig
from pipewright.contracts import StageInput, StageKind, StageOutput
from pipewright.orchestrator import Orchestrator
from pipewright.persistence import InMemoryWorkflowRepository
from pipewright.vcs import GitAdapter

TEST_ENV = {"OPENROUTER_API_KEY": "test-key"}


class ScriptedStage:
    """Capability that records its inputs and answers from a handler."""

    def __init__(self, kind: StageKind, handler: Optional[Callable] = None):
        self.kind = kind
        self.handler = handler
        self.calls: List[StageInput] = []

    async def invoke(self, stage_input: StageInput) -> StageOutput:
        self.calls.append(stage_input)
        if self.handler is not None:
            result = self.handler(stage_input)
            if hasattr(result, "__await__"):
                result = await result
            return result
        return StageOutput(success=True, summary=f"{self.kind.value} done")


class FakeVerifier:
    """Returns queued build results; the last one repeats."""

    def __init__(self, results: Optional[List[BuildResult]] = None):
        self.results = list(results or [BuildResult(success=True)])
        self.calls: List[str] = []

    async def verify(self, working_dir) -> BuildResult:
        self.calls.append(str(working_dir))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeGit(GitAdapter):
    """Git adapter that keeps its history in memory."""

    def __init__(self, dirty: bool = True):
        super().__init__()
        self.dirty = dirty
        self.commits: List[str] = []
        self.messages: List[str] = []
        self.pushed: List[str] = []
        self.remote_refs: Dict[str, str] = {}

    async def is_dirty(self, cwd) -> bool:
        return self.dirty

    async def stage_all(self, cwd) -> None:
        return None

    async def commit(self, cwd, message: str) -> str:
        sha = f"{len(self.commits) + 1:040x}"
        self.commits.append(sha)
        self.messages.append(message)
        return sha

    async def head_sha(self, cwd) -> str:
        return self.commits[-1] if self.commits else "0" * 40

    async def current_branch(self, cwd) -> str:
        return "main"

    async def remote_sha(self, cwd, branch: str) -> Optional[str]:
        return self.remote_refs.get(branch)

    async def push(self, cwd, branch: str) -> None:
        self.pushed.append(branch)
        self.remote_refs[branch] = await self.head_sha(cwd)

    async def is_ancestor(self, cwd, sha: str, ref: str = "HEAD") -> bool:
        return sha in self.commits or sha == "0" * 40


class Harness:
    def __init__(self, orchestrator: Orchestrator, stages: Dict[StageKind, ScriptedStage]):
        self.orchestrator = orchestrator
        self.stages = stages
        self.repository = orchestrator.repository
        self.verifier = orchestrator.verifier
        self.git = orchestrator.git

    def calls(self, kind: StageKind) -> List[StageInput]:
        return self.stages[kind].calls


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def test_config():
    return PipewrightConfig(
        interrupts=InterruptConfig(poll_interval=0.01, pause_timeout=5.0)
    )


@pytest.fixture
def make_harness(repository, test_config):
    """Factory building an orchestrator over scripted stages and fakes."""

    def build(
        handlers: Optional[Dict[StageKind, Callable]] = None,
        build_results: Optional[List[BuildResult]] = None,
        git: Optional[GitAdapter] = None,
        config: Optional[PipewrightConfig] = None,
        creator=None,
        environ=None,
    ) -> Harness:
        handlers = handlers or {}
        stages = {kind: ScriptedStage(kind, handlers.get(kind)) for kind in StageKind}
        orchestrator = Orchestrator(
            config=config or test_config,
            registry=StageRegistry(stages),
            repository=repository,
            git=git or FakeGit(),
            verifier=FakeVerifier(build_results),
            creator=creator,
            environ=TEST_ENV if environ is None else environ,
        )
        return Harness(orchestrator, stages)

    return build
