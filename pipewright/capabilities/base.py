"""Stage capability protocol and a callable-backed implementation."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

from ..contracts import StageInput, StageOutput


@runtime_checkable
class StageCapability(Protocol):
    """Something that can perform one stage of a pipeline.

    Implementations may return ``StageOutput(success=False)`` or raise; the
    executor records both as a failed stage attempt.
    """

    async def invoke(self, stage_input: StageInput) -> StageOutput:
        ...


class FunctionStage:
    """Adapt a plain ``async def handler(stage_input)`` into a capability."""

    def __init__(self, handler: Callable[[StageInput], Awaitable[StageOutput]]):
        self._handler = handler

    async def invoke(self, stage_input: StageInput) -> StageOutput:
        return await self._handler(stage_input)

    def __repr__(self) -> str:
        name = getattr(self._handler, "__name__", type(self._handler).__name__)
        return f"FunctionStage({name})"
