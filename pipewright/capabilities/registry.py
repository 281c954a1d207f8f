"""Binding of stage kinds to capabilities."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping

from ..contracts import StageKind, UnboundStageError, WorkflowType, stage_sequence
from .base import StageCapability

logger = logging.getLogger(__name__)


class StageRegistry:
    """Lookup table from :class:`StageKind` to the capability that runs it."""

    def __init__(self, bindings: Mapping[StageKind | str, StageCapability]):
        self._bindings: Dict[StageKind, StageCapability] = {
            StageKind(kind): capability for kind, capability in bindings.items()
        }

    def get(self, kind: StageKind) -> StageCapability:
        try:
            return self._bindings[StageKind(kind)]
        except KeyError:
            raise UnboundStageError(f"No capability bound for stage '{kind}'") from None

    def __contains__(self, kind: object) -> bool:
        try:
            return StageKind(kind) in self._bindings
        except ValueError:
            return False

    def require(self, kinds: Iterable[StageKind]) -> None:
        """Raise :class:`UnboundStageError` unless every kind in ``kinds`` is bound."""
        missing = [k.value for k in kinds if k not in self]
        if missing:
            raise UnboundStageError(f"Unbound stages: {', '.join(missing)}")

    def require_workflow_types(self, workflow_types: Iterable[WorkflowType | str]) -> None:
        """Check every stage the given workflow types would run is bound."""
        workflow_types = list(workflow_types)
        needed: list[StageKind] = []
        for workflow_type in workflow_types:
            for kind in stage_sequence(workflow_type):
                if kind not in needed:
                    needed.append(kind)
        self.require(needed)
        logger.debug(f"Registry covers workflow types {list(workflow_types)}")
