"""Decide what a reconciliation pass should do next."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .contracts import StepArtifact, WorkloadInstance
from .progress import ProgressTracker, step_index_of

logger = logging.getLogger(__name__)


class NextAction(str, Enum):
    WAIT = "Wait"
    CREATE_FIRST_POD = "CreateFirstPod"
    CREATE_NEXT_POD = "CreateNextPod"
    END_TESTING = "EndTesting"
    FAILURE = "Failure"


class Resolution(BaseModel):
    """The action to take and the workflow step it applies to."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: NextAction
    step_index: int = 0
    error: Optional[Exception] = None


def is_last_step_index(index: int, workflow_length: int) -> bool:
    """True when ``index`` is the final step.

    An instance without a workflow runs a single implicit step 0, so lengths
    0 and 1 both end at index 0.
    """
    if workflow_length == 0:
        return index == 0
    return index == workflow_length - 1


def next_action(latest: Optional[StepArtifact], workflow_length: int) -> Resolution:
    if latest is None:
        return Resolution(action=NextAction.CREATE_FIRST_POD, step_index=0)

    index = step_index_of(latest)
    if not latest.is_terminal:
        return Resolution(action=NextAction.WAIT, step_index=index)
    if is_last_step_index(index, workflow_length):
        return Resolution(action=NextAction.END_TESTING, step_index=index)
    return Resolution(action=NextAction.CREATE_NEXT_POD, step_index=index + 1)


class ActionResolver:
    """Combines progress lookup with :func:`next_action`."""

    def __init__(self, tracker: ProgressTracker) -> None:
        self.tracker = tracker

    async def resolve(
        self,
        instance: WorkloadInstance,
        workflow_length: int,
        artifact_kind: str = "Pod",
    ) -> Resolution:
        try:
            latest = await self.tracker.latest_artifact(instance, artifact_kind)
            resolution = next_action(latest, workflow_length)
        except Exception as exc:
            logger.error(f"Failed to determine progress of {instance.name}: {exc}")
            return Resolution(action=NextAction.FAILURE, step_index=0, error=exc)
        logger.debug(
            f"{instance.kind} {instance.name}: {resolution.action.value} "
            f"(step {resolution.step_index})"
        )
        return resolution
