"""Find how far an instance has progressed through its workflow."""

from __future__ import annotations

import logging
from typing import Optional

from .constants import INSTANCE_NAME_LABEL, WORKFLOW_STEP_LABEL
from .contracts import StepArtifact, WorkloadInstance
from .errors import MalformedStepLabelError
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


def step_index_of(artifact: StepArtifact) -> int:
    """Parse the workflow step label of ``artifact``.

    A missing or corrupted label is never read as step 0.
    """
    raw = artifact.metadata.labels.get(WORKFLOW_STEP_LABEL)
    if raw is None:
        raise MalformedStepLabelError(
            f"{artifact.kind} {artifact.name} has no {WORKFLOW_STEP_LABEL} label"
        )
    try:
        index = int(raw)
    except ValueError as exc:
        raise MalformedStepLabelError(
            f"{artifact.kind} {artifact.name} has a non-numeric "
            f"{WORKFLOW_STEP_LABEL} label: {raw!r}"
        ) from exc
    if index < 0:
        raise MalformedStepLabelError(
            f"{artifact.kind} {artifact.name} has a negative "
            f"{WORKFLOW_STEP_LABEL} label: {raw!r}"
        )
    return index


class ProgressTracker:
    """Reads step progress back from the labels of created artifacts."""

    def __init__(self, store: ClusterStore) -> None:
        self.store = store

    async def latest_artifact(
        self, instance: WorkloadInstance, artifact_kind: str = "Pod"
    ) -> Optional[StepArtifact]:
        """Return the artifact with the highest step index, or None.

        On equal indexes the one listed last wins.
        """
        artifacts = await self.store.list_artifacts(
            instance.namespace, {INSTANCE_NAME_LABEL: instance.name}, kind=artifact_kind
        )
        latest: Optional[StepArtifact] = None
        highest = 0
        for artifact in artifacts:
            index = step_index_of(artifact)
            if index >= highest:
                highest = index
                latest = artifact
        if latest is not None:
            logger.debug(
                f"Latest artifact for {instance.name}: {latest.name} "
                f"(step {highest}, {latest.phase.value})"
            )
        return latest
