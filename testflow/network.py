"""Network attachment annotations for step artifacts."""

from __future__ import annotations

import json
import logging
from typing import Dict, Iterable, List, Tuple

from .constants import NETWORK_STATUS_ANNOTATION, NETWORKS_ANNOTATION
from .contracts import StepArtifact
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


class NetworkAttachmentResolver:
    def __init__(self, store: ClusterStore) -> None:
        self.store = store

    async def ensure_annotations(
        self, names: Iterable[str], namespace: str
    ) -> Dict[str, str]:
        """Build the networks annotation for ``names``.

        Raises NotFoundError for the first definition that does not exist.
        """
        networks = []
        for name in names:
            nad = await self.store.get_network_attachment(namespace, name)
            networks.append(
                {
                    "name": nad.metadata.name,
                    "namespace": nad.metadata.namespace,
                    "interface": nad.metadata.name,
                }
            )
        return {NETWORKS_ANNOTATION: json.dumps(networks)}

    def verify(
        self, artifact: StepArtifact, names: Iterable[str], namespace: str
    ) -> Tuple[bool, Dict[str, List[str]]]:
        """Compare the reported network status of ``artifact`` with ``names``.

        Returns whether every requested attachment reports at least one IP and
        the reported IPs keyed by ``<namespace>/<name>``.
        """
        raw = artifact.metadata.annotations.get(NETWORK_STATUS_ANNOTATION)
        reported: Dict[str, List[str]] = {}
        if raw:
            try:
                entries = json.loads(raw)
            except ValueError:
                logger.warning(f"Unparsable network status on {artifact.name}: {raw!r}")
                entries = []
            for entry in entries:
                net = entry.get("name")
                if net:
                    reported.setdefault(net, []).extend(entry.get("ips") or [])

        status: Dict[str, List[str]] = {}
        ready = True
        for name in names:
            key = f"{namespace}/{name}"
            ips = reported.get(key, [])
            status[key] = ips
            if not ips:
                ready = False
        return ready, status
