"""Tracking of proxies that still use a control plane revision."""

import logging

from mesh_operator.labels import REVISION_LABEL, TLS_MODE_LABEL, LabelSelector

from .client import ActiveClientTracker, ClusterClient

__all__ = ["PodRevisionTracker"]

_LOGGER = logging.getLogger(__name__)

SIDECAR_TLS_MODE = "istio"


class PodRevisionTracker(ActiveClientTracker):
    """Finds sidecar injected pods that are bound to a revision.

    Pods running in the control plane namespace itself are not clients of
    the revision and are ignored.
    """

    def __init__(self, client: ClusterClient) -> None:
        """Initialize PodRevisionTracker."""
        self._client = client

    async def get_ids(self, revision: str, namespace: str) -> list[str]:
        """Return `name.namespace` ids of pods using the revision."""
        selector = LabelSelector(
            match_labels={
                REVISION_LABEL: revision,
                TLS_MODE_LABEL: SIDECAR_TLS_MODE,
            }
        )
        pods = await self._client.list_pods(None, selector)
        ids = [f"{pod.name}.{pod.namespace}" for pod in pods if pod.namespace != namespace]
        _LOGGER.debug("Found %d proxies using revision %s", len(ids), revision)
        return ids
