"""Interfaces for reading and changing objects in a cluster."""

from abc import ABC, abstractmethod
from enum import StrEnum

from mesh_operator.labels import LabelSelector
from mesh_operator.manifest import GroupVersionKind, K8sObject


class PropagationPolicy(StrEnum):
    """How the cluster garbage collects dependents of a deleted object."""

    BACKGROUND = "background"
    FOREGROUND = "foreground"
    ORPHAN = "orphan"


class ClusterClient(ABC):
    """Abstract base class for access to the objects in a cluster.

    Methods raise `ObjectNotFoundError` when an object does not exist and
    `ResourceKindNotFoundError` when the cluster does not serve a kind. Any
    other failure is raised as a `MeshOperatorException`.
    """

    @abstractmethod
    async def list_objects(
        self,
        gvk: GroupVersionKind,
        selector: LabelSelector,
        namespace: str | None = None,
    ) -> list[K8sObject]:
        """List the objects of a kind matching the selector.

        Objects from all namespaces are returned when namespace is None.
        """

    @abstractmethod
    async def get_object(
        self, gvk: GroupVersionKind, namespace: str | None, name: str
    ) -> K8sObject:
        """Return a single object by kind, namespace and name."""

    @abstractmethod
    async def delete_object(
        self,
        obj: K8sObject,
        propagation_policy: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete the object without waiting for its dependents to be removed."""

    @abstractmethod
    async def create_namespace(self, namespace: str) -> None:
        """Create the namespace, succeeding if it already exists."""

    @abstractmethod
    async def create_or_update_secret(self, secret: K8sObject) -> None:
        """Create the secret or replace the contents of an existing one."""

    @abstractmethod
    async def list_pods(
        self, namespace: str | None, selector: LabelSelector | None = None
    ) -> list[K8sObject]:
        """List pods in a namespace, or in all namespaces when None."""


class ActiveClientTracker(ABC):
    """Abstract base class for finding clients still bound to a revision."""

    @abstractmethod
    async def get_ids(self, revision: str, namespace: str) -> list[str]:
        """Return identifiers of clients using the control plane revision.

        The namespace is where the control plane revision runs.
        """
