"""Test fixtures for mesh-operator."""

from typing import Any

import pytest

from mesh_operator.cache import ObjectCache
from mesh_operator.cluster.client import ClusterClient, PropagationPolicy
from mesh_operator.exceptions import (
    MeshOperatorException,
    ObjectNotFoundError,
    ResourceKindNotFoundError,
)
from mesh_operator.labels import (
    COMPONENT_LABEL,
    LabelSelector,
    core_owner_labels,
)
from mesh_operator.manifest import POD_KIND, GroupVersionKind, IstioOperator, K8sObject

OWNER_NAME = "installed-state"
OWNER_NAMESPACE = "istio-system"


def make_object(
    kind: str,
    name: str,
    namespace: str | None = OWNER_NAMESPACE,
    api_version: str = "v1",
    labels: dict[str, str] | None = None,
    spec: dict[str, Any] | None = None,
) -> K8sObject:
    """Build an object as it would be returned by the cluster."""
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    if labels:
        metadata["labels"] = dict(labels)
    doc: dict[str, Any] = {"apiVersion": api_version, "kind": kind, "metadata": metadata}
    if spec is not None:
        doc["spec"] = spec
    return K8sObject.parse_doc(doc)


class FakeCluster(ClusterClient):
    """In memory implementation of a cluster for tests."""

    def __init__(self, objects: list[K8sObject] | None = None) -> None:
        self.objects: list[K8sObject] = list(objects or [])
        self.missing_kinds: set[str] = set()
        self.list_errors: dict[str, Exception] = {}
        self.delete_errors: dict[str, Exception] = {}
        self.deleted: list[str] = []
        self.propagation_policies: list[PropagationPolicy] = []
        self.namespaces: set[str] = set()
        self.secrets: dict[str, K8sObject] = {}

    def add(self, *objects: K8sObject) -> None:
        self.objects.extend(objects)

    @property
    def hashes(self) -> list[str]:
        return [obj.hash for obj in self.objects]

    async def list_objects(
        self,
        gvk: GroupVersionKind,
        selector: LabelSelector,
        namespace: str | None = None,
    ) -> list[K8sObject]:
        if gvk.kind in self.missing_kinds:
            raise ResourceKindNotFoundError(
                f"the server doesn't have a resource type {gvk.kind}"
            )
        if (err := self.list_errors.get(gvk.kind)) is not None:
            raise err
        return [
            obj
            for obj in self.objects
            if obj.kind == gvk.kind
            and obj.gvk.group == gvk.group
            and selector.matches(obj.labels)
            and (namespace is None or obj.namespace == namespace)
        ]

    async def get_object(
        self, gvk: GroupVersionKind, namespace: str | None, name: str
    ) -> K8sObject:
        for obj in self.objects:
            if (
                obj.kind == gvk.kind
                and obj.gvk.group == gvk.group
                and obj.namespace == namespace
                and obj.name == name
            ):
                return obj
        raise ObjectNotFoundError(f"{gvk.kind} {namespace}/{name} not found")

    async def delete_object(
        self,
        obj: K8sObject,
        propagation_policy: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        if (err := self.delete_errors.get(obj.hash)) is not None:
            raise err
        self.propagation_policies.append(propagation_policy)
        for existing in self.objects:
            if existing.hash == obj.hash:
                self.objects.remove(existing)
                self.deleted.append(obj.hash)
                return
        raise ObjectNotFoundError(f"{obj.hash} not found")

    async def create_namespace(self, namespace: str) -> None:
        self.namespaces.add(namespace)

    async def create_or_update_secret(self, secret: K8sObject) -> None:
        self.secrets[secret.hash] = secret

    async def list_pods(
        self, namespace: str | None, selector: LabelSelector | None = None
    ) -> list[K8sObject]:
        return await self.list_objects(
            GroupVersionKind("", "v1", POD_KIND), selector or LabelSelector(), namespace
        )


class FailingCluster(FakeCluster):
    """A cluster where every call fails."""

    async def list_objects(
        self,
        gvk: GroupVersionKind,
        selector: LabelSelector,
        namespace: str | None = None,
    ) -> list[K8sObject]:
        raise MeshOperatorException("connection refused")

    async def get_object(
        self, gvk: GroupVersionKind, namespace: str | None, name: str
    ) -> K8sObject:
        raise MeshOperatorException("connection refused")


@pytest.fixture
def owner() -> IstioOperator:
    """The custom resource owning the installation under test."""
    return IstioOperator(name=OWNER_NAME, namespace=OWNER_NAMESPACE)


@pytest.fixture
def core_labels(owner: IstioOperator) -> dict[str, str]:
    """Ownership labels shared by every object of the installation."""
    return core_owner_labels(owner)


@pytest.fixture
def cluster() -> FakeCluster:
    """An empty in memory cluster."""
    return FakeCluster()


@pytest.fixture
def cache() -> ObjectCache:
    """An empty object cache."""
    return ObjectCache()


def component_object(
    core_labels: dict[str, str],
    component: str,
    kind: str,
    name: str,
    api_version: str = "v1",
    namespace: str | None = OWNER_NAMESPACE,
) -> K8sObject:
    """Build an object labelled as part of a component of the installation."""
    labels = {**core_labels, COMPONENT_LABEL: component}
    return make_object(
        kind, name, namespace=namespace, api_version=api_version, labels=labels
    )
