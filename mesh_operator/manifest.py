"""Representation of kubernetes objects managed by the operator.

Rendered manifests arrive as a `ManifestMap` of component name to YAML documents.
Each document is parsed into a `K8sObject`, whose `hash` is the identity used
to compare rendered objects against objects found live in the cluster.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, ClassVar

import aiofiles
import yaml
from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_encode
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "GroupVersionKind",
    "K8sObject",
    "IstioOperator",
    "ManifestMap",
    "object_hash",
    "object_hashes",
    "parse_objects",
    "read_manifest_map",
    "write_manifest_map",
]

_LOGGER = logging.getLogger(__name__)


DEFAULT_NAMESPACE = "istio-system"
DEFAULT_REVISION = "default"
YAML_SEPARATOR = "\n---\n"
MANIFEST_SUFFIX = ".yaml"

ISTIO_OPERATOR_KIND = "IstioOperator"
OPERATOR_API_GROUP = "install.istio.io"
NETWORKING_API_GROUP = "networking.istio.io"
SECURITY_API_GROUP = "security.istio.io"
CONFIG_API_GROUP = "config.istio.io"

HPA_KIND = "HorizontalPodAutoscaler"
PDB_KIND = "PodDisruptionBudget"
DEPLOYMENT_KIND = "Deployment"
DAEMONSET_KIND = "DaemonSet"
SERVICE_KIND = "Service"
CONFIG_MAP_KIND = "ConfigMap"
PVC_KIND = "PersistentVolumeClaim"
POD_KIND = "Pod"
SECRET_KIND = "Secret"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
ROLE_BINDING_KIND = "RoleBinding"
ROLE_KIND = "Role"
CLUSTER_ROLE_KIND = "ClusterRole"
CLUSTER_ROLE_BINDING_KIND = "ClusterRoleBinding"
MUTATING_WEBHOOK_KIND = "MutatingWebhookConfiguration"
VALIDATING_WEBHOOK_KIND = "ValidatingWebhookConfiguration"
CRD_KIND = "CustomResourceDefinition"
NAMESPACE_KIND = "Namespace"
DESTINATION_RULE_KIND = "DestinationRule"
ENVOY_FILTER_KIND = "EnvoyFilter"
GATEWAY_KIND = "Gateway"
VIRTUAL_SERVICE_KIND = "VirtualService"
PEER_AUTHENTICATION_KIND = "PeerAuthentication"

# Kinds that are always cluster scoped, even if a manifest sets a namespace.
CLUSTER_SCOPED_KINDS = frozenset(
    {
        CLUSTER_ROLE_KIND,
        CLUSTER_ROLE_BINDING_KIND,
        MUTATING_WEBHOOK_KIND,
        VALIDATING_WEBHOOK_KIND,
        CRD_KIND,
        NAMESPACE_KIND,
    }
)


class ComponentName:
    """Names of the independently toggleable parts of the control plane."""

    BASE = "Base"
    PILOT = "Pilot"
    INGRESS_GATEWAYS = "IngressGateways"
    EGRESS_GATEWAYS = "EgressGateways"
    CNI = "Cni"
    ISTIOD_REMOTE = "IstiodRemote"


@dataclass(frozen=True, order=True)
class GroupVersionKind:
    """Identifier for a type of kubernetes resource."""

    group: str
    version: str
    kind: str

    @classmethod
    def parse(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """Parse a GroupVersionKind from an apiVersion and kind."""
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        """Return the apiVersion used in object documents."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def cluster_scoped(self) -> bool:
        return self.kind in CLUSTER_SCOPED_KINDS

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


def object_hash(gvk: GroupVersionKind, namespace: str | None, name: str) -> str:
    """Return the identity of an object, independent of its contents.

    The API version is not included so that the same object served under two
    versions is still the same object.
    """
    kind = gvk.kind
    if gvk.group:
        kind = f"{kind}.{gvk.group}"
    if gvk.cluster_scoped:
        namespace = None
    return ":".join([kind, namespace or "", name])


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass
class K8sObject(BaseManifest):
    """A single kubernetes object, either rendered or found live in the cluster."""

    kind: str
    """The kind of the object."""

    api_version: str
    """The apiVersion of the object."""

    name: str
    """The name of the object."""

    namespace: str | None = None
    """The namespace of the object, unset for cluster scoped objects."""

    labels: dict[str, str] = field(default_factory=dict)
    """The labels on the object."""

    content: dict[str, Any] = field(
        metadata={"serialize": "omit"}, default_factory=dict
    )
    """The raw object document."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "K8sObject":
        """Parse a K8sObject from a raw kubernetes object."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid object is not a mapping: {doc}")
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        return cls(
            kind=kind,
            api_version=api_version,
            name=name,
            namespace=metadata.get("namespace"),
            labels=dict(metadata.get("labels") or {}),
            content=doc,
        )

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.parse(self.api_version, self.kind)

    @property
    def hash(self) -> str:
        """Return the identity of this object, see `object_hash`."""
        return object_hash(self.gvk, self.namespace, self.name)

    @property
    def spec(self) -> dict[str, Any] | None:
        """Return the spec of the object if it has one."""
        spec = self.content.get("spec")
        if isinstance(spec, dict):
            return spec
        return None

    def yaml(self) -> str:
        """Return the object as a kubernetes YAML document."""
        return yaml.safe_dump(self.content, sort_keys=False)

    def set_label(self, key: str, value: str) -> None:
        """Set a label on the object and its raw document."""
        self.labels[key] = value
        metadata = self.content.setdefault("metadata", {})
        metadata.setdefault("labels", {})[key] = value

    def __str__(self) -> str:
        return self.hash


@dataclass
class IstioOperator(BaseManifest):
    """The custom resource that owns an installation of the control plane."""

    kind: ClassVar[str] = ISTIO_OPERATOR_KIND

    name: str
    """The name of the custom resource."""

    namespace: str | None = None
    """The namespace of the custom resource."""

    revision: str = DEFAULT_REVISION
    """The control plane revision installed by this resource."""

    root_namespace: str = DEFAULT_NAMESPACE
    """The mesh root namespace where the control plane runs."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "IstioOperator":
        """Parse an IstioOperator from a kubernetes resource."""
        if doc.get("kind") != ISTIO_OPERATOR_KIND:
            raise InputException(f"Invalid {cls} wrong kind: {doc}")
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid {cls} missing apiVersion: {doc}")
        if not api_version.startswith(OPERATOR_API_GROUP):
            raise InputException(f"Invalid {cls} expected '{OPERATOR_API_GROUP}': {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        spec = doc.get("spec") or {}
        mesh_config = spec.get("meshConfig") or {}
        return cls(
            name=name,
            namespace=metadata.get("namespace"),
            revision=spec.get("revision") or DEFAULT_REVISION,
            root_namespace=mesh_config.get("rootNamespace") or DEFAULT_NAMESPACE,
        )


def parse_objects(manifest: str) -> list[K8sObject]:
    """Parse every object in a multi-document YAML manifest."""
    try:
        docs = list(yaml.safe_load_all(manifest))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse manifest: {err}") from err
    objects = []
    for doc in docs:
        if not doc:
            continue
        if not isinstance(doc, dict):
            raise InputException(f"Invalid object is not a mapping: {doc}")
        if doc.get("kind") == "List":
            objects.extend(K8sObject.parse_doc(item) for item in doc.get("items") or ())
            continue
        objects.append(K8sObject.parse_doc(doc))
    return objects


def object_hashes(manifest: str) -> set[str]:
    """Return the set of object hashes described by a manifest."""
    return {obj.hash for obj in parse_objects(manifest)}


class ManifestMap(dict[str, list[str]]):
    """Rendered manifests keyed by component name.

    Each component maps to an ordered list of YAML manifests, each of which
    may contain several documents.
    """

    def consolidated(self) -> dict[str, str]:
        """Return a single YAML document stream for each component."""
        return {
            component: YAML_SEPARATOR.join(manifests)
            for component, manifests in self.items()
        }

    def objects(self) -> Iterator[tuple[str, K8sObject]]:
        """Yield every rendered object with the component that owns it."""
        for component, manifest in self.consolidated().items():
            for obj in parse_objects(manifest):
                yield component, obj

    def __str__(self) -> str:
        return YAML_SEPARATOR.join(self.consolidated().values())


async def read_manifest_map(path: Path) -> ManifestMap:
    """Read a manifest map with one `<component>.yaml` file per component."""
    if not path.is_dir():
        raise InputException(f"Manifest path {path} is not a directory")
    manifests = ManifestMap()
    for manifest_path in sorted(path.glob(f"*{MANIFEST_SUFFIX}")):
        async with aiofiles.open(str(manifest_path)) as manifest_file:
            content = await manifest_file.read()
        _LOGGER.debug("Read manifest for component %s", manifest_path.stem)
        manifests[manifest_path.stem] = [content]
    return manifests


async def write_manifest_map(path: Path, manifests: ManifestMap) -> None:
    """Write each component of the manifest map to its own file."""
    path.mkdir(parents=True, exist_ok=True)
    for component, content in manifests.consolidated().items():
        manifest_path = path / f"{component}{MANIFEST_SUFFIX}"
        async with aiofiles.open(str(manifest_path), mode="w") as manifest_file:
            await manifest_file.write(content)
