"""Cluster client that runs `kubectl` commands.

Errors reported by kubectl are mapped onto the exception kinds expected by
`ClusterClient` callers so that a missing object or a kind that is not served
by the cluster can be told apart from other failures.
"""

import logging
from typing import Any

import yaml

from mesh_operator import command
from mesh_operator.config import KubectlConfig
from mesh_operator.exceptions import (
    InputException,
    KubectlException,
    ObjectNotFoundError,
    ResourceKindNotFoundError,
)
from mesh_operator.labels import LabelSelector
from mesh_operator.manifest import POD_KIND, GroupVersionKind, K8sObject

from .client import ClusterClient, PropagationPolicy

__all__ = ["Kubectl"]

_LOGGER = logging.getLogger(__name__)

POD_GVK = GroupVersionKind("", "v1", POD_KIND)

_KIND_NOT_FOUND = (
    "the server doesn't have a resource type",
    "no matches for kind",
)
_NOT_FOUND = ("NotFound", "not found")
_ALREADY_EXISTS = "AlreadyExists"


def _resource_arg(gvk: GroupVersionKind) -> str:
    """Return the fully qualified resource argument for a kind."""
    if gvk.group:
        return f"{gvk.kind}.{gvk.version}.{gvk.group}"
    return gvk.kind


def _parse_list(out: str) -> list[K8sObject]:
    doc = yaml.safe_load(out) if out else None
    if not doc:
        return []
    if not isinstance(doc, dict):
        raise InputException(f"Unexpected kubectl output: {out}")
    items: list[dict[str, Any]] = doc.get("items") or []
    return [K8sObject.parse_doc(item) for item in items]


class Kubectl(ClusterClient):
    """Library for issuing kubectl commands against a cluster."""

    def __init__(self, config: KubectlConfig | None = None) -> None:
        """Initialize Kubectl."""
        self._config = config or KubectlConfig()

    def _command(self, args: list[str]) -> command.Command:
        cmd = [self._config.binary]
        if self._config.kubeconfig:
            cmd.extend(["--kubeconfig", str(self._config.kubeconfig)])
        if self._config.context:
            cmd.extend(["--context", self._config.context])
        return command.Command(cmd + args, exc=KubectlException)

    async def _run(self, args: list[str], stdin: str | None = None) -> str:
        try:
            return await command.run(self._command(args), stdin)
        except KubectlException as err:
            message = str(err)
            if any(marker in message for marker in _KIND_NOT_FOUND):
                raise ResourceKindNotFoundError(message) from err
            if any(marker in message for marker in _NOT_FOUND):
                raise ObjectNotFoundError(message) from err
            raise

    async def list_objects(
        self,
        gvk: GroupVersionKind,
        selector: LabelSelector,
        namespace: str | None = None,
    ) -> list[K8sObject]:
        """List the objects of a kind matching the selector."""
        args = ["get", _resource_arg(gvk), "-o", "yaml"]
        if selector_str := str(selector):
            args.extend(["-l", selector_str])
        if namespace:
            args.extend(["-n", namespace])
        else:
            args.append("--all-namespaces")
        return _parse_list(await self._run(args))

    async def get_object(
        self, gvk: GroupVersionKind, namespace: str | None, name: str
    ) -> K8sObject:
        """Return a single object by kind, namespace and name."""
        args = ["get", _resource_arg(gvk), name, "-o", "yaml"]
        if namespace:
            args.extend(["-n", namespace])
        out = await self._run(args)
        if not (doc := yaml.safe_load(out)):
            raise ObjectNotFoundError(f"{gvk.kind} {namespace}/{name} not found")
        return K8sObject.parse_doc(doc)

    async def delete_object(
        self,
        obj: K8sObject,
        propagation_policy: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete the object without waiting for its dependents to be removed."""
        args = [
            "delete",
            _resource_arg(obj.gvk),
            obj.name,
            f"--cascade={propagation_policy}",
            "--wait=false",
        ]
        if obj.namespace and not obj.gvk.cluster_scoped:
            args.extend(["-n", obj.namespace])
        await self._run(args)

    async def create_namespace(self, namespace: str) -> None:
        """Create the namespace, succeeding if it already exists."""
        try:
            await self._run(["create", "namespace", namespace])
        except KubectlException as err:
            if _ALREADY_EXISTS not in str(err):
                raise
            _LOGGER.debug("Namespace %s already exists", namespace)

    async def create_or_update_secret(self, secret: K8sObject) -> None:
        """Create the secret or replace the contents of an existing one."""
        args = ["apply", "-f", "-"]
        if secret.namespace:
            args.extend(["-n", secret.namespace])
        await self._run(args, stdin=secret.yaml())

    async def list_pods(
        self, namespace: str | None, selector: LabelSelector | None = None
    ) -> list[K8sObject]:
        """List pods in a namespace, or in all namespaces when None."""
        return await self.list_objects(POD_GVK, selector or LabelSelector(), namespace)
