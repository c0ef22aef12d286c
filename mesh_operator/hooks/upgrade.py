"""Hooks that check whether a cluster can be upgraded."""

import logging

from mesh_operator.cluster.client import ClusterClient
from mesh_operator.exceptions import (
    CustomizedConfigError,
    ErrorList,
    MeshOperatorException,
    ObjectNotFoundError,
    PreconditionFailedError,
)
from mesh_operator.manifest import CONFIG_API_GROUP, DEFAULT_NAMESPACE, GroupVersionKind
from mesh_operator.resource_diff import spec_diff

from .common import Hook, HookCommonParams, HookVersionMapping

__all__ = [
    "CheckInitCrdJobs",
    "CheckMixerTelemetry",
    "PRE_UPGRADE_HOOKS",
    "POST_UPGRADE_HOOKS",
]

_LOGGER = logging.getLogger(__name__)

CONFIG_API_VERSION = "v1alpha2"
INIT_CRD_POD_MARKER = "istio-init-crd"

# Default telemetry objects installed by older releases, by kind
TELEMETRY_KIND_NAMES: dict[str, tuple[str, ...]] = {
    "instance": ("requestsize", "requestcount", "requestduration", "attributes"),
    "rule": ("promhttp", "kubeattrgenrulerule"),
    "handler": ("prometheus", "kubernetesenv"),
}


class CheckMixerTelemetry(Hook):
    """Compares the default telemetry configuration with the cluster.

    Customized configuration blocks the upgrade and must be reviewed by hand.
    Default objects that were removed from the cluster are allowed.
    """

    name = "check-mixer-telemetry"

    async def run(self, client: ClusterClient, params: HookCommonParams) -> ErrorList:
        errors = ErrorList()
        for kind, names in TELEMETRY_KIND_NAMES.items():
            gvk = GroupVersionKind(CONFIG_API_GROUP, CONFIG_API_VERSION, kind)
            for name in names:
                try:
                    obj = await client.get_object(gvk, DEFAULT_NAMESPACE, name)
                except ObjectNotFoundError:
                    _LOGGER.warning(
                        "default config kind: %s, name: %s does not exist in cluster",
                        kind,
                        name,
                    )
                    continue
                except MeshOperatorException as err:
                    errors.add(err)
                    continue
                if (default := params.default_telemetry_manifest.get((kind, name))) is None:
                    continue
                if obj.spec is None:
                    errors.add(
                        MeshOperatorException(
                            f"failed to get spec from item of kind: {kind}, name: {name}"
                        )
                    )
                    continue
                if diff := spec_diff(default.spec or {}, obj.spec):
                    errors.add(CustomizedConfigError(kind, name, diff))
        return errors


class CheckInitCrdJobs(Hook):
    """Fails when the cluster was installed with the deprecated CRD init jobs."""

    name = "check-init-crd-jobs"

    async def run(self, client: ClusterClient, params: HookCommonParams) -> ErrorList:
        namespace = DEFAULT_NAMESPACE
        if params.source_operator is not None:
            namespace = params.source_operator.root_namespace
        try:
            pods = await client.list_pods(namespace)
        except MeshOperatorException as err:
            return ErrorList([MeshOperatorException(f"failed to list pods: {err}")])
        for pod in pods:
            if INIT_CRD_POD_MARKER in pod.name:
                return ErrorList(
                    [
                        PreconditionFailedError(
                            f"{INIT_CRD_POD_MARKER} pods exist: {pod.name}. Istio was "
                            "installed with non-operator methods, please migrate to "
                            "operator installation first"
                        )
                    ]
                )
        return ErrorList()


PRE_UPGRADE_HOOKS: tuple[HookVersionMapping, ...] = (
    HookVersionMapping(
        source_version_constraint=">=1.3",
        target_version_constraint=">=1.3",
        hooks=(CheckInitCrdJobs(), CheckMixerTelemetry()),
    ),
)

POST_UPGRADE_HOOKS: tuple[HookVersionMapping, ...] = ()
