"""Removal of objects that are no longer part of an installation.

Objects are found by listing each kind the operator manages with the core
ownership labels of the installation, then narrowing to the objects of one
component. Kinds are visited in a fixed order so that objects referencing
others (e.g. an autoscaler and the deployment it scales) are deleted first.

This example removes everything rendered for an installation that is no
longer present in the newly rendered manifests:
```python
from mesh_operator.cache import ObjectCache
from mesh_operator.cluster import Kubectl
from mesh_operator.prune import Reconciler

reconciler = Reconciler(Kubectl(), ObjectCache(), owner)
errors = await reconciler.prune(manifests)
for err in errors:
    print(f"Failed to prune: {err}")
```

Every operation makes as much progress as it can and returns an `ErrorList`
describing what failed, rather than stopping at the first failure.
"""

from collections.abc import Awaitable, Callable, Mapping, Set
from enum import StrEnum
import logging

from .cache import ObjectCache
from .cluster.client import ActiveClientTracker, ClusterClient, PropagationPolicy
from .cluster.tracker import PodRevisionTracker
from .config import ReconcilerConfig
from .exceptions import (
    ErrorList,
    MeshOperatorException,
    ObjectNotFoundError,
    PreconditionFailedError,
    ResourceKindNotFoundError,
)
from .labels import (
    COMPONENT_LABEL,
    OPERATOR_MANAGED_LABEL,
    OPERATOR_RECONCILE_VALUE,
    REVISION_LABEL,
    LabelSelector,
    component_labels,
    core_owner_labels,
    owner_cache_key,
)
from .manifest import (
    CLUSTER_ROLE_BINDING_KIND,
    CLUSTER_ROLE_KIND,
    CONFIG_MAP_KIND,
    CRD_KIND,
    DAEMONSET_KIND,
    DEFAULT_NAMESPACE,
    DEPLOYMENT_KIND,
    DESTINATION_RULE_KIND,
    ENVOY_FILTER_KIND,
    GATEWAY_KIND,
    HPA_KIND,
    MUTATING_WEBHOOK_KIND,
    NETWORKING_API_GROUP,
    PDB_KIND,
    PEER_AUTHENTICATION_KIND,
    POD_KIND,
    PVC_KIND,
    ROLE_BINDING_KIND,
    ROLE_KIND,
    SECRET_KIND,
    SECURITY_API_GROUP,
    SERVICE_ACCOUNT_KIND,
    SERVICE_KIND,
    VALIDATING_WEBHOOK_KIND,
    VIRTUAL_SERVICE_KIND,
    ComponentName,
    GroupVersionKind,
    IstioOperator,
    K8sObject,
    ManifestMap,
    object_hashes,
)

__all__ = [
    "NAMESPACED_RESOURCES",
    "CLUSTER_RESOURCES",
    "NON_NAMESPACED_CP_RESOURCES",
    "CRD_RESOURCES",
    "ALL_CLUSTER_RESOURCES",
    "InstallStatus",
    "PruneMode",
    "Reconciler",
]

_LOGGER = logging.getLogger(__name__)

_RBAC_GROUP = "rbac.authorization.k8s.io"
_ADMISSION_GROUP = "admissionregistration.k8s.io"

# Namespace scoped kinds the operator prunes, in the order they are deleted.
NAMESPACED_RESOURCES: tuple[GroupVersionKind, ...] = (
    GroupVersionKind("autoscaling", "v2", HPA_KIND),
    GroupVersionKind("policy", "v1", PDB_KIND),
    GroupVersionKind("apps", "v1", DEPLOYMENT_KIND),
    GroupVersionKind("apps", "v1", DAEMONSET_KIND),
    GroupVersionKind("", "v1", SERVICE_KIND),
    GroupVersionKind("", "v1", CONFIG_MAP_KIND),
    GroupVersionKind("", "v1", PVC_KIND),
    GroupVersionKind("", "v1", POD_KIND),
    GroupVersionKind("", "v1", SECRET_KIND),
    GroupVersionKind("", "v1", SERVICE_ACCOUNT_KIND),
    GroupVersionKind(_RBAC_GROUP, "v1", ROLE_BINDING_KIND),
    GroupVersionKind(_RBAC_GROUP, "v1", ROLE_KIND),
    GroupVersionKind(NETWORKING_API_GROUP, "v1alpha3", DESTINATION_RULE_KIND),
    GroupVersionKind(NETWORKING_API_GROUP, "v1alpha3", ENVOY_FILTER_KIND),
    GroupVersionKind(NETWORKING_API_GROUP, "v1alpha3", GATEWAY_KIND),
    GroupVersionKind(NETWORKING_API_GROUP, "v1alpha3", VIRTUAL_SERVICE_KIND),
    GroupVersionKind(SECURITY_API_GROUP, "v1beta1", PEER_AUTHENTICATION_KIND),
)

# Cluster scoped kinds the operator prunes, in the order they are deleted.
# CRDs are not pruned since that would also delete user configuration.
CLUSTER_RESOURCES: tuple[GroupVersionKind, ...] = (
    GroupVersionKind(_ADMISSION_GROUP, "v1", MUTATING_WEBHOOK_KIND),
    GroupVersionKind(_ADMISSION_GROUP, "v1", VALIDATING_WEBHOOK_KIND),
    GroupVersionKind(_RBAC_GROUP, "v1", CLUSTER_ROLE_KIND),
    GroupVersionKind(_RBAC_GROUP, "v1", CLUSTER_ROLE_BINDING_KIND),
)

# Cluster scoped kinds shared by a control plane revision, removed on uninstall.
NON_NAMESPACED_CP_RESOURCES: tuple[GroupVersionKind, ...] = (
    GroupVersionKind(_ADMISSION_GROUP, "v1", MUTATING_WEBHOOK_KIND),
)

CRD_RESOURCES: tuple[GroupVersionKind, ...] = (
    GroupVersionKind("apiextensions.k8s.io", "v1", CRD_KIND),
)

ALL_CLUSTER_RESOURCES: tuple[GroupVersionKind, ...] = (
    NON_NAMESPACED_CP_RESOURCES + CRD_RESOURCES
)


class PruneMode(StrEnum):
    """How objects are selected for deletion."""

    SELECTIVE = "selective"
    """Only objects of the component that are not excluded."""

    FULL_PURGE = "full-purge"
    """Every object listed, ignoring labels and exclusions."""


class InstallStatus(StrEnum):
    """Status of an installation reported back to the controller."""

    NONE = "NONE"
    UPDATING = "UPDATING"
    HEALTHY = "HEALTHY"
    ERROR = "ERROR"


ObjectsCallback = Callable[[Mapping[str, str], list[K8sObject]], Awaitable[ErrorList]]


class Reconciler:
    """Deletes the objects of an installation that are no longer desired.

    A Reconciler is created for a single reconciliation pass of a single
    installation. The hashes of every object selected for deletion, including
    objects only reported because of a dry run, are recorded in `pruned`.
    """

    def __init__(
        self,
        client: ClusterClient,
        cache: ObjectCache,
        owner: IstioOperator | None,
        config: ReconcilerConfig | None = None,
        tracker: ActiveClientTracker | None = None,
        namespaced_resources: tuple[GroupVersionKind, ...] = NAMESPACED_RESOURCES,
        cluster_resources: tuple[GroupVersionKind, ...] = CLUSTER_RESOURCES,
    ) -> None:
        """Initialize Reconciler.

        Args:
            client: Access to the objects in the cluster.
            cache: The process wide object cache.
            owner: The custom resource owning the installation, if known.
            config: Options for the reconciliation pass.
            tracker: Finds proxies still using a revision, defaults to
                looking for sidecar injected pods.
            namespaced_resources: Namespaced kinds to prune, in order.
            cluster_resources: Cluster scoped kinds to prune, in order.
        """
        self._client = client
        self._cache = cache
        self._owner = owner
        self._config = config or ReconcilerConfig()
        self._tracker = tracker or PodRevisionTracker(client)
        self._namespaced_resources = namespaced_resources
        self._cluster_resources = cluster_resources
        self.pruned: list[str] = []

    async def prune(self, manifests: ManifestMap, purge: bool = False) -> ErrorList:
        """Remove objects that are not part of the rendered manifests.

        Objects of each component are kept when they appear in that
        component's manifests. When `purge` is set every object of the
        installation is removed regardless of component.
        """
        desired = {
            component: object_hashes(manifest)
            for component, manifest in manifests.consolidated().items()
        }

        async def delete(
            labels: Mapping[str, str], objects: list[K8sObject]
        ) -> ErrorList:
            if purge:
                return await self.delete_resources(
                    set(), labels, "", objects, PruneMode.FULL_PURGE
                )
            errors = ErrorList()
            for component, hashes in desired.items():
                errors.add(
                    await self.delete_resources(
                        hashes, labels, component, objects, PruneMode.SELECTIVE
                    )
                )
            return errors

        errors = await self._run_for_all_types(delete)
        if purge:
            self._flush_cache()
        return errors

    async def delete_component(self, component_name: str) -> ErrorList:
        """Remove every object belonging to the component."""

        async def delete(
            labels: Mapping[str, str], objects: list[K8sObject]
        ) -> ErrorList:
            return await self.delete_resources(
                set(), labels, component_name, objects, PruneMode.SELECTIVE
            )

        return await self._run_for_all_types(delete)

    async def get_pruned_resources_by_revision(
        self, revision: str, purge: bool = False, include_crds: bool = False
    ) -> tuple[list[list[K8sObject]], list[str], ErrorList]:
        """Return the objects to remove when removing a control plane revision.

        Returns the objects listed for each kind, the hashes of all of them,
        and any errors listing them. CRDs are only included when purging and
        explicitly requested.
        """
        selector = LabelSelector({REVISION_LABEL: revision}).with_exists(
            COMPONENT_LABEL
        )
        if purge:
            kinds = NON_NAMESPACED_CP_RESOURCES
            if include_crds:
                kinds = ALL_CLUSTER_RESOURCES
        else:
            kinds = self._namespaced_resources + NON_NAMESPACED_CP_RESOURCES
        errors = ErrorList()
        objects_list: list[list[K8sObject]] = []
        hashes: list[str] = []
        for gvk in kinds:
            if (objects := await self._list(gvk, selector, errors)) is None:
                continue
            objects_list.append(objects)
            hashes.extend(obj.hash for obj in objects)
        return objects_list, hashes, errors

    async def delete_control_plane_by_revision(
        self,
        revision: str,
        objects_list: list[list[K8sObject]],
        purge: bool = False,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> ErrorList:
        """Remove the listed objects that belong to a control plane revision.

        Nothing is removed while proxies are still using the revision.
        """
        try:
            ids = await self._tracker.get_ids(revision, namespace)
        except MeshOperatorException as err:
            return ErrorList([PreconditionFailedError(f"failed to check proxy infos: {err}")])
        if ids:
            return ErrorList(
                [
                    PreconditionFailedError(
                        "there are proxies still pointing to the pruned control plane: "
                        + " ".join(ids)
                    )
                ]
            )
        errors = ErrorList()
        for objects in objects_list:
            if purge:
                errors.add(
                    await self.delete_resources(
                        set(), {}, "", objects, PruneMode.FULL_PURGE
                    )
                )
            else:
                errors.add(
                    await self.delete_resources(
                        set(),
                        {REVISION_LABEL: revision},
                        ComponentName.PILOT,
                        objects,
                        PruneMode.SELECTIVE,
                    )
                )
        if purge:
            self._flush_cache()
        return errors

    async def prune_control_plane_by_revision(
        self, namespace: str, revision: str
    ) -> tuple[InstallStatus, ErrorList]:
        """Remove a control plane revision on behalf of the controller."""
        namespace = namespace or DEFAULT_NAMESPACE
        objects_list, _, errors = await self.get_pruned_resources_by_revision(revision)
        if errors:
            return InstallStatus.ERROR, errors
        errors = await self.delete_control_plane_by_revision(
            revision, objects_list, namespace=namespace
        )
        if errors:
            return InstallStatus.ERROR, errors
        return InstallStatus.HEALTHY, errors

    async def delete_control_plane_by_manifests(
        self, manifests: ManifestMap, revision: str, purge: bool = False
    ) -> ErrorList:
        """Remove the objects described by rendered manifests.

        Unless purging, only the control plane component objects of the
        revision are removed.
        """
        labels: dict[str, str] = {}
        if not purge:
            labels = {
                REVISION_LABEL: revision,
                OPERATOR_MANAGED_LABEL: OPERATOR_RECONCILE_VALUE,
            }
        objects = [
            obj
            for component, obj in manifests.objects()
            if purge or component == ComponentName.PILOT
        ]
        for obj in objects:
            obj.set_label(OPERATOR_MANAGED_LABEL, OPERATOR_RECONCILE_VALUE)
            obj.set_label(COMPONENT_LABEL, ComponentName.PILOT)
        if purge:
            errors = await self.delete_resources(
                set(), labels, "", objects, PruneMode.FULL_PURGE
            )
            self._flush_cache()
            return errors
        return await self.delete_resources(
            set(), labels, ComponentName.PILOT, objects, PruneMode.SELECTIVE
        )

    async def delete_resources(
        self,
        excluded: Set[str],
        core_labels: Mapping[str, str],
        component_name: str,
        objects: list[K8sObject],
        mode: PruneMode,
    ) -> ErrorList:
        """Delete the objects of a component that are not excluded.

        Under `PruneMode.SELECTIVE` an object is deleted only when its labels
        match the component and its hash is not excluded. Under
        `PruneMode.FULL_PURGE` every object is deleted.
        """
        errors = ErrorList()
        selector = LabelSelector(component_labels(core_labels, component_name))
        owner_key = None
        if mode is PruneMode.SELECTIVE and self._owner is not None:
            owner_key = owner_cache_key(
                self._owner, component_name, self._config.cluster_name
            )
        for obj in objects:
            obj_hash = obj.hash
            if mode is PruneMode.SELECTIVE:
                # Objects of another component share the core labels
                if not selector.matches(obj.labels):
                    continue
                if obj_hash in excluded:
                    continue
            self.pruned.append(obj_hash)
            if self._config.dry_run:
                _LOGGER.info("Not pruning object %s because of dry run.", obj_hash)
                continue
            try:
                await self._client.delete_object(obj, PropagationPolicy.BACKGROUND)
            except ObjectNotFoundError as err:
                _LOGGER.info("Object %s is not being deleted: %s", obj_hash, err)
            except MeshOperatorException as err:
                _LOGGER.error("Failed to delete object %s: %s", obj_hash, err)
                errors.add(err)
                continue
            if owner_key is not None:
                self._cache.remove(owner_key, obj_hash)
            _LOGGER.info("Removed %s.", obj_hash)
        return errors

    async def _run_for_all_types(self, callback: ObjectsCallback) -> ErrorList:
        """Invoke the callback with the objects of each managed kind.

        Objects are listed once per kind with the labels common to all
        components, and each component filters the result itself.
        """
        labels = core_owner_labels(self._owner, self._config.operator_version)
        selector = LabelSelector(labels).with_exists(COMPONENT_LABEL)
        errors = ErrorList()
        for gvk in self._namespaced_resources + self._cluster_resources:
            if (objects := await self._list(gvk, selector, errors)) is None:
                continue
            errors.add(await callback(labels, objects))
        return errors

    async def _list(
        self, gvk: GroupVersionKind, selector: LabelSelector, errors: ErrorList
    ) -> list[K8sObject] | None:
        """List objects of a kind, recording failures in errors."""
        try:
            return await self._client.list_objects(gvk, selector)
        except ResourceKindNotFoundError as err:
            _LOGGER.warning(
                "Retrieving resources to prune type %s: %s not found", gvk, err
            )
            return []
        except MeshOperatorException as err:
            _LOGGER.warning("Retrieving resources to prune type %s failed: %s", gvk, err)
            errors.add(err)
            return None

    def _flush_cache(self) -> None:
        if self._config.dry_run:
            _LOGGER.info("Not flushing object caches because of dry run.")
            return
        self._cache.flush_all()
