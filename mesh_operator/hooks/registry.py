"""Registry of the hooks run for each phase of an operation."""

from collections.abc import Mapping
from types import MappingProxyType

from mesh_operator.cluster.client import ClusterClient
from mesh_operator.exceptions import ErrorList

from .common import HookCommonParams, HookKind, HookVersionMapping, run_hooks
from .upgrade import POST_UPGRADE_HOOKS, PRE_UPGRADE_HOOKS

__all__ = [
    "HOOK_REGISTRY",
    "run_hooks_for_kind",
    "run_pre_upgrade_hooks",
    "run_post_upgrade_hooks",
    "run_apply_hooks",
]

APPLY_HOOKS: tuple[HookVersionMapping, ...] = ()

HOOK_REGISTRY: Mapping[HookKind, tuple[HookVersionMapping, ...]] = MappingProxyType(
    {
        HookKind.PRE_UPGRADE: PRE_UPGRADE_HOOKS,
        HookKind.POST_UPGRADE: POST_UPGRADE_HOOKS,
        HookKind.APPLY: APPLY_HOOKS,
    }
)


async def run_hooks_for_kind(
    kind: HookKind,
    client: ClusterClient,
    params: HookCommonParams,
    dry_run: bool = False,
) -> ErrorList:
    """Run the registered hooks for a phase of an operation."""
    return await run_hooks(HOOK_REGISTRY[kind], client, params, dry_run)


async def run_pre_upgrade_hooks(
    client: ClusterClient, params: HookCommonParams, dry_run: bool = False
) -> ErrorList:
    """Run the hooks that check whether the upgrade may proceed."""
    return await run_hooks_for_kind(HookKind.PRE_UPGRADE, client, params, dry_run)


async def run_post_upgrade_hooks(
    client: ClusterClient, params: HookCommonParams, dry_run: bool = False
) -> ErrorList:
    """Run the hooks that clean up after an upgrade."""
    return await run_hooks_for_kind(HookKind.POST_UPGRADE, client, params, dry_run)


async def run_apply_hooks(
    client: ClusterClient, params: HookCommonParams, dry_run: bool = False
) -> ErrorList:
    """Run the hooks registered for applying manifests."""
    return await run_hooks_for_kind(HookKind.APPLY, client, params, dry_run)
