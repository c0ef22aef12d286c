"""Hooks package.

This package contains the version gated hooks run before and after an
upgrade of the control plane, and the dispatcher that selects them.
"""

from .common import Hook, HookCommonParams, HookKind, HookVersionMapping, run_hooks
from .registry import (
    HOOK_REGISTRY,
    run_apply_hooks,
    run_hooks_for_kind,
    run_post_upgrade_hooks,
    run_pre_upgrade_hooks,
)
from .upgrade import CheckInitCrdJobs, CheckMixerTelemetry

__all__ = [
    "Hook",
    "HookCommonParams",
    "HookKind",
    "HookVersionMapping",
    "HOOK_REGISTRY",
    "CheckInitCrdJobs",
    "CheckMixerTelemetry",
    "run_hooks",
    "run_hooks_for_kind",
    "run_pre_upgrade_hooks",
    "run_post_upgrade_hooks",
    "run_apply_hooks",
]
