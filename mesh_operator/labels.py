"""Labels that tie cluster objects to the installation that owns them.

Every object applied by the operator carries a set of core ownership labels,
common to the whole installation, plus a component label. Pruning first lists
objects with the core labels and then narrows to a single component.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import re

from .exceptions import InputException, OwnerNotFoundError
from .manifest import DEFAULT_REVISION, IstioOperator

__all__ = [
    "LabelSelector",
    "core_owner_labels",
    "component_labels",
    "owner_cache_key",
]

OPERATOR_MANAGED_LABEL = "operator.istio.io/managed"
OPERATOR_RECONCILE_VALUE = "Reconcile"
OWNING_RESOURCE_NAME_LABEL = "install.operator.istio.io/owning-resource"
OWNING_RESOURCE_NAMESPACE_LABEL = "install.operator.istio.io/owning-resource-namespace"
OPERATOR_VERSION_LABEL = "operator.istio.io/version"
COMPONENT_LABEL = "operator.istio.io/component"
REVISION_LABEL = "istio.io/rev"
TLS_MODE_LABEL = "security.istio.io/tlsMode"

_LABEL_NAME_RE = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?)?$")
_DNS_SUBDOMAIN_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


def _validate_key(key: str) -> None:
    prefix, _, name = key.rpartition("/")
    if not name or not _LABEL_NAME_RE.match(name):
        raise InputException(f"Invalid label key '{key}'")
    if prefix and (len(prefix) > 253 or not _DNS_SUBDOMAIN_RE.match(prefix)):
        raise InputException(f"Invalid label key prefix '{key}'")


def _validate_value(key: str, value: str) -> None:
    if not isinstance(value, str) or not _LABEL_NAME_RE.match(value):
        raise InputException(f"Invalid label value '{value}' for key '{key}'")


@dataclass(frozen=True)
class LabelSelector:
    """A label selector with equality and existence requirements."""

    match_labels: Mapping[str, str] = field(default_factory=dict)
    """Labels that must be present with exactly these values."""

    exists: frozenset[str] = frozenset()
    """Labels that must be present with any value."""

    def __post_init__(self) -> None:
        for key, value in self.match_labels.items():
            _validate_key(key)
            _validate_value(key, value)
        for key in self.exists:
            _validate_key(key)

    def with_exists(self, key: str) -> "LabelSelector":
        """Return a new selector that also requires the label to exist."""
        return LabelSelector(
            match_labels=dict(self.match_labels), exists=self.exists | {key}
        )

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """Return true if every requirement is satisfied by the labels.

        Extra labels are ignored.
        """
        labels = labels or {}
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(key in labels for key in self.exists)

    def __str__(self) -> str:
        """Render the selector in the `key=value,key` selector syntax."""
        parts = [f"{key}={value}" for key, value in sorted(self.match_labels.items())]
        parts.extend(sorted(self.exists))
        return ",".join(parts)


def core_owner_labels(
    owner: IstioOperator | None, operator_version: str | None = None
) -> dict[str, str]:
    """Return the labels common to every object of the installation."""
    if owner is None:
        raise OwnerNotFoundError("failed to get IstioOperator CR owning the installation")
    labels = {OPERATOR_MANAGED_LABEL: OPERATOR_RECONCILE_VALUE}
    if owner.name:
        labels[OWNING_RESOURCE_NAME_LABEL] = owner.name
    if owner.namespace:
        labels[OWNING_RESOURCE_NAMESPACE_LABEL] = owner.namespace
    if operator_version:
        labels[OPERATOR_VERSION_LABEL] = operator_version
    labels[REVISION_LABEL] = owner.revision or DEFAULT_REVISION
    return labels


def component_labels(core: Mapping[str, str], component_name: str) -> dict[str, str]:
    """Narrow the core labels to a single component.

    An empty component name matches every component of the installation.
    """
    labels = dict(core)
    if component_name:
        labels[COMPONENT_LABEL] = component_name
    return labels


def owner_cache_key(
    owner: IstioOperator | None, component_name: str, cluster_name: str = ""
) -> str:
    """Return the object cache key for a component of an installation."""
    if owner is None:
        raise OwnerNotFoundError("failed to get IstioOperator CR owning the installation")
    parts = [owner.name, owner.namespace or "", component_name]
    if cluster_name:
        parts.append(cluster_name)
    return "-".join(parts)
