"""Configuration objects for mesh-operator."""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class ReconcilerConfig:
    """Configuration for the Reconciler."""

    dry_run: bool = False
    """Report objects that would be deleted without changing the cluster."""

    operator_version: str | None = None
    """Version of the operator, added to the core ownership labels when set."""

    cluster_name: str = ""
    """Name of the cluster, used to keep object caches of clusters apart."""


@dataclass
class KubectlConfig:
    """Configuration for running kubectl."""

    kubeconfig: Path | None = None
    """Path to the kubeconfig file, otherwise the kubectl default is used."""

    context: str | None = None
    """The kubeconfig context to use."""

    binary: str = "kubectl"
    """Name or path of the kubectl binary."""
