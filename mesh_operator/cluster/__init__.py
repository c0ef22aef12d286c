"""Cluster access package.

This package contains the interfaces the reconciler uses to read and delete
objects in a cluster, and implementations backed by `kubectl`.
"""

from .client import ActiveClientTracker, ClusterClient, PropagationPolicy
from .kubectl import Kubectl
from .tracker import PodRevisionTracker

__all__ = [
    "ActiveClientTracker",
    "ClusterClient",
    "PropagationPolicy",
    "Kubectl",
    "PodRevisionTracker",
]
