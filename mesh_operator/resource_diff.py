"""Module for computing diffs between object specs.

Specs are rendered in a canonical YAML form before comparison so that key
order and formatting differences are not reported.
"""

import difflib
import logging
from typing import Any

import yaml

_LOGGER = logging.getLogger(__name__)

_TRUNCATE = "[Diff truncated by mesh-operator]"


def canonical_yaml(doc: Any) -> str:
    """Return the canonical YAML serialization of a document."""
    return yaml.safe_dump(doc, sort_keys=True, default_flow_style=False)


def yaml_diff(a: str, b: str, n: int = 3, limit_bytes: int = 0) -> str:
    """Return a unified diff of two YAML strings, or an empty string if equal."""
    if a == b:
        return ""
    diff_text = difflib.unified_diff(
        a.splitlines(keepends=True),
        b.splitlines(keepends=True),
        fromfile="default",
        tofile="cluster",
        n=n,
    )
    diff_content = "".join(diff_text)
    if limit_bytes and len(diff_content) > limit_bytes:
        _LOGGER.debug(
            "Truncating diff of %d bytes to %d bytes", len(diff_content), limit_bytes
        )
        diff_content = diff_content[:limit_bytes] + "\n" + _TRUNCATE
    return diff_content


def spec_diff(default_spec: Any, cluster_spec: Any, limit_bytes: int = 0) -> str:
    """Return the diff between a default spec and the spec found in a cluster."""
    return yaml_diff(
        canonical_yaml(default_spec), canonical_yaml(cluster_spec), limit_bytes=limit_bytes
    )
