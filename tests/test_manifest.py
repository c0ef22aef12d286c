"""Tests for manifest library."""

from pathlib import Path

import pytest
import yaml

from mesh_operator.exceptions import InputException
from mesh_operator.manifest import (
    GroupVersionKind,
    IstioOperator,
    K8sObject,
    ManifestMap,
    object_hash,
    object_hashes,
    parse_objects,
    read_manifest_map,
    write_manifest_map,
)

PILOT_MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: istiod
  namespace: istio-system
  labels:
    app: istiod
spec:
  replicas: 1
---
apiVersion: v1
kind: Service
metadata:
  name: istiod
  namespace: istio-system
---
apiVersion: admissionregistration.k8s.io/v1
kind: MutatingWebhookConfiguration
metadata:
  name: istio-sidecar-injector
  namespace: istio-system
"""


def test_group_version_kind() -> None:
    """Test parsing an apiVersion with and without a group."""
    gvk = GroupVersionKind.parse("apps/v1", "Deployment")
    assert gvk == GroupVersionKind("apps", "v1", "Deployment")
    assert gvk.api_version == "apps/v1"
    assert str(gvk) == "apps/v1, Kind=Deployment"

    core = GroupVersionKind.parse("v1", "Service")
    assert core.group == ""
    assert core.api_version == "v1"


def test_object_hash() -> None:
    """Test the identity of objects."""
    assert (
        object_hash(GroupVersionKind("", "v1", "Service"), "istio-system", "istiod")
        == "Service:istio-system:istiod"
    )
    assert (
        object_hash(GroupVersionKind("apps", "v1", "Deployment"), "istio-system", "istiod")
        == "Deployment.apps:istio-system:istiod"
    )
    # Cluster scoped objects have no namespace
    assert (
        object_hash(
            GroupVersionKind("rbac.authorization.k8s.io", "v1", "ClusterRole"),
            "istio-system",
            "istiod",
        )
        == "ClusterRole.rbac.authorization.k8s.io::istiod"
    )


def test_object_hash_ignores_version() -> None:
    """Test that the same object served under two versions has one identity."""
    v1 = GroupVersionKind("autoscaling", "v1", "HorizontalPodAutoscaler")
    v2 = GroupVersionKind("autoscaling", "v2", "HorizontalPodAutoscaler")
    assert object_hash(v1, "istio-system", "istiod") == object_hash(
        v2, "istio-system", "istiod"
    )


def test_object_hash_distinguishes_objects() -> None:
    """Test that objects differing by kind, group, namespace or name differ."""
    hashes = {
        object_hash(GroupVersionKind("", "v1", "Service"), "istio-system", "istiod"),
        object_hash(GroupVersionKind("", "v1", "ConfigMap"), "istio-system", "istiod"),
        object_hash(
            GroupVersionKind("networking.istio.io", "v1alpha3", "Gateway"),
            "istio-system",
            "istiod",
        ),
        object_hash(
            GroupVersionKind("gateway.networking.k8s.io", "v1", "Gateway"),
            "istio-system",
            "istiod",
        ),
        object_hash(GroupVersionKind("", "v1", "Service"), "default", "istiod"),
        object_hash(GroupVersionKind("", "v1", "Service"), "istio-system", "istiod-canary"),
    }
    assert len(hashes) == 6


def test_parse_objects() -> None:
    """Test parsing a multi document manifest."""
    objects = parse_objects(PILOT_MANIFEST)
    assert [obj.hash for obj in objects] == [
        "Deployment.apps:istio-system:istiod",
        "Service:istio-system:istiod",
        "MutatingWebhookConfiguration.admissionregistration.k8s.io::istio-sidecar-injector",
    ]
    deployment = objects[0]
    assert deployment.labels == {"app": "istiod"}
    assert deployment.spec == {"replicas": 1}
    assert objects[1].spec is None


def test_parse_objects_list() -> None:
    """Test parsing a List of objects and empty documents."""
    objects = parse_objects(
        """\
---
apiVersion: v1
kind: List
items:
- apiVersion: v1
  kind: ConfigMap
  metadata:
    name: istio
    namespace: istio-system
- apiVersion: v1
  kind: ServiceAccount
  metadata:
    name: istiod
    namespace: istio-system
---
"""
    )
    assert [obj.hash for obj in objects] == [
        "ConfigMap:istio-system:istio",
        "ServiceAccount:istio-system:istiod",
    ]


@pytest.mark.parametrize(
    "manifest",
    [
        "kind: Service\nmetadata:\n  name: istiod\n",
        "apiVersion: v1\nmetadata:\n  name: istiod\n",
        "apiVersion: v1\nkind: Service\n",
        "apiVersion: v1\nkind: Service\nmetadata:\n  namespace: istio-system\n",
        "apiVersion: v1\nkind: Service\nmetadata: [\n",
        "apiVersion: v1\nkind: Service\nmetadata:\n  name: istiod\n---\nfoo\n",
        "- apiVersion: v1\n  kind: Service\n",
        "apiVersion: v1\nkind: List\nitems:\n- istiod\n",
    ],
)
def test_parse_invalid_objects(manifest: str) -> None:
    """Test parsing documents that are not valid objects."""
    with pytest.raises(InputException):
        parse_objects(manifest)


def test_object_hashes() -> None:
    """Test the hashes of a manifest."""
    assert object_hashes(PILOT_MANIFEST) == {
        "Deployment.apps:istio-system:istiod",
        "Service:istio-system:istiod",
        "MutatingWebhookConfiguration.admissionregistration.k8s.io::istio-sidecar-injector",
    }
    assert object_hashes("") == set()


def test_set_label() -> None:
    """Test setting a label updates the raw document."""
    obj = K8sObject.parse_doc(
        {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "istiod"}}
    )
    obj.set_label("operator.istio.io/component", "Pilot")
    assert obj.labels == {"operator.istio.io/component": "Pilot"}
    assert obj.content["metadata"]["labels"] == {"operator.istio.io/component": "Pilot"}


def test_serialize_object() -> None:
    """Test the object fields and the kubernetes document of an object."""
    obj = K8sObject.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "istiod", "namespace": "istio-system"},
            "spec": {"ports": []},
        }
    )
    assert obj.to_dict() == {
        "kind": "Service",
        "api_version": "v1",
        "name": "istiod",
        "namespace": "istio-system",
        "labels": {},
    }
    assert yaml.safe_load(obj.yaml()) == {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "istiod", "namespace": "istio-system"},
        "spec": {"ports": []},
    }
    assert obj.yaml().startswith("apiVersion: v1\n")


def test_parse_istio_operator() -> None:
    """Test parsing the custom resource that owns an installation."""
    owner = IstioOperator.parse_doc(
        {
            "apiVersion": "install.istio.io/v1alpha1",
            "kind": "IstioOperator",
            "metadata": {"name": "installed-state-canary", "namespace": "istio-system"},
            "spec": {"revision": "canary", "meshConfig": {"rootNamespace": "mesh-root"}},
        }
    )
    assert owner == IstioOperator(
        name="installed-state-canary",
        namespace="istio-system",
        revision="canary",
        root_namespace="mesh-root",
    )


def test_parse_istio_operator_defaults() -> None:
    """Test the defaults of an IstioOperator without a spec."""
    owner = IstioOperator.parse_doc(
        {
            "apiVersion": "install.istio.io/v1alpha1",
            "kind": "IstioOperator",
            "metadata": {"name": "installed-state"},
        }
    )
    assert owner.revision == "default"
    assert owner.root_namespace == "istio-system"
    assert owner.namespace is None


def test_parse_istio_operator_invalid() -> None:
    """Test parsing a document that is not an IstioOperator."""
    with pytest.raises(InputException, match="wrong kind"):
        IstioOperator.parse_doc(
            {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "x"}}
        )
    with pytest.raises(InputException, match="install.istio.io"):
        IstioOperator.parse_doc(
            {"apiVersion": "v1", "kind": "IstioOperator", "metadata": {"name": "x"}}
        )


def test_manifest_map() -> None:
    """Test combining the manifests of each component."""
    manifests = ManifestMap(
        {
            "Pilot": [PILOT_MANIFEST],
            "Base": ["apiVersion: v1\nkind: ServiceAccount\nmetadata:\n  name: istio-reader\n"],
        }
    )
    assert [(component, obj.hash) for component, obj in manifests.objects()] == [
        ("Pilot", "Deployment.apps:istio-system:istiod"),
        ("Pilot", "Service:istio-system:istiod"),
        (
            "Pilot",
            "MutatingWebhookConfiguration.admissionregistration.k8s.io::istio-sidecar-injector",
        ),
        ("Base", "ServiceAccount::istio-reader"),
    ]
    assert len(parse_objects(str(manifests))) == 4


async def test_read_write_manifest_map(tmp_path: Path) -> None:
    """Test writing rendered manifests to disk and reading them back."""
    manifests = ManifestMap({"Pilot": [PILOT_MANIFEST], "Cni": []})
    await write_manifest_map(tmp_path, manifests)
    assert sorted(path.name for path in tmp_path.iterdir()) == ["Cni.yaml", "Pilot.yaml"]

    result = await read_manifest_map(tmp_path)
    assert object_hashes(str(result)) == object_hashes(PILOT_MANIFEST)
    assert set(result) == {"Pilot", "Cni"}


async def test_read_manifest_map_not_a_directory(tmp_path: Path) -> None:
    """Test reading manifests from a path that does not exist."""
    with pytest.raises(InputException):
        await read_manifest_map(tmp_path / "missing")
