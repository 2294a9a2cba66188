from unittest.mock import MagicMock

import pytest
import urllib3
from kubernetes.client.rest import ApiException

from kubeboot.deploy.k8s import K8S, cluster_admin_binding
from kubeboot.errors import BootstrapError

from .testdata import FakeClock


def condition(type_, status):
    cond = MagicMock()
    cond.type = type_
    cond.status = status
    return cond


def node_response(*conditions):
    resp = MagicMock()
    resp.status.conditions = list(conditions)
    return resp


def k8s_client():
    """A K8S instance without a kubeconfig"""
    k8s = K8S.__new__(K8S)
    k8s.config = None
    k8s.api = MagicMock()
    k8s.rbac = MagicMock()
    return k8s


def test_cluster_admin_binding():
    body = cluster_admin_binding("admin")
    assert body['roleRef']['name'] == "cluster-admin"
    assert body['subjects'] == [{'apiGroup': "rbac.authorization.k8s.io",
                                 'kind': "User",
                                 'name': "admin"}]


def test_node_status():
    k8s = k8s_client()
    k8s.api.read_node_status.return_value = node_response(
        condition("MemoryPressure", "False"), condition("Ready", "True"))
    assert k8s.node_status("master") == "True"

    k8s.api.read_node_status.return_value = node_response()
    assert k8s.node_status("master") is None

    k8s.api.read_node_status.side_effect = ApiException(status=404)
    assert k8s.node_status("master") is None

    k8s.api.read_node_status.side_effect = \
        urllib3.exceptions.MaxRetryError(None, "/api/v1/nodes")
    assert k8s.node_status("master") is None


def test_wait_for_node_ready():
    k8s = k8s_client()
    k8s.api.read_node_status.side_effect = [
        node_response(condition("Ready", "False")),
        node_response(condition("Ready", "Unknown")),
        node_response(condition("Ready", "True"))]
    clock = FakeClock()

    assert k8s.wait_for_node_ready("master", 60, clock=clock,
                                   sleep=clock.sleep)
    assert clock.slept == [5, 5]


def test_wait_for_node_ready_timeout():
    k8s = k8s_client()
    k8s.api.read_node_status.return_value = node_response(
        condition("Ready", "False"))
    clock = FakeClock()

    assert not k8s.wait_for_node_ready("master", 60, clock=clock,
                                       sleep=clock.sleep)
    assert clock.now == 60


def test_create_cluster_admin_binding():
    k8s = k8s_client()
    assert k8s.create_cluster_admin_binding("admin") is True

    k8s.rbac.create_cluster_role_binding.side_effect = \
        ApiException(status=409, reason="Conflict")
    assert k8s.create_cluster_admin_binding("admin") is False

    k8s.rbac.create_cluster_role_binding.side_effect = \
        ApiException(status=403, reason="Forbidden")
    with pytest.raises(BootstrapError):
        k8s.create_cluster_admin_binding("admin")


def test_create_cluster_admin_binding_unreachable():
    k8s = k8s_client()
    k8s.rbac.create_cluster_role_binding.side_effect = \
        urllib3.exceptions.MaxRetryError(None, "/apis/rbac")
    with pytest.raises(BootstrapError, match="unreachable"):
        k8s.create_cluster_admin_binding("admin")


def test_missing_kubeconfig(tmp_path):
    with pytest.raises(BootstrapError, match="kubeconfig"):
        K8S(str(tmp_path / "admin.conf"))
