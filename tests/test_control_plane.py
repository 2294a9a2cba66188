"""Tests for kubeboot.deploy.control_plane"""
import pytest
import yaml

from kubeboot import ADMIN_CONF, CALICO_MANIFEST
from kubeboot.config import ClusterParameters
from kubeboot.deploy.control_plane import (ControlPlaneInitializer,
                                           cert_sans, render_init_manifest,
                                           validate_manifest_inputs)
from kubeboot.deploy.manifests import duration
from kubeboot.errors import BootstrapError, ConfigurationError, InitTimeout
from kubeboot.provision.metadata import NodeIdentity
from kubeboot.provision.state import BOOTSTRAPPED, NodeState

from kubeboot.ssl import APISERVER_CERT

from .testdata import (FakeClock, FakeHost, FakeK8S, Result, create_ca,
                       create_certificate, create_key, pem)

PARAMS = ClusterParameters(bootstrap_token="abcdef.0123456789abcdef",
                           cluster_dns_name="API.Example.com",
                           cluster_name="demo",
                           cluster_public_ip="203.0.113.10")

IDENTITY = NodeIdentity("10.0.0.10",
                        "ip-10-0-0-10.eu-central-1.compute.internal")


def initializer(host, k8s=None, params=PARAMS):
    clock = FakeClock()
    k8s = k8s or FakeK8S()
    return ControlPlaneInitializer(host, params, IDENTITY,
                                   k8s_factory=k8s.factory,
                                   clock=clock, sleep=clock.sleep)


def test_duration():
    assert duration(300) == "5m0s"
    assert duration(90) == "1m30s"
    assert duration(0) == "0m0s"


def test_cert_sans():
    assert cert_sans(PARAMS, IDENTITY) == [
        "api.example.com", "203.0.113.10", "10.0.0.10",
        "ip-10-0-0-10.eu-central-1.compute.internal"]

    identity = NodeIdentity("203.0.113.10", "api.example.com")
    assert cert_sans(PARAMS, identity) == ["api.example.com", "203.0.113.10"]


def test_render_init_manifest():
    init, cluster = render_init_manifest(PARAMS, IDENTITY)

    assert init['kind'] == "InitConfiguration"
    assert init['bootstrapTokens'][0]['token'] == PARAMS.bootstrap_token
    assert init['bootstrapTokens'][0]['ttl'] == "0s"
    assert init['localAPIEndpoint'] == {'advertiseAddress': "10.0.0.10",
                                        'bindPort': 6443}
    assert init['nodeRegistration']['name'] == IDENTITY.public_hostname
    assert init['nodeRegistration']['kubeletExtraArgs'][
        'cloud-provider'] == "aws"

    assert cluster['kind'] == "ClusterConfiguration"
    assert cluster['clusterName'] == "demo"
    assert cluster['kubernetesVersion'] == "v1.24.4"
    assert cluster['networking']['podSubnet'] == "192.168.0.0/16"
    assert cluster['networking']['serviceSubnet'] == "10.96.0.0/12"
    assert "api.example.com" in cluster['apiServer']['certSANs']
    assert "API.Example.com" not in cluster['apiServer']['certSANs']


def test_validate_manifest_inputs():
    docs = render_init_manifest(PARAMS, IDENTITY)
    validate_manifest_inputs(docs, IDENTITY)

    docs[0]['nodeRegistration']['name'] = "master-1"
    with pytest.raises(ConfigurationError, match="master-1"):
        validate_manifest_inputs(docs, IDENTITY)

    docs = render_init_manifest(PARAMS, IDENTITY)
    docs[1]['apiServer']['certSANs'].remove("10.0.0.10")
    with pytest.raises(ConfigurationError, match="10.0.0.10"):
        validate_manifest_inputs(docs, IDENTITY)


def test_run():
    host = FakeHost()
    k8s = FakeK8S()
    initializer(host, k8s).run()

    init = host.ran("kubeadm", "init", "--config")
    assert len(init) == 1
    manifest_path = init[0][-1]
    # the manifest holds the token and is gone after the run
    assert host.modes[manifest_path] == 0o600
    assert manifest_path in host.removed
    assert manifest_path not in host.files

    assert host.commands.index(["kubeadm", "reset", "--force"]) < \
        host.commands.index(init[0])
    assert host.ran("kubectl", "apply", "-f", CALICO_MANIFEST)
    assert NodeState(host).current == BOOTSTRAPPED
    assert k8s.configs == [ADMIN_CONF]


def test_run_writes_rendered_manifest():
    host = FakeHost()
    written = {}
    original = host.write_file

    def capture(path, content, **kwargs):
        written[path] = content
        original(path, content, **kwargs)

    host.write_file = capture
    initializer(host).run()

    path = host.ran("kubeadm", "init")[0][-1]
    docs = list(yaml.safe_load_all(written[path]))
    assert [d['kind'] for d in docs] == ["InitConfiguration",
                                         "ClusterConfiguration"]


def test_run_twice():
    host = FakeHost()
    initializer(host).run()
    initializer(host).run()

    assert len(host.ran("kubeadm", "reset")) == 2
    assert len(host.ran("kubeadm", "init")) == 2
    assert NodeState(host).current == BOOTSTRAPPED


def test_init_timeout():
    host = FakeHost()
    host.script(["kubeadm", "init"], Result(
        1, stderr="[wait-control-plane] Waiting for the kubelet ...\n"
                  "error execution phase wait-control-plane: couldn't "
                  "initialize a Kubernetes cluster"))

    with pytest.raises(InitTimeout) as err:
        initializer(host).run()
    assert "wait-control-plane" in err.value.stderr
    assert NodeState(host).current != BOOTSTRAPPED
    assert not host.ran("kubectl")


def test_init_fails():
    host = FakeHost()
    host.script(["kubeadm", "init"], Result(
        1, stderr="[ERROR Port-6443]: Port 6443 is in use"))

    with pytest.raises(BootstrapError) as err:
        initializer(host).run()
    assert not isinstance(err.value, InitTimeout)
    assert err.value.returncode == 1
    assert "Port 6443" in str(err.value)


def test_node_not_ready():
    host = FakeHost()
    with pytest.raises(InitTimeout, match="not ready"):
        initializer(host, FakeK8S(ready=False)).run()


def test_invalid_manifest_does_not_touch_host():
    host = FakeHost()
    params = PARAMS._replace(bootstrap_token="")

    with pytest.raises(ConfigurationError):
        initializer(host, params=params).run()
    assert host.commands == []


def apiserver_pem(sans):
    ca_key = create_key()
    ca_cert = create_ca(ca_key)
    return pem(create_certificate(ca_key, ca_cert, create_key().public_key(),
                                  "kube-apiserver", sans))


def test_apiserver_cert_covers_all_addresses():
    sans = ["kubernetes"] + cert_sans(PARAMS, IDENTITY)
    host = FakeHost(files={APISERVER_CERT: apiserver_pem(sans)})
    assert initializer(host).check_apiserver_cert() == []


def test_apiserver_cert_missing_address():
    sans = ["api.example.com", "10.0.0.10", IDENTITY.public_hostname]
    host = FakeHost(files={APISERVER_CERT: apiserver_pem(sans)})

    initializer(host).run()
    assert initializer(host).check_apiserver_cert() == ["203.0.113.10"]


def test_apiserver_cert_unreadable():
    host = FakeHost(files={APISERVER_CERT: "not a certificate"})
    with pytest.raises(BootstrapError, match="apiserver.crt"):
        initializer(host).check_apiserver_cert()


def test_apiserver_cert_absent():
    assert initializer(FakeHost()).check_apiserver_cert() == []
