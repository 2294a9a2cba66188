"""Tests for kubeboot.deploy.joiner"""
import pytest

from kubeboot.config import ClusterParameters
from kubeboot.deploy.joiner import (NodeJoiner, classify_join_failure,
                                    endpoint_reachable, render_join_manifest)
from kubeboot.errors import (BootstrapError, CommandError,
                             ConfigurationError, JoinRejected, JoinTimeout)
from kubeboot.provision.metadata import NodeIdentity
from kubeboot.provision.state import BOOTSTRAPPED, NodeState

from .testdata import FakeClock, FakeHost, Result

PARAMS = ClusterParameters(bootstrap_token="abcdef.0123456789abcdef",
                           cluster_dns_name="api.example.com",
                           cluster_name="demo",
                           control_plane_ip="10.0.0.10",
                           ca_cert_hashes=["sha256:0a1b2c"],
                           discovery_timeout=300)

IDENTITY = NodeIdentity("10.0.0.21",
                        "ip-10-0-0-21.eu-central-1.compute.internal")


class Probe:
    """Reports the control plane reachable after ``after`` calls"""

    def __init__(self, after=0):
        self.after = after
        self.calls = 0

    def __call__(self, address, port):
        self.calls += 1
        return self.calls > self.after


def joiner(host, probe=None, params=PARAMS, clock=None):
    clock = clock or FakeClock()
    return NodeJoiner(host, params, IDENTITY, probe=probe or Probe(),
                      clock=clock, sleep=clock.sleep, interval=5)


def test_render_join_manifest():
    doc, = render_join_manifest(PARAMS, IDENTITY)

    assert doc['kind'] == "JoinConfiguration"
    discovery = doc['discovery']
    assert discovery['bootstrapToken'] == {
        'apiServerEndpoint': "10.0.0.10:6443",
        'token': "abcdef.0123456789abcdef",
        'caCertHashes': ["sha256:0a1b2c"]}
    assert discovery['tlsBootstrapToken'] == "abcdef.0123456789abcdef"
    assert discovery['timeout'] == "5m0s"
    assert doc['nodeRegistration']['name'] == IDENTITY.public_hostname
    assert doc['nodeRegistration']['taints'] is None


def test_render_join_manifest_ca_pinning():
    params = PARAMS._replace(ca_cert_hashes=("0a1b2c",))
    doc, = render_join_manifest(params, IDENTITY, timeout=42)
    assert doc['discovery']['bootstrapToken']['caCertHashes'] == \
        ["sha256:0a1b2c"]
    assert doc['discovery']['timeout'] == "0m42s"

    params = PARAMS._replace(ca_cert_hashes=(),
                             unsafe_skip_ca_verification=True)
    doc, = render_join_manifest(params, IDENTITY)
    token = doc['discovery']['bootstrapToken']
    assert token['unsafeSkipCAVerification'] is True
    assert 'caCertHashes' not in token

    params = PARAMS._replace(ca_cert_hashes=())
    with pytest.raises(ConfigurationError):
        render_join_manifest(params, IDENTITY)


@pytest.mark.parametrize("stderr,expected", [
    ("couldn't validate the identity of the API Server: could not find a "
     "JWS signature in the cluster-info ConfigMap for token ID \"abcdef\"",
     JoinRejected),
    ("a Node with name \"ip-10-0-0-21\" and status \"Ready\" already exists "
     "in the cluster", JoinRejected),
    ("error execution phase preflight: couldn't validate the identity of "
     "the API Server: Get \"https://10.0.0.10:6443/api/v1/namespaces/"
     "kube-public/configmaps/cluster-info?timeout=10s\": dial tcp "
     "10.0.0.10:6443: connect: connection refused", JoinTimeout),
    ("timed out waiting for the condition", JoinTimeout),
    ("[ERROR FileAvailable--etc-kubernetes-kubelet.conf]", BootstrapError),
])
def test_classify_join_failure(stderr, expected):
    exc = classify_join_failure(CommandError("join", returncode=1,
                                             stderr=stderr))
    assert type(exc) is expected  # pylint: disable=unidiomatic-typecheck
    assert exc.stderr == stderr


def test_join_timeout_is_retriable():
    assert JoinTimeout("x").retriable
    assert not JoinRejected("x").retriable


def test_join():
    host = FakeHost()
    joiner(host).run()

    join = host.ran("kubeadm", "join", "--config")
    assert len(join) == 1
    assert join[0][-1] in host.removed
    assert host.commands.index(["kubeadm", "reset", "--force"]) < \
        host.commands.index(join[0])

    state = NodeState(host)
    assert state.current == BOOTSTRAPPED
    assert state.role == "node"


def test_join_waits_for_control_plane():
    host = FakeHost()
    clock = FakeClock()
    probe = Probe(after=6)

    joiner(host, probe, clock=clock).run()

    assert probe.calls == 7
    assert clock.slept == [5] * 6
    assert host.ran("kubeadm", "join")


def test_join_timeout():
    host = FakeHost()
    clock = FakeClock()

    with pytest.raises(JoinTimeout):
        joiner(host, Probe(after=1000), clock=clock).run()

    assert clock.now >= PARAMS.discovery_timeout
    assert not host.ran("kubeadm", "join")
    assert NodeState(host).current != BOOTSTRAPPED


def test_join_rejected():
    host = FakeHost()
    host.script(["kubeadm", "join"], Result(
        1, stderr="could not find a JWS signature in the cluster-info "
                  "ConfigMap for token ID \"wrong1\""))

    with pytest.raises(JoinRejected):
        joiner(host).run()
    assert NodeState(host).current != BOOTSTRAPPED


def test_join_twice():
    host = FakeHost()
    joiner(host).run()
    joiner(host).run()

    assert len(host.ran("kubeadm", "reset")) == 2
    assert NodeState(host).role == "node"


def test_missing_ca_pinning_does_not_touch_host():
    host = FakeHost()
    with pytest.raises(ConfigurationError):
        joiner(host, params=PARAMS._replace(ca_cert_hashes=())).run()
    assert host.commands == []


def test_endpoint_reachable():
    # port 0 never accepts connections
    assert not endpoint_reachable("127.0.0.1", 0, timeout=1)
