"""
Join a worker to the cluster with ``kubeadm join``.

Workers boot at the same time as the control plane, there is no signal
telling them when it is ready. The joiner therefore polls the API endpoint
until it accepts connections, bounded by the discovery timeout, and only
then hands over to kubeadm.

Discovery either pins the cluster CA by its public key hash
(``ca_cert_hashes``, see :func:`kubeboot.ssl.discovery_hash`) or, when
``unsafe_skip_ca_verification`` is set, trusts whatever CA the endpoint
presents on first contact. The TLS bootstrap that follows always uses the
discovered CA.
"""
import socket
import time

from kubeboot.config import WORKER
from kubeboot.deploy.manifests import (KUBEADM_API, duration,
                                       node_registration, temporary_manifest)
from kubeboot.errors import (BootstrapError, CommandError,
                             ConfigurationError, JoinRejected, JoinTimeout)
from kubeboot.provision.state import NodeState
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

REJECT_MARKERS = ("could not find a jws signature",
                  "is invalid for this cluster",
                  "unauthorized",
                  "forbidden",
                  "already exists",
                  "none of the public keys")

TIMEOUT_MARKERS = ("timed out",
                   "timeout",
                   "deadline exceeded",
                   "connection refused",
                   "no route to host")


def endpoint_reachable(address, port, timeout=3):
    """Check if a TCP connection to ``address:port`` can be opened"""
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


def render_join_manifest(params, identity, timeout=None):
    """Render the JoinConfiguration document.

    Args:
        timeout (int): the discovery timeout in seconds, defaults to
            ``params.discovery_timeout``

    Raises:
        ConfigurationError if neither CA hashes nor the unsafe flag are
            given.
    """
    if timeout is None:
        timeout = params.discovery_timeout

    token_discovery = {
        'apiServerEndpoint': "%s:%s" % (params.control_plane_ip,
                                        params.api_port),
        'token': params.bootstrap_token,
    }
    if params.ca_cert_hashes:
        token_discovery['caCertHashes'] = [
            h if h.startswith("sha256:") else "sha256:" + h
            for h in params.ca_cert_hashes]
    elif params.unsafe_skip_ca_verification:
        token_discovery['unsafeSkipCAVerification'] = True
    else:
        raise ConfigurationError(
            "set ca_cert_hashes or unsafe_skip_ca_verification to join")

    return [{
        'apiVersion': KUBEADM_API,
        'kind': 'JoinConfiguration',
        'caCertPath': '/etc/kubernetes/pki/ca.crt',
        'discovery': {
            'bootstrapToken': token_discovery,
            'timeout': duration(timeout),
            'tlsBootstrapToken': params.bootstrap_token,
        },
        'nodeRegistration': node_registration(params, identity),
    }]


def classify_join_failure(exc):
    """Map a failed ``kubeadm join`` to a retriable or fatal error.

    Args:
        exc (CommandError): the failure of the join command

    Returns:
        :class:`JoinRejected`, :class:`JoinTimeout` or
        :class:`BootstrapError`
    """
    stderr = (exc.stderr or "").lower()
    kwargs = dict(returncode=exc.returncode, stderr=exc.stderr)
    if any(marker in stderr for marker in REJECT_MARKERS):
        return JoinRejected("control plane rejected the node", **kwargs)
    if any(marker in stderr for marker in TIMEOUT_MARKERS):
        return JoinTimeout("control plane not reachable", **kwargs)
    return BootstrapError("kubeadm join failed", **kwargs)


class NodeJoiner:
    """Joins the node to an existing control plane.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        params (:class:`kubeboot.config.ClusterParameters`)
        identity (:class:`kubeboot.provision.metadata.NodeIdentity`)
        state (:class:`kubeboot.provision.state.NodeState`)
        probe (callable): ``probe(address, port)`` returns True once the
            API endpoint accepts connections
        clock (callable): monotonic clock in seconds
        sleep (callable): used to wait between probes
        interval (int): seconds between probes
    """

    def __init__(self, host, params, identity, state=None,
                 probe=endpoint_reachable, clock=time.monotonic,
                 sleep=time.sleep, interval=5):
        self.host = host
        self.params = params
        self.identity = identity
        self.state = state or NodeState(host)
        self.probe = probe
        self.clock = clock
        self.sleep = sleep
        self.interval = interval

    def wait_for_control_plane(self):
        """Block until the API endpoint accepts connections.

        Returns:
            the seconds left of the discovery timeout

        Raises:
            JoinTimeout
        """
        address, port = self.params.control_plane_ip, self.params.api_port
        deadline = self.clock() + self.params.discovery_timeout
        while not self.probe(address, port):
            if self.clock() >= deadline:
                raise JoinTimeout(
                    f"control plane {address}:{port} not reachable after "
                    f"{duration(self.params.discovery_timeout)}")
            LOGGER.debug("Waiting for control plane %s:%s ...", address, port)
            self.sleep(self.interval)
        return max(int(deadline - self.clock()), 1)

    def run(self):
        """Join the cluster.

        Raises:
            ConfigurationError, JoinTimeout, JoinRejected, BootstrapError
        """
        if self.params.unsafe_skip_ca_verification and \
                not self.params.ca_cert_hashes:
            LOGGER.warning("Joining without verifying the cluster CA "
                           "(unsafe_skip_ca_verification is set)")
        render_join_manifest(self.params, self.identity)

        self.state.reset()
        remaining = self.wait_for_control_plane()
        docs = render_join_manifest(self.params, self.identity, remaining)

        LOGGER.info("Joining %s:%s as %s ...", self.params.control_plane_ip,
                    self.params.api_port, self.identity.public_hostname)
        with temporary_manifest(self.host, docs) as path:
            try:
                self.host.run(["kubeadm", "join", "--config", path])
            except CommandError as exc:
                raise classify_join_failure(exc) from exc
            self.state.mark_bootstrapped(WORKER)

        LOGGER.success("Node %s joined the cluster",
                       self.identity.public_hostname)
