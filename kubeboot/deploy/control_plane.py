"""
Initialize the control plane with ``kubeadm init``.

After the API server is up, the pod network overlay is applied and the
initializer waits until the control plane node reports ``Ready``, since
nothing can be scheduled before that.
"""
import time

from kubeboot import ADMIN_CONF
from kubeboot.config import CONTROL_PLANE
from kubeboot.deploy.k8s import K8S
from kubeboot.deploy.manifests import (KUBEADM_API, duration,
                                       node_registration, temporary_manifest)
from kubeboot.errors import (BootstrapError, CommandError,
                             ConfigurationError, InitTimeout)
from kubeboot.provision.state import NodeState
from kubeboot.ssl import APISERVER_CERT, cert_matches, load_cert
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

CONTROL_PLANE_TAINT = {'effect': 'NoSchedule',
                       'key': 'node-role.kubernetes.io/control-plane'}

TIMEOUT_MARKERS = ("timed out waiting for the condition",
                   "context deadline exceeded",
                   "wait-control-plane")


def cert_sans(params, identity):
    """All names the API server can be reached by, duplicates removed.

    A client connecting through any name not in this list fails the TLS
    verification.
    """
    sans = []
    for name in (params.cluster_dns_name, params.cluster_public_ip,
                 identity.local_ip, identity.public_hostname):
        if name and name not in sans:
            sans.append(name)
    return sans


def cluster_configuration(params, identity):
    """The kubeadm ClusterConfiguration document"""
    extra_args = {'cloud-provider': params.cloud_provider}
    return {
        'apiVersion': KUBEADM_API,
        'kind': 'ClusterConfiguration',
        'apiServer': {
            'certSANs': cert_sans(params, identity),
            'extraArgs': dict(extra_args),
            'timeoutForControlPlane': duration(params.init_timeout),
        },
        'certificatesDir': '/etc/kubernetes/pki',
        'clusterName': params.cluster_name,
        'controllerManager': {'extraArgs': dict(extra_args)},
        'dns': {},
        'etcd': {'local': {'dataDir': '/var/lib/etcd'}},
        'imageRepository': 'registry.k8s.io',
        'kubernetesVersion': 'v' + params.kubernetes_version,
        'networking': {
            'dnsDomain': 'cluster.local',
            'podSubnet': params.pod_subnet,
            'serviceSubnet': params.service_subnet,
        },
        'scheduler': {},
    }


def render_init_manifest(params, identity):
    """Render the InitConfiguration and ClusterConfiguration documents.

    Returns:
        list of dict
    """
    init = {
        'apiVersion': KUBEADM_API,
        'kind': 'InitConfiguration',
        'bootstrapTokens': [{
            'groups': ['system:bootstrappers:kubeadm:default-node-token'],
            'token': params.bootstrap_token,
            'ttl': '0s',
            'usages': ['signing', 'authentication'],
        }],
        'localAPIEndpoint': {
            'advertiseAddress': identity.local_ip,
            'bindPort': params.api_port,
        },
        'nodeRegistration': node_registration(params, identity,
                                              [CONTROL_PLANE_TAINT]),
    }
    return [init, cluster_configuration(params, identity)]


def validate_manifest_inputs(docs, identity):
    """Check a rendered init manifest before it is handed to kubeadm.

    Raises:
        ConfigurationError
    """
    init, cluster = docs
    name = init['nodeRegistration']['name']
    if name != identity.public_hostname:
        raise ConfigurationError(
            f"node name {name} differs from the kubelet hostname "
            f"{identity.public_hostname}")

    if not init['bootstrapTokens'][0]['token']:
        raise ConfigurationError("bootstrap token is empty")

    missing = [san for san in (identity.local_ip, identity.public_hostname)
               if san not in cluster['apiServer']['certSANs']]
    if missing:
        raise ConfigurationError("certSANs lack %s" % ", ".join(missing))


class ControlPlaneInitializer:
    """Runs ``kubeadm init`` and installs the pod network.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        params (:class:`kubeboot.config.ClusterParameters`)
        identity (:class:`kubeboot.provision.metadata.NodeIdentity`)
        state (:class:`kubeboot.provision.state.NodeState`)
        k8s_factory (callable): returns a :class:`kubeboot.deploy.k8s.K8S`
            for the admin kubeconfig
    """

    def __init__(self, host, params, identity, state=None, k8s_factory=K8S,
                 clock=time.monotonic, sleep=time.sleep):
        self.host = host
        self.params = params
        self.identity = identity
        self.state = state or NodeState(host)
        self.k8s_factory = k8s_factory
        self.clock = clock
        self.sleep = sleep

    def run(self):
        """Initialize the cluster.

        Raises:
            ConfigurationError, InitTimeout, BootstrapError
        """
        docs = render_init_manifest(self.params, self.identity)
        validate_manifest_inputs(docs, self.identity)

        with temporary_manifest(self.host, docs) as path:
            self.state.reset()
            self.init(path)
            self.state.mark_bootstrapped(CONTROL_PLANE)

        self.check_apiserver_cert()
        self.apply_pod_network()
        self.wait_for_ready()
        LOGGER.success("Control plane %s initialized",
                       self.identity.public_hostname)

    def init(self, manifest):
        """Run ``kubeadm init`` with the rendered manifest"""
        LOGGER.info("Initializing the control plane (this takes a while) ...")
        try:
            self.host.run(["kubeadm", "init", "--config", manifest])
        except CommandError as exc:
            stderr = (exc.stderr or "").lower()
            if any(marker in stderr for marker in TIMEOUT_MARKERS):
                raise InitTimeout(
                    "control plane did not become healthy within "
                    f"{duration(self.params.init_timeout)}",
                    returncode=exc.returncode, stderr=exc.stderr) from exc
            raise BootstrapError("kubeadm init failed",
                                 returncode=exc.returncode,
                                 stderr=exc.stderr) from exc

    def check_apiserver_cert(self, path=APISERVER_CERT):
        """Check the API server certificate kubeadm issued covers every
        address clients use.

        Missing addresses are logged, the bootstrap goes on.

        Returns:
            list of addresses the certificate is not valid for
        """
        if not self.host.exists(path):
            LOGGER.warning("No API server certificate at %s", path)
            return []

        try:
            cert = load_cert(self.host.read_file(path))
        except ValueError as exc:
            raise BootstrapError(f"can't load {path}: {exc}") from exc

        missing = [address for address in cert_sans(self.params, self.identity)
                   if not cert_matches(cert, address)]
        for address in missing:
            LOGGER.warning("%s is not valid for %s, TLS clients using it "
                           "will fail", path, address)
        return missing

    def apply_pod_network(self):
        """Apply the overlay network manifest"""
        LOGGER.info("Applying pod network %s ...",
                    self.params.pod_network_manifest)
        self.host.run(["kubectl", "apply", "-f",
                       self.params.pod_network_manifest],
                      env={"KUBECONFIG": ADMIN_CONF})

    def wait_for_ready(self):
        """Block until the control plane node is Ready.

        Raises:
            InitTimeout
        """
        k8s = self.k8s_factory(ADMIN_CONF)
        if not k8s.wait_for_node_ready(self.identity.public_hostname,
                                       self.params.init_timeout,
                                       clock=self.clock, sleep=self.sleep):
            raise InitTimeout(
                f"node {self.identity.public_hostname} not ready after "
                f"{duration(self.params.init_timeout)}")
