"""
Grant an operator cluster-admin and write kubeconfig files for them.

Client credentials are rendered once with ``kubeadm kubeconfig user``. Two
files are written from them, one pointing to the DNS name and one to the IP
address of the API, which differ only in the ``server`` field. Both embed a
cluster-admin client key and are readable only by the operational user.
"""
import os
from collections import namedtuple

import yaml

from kubeboot import ADMIN_CONF
from kubeboot.deploy.control_plane import cluster_configuration
from kubeboot.deploy.k8s import K8S
from kubeboot.deploy.manifests import temporary_manifest
from kubeboot.errors import BootstrapError
from kubeboot.util.logger import Logger
from kubeboot.util.util import get_kubeconfig_yaml, server_url

LOGGER = Logger(__name__)

KUBECONFIG_MODE = 0o600
ADDRESS_MODES = {"dns": "kubeconfig", "ip": "kubeconfig_ip"}

KubeconfigArtifact = namedtuple("KubeconfigArtifact",
                                ["path", "address_mode", "owner", "mode"])

ClientCredentials = namedtuple("ClientCredentials",
                               ["ca_data", "cert_data", "key_data"])


def parse_client_credentials(kubeconfig):
    """Extract CA and client certificate data from a kubeconfig.

    Args:
        kubeconfig (str): the YAML as printed by ``kubeadm kubeconfig user``

    Raises:
        BootstrapError if the document lacks embedded credentials.
    """
    try:
        config = yaml.safe_load(kubeconfig)
        user = config['users'][0]['user']
        return ClientCredentials(
            config['clusters'][0]['cluster']['certificate-authority-data'],
            user['client-certificate-data'],
            user['client-key-data'])
    except (yaml.YAMLError, KeyError, IndexError, TypeError) as exc:
        raise BootstrapError(f"kubeconfig has no client credentials: {exc}")


class CredentialProvisioner:
    """Creates the admin binding and the user kubeconfig files.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        params (:class:`kubeboot.config.ClusterParameters`)
        identity (:class:`kubeboot.provision.metadata.NodeIdentity`)
        k8s_factory (callable): returns a :class:`kubeboot.deploy.k8s.K8S`
    """

    def __init__(self, host, params, identity, k8s_factory=K8S):
        self.host = host
        self.params = params
        self.identity = identity
        self.k8s_factory = k8s_factory

    def run(self):
        """Grant cluster-admin and write both kubeconfig files.

        Returns:
            list of :class:`KubeconfigArtifact`
        """
        self.grant_admin()
        credentials = self.render_client_credentials()
        return self.write_kubeconfigs(credentials)

    def grant_admin(self):
        """Bind ``cluster-admin`` to the admin identity, idempotent"""
        self.k8s_factory(ADMIN_CONF).create_cluster_admin_binding(
            self.params.admin_user)

    def render_client_credentials(self):
        """Let kubeadm sign a client certificate for the admin identity"""
        docs = [cluster_configuration(self.params, self.identity)]
        with temporary_manifest(self.host, docs) as path:
            out = self.host.run(["kubeadm", "kubeconfig", "user",
                                 "--client-name", self.params.admin_user,
                                 "--config", path]).stdout
        return parse_client_credentials(out)

    def kubeconfigs(self, credentials):
        """Return the kubeconfig content per address mode.

        Both share CA and client credentials and differ in the server
        only.
        """
        addresses = {"dns": self.params.cluster_dns_name,
                     "ip": self.params.cluster_public_ip}
        return {mode: get_kubeconfig_yaml(
                    server_url(address, self.params.api_port),
                    credentials.ca_data,
                    self.params.admin_user,
                    credentials.cert_data,
                    credentials.key_data,
                    cluster_name=self.params.cluster_name)
                for mode, address in addresses.items()}

    def write_kubeconfigs(self, credentials):
        """Write the kubeconfig files to the home of the operational user"""
        owner = self.params.os_user
        home = self.host.home_dir(owner)
        artifacts = []
        for mode, content in self.kubeconfigs(credentials).items():
            path = os.path.join(home, ADDRESS_MODES[mode])
            self.host.write_file(path, content, mode=KUBECONFIG_MODE,
                                 owner=owner, group=owner)
            artifacts.append(KubeconfigArtifact(path, mode, owner,
                                                KUBECONFIG_MODE))
            LOGGER.success("Wrote %s", path)
        return artifacts
