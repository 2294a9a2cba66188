"""
Talk to the freshly initialized cluster through the API server.
"""
import time

import urllib3

from kubernetes import client as k8sclient
from kubernetes.client.rest import ApiException
from kubernetes.config import kube_config
from kubernetes.config.config_exception import ConfigException

from kubeboot import ADMIN_CONF
from kubeboot.errors import BootstrapError
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

CLUSTER_ADMIN_BINDING = "admin-cluster-binding"


def cluster_admin_binding(user, name=CLUSTER_ADMIN_BINDING):
    """The ClusterRoleBinding granting ``cluster-admin`` to ``user``"""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": name},
        "roleRef": {"apiGroup": "rbac.authorization.k8s.io",
                    "kind": "ClusterRole",
                    "name": "cluster-admin"},
        "subjects": [{"apiGroup": "rbac.authorization.k8s.io",
                      "kind": "User",
                      "name": user}]}


class K8S:
    """Class allowing various interactions with a Kubernetes cluster.

    Args:
        config (str): File path for the kubernetes configuration file
    """

    def __init__(self, config=ADMIN_CONF):
        self.config = config
        try:
            api_client = kube_config.new_client_from_config(
                config_file=config)
        except (ConfigException, OSError) as exc:
            raise BootstrapError(f"can't load kubeconfig {config}: {exc}")
        self.api = k8sclient.CoreV1Api(api_client)
        self.rbac = k8sclient.RbacAuthorizationV1Api(api_client)

    def node_status(self, nodename):
        """Returns the status of a Node.

        Args:
            nodename (str): The name of the node to check.

        Returns:
            The ``Ready`` condition of the node as string (``"True"``,
            ``"False"``, ``"Unknown"``) or None if the node is not known.
        """
        try:
            resp = self.api.read_node_status(nodename)
        except (urllib3.exceptions.HTTPError, ApiException) as exc:
            LOGGER.debug("API exception: %s", exc)
            return None

        status = [x for x in resp.status.conditions or []
                  if x.type == 'Ready']
        if not status:
            return None
        return status[0].status

    def wait_for_node_ready(self, nodename, timeout, clock=time.monotonic,
                            sleep=time.sleep, interval=5):
        """Block until ``nodename`` reports Ready.

        Returns:
            True if the node became ready, False after ``timeout`` seconds.
        """
        deadline = clock() + timeout
        while True:
            if self.node_status(nodename) == "True":
                return True
            if clock() >= deadline:
                return False
            LOGGER.debug("Waiting for node %s to become ready ...", nodename)
            sleep(interval)

    def create_cluster_admin_binding(self, user,
                                     name=CLUSTER_ADMIN_BINDING):
        """Grant ``cluster-admin`` to ``user``.

        An already existing binding is not an error.

        Raises:
            BootstrapError if the API refuses the binding or is unreachable.
        """
        try:
            self.rbac.create_cluster_role_binding(
                body=cluster_admin_binding(user, name))
        except ApiException as exc:
            if exc.status == 409:
                LOGGER.debug("ClusterRoleBinding %s already exists", name)
                return False
            raise BootstrapError(f"can't create ClusterRoleBinding {name}",
                                 returncode=exc.status, stderr=exc.body)
        except urllib3.exceptions.HTTPError as exc:
            raise BootstrapError(
                f"can't create ClusterRoleBinding {name}, API server "
                f"unreachable: {exc}")
        LOGGER.success("Granted cluster-admin to %s", user)
        return True
