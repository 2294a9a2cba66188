"""
Helpers shared by the kubeadm init and join configuration documents.
"""
from contextlib import contextmanager

import yaml

from kubeboot import CRI_SOCKET

KUBEADM_API = "kubeadm.k8s.io/v1beta3"


def duration(seconds):
    """Format seconds as a Go duration, e.g. ``300`` -> ``5m0s``"""
    minutes, seconds = divmod(int(seconds), 60)
    return f"{minutes}m{seconds}s"


def node_registration(params, identity, taints=None):
    """The ``nodeRegistration`` section of init and join configuration.

    The name must be the hostname the kubelet reports, otherwise the node
    can't register itself.
    """
    return {
        'criSocket': CRI_SOCKET,
        'imagePullPolicy': 'IfNotPresent',
        'kubeletExtraArgs': {
            'cloud-provider': params.cloud_provider,
            'read-only-port': "10255",
            'cgroup-driver': 'systemd',
        },
        'name': identity.public_hostname,
        'taints': taints,
    }


def dump_manifest(docs):
    """Serialize a list of configuration documents to one YAML stream"""
    return yaml.safe_dump_all(docs, default_flow_style=False,
                              explicit_start=True)


@contextmanager
def temporary_manifest(host, docs):
    """Write ``docs`` to a temporary file on ``host`` and yield its path.

    The file holds the bootstrap token, it is only readable by root and
    removed when the block is left.
    """
    path = host.mktemp(suffix=".yaml")
    try:
        host.write_file(path, dump_manifest(docs), mode=0o600)
        yield path
    finally:
        host.remove(path)
