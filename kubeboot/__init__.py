# pylint: disable=missing-docstring
from importlib import metadata

try:
    __version__ = metadata.version('kubeboot')
except metadata.PackageNotFoundError:
    __version__ = '0.3.0'

# Defining some constants
KUBERNETES_BASE_VERSION = "1.24.4"
CONTAINERD_VERSION = "1.6.6"
RUNC_VERSION = "1.1.3"
API_PORT = 6443
CRI_SOCKET = "unix:///var/run/containerd/containerd.sock"
CALICO_MANIFEST = ("https://docs.projectcalico.org/archive/v3.23/manifests/"
                   "calico.yaml")
ADMIN_CONF = "/etc/kubernetes/admin.conf"
STATE_FILE = "/etc/kubernetes/kubeboot.state"
