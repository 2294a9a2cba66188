"""
Install kubeadm, kubelet and kubectl at a pinned version.

The packages come from the community repository ``pkgs.k8s.io``, which
has one repository per minor release. They are held after installation, so
unattended upgrades can't move a node away from the cluster version.
"""
from kubeboot import KUBERNETES_BASE_VERSION
from kubeboot.errors import ConfigurationError
from kubeboot.util.logger import Logger
from kubeboot.util.util import k8s_version_validation

LOGGER = Logger(__name__)

PACKAGES = ("kubelet", "kubeadm", "kubectl")
PREREQUISITES = ("apt-transport-https", "ca-certificates", "curl", "gpg")

REPO_URL = "https://pkgs.k8s.io/core:/stable:/v{minor}/deb/"
KEYRING = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
SOURCES_LIST = "/etc/apt/sources.list.d/kubernetes.list"
FSTAB = "/etc/fstab"
PROC_SWAPS = "/proc/swaps"

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def disable_swap_entries(fstab):
    """Comment out all swap entries of an ``/etc/fstab``"""
    lines = []
    for line in fstab.splitlines():
        fields = line.split()
        if len(fields) > 2 and not line.lstrip().startswith("#") \
                and fields[2] == "swap":
            line = "#" + line
        lines.append(line)
    return "\n".join(lines) + "\n"


def active_swaps(proc_swaps):
    """Return the devices listed in ``/proc/swaps`` (without the header)"""
    return [line.split()[0] for line in proc_swaps.splitlines()[1:]
            if line.strip()]


class ToolingInstaller:
    """Installs the Kubernetes node tooling and starts the kubelet.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        version (str): the Kubernetes version, e.g. ``1.24.4``
    """

    def __init__(self, host, version=KUBERNETES_BASE_VERSION):
        if not k8s_version_validation(version):
            raise ConfigurationError(
                f"kubernetes version must be pinned, got '{version}'")
        self.host = host
        self.version = version

    @property
    def minor(self):
        """e.g. ``1.24``"""
        return ".".join(self.version.split(".")[:2])

    def install(self):
        """Install the tools, disable swap and start the kubelet."""
        LOGGER.info("Installing Kubernetes tools %s ...", self.version)
        self.add_repository()
        self.install_packages()
        self.disable_swap()
        self.start_kubelet()
        LOGGER.success("kubeadm, kubelet and kubectl %s installed",
                       self.version)

    def _apt(self, *args):
        return self.host.run(["apt-get"] + list(args), env=APT_ENV)

    def add_repository(self):
        """Register the package repository of the minor release"""
        repo = REPO_URL.format(minor=self.minor)
        self._apt("update", "-y")
        self._apt("install", "-y", *PREREQUISITES)

        key = self.host.mktemp(suffix=".key")
        try:
            self.host.download(repo + "Release.key", key)
            self.host.run(["mkdir", "-p", "-m", "755", "/etc/apt/keyrings"])
            self.host.run(["gpg", "--batch", "--yes", "--dearmor",
                           "-o", KEYRING, key])
        finally:
            self.host.remove(key)

        self.host.write_file(SOURCES_LIST,
                             f"deb [signed-by={KEYRING}] {repo} /\n")
        self._apt("update", "-y")

    def install_packages(self):
        """Install the pinned packages and hold them"""
        self.host.run(["apt-mark", "unhold"] + list(PACKAGES))
        self._apt("install", "-y", "--allow-change-held-packages",
                  *["%s=%s-*" % (pkg, self.version) for pkg in PACKAGES])
        self.host.run(["apt-mark", "hold"] + list(PACKAGES))

    def disable_swap(self):
        """Turn swap off now and after reboots.

        Raises:
            ConfigurationError if a swap device is still active, the
                kubelet refuses to run with swap.
        """
        self.host.run(["swapoff", "-a"])
        if self.host.exists(FSTAB):
            fstab = self.host.read_file(FSTAB)
            updated = disable_swap_entries(fstab)
            if updated != fstab:
                self.host.write_file(FSTAB, updated)

        swaps = active_swaps(self.host.read_file(PROC_SWAPS))
        if swaps:
            raise ConfigurationError(
                "swap is still enabled on %s" % ", ".join(swaps))

    def start_kubelet(self):
        """Enable and start the kubelet.

        Until the node is initialized or joined the kubelet restarts in a
        loop, waiting for its configuration.
        """
        self.host.run(["systemctl", "enable", "--now", "kubelet"])
