"""
Install and configure containerd as container runtime.

The kubelet is started right after this step and expects a running
runtime which uses the same cgroup driver as itself (``systemd``).
"""
import re
import time

from kubeboot import CONTAINERD_VERSION, RUNC_VERSION
from kubeboot.errors import CommandError, RuntimeInstallFailure
from kubeboot.util.logger import Logger
from kubeboot.util.util import retry

LOGGER = Logger(__name__)

KERNEL_MODULES = ("overlay", "br_netfilter")
MODULES_CONF = "/etc/modules-load.d/containerd.conf"

SYSCTL_PARAMS = (
    ("net.bridge.bridge-nf-call-iptables", "1"),
    ("net.ipv4.ip_forward", "1"),
    ("net.bridge.bridge-nf-call-ip6tables", "1"),
)
SYSCTL_CONF = "/etc/sysctl.d/99-kubernetes-cri.conf"

CONTAINERD_URL = ("https://github.com/containerd/containerd/releases/download/"
                  "v{version}/containerd-{version}-linux-{arch}.tar.gz")
CONTAINERD_UNIT_URL = ("https://raw.githubusercontent.com/containerd/"
                       "containerd/v{version}/containerd.service")
CONTAINERD_UNIT = "/usr/lib/systemd/system/containerd.service"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
CONTAINERD_SOCKET = "/run/containerd/containerd.sock"

RUNC_URL = ("https://github.com/opencontainers/runc/releases/download/"
            "v{version}/runc.{arch}")
RUNC_PATH = "/usr/local/sbin/runc"

SYSTEMD_CGROUP_RE = re.compile(r"SystemdCgroup\s*=\s*(true|false)")


def set_cgroup_driver(config, driver="systemd"):
    """Set the runc cgroup driver in a containerd ``config.toml``.

    Args:
        config (str): the content generated by ``containerd config default``
        driver (str): ``systemd`` or ``cgroupfs``

    Returns:
        the rewritten configuration

    Raises:
        RuntimeInstallFailure if the configuration has no runc
            ``SystemdCgroup`` option.
    """
    if driver not in ("systemd", "cgroupfs"):
        raise RuntimeInstallFailure(f"unknown cgroup driver '{driver}'")

    if not SYSTEMD_CGROUP_RE.search(config):
        raise RuntimeInstallFailure(
            "containerd configuration has no SystemdCgroup option")

    value = "true" if driver == "systemd" else "false"
    return SYSTEMD_CGROUP_RE.sub(f"SystemdCgroup = {value}", config)


class RuntimeInstaller:
    """Installs containerd and runc from the upstream release binaries.

    Every step can run again on a node where it already ran. Binaries
    already present in the requested version are not downloaded again.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        version (str): the containerd release
        runc_version (str): the runc release
        cgroup_driver (str): the cgroup driver the kubelet uses
        arch (str): the release architecture
        ready_tries (int): how often to probe the runtime socket
        sleep (callable): used to wait between the probes
    """

    def __init__(self, host, version=CONTAINERD_VERSION,
                 runc_version=RUNC_VERSION, cgroup_driver="systemd",
                 arch="amd64", ready_tries=10, sleep=time.sleep):
        self.host = host
        self.version = version
        self.runc_version = runc_version
        self.cgroup_driver = cgroup_driver
        self.arch = arch
        self.ready_tries = ready_tries
        self.sleep = sleep

    def install(self):
        """Install the runtime and wait until it accepts connections.

        Raises:
            RuntimeInstallFailure
        """
        LOGGER.info("Installing containerd %s ...", self.version)
        try:
            self.load_kernel_modules()
            self.configure_sysctl()
            self.install_containerd()
            self.install_runc()
            self.configure()
            self.wait_until_ready()
        except CommandError as exc:
            raise RuntimeInstallFailure(
                f"installing containerd failed: {exc}",
                returncode=exc.returncode) from exc
        LOGGER.success("containerd %s is running", self.version)

    def load_kernel_modules(self):
        """Load the modules now and on every boot"""
        self.host.write_file(MODULES_CONF, "\n".join(KERNEL_MODULES) + "\n")
        for module in KERNEL_MODULES:
            self.host.run(["modprobe", module])

    def configure_sysctl(self):
        """Let iptables see bridged traffic and enable IP forwarding"""
        content = "".join("%s = %s\n" % item for item in SYSCTL_PARAMS)
        self.host.write_file(SYSCTL_CONF, content)
        self.host.run(["sysctl", "--system"])

    def _installed_version(self, cmd):
        proc = self.host.run(cmd, check=False)
        if proc.returncode:
            return ""
        return proc.stdout

    def install_containerd(self):
        """Extract the containerd release to /usr/local and start it"""
        if f"v{self.version} " in self._installed_version(
                ["containerd", "--version"]):
            LOGGER.debug("containerd %s already installed", self.version)
        else:
            tarball = self.host.mktemp(suffix=".tar.gz")
            try:
                self.host.download(CONTAINERD_URL.format(
                    version=self.version, arch=self.arch), tarball)
                self.host.run(["tar", "Cxzf", "/usr/local", tarball])
            finally:
                self.host.remove(tarball)

        self.host.download(CONTAINERD_UNIT_URL.format(version=self.version),
                           CONTAINERD_UNIT)
        self.host.run(["systemctl", "daemon-reload"])
        self.host.run(["systemctl", "enable", "--now", "containerd"])

    def install_runc(self):
        """Install the runc binary used by containerd"""
        if f"version {self.runc_version}" in self._installed_version(
                ["runc", "--version"]):
            LOGGER.debug("runc %s already installed", self.runc_version)
            return

        binary = self.host.mktemp(suffix=".runc")
        try:
            self.host.download(RUNC_URL.format(version=self.runc_version,
                                               arch=self.arch), binary)
            self.host.run(["install", "-m", "755", binary, RUNC_PATH])
        finally:
            self.host.remove(binary)

    def configure(self):
        """Write the default configuration with the wanted cgroup driver"""
        default = self.host.run(["containerd", "config", "default"]).stdout
        self.host.write_file(CONTAINERD_CONFIG,
                             set_cgroup_driver(default, self.cgroup_driver))
        self.host.run(["systemctl", "restart", "containerd"])

    def wait_until_ready(self):
        """Block until containerd answers on its socket"""

        @retry(CommandError, tries=self.ready_tries, delay=1, backoff=2,
               logger=LOGGER.debug, sleep=self.sleep)
        def probe():
            return self.host.run(["ctr", "--address", CONTAINERD_SOCKET,
                                  "version"])

        probe()
