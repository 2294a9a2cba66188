"""
kubeboot
========

The entry point of the node bootstrap. Don't use it directly, instead
install the package with setup.py. It automatically creates an executable
in your path, which cloud-init calls on every new instance::

    kubeboot master --config /etc/kubeboot/cluster.yml
    kubeboot node

Without a configuration file the parameters are read from the environment
(``KUBEADM_TOKEN``, ``DNS_NAME``, ``CLUSTER_NAME`` ...).
"""
import argparse
import sys

from mach import mach1

from . import __version__
from .bootstrap import Bootstrap
from .config import CONTROL_PLANE, WORKER, load_config
from .deploy.control_plane import render_init_manifest
from .deploy.joiner import render_join_manifest
from .deploy.manifests import dump_manifest
from .errors import BootstrapError
from .provision.metadata import NodeIdentity, resolve_identity
from .ssl import CA_CERT, discovery_hash, read_cert
from .util.logger import Logger, add_file_handler
from .util.util import generate_token

LOGGER = Logger(__name__)

LOG_FILE = "/var/log/kubeboot-{role}.log"


def _fail(err):
    """Log a bootstrap error with its diagnostics and exit"""
    if err.step:
        LOGGER.error("Bootstrap failed in step %s", err.step)
    LOGGER.error(f"Error: {err}")
    if err.retriable:
        LOGGER.info("The failure is transient, running kubeboot again may "
                    "succeed")
    sys.exit(1)


@mach1()
class Kubeboot:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and decides which bootstrap should run
    """
    def __init__(self):
        self.log_file = None
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default='3')
        self.parser.add_argument(  # pylint: disable=no-member
            "--log-file",
            help=("also write the log to this file, the default for "
                  "bootstraps is " + LOG_FILE),
            default=None)

    def _get_version(self, *_):
        print("%s version: %s" % (self.__class__.__name__, __version__))
        sys.exit(0)

    def _set_verbosity(self, level):
        LOGGER.level = level

    def _set_log_file(self, path):
        self._log_to(path)

    def _log_to(self, path):
        try:
            add_file_handler(path)
        except OSError as exc:
            LOGGER.warning("Can't log to %s: %s", path, exc)
            return
        self.log_file = path

    def _bootstrap(self, role, config):
        if not self.log_file:
            self._log_to(LOG_FILE.format(role=role))

        try:
            params = load_config(config)
        except BootstrapError as err:
            _fail(err)

        pipeline = Bootstrap(params).pipeline(role)
        pipeline.run()
        if not pipeline.ok:
            _fail(pipeline.failure)

    def master(self, config: str = ""):
        """
        Bootstrap this machine as the control plane

        config - configuration file, read the environment if not given
        """
        self._bootstrap(CONTROL_PLANE, config)

    def node(self, config: str = ""):
        """
        Bootstrap this machine as a worker and join the cluster

        config - configuration file, read the environment if not given
        """
        self._bootstrap(WORKER, config)

    def token(self):
        """
        Print a new bootstrap token in the kubeadm format
        """
        print(generate_token())

    def cahash(self, path: str = CA_CERT):
        """
        Print the CA hash workers use to pin the cluster CA

        path - the cluster CA certificate
        """
        try:
            cert = read_cert(path)
        except (OSError, ValueError) as exc:
            LOGGER.error(f"Error: can't read {path}: {exc}")
            sys.exit(1)
        print(discovery_hash(cert))

    def render(self, role: str, config: str = "", name: str = "",
               ip: str = ""):
        """
        Print the kubeadm configuration a bootstrap would use

        role - master or node
        config - configuration file, read the environment if not given
        name - the node name, queried from the metadata service if not given
        ip - the node address, queried from the metadata service if not given
        ---
        The output contains the bootstrap token.
        """
        try:
            params = load_config(config).validate(role)
            if name and ip:
                identity = NodeIdentity(ip, name)
            else:
                identity = resolve_identity()

            if role == CONTROL_PLANE:
                docs = render_init_manifest(params, identity)
            else:
                docs = render_join_manifest(params, identity)
        except BootstrapError as err:
            _fail(err)

        print(dump_manifest(docs), end="")


def main():
    """
    run and execute kubeboot
    """
    k = Kubeboot()

    # pylint: disable=no-member
    k.parser.description = ('Bootstrap a Kubernetes node. Parameters are '
                            'read from a configuration file or from the '
                            'environment.')

    # pylint misses the fact that Kubeboot is decorated with mach.
    # the mach decorator analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
