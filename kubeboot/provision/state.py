"""
The bootstrap state of a node.

A node is either ``uninitialized`` or ``bootstrapped``. ``kubeadm init``
and ``kubeadm join`` are only allowed from ``uninitialized``, so both
initializer and joiner always :meth:`~NodeState.reset` first, which makes a
second bootstrap run on the same host safe.

The state is kept in a marker file next to the kubeadm configuration.
"""
from kubeboot import STATE_FILE
from kubeboot.errors import BootstrapError
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

UNINITIALIZED = "uninitialized"
BOOTSTRAPPED = "bootstrapped"

RESET_CMD = ["kubeadm", "reset", "--force"]


class NodeState:
    """Tracks and changes the bootstrap state of a node.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        path (str): the marker file
    """

    def __init__(self, host, path=STATE_FILE):
        self.host = host
        self.path = path

    @property
    def current(self):
        """The current state, ``uninitialized`` without a marker file"""
        if not self.host.exists(self.path):
            return UNINITIALIZED
        return self.host.read_file(self.path).split()[0]

    @property
    def role(self):
        """The role the node was bootstrapped as, None if uninitialized"""
        if self.current != BOOTSTRAPPED:
            return None
        return self.host.read_file(self.path).split()[1]

    def reset(self):
        """Transition to ``uninitialized`` by running ``kubeadm reset``.

        Allowed from any state.
        """
        LOGGER.info("Resetting kubeadm state (was %s) ...", self.current)
        self.host.run(RESET_CMD)
        self.host.write_file(self.path, UNINITIALIZED + "\n")

    def mark_bootstrapped(self, role):
        """Transition from ``uninitialized`` to ``bootstrapped``.

        Raises:
            BootstrapError if the node was not reset before.
        """
        if self.current != UNINITIALIZED:
            raise BootstrapError(
                f"can't bootstrap as {role}: node is {self.current}, "
                "reset it first")
        self.host.write_file(self.path, f"{BOOTSTRAPPED} {role}\n")
