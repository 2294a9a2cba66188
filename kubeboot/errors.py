"""
Errors raised while bootstrapping a node.

Every bootstrap step raises a subclass of :class:`BootstrapError`. The
pipeline in :mod:`kubeboot.bootstrap` catches them, records the failing
step and stops, except for :class:`AddonApplyFailure`, which is scoped to a
single addon.
"""


class BootstrapError(Exception):
    """Base class of all bootstrap failures.

    Args:
        msg (str): a human readable description
        step (str): the name of the failing step, set by the pipeline when
            it is not known at raise time
        returncode (int): the exit status of the failing tool, if any
        stderr (str): the diagnostics of the failing tool, if any
    """
    retriable = False

    def __init__(self, msg, step=None, returncode=None, stderr=None):
        super().__init__(msg)
        self.step = step
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self):
        msg = super().__str__()
        if self.returncode is not None:
            msg = f"{msg} (exit code {self.returncode})"
        if self.stderr:
            msg = f"{msg}: {self.stderr.strip()}"
        return msg


class CommandError(BootstrapError):
    """A host command exited with a non-zero status"""


class MetadataUnavailable(BootstrapError):
    """The instance metadata service could not be queried"""


class RuntimeInstallFailure(BootstrapError):
    """The container runtime could not be installed or did not come up"""


class ConfigurationError(BootstrapError):
    """Invalid or missing configuration, needs an operator fix"""


class InitTimeout(BootstrapError):
    """The control plane did not become healthy in time"""


class JoinTimeout(BootstrapError):
    """The control plane was not reachable within the discovery timeout"""
    retriable = True


class JoinRejected(BootstrapError):
    """The control plane refused the node (token or name mismatch)"""


class AddonApplyFailure(BootstrapError):
    """A single addon manifest could not be fetched or applied"""

    def __init__(self, msg, url=None, **kwargs):
        super().__init__(msg, **kwargs)
        self.url = url
