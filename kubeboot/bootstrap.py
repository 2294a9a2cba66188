"""
The bootstrap sequences of the two node roles.

A :class:`Pipeline` runs named :class:`Step` objects in order. A step
raising a :class:`~kubeboot.errors.BootstrapError` is recorded as failed,
the error is tagged with the step name and, if the step is fatal, the
remaining steps are skipped.

Control plane::

    validate-configuration -> resolve-identity -> tag-subnets ->
    install-runtime -> install-tooling -> init-control-plane ->
    provision-credentials -> install-addons

Worker::

    validate-configuration -> resolve-identity -> install-runtime ->
    install-tooling -> join-cluster

Workers boot at the same time as the control plane and only wait for it in
``join-cluster``, the steps before need no cluster.
"""
import os
import time
from collections import namedtuple

from kubeboot.cloud.aws import tag_subnets
from kubeboot.config import CONTROL_PLANE, WORKER
from kubeboot.deploy.addons import AddonInstaller
from kubeboot.deploy.control_plane import ControlPlaneInitializer
from kubeboot.deploy.credentials import CredentialProvisioner
from kubeboot.deploy.joiner import NodeJoiner, endpoint_reachable
from kubeboot.deploy.k8s import K8S
from kubeboot.errors import AddonApplyFailure, BootstrapError
from kubeboot.provision.host import Host
from kubeboot.provision.metadata import resolve_identity
from kubeboot.provision.runtime import RuntimeInstaller
from kubeboot.provision.state import NodeState
from kubeboot.provision.tooling import ToolingInstaller
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

OK = "ok"
FAILED = "failed"
SKIPPED = "skipped"


class Step(namedtuple("Step", ["name", "func", "fatal"])):
    """A named unit of the bootstrap, ``func`` takes no arguments"""
    __slots__ = ()

    def __new__(cls, name, func, fatal=True):
        return super().__new__(cls, name, func, fatal)


StepResult = namedtuple("StepResult", ["name", "status", "duration", "error"])


class Pipeline:
    """Runs steps in order and stops at the first fatal failure.

    Args:
        name (str): used in the log, e.g. the node role
        steps (list): :class:`Step` instances
        clock (callable): monotonic clock used to time the steps
    """

    def __init__(self, name, steps, clock=time.monotonic):
        self.name = name
        self.steps = list(steps)
        self.clock = clock
        self.results = []

    @property
    def ok(self):
        """True if no fatal step failed"""
        return not self.failure

    @property
    def failure(self):
        """The error of the fatal step that stopped the pipeline"""
        fatal = {step.name for step in self.steps if step.fatal}
        for result in self.results:
            if result.status == FAILED and result.name in fatal:
                return result.error
        return None

    def run(self):
        """Run all steps.

        Returns:
            list of :class:`StepResult`, including skipped steps
        """
        self.results = []
        aborted = False
        for step in self.steps:
            if aborted:
                self.results.append(StepResult(step.name, SKIPPED, 0, None))
                continue

            LOGGER.debug("[%s] step %s", self.name, step.name)
            start = self.clock()
            try:
                step.func()
            except BootstrapError as exc:
                exc.step = exc.step or step.name
                self.results.append(StepResult(step.name, FAILED,
                                               self.clock() - start, exc))
                if step.fatal:
                    LOGGER.error("Step %s failed: %s", step.name, exc)
                    aborted = True
                else:
                    LOGGER.warning("Step %s failed, continuing: %s",
                                   step.name, exc)
                continue

            duration = self.clock() - start
            self.results.append(StepResult(step.name, OK, duration, None))
            LOGGER.debug("Step %s done in %.1fs", step.name, duration)

        if self.ok:
            LOGGER.success("%s bootstrap finished", self.name)
        return self.results


class Bootstrap:
    """The shared state of the steps of one bootstrap run.

    Args:
        params (:class:`kubeboot.config.ClusterParameters`)
        host (:class:`kubeboot.provision.host.Host`): the node
        resolver (callable): returns the
            :class:`~kubeboot.provision.metadata.NodeIdentity`
        k8s_factory (callable): returns a :class:`kubeboot.deploy.k8s.K8S`
        ec2_client: passed to :func:`kubeboot.cloud.aws.tag_subnets`
        probe (callable): checks if the control plane accepts connections
        http (urllib3.PoolManager): used to fetch the addons
        clock (callable): monotonic clock
        sleep (callable): used to wait between polls
    """

    def __init__(self, params, host=None, resolver=resolve_identity,
                 k8s_factory=K8S, ec2_client=None, probe=endpoint_reachable,
                 http=None, clock=time.monotonic, sleep=time.sleep):
        self.params = params
        self.host = host or Host()
        self.resolver = resolver
        self.k8s_factory = k8s_factory
        self.ec2_client = ec2_client
        self.probe = probe
        self.http = http
        self.clock = clock
        self.sleep = sleep
        self.state = NodeState(self.host)
        self.identity = None
        self.kubeconfigs = []
        self.addon_results = []

    def validate(self, role):
        self.params.validate(role)

    def resolve_identity(self):
        self.identity = self.resolver()

    def tag_subnets(self):
        tag_subnets(self.params.subnets, self.params.cluster_name,
                    self.params.region, client=self.ec2_client)

    def install_runtime(self):
        RuntimeInstaller(self.host, self.params.containerd_version,
                         self.params.runc_version, sleep=self.sleep).install()

    def install_tooling(self):
        ToolingInstaller(self.host, self.params.kubernetes_version).install()

    def init_control_plane(self):
        ControlPlaneInitializer(self.host, self.params, self.identity,
                                state=self.state,
                                k8s_factory=self.k8s_factory,
                                clock=self.clock, sleep=self.sleep).run()

    def provision_credentials(self):
        self.kubeconfigs = CredentialProvisioner(
            self.host, self.params, self.identity,
            k8s_factory=self.k8s_factory).run()

    def addon_env(self):
        """Variables available to the addon manifests"""
        env = dict(os.environ)
        env.update(self.params.to_env())
        return env

    def install_addons(self):
        """Apply the addons, a failed addon does not stop the others.

        Raises:
            AddonApplyFailure after all addons ran, if any failed
        """
        self.addon_results = AddonInstaller(
            self.host, self.params.addons, env=self.addon_env(),
            http=self.http).run()
        failed = [r.url for r in self.addon_results if not r.ok]
        if failed:
            raise AddonApplyFailure("add-ons failed: %s" % ", ".join(failed))

    def join_cluster(self):
        NodeJoiner(self.host, self.params, self.identity, state=self.state,
                   probe=self.probe, clock=self.clock,
                   sleep=self.sleep).run()

    def control_plane_pipeline(self):
        """The steps of the control plane node"""
        steps = [
            Step("validate-configuration",
                 lambda: self.validate(CONTROL_PLANE)),
            Step("resolve-identity", self.resolve_identity),
        ]
        if self.params.subnets:
            steps.append(Step("tag-subnets", self.tag_subnets))
        steps += [
            Step("install-runtime", self.install_runtime),
            Step("install-tooling", self.install_tooling),
            Step("init-control-plane", self.init_control_plane),
            Step("provision-credentials", self.provision_credentials),
        ]
        if self.params.addons:
            steps.append(Step("install-addons", self.install_addons,
                              fatal=False))
        return Pipeline(CONTROL_PLANE, steps, clock=self.clock)

    def worker_pipeline(self):
        """The steps of a worker node"""
        return Pipeline(WORKER, [
            Step("validate-configuration", lambda: self.validate(WORKER)),
            Step("resolve-identity", self.resolve_identity),
            Step("install-runtime", self.install_runtime),
            Step("install-tooling", self.install_tooling),
            Step("join-cluster", self.join_cluster),
        ], clock=self.clock)

    def pipeline(self, role):
        """Return the pipeline of ``role``"""
        if role == CONTROL_PLANE:
            return self.control_plane_pipeline()
        if role == WORKER:
            return self.worker_pipeline()
        raise ValueError(f"unknown role '{role}'")
