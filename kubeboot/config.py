"""
config
======

The cluster wide parameters shared by the control plane and every worker.

Parameters come from a YAML file (``kubeboot master --config cluster.yml``)
or from the environment variables the provisioning layer renders into the
user data of the instances (``KUBEADM_TOKEN``, ``DNS_NAME``, ...). In both
cases they end up in an immutable :class:`ClusterParameters` which is passed
to every bootstrap step.
"""
import os
from collections import namedtuple

import yaml

from kubeboot import (KUBERNETES_BASE_VERSION, CONTAINERD_VERSION,
                      RUNC_VERSION, API_PORT, CALICO_MANIFEST)
from kubeboot.errors import ConfigurationError
from kubeboot.provision.metadata import normalize_dns_name
from kubeboot.util.logger import Logger
from kubeboot.util.net import is_ip, is_port, parse_cidr, cidrs_overlap
from kubeboot.util.util import (name_validation, k8s_version_validation,
                                is_kubeadm_token)

LOGGER = Logger(__name__)

CONTROL_PLANE = "master"
WORKER = "node"
ROLES = (CONTROL_PLANE, WORKER)

_DEFAULTS = (
    ('cluster_public_ip', None),
    ('control_plane_ip', None),
    ('kubernetes_version', KUBERNETES_BASE_VERSION),
    ('pod_subnet', '192.168.0.0/16'),
    ('service_subnet', '10.96.0.0/12'),
    ('api_port', API_PORT),
    ('region', None),
    ('subnets', ()),
    ('addons', ()),
    ('admin_user', 'admin'),
    ('os_user', 'ubuntu'),
    ('containerd_version', CONTAINERD_VERSION),
    ('runc_version', RUNC_VERSION),
    ('pod_network_manifest', CALICO_MANIFEST),
    ('cloud_provider', 'aws'),
    ('unsafe_skip_ca_verification', False),
    ('ca_cert_hashes', ()),
    ('discovery_timeout', 300),
    ('init_timeout', 300),
    ('asg_name', None),
    ('min_nodes', None),
    ('max_nodes', None),
)

_ClusterParameters = namedtuple(
    "_ClusterParameters",
    ['bootstrap_token', 'cluster_dns_name', 'cluster_name'] +
    [name for name, _ in _DEFAULTS],
    defaults=[value for _, value in _DEFAULTS])

# environment variable -> field
ENV_MAP = {
    'KUBEADM_TOKEN': 'bootstrap_token',
    'DNS_NAME': 'cluster_dns_name',
    'CLUSTER_NAME': 'cluster_name',
    'IP_ADDRESS': 'cluster_public_ip',
    'MASTER_IP': 'control_plane_ip',
    'KUBERNETES_VERSION': 'kubernetes_version',
    'POD_SUBNET': 'pod_subnet',
    'SERVICE_SUBNET': 'service_subnet',
    'API_PORT': 'api_port',
    'AWS_REGION': 'region',
    'AWS_SUBNETS': 'subnets',
    'ADDONS': 'addons',
    'ADMIN_USER': 'admin_user',
    'OS_USER': 'os_user',
    'CONTAINERD_VERSION': 'containerd_version',
    'RUNC_VERSION': 'runc_version',
    'POD_NETWORK_MANIFEST': 'pod_network_manifest',
    'CLOUD_PROVIDER': 'cloud_provider',
    'UNSAFE_SKIP_CA_VERIFICATION': 'unsafe_skip_ca_verification',
    'CA_CERT_HASHES': 'ca_cert_hashes',
    'DISCOVERY_TIMEOUT': 'discovery_timeout',
    'INIT_TIMEOUT': 'init_timeout',
    'ASG_NAME': 'asg_name',
    'ASG_MIN_NODES': 'min_nodes',
    'ASG_MAX_NODES': 'max_nodes',
}

_LISTS = ('subnets', 'addons', 'ca_cert_hashes')
_INTS = ('api_port', 'discovery_timeout', 'init_timeout', 'min_nodes',
         'max_nodes')
_BOOLS = ('unsafe_skip_ca_verification',)
_STRINGS = tuple(name for name in _ClusterParameters._fields
                 if name not in _LISTS + _INTS + _BOOLS)


def _to_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _to_tuple(value):
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(value)


def _to_str(value, name):
    if value is None or isinstance(value, str):
        return value
    # YAML reads 123456 as int, which converts back unchanged
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise ConfigurationError(
        f"{name} must be a string, got '{value}' ({type(value).__name__}), "
        "quote it in the configuration file")


def _to_int(value, name):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")


class ClusterParameters(_ClusterParameters):
    """Read-only cluster configuration.

    The DNS name is lowercased on construction, since kubeadm writes it
    into the API server certificate and clients compare it case
    sensitively against the kubeconfig. List values are stored as tuples.

    Only ``bootstrap_token``, ``cluster_dns_name`` and ``cluster_name`` are
    positional, everything else has a default, see :meth:`validate` for
    the per role requirements.
    """
    __slots__ = ()

    def __new__(cls, *args, **kwargs):
        params = super().__new__(cls, *args, **kwargs)
        values = params._asdict()
        for name in _STRINGS:
            values[name] = _to_str(values[name], name)
        if values['cluster_dns_name']:
            values['cluster_dns_name'] = normalize_dns_name(
                values['cluster_dns_name'])
        for name in _LISTS:
            values[name] = _to_tuple(values[name])
        for name in _INTS:
            values[name] = _to_int(values[name], name)
        for name in _BOOLS:
            values[name] = _to_bool(values[name])
        return super().__new__(cls, **values)

    @classmethod
    def from_dict(cls, data):
        """Create parameters from a parsed configuration file.

        Keys may use dashes (``cluster-name``) or underscores.

        Raises:
            ConfigurationError on unknown keys.
        """
        values = {}
        for key, value in (data or {}).items():
            field = key.replace("-", "_")
            if field not in cls._fields:
                raise ConfigurationError(f"unknown configuration key '{key}'")
            values[field] = value

        for field in ('bootstrap_token', 'cluster_dns_name', 'cluster_name'):
            values.setdefault(field, None)

        return cls(**values)

    @classmethod
    def from_env(cls, environ=None):
        """Create parameters from ``KUBEADM_TOKEN``, ``DNS_NAME`` etc."""
        environ = os.environ if environ is None else environ
        data = {field: environ[var] for var, field in ENV_MAP.items()
                if environ.get(var) not in (None, "")}
        return cls.from_dict(data)

    def to_env(self):
        """The parameters as environment variables, the inverse of
        :meth:`from_env`. Addon manifests refer to these."""
        env = {}
        for var, field in ENV_MAP.items():
            value = getattr(self, field)
            if value is None:
                continue
            if field in _LISTS:
                value = " ".join(value)
            elif field in _BOOLS:
                value = str(value).lower()
            env[var] = str(value)
        return env

    def validate(self, role):
        """Check the parameters needed by ``role``.

        A missing or malformed value is a configuration error and is
        reported before the host is changed.

        Args:
            role (str): ``master`` or ``node``

        Returns:
            the parameters

        Raises:
            ConfigurationError
        """
        if role not in ROLES:
            raise ConfigurationError(f"unknown role '{role}'")

        required = ['bootstrap_token', 'cluster_dns_name']
        if role == CONTROL_PLANE:
            required += ['cluster_name', 'cluster_public_ip']
        else:
            required += ['control_plane_ip']

        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                "missing required configuration: %s" % ", ".join(missing))

        if any(c.isspace() for c in self.bootstrap_token):
            raise ConfigurationError("bootstrap token contains whitespace")
        if not is_kubeadm_token(self.bootstrap_token):
            LOGGER.warning("bootstrap token does not match the kubeadm "
                           "format [a-z0-9]{6}.[a-z0-9]{16}")

        if self.cluster_name:
            name_validation(self.cluster_name)

        if not k8s_version_validation(self.kubernetes_version):
            raise ConfigurationError(
                "kubernetes version must be pinned as MAJOR.MINOR.PATCH, "
                f"got '{self.kubernetes_version}'")

        if not is_port(self.api_port):
            raise ConfigurationError(f"invalid API port {self.api_port}")

        for name in ('cluster_public_ip', 'control_plane_ip'):
            value = getattr(self, name)
            if value and not is_ip(value):
                raise ConfigurationError(f"{name} '{value}' is not an IP")

        parse_cidr(self.pod_subnet, "pod subnet")
        parse_cidr(self.service_subnet, "service subnet")
        if cidrs_overlap(self.pod_subnet, self.service_subnet):
            raise ConfigurationError(
                f"pod subnet {self.pod_subnet} overlaps service subnet "
                f"{self.service_subnet}")

        if role == WORKER and not (self.unsafe_skip_ca_verification or
                                   self.ca_cert_hashes):
            raise ConfigurationError(
                "joining needs ca_cert_hashes to pin the cluster CA, or "
                "unsafe_skip_ca_verification to trust it on first use")

        if self.subnets and not self.region:
            raise ConfigurationError("tagging subnets needs a region")

        return self


def load_config(path=None, environ=None):
    """Load :class:`ClusterParameters` from a YAML file or the environment.

    Args:
        path (str): the configuration file, if empty the environment is read
        environ (dict): environment to read, defaults to ``os.environ``
    """
    if not path:
        return ClusterParameters.from_env(environ)

    try:
        with open(path, 'r') as stream:
            data = yaml.safe_load(stream)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"can't read configuration {path}: {exc}")

    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping")

    return ClusterParameters.from_dict(data)
