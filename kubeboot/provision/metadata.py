"""
Resolve the identity of the node from the EC2 instance metadata service.

The node registers with the name the kubelet reports, which on AWS is the
private DNS name from ``meta-data/hostname``. kubeadm must use the very same
name, or the control plane rejects the registration of its own node.
"""
from collections import namedtuple

import urllib3

from kubeboot.errors import MetadataUnavailable
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

METADATA_ENDPOINT = "http://169.254.169.254"
TOKEN_PATH = "/latest/api/token"
TOKEN_TTL = "21600"

NodeIdentity = namedtuple("NodeIdentity", ["local_ip", "public_hostname"])


def normalize_dns_name(name):
    """Lowercase a DNS name and strip the trailing root dot.

    Certificate names are matched case sensitive by some clients, so the
    name must be written identically into the API server certificate and
    the kubeconfig files.
    """
    return name.strip().rstrip(".").lower()


def _session_token(http, endpoint, timeout):
    """Request an IMDSv2 session token, None if the service only
    speaks IMDSv1."""
    try:
        resp = http.request(
            "PUT", endpoint + TOKEN_PATH,
            headers={"X-aws-ec2-metadata-token-ttl-seconds": TOKEN_TTL},
            timeout=timeout, retries=False)
    except urllib3.exceptions.HTTPError as exc:
        LOGGER.debug("IMDSv2 token request failed: %s", exc)
        return None

    if resp.status != 200:
        return None
    return resp.data.decode().strip()


def get_metadata(path, endpoint=METADATA_ENDPOINT, http=None, timeout=2.0,
                 token=None):
    """Query a single value of the instance metadata.

    Args:
        path (str): e.g. ``local-ipv4``
        endpoint (str): the base URL of the metadata service
        http (urllib3.PoolManager): optional pool to use
        timeout (float): seconds to wait for the answer
        token (str): an IMDSv2 session token

    Raises:
        MetadataUnavailable
    """
    http = http or urllib3.PoolManager()
    headers = {"X-aws-ec2-metadata-token": token} if token else {}
    url = "%s/latest/meta-data/%s" % (endpoint, path)
    try:
        resp = http.request("GET", url, headers=headers, timeout=timeout,
                            retries=False)
    except urllib3.exceptions.HTTPError as exc:
        raise MetadataUnavailable(f"can't reach {url}: {exc}")

    value = resp.data.decode().strip()
    if resp.status != 200 or not value:
        raise MetadataUnavailable(f"{url} answered with status {resp.status}")
    return value


def resolve_identity(endpoint=METADATA_ENDPOINT, http=None, timeout=2.0):
    """Resolve the local IP and the host name of the running instance.

    Returns:
        :class:`NodeIdentity`

    Raises:
        MetadataUnavailable if the metadata service can't be queried.
    """
    http = http or urllib3.PoolManager()
    token = _session_token(http, endpoint, timeout)

    identity = NodeIdentity(
        local_ip=get_metadata("local-ipv4", endpoint, http, timeout, token),
        public_hostname=get_metadata("hostname", endpoint, http, timeout,
                                     token))
    LOGGER.info("Node identity: %s (%s)", identity.public_hostname,
                identity.local_ip)
    return identity
