"""
General purpose utilities
"""
import random
import re
import string
import time

from functools import wraps

import yaml

from kubeboot.errors import ConfigurationError

TOKEN_RE = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")
CLUSTER_NAME_RE = re.compile(r"^[a-zA-Z\d-]{1,244}$")


def get_kubeconfig_yaml(master_uri, ca_cert, username, client_cert,
                        client_key, cluster_name="kubernetes"):
    """
    format a kube configuration file with embedded credentials

    ``ca_cert``, ``client_cert`` and ``client_key`` are the base64 encoded
    PEM blobs as found in the ``*-data`` fields of a kubeconfig.
    """
    context = "%s@%s" % (username, cluster_name)
    config = {
        'apiVersion': 'v1',
        'kind': 'Config',
        'preferences': {},
        'clusters': [{'name': cluster_name,
                      'cluster': {'server': master_uri,
                                  'certificate-authority-data': ca_cert}}],
        'users': [{'name': username,
                   'user': {'client-certificate-data': client_cert,
                            'client-key-data': client_key}}],
        'contexts': [{'name': context,
                      'context': {'cluster': cluster_name,
                                  'user': username}}],
        'current-context': context,
    }
    return yaml.safe_dump(config, default_flow_style=False)


def server_url(host, port=6443):
    """format the https URL of an API server"""
    return "https://%s:%s" % (host, port)


def name_validation(name):
    """
    Validates a cluster name: 1 to 244 characters, only ASCII letters,
    digits and dashes. The name ends up in AWS tag keys and in the
    kubeconfig context.

    Returns:
        Name if valid

    Raises:
        ConfigurationError if the name is invalid.
    """
    if not name or len(name) > 244:
        raise ConfigurationError("cluster-name must have 1 to 244 characters")
    if not CLUSTER_NAME_RE.fullmatch(name):
        raise ConfigurationError(
            f"cluster-name '{name}' is using illegal characters")
    return name


def k8s_version_validation(version):
    """Checks that ``version`` is a pinned ``MAJOR.MINOR.PATCH`` string."""
    return isinstance(version, str) and bool(VERSION_RE.match(version))


def rand_string(num):
    """
    generate a random string of len num
    """
    return ''.join([
        random.choice(string.ascii_lowercase + string.digits)
        for n in range(num)])


def generate_token():
    """Generate a bootstrap token.

    Returns:
        A string of the form ``<token id>.<token secret>``.
    """
    return ".".join((rand_string(6), rand_string(16)))


def is_kubeadm_token(token):
    """Checks if ``token`` has the ``[a-z0-9]{6}.[a-z0-9]{16}`` form"""
    return bool(TOKEN_RE.match(token or ""))


def retry(exceptions, tries=4, delay=3, backoff=2, logger=None,
          sleep=time.sleep):
    """
    Retry calling the decorated function with an exponential backoff.

    Args:
        exceptions: exception class or tuple of classes worth retrying.
        tries (int): attempts in total, the last one raises.
        delay (int): seconds to wait after the first failure.
        backoff (int): factor applied to the delay after every failure.
        logger: callable receiving the retry message, None to stay silent.
        sleep: the function used to wait between attempts.
    """
    def decorator(func):

        @wraps(func)
        def wrapper(*args, **kwargs):
            wait = delay
            for _ in range(tries - 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if logger:
                        logger(f"{exc}, Retrying in {int(wait)} seconds...")
                    sleep(wait)
                    wait *= backoff
            return func(*args, **kwargs)

        return wrapper

    return decorator
