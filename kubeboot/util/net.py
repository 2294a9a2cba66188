"""Contains utility functions for network stuff"""

from netaddr import IPNetwork, valid_ipv4, valid_ipv6
from netaddr.core import AddrFormatError

from kubeboot.errors import ConfigurationError


def is_port(port):
    """Checks if a port is valid"""

    return isinstance(port, int) and 0 < port <= 65535


def is_ip(ip):
    """Checks if an IP is a valid IPv4 or IPv6 address"""

    return valid_ipv4(ip) or valid_ipv6(ip)


def parse_cidr(cidr, name="network"):
    """Parses a CIDR string into a :class:`netaddr.IPNetwork`.

    A CIDR with host bits set (e.g. ``10.96.0.1/12``) is rejected, because
    kubeadm refuses it as well.

    Raises:
        ConfigurationError if ``cidr`` is not a network address.
    """
    if not cidr or "/" not in str(cidr):
        raise ConfigurationError(f"{name} '{cidr}' is not a CIDR")
    try:
        net = IPNetwork(cidr)
    except (AddrFormatError, ValueError, TypeError) as exc:
        raise ConfigurationError(f"{name} '{cidr}' is not a CIDR: {exc}")

    if net.ip != net.network:
        raise ConfigurationError(
            f"{name} '{cidr}' has host bits set, use {net.cidr}")
    return net


def cidrs_overlap(first, second):
    """Checks if two CIDR ranges share any address"""
    first, second = parse_cidr(first), parse_cidr(second)
    return first.first <= second.last and second.first <= first.last
