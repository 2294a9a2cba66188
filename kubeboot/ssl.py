"""
ssl.py holds the certificate utilities of kubeboot.

kubeadm creates the cluster PKI on the node itself. These helpers compute
the CA pin workers join with and check which addresses the API server
certificate kubeadm issued is valid for.
"""
import ipaddress

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization

CA_CERT = "/etc/kubernetes/pki/ca.crt"
APISERVER_CERT = "/etc/kubernetes/pki/apiserver.crt"


def load_cert(data):
    """Load a PEM certificate from text or bytes"""
    if isinstance(data, str):
        data = data.encode()
    return x509.load_pem_x509_certificate(data, default_backend())


def read_cert(path=CA_CERT):
    """
    read SSL certificate from path

    Args:
        path (str) - path to a cert on a file system

    Return:
        cert (inst) - a certificate instance
    """
    with open(path, "rb") as fh:
        return load_cert(fh.read())


def split_sans(names):
    """Split subject alternative names into DNS names and IP addresses"""
    hosts, ips = [], []
    for name in names:
        try:
            ips.append(ipaddress.ip_address(name))
        except ValueError:
            hosts.append(name)
    return hosts, ips


def discovery_hash(cert):
    """
    calculate the kubeadm discovery hash of the cert's public key

    Workers pin the cluster CA with it, see ``ca_cert_hashes``.
    """
    pub_key = cert.public_key()
    digest = hashes.Hash(hashes.SHA256(), backend=default_backend())
    digest.update(pub_key.public_bytes(
        serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo))
    return "sha256:" + digest.finalize().hex()


def cert_sans(cert):
    """Return the DNS names and IP addresses of a certificate as strings"""
    try:
        ext = cert.extensions.get_extension_for_class(
            x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    names = ext.get_values_for_type(x509.DNSName)
    names.extend(str(ip) for ip in ext.get_values_for_type(x509.IPAddress))
    return names


def cert_matches(cert, address):
    """Check whether a client connecting to ``address`` accepts ``cert``.

    DNS names are compared case insensitively, IP addresses by value.
    Wildcards are not used by kubeadm and are not supported.
    """
    try:
        wanted = ipaddress.ip_address(address)
    except ValueError:
        wanted = None

    hosts, ips = split_sans(cert_sans(cert))
    if wanted is not None:
        return wanted in ips
    return address.rstrip(".").lower() in (h.lower() for h in hosts)
