"""Contains utility functions for network stuff"""

from netaddr import IPNetwork, valid_ipv4, valid_ipv6
from netaddr.core import AddrFormatError


def is_port(port):
    """Checks if a port is valid"""

    return isinstance(port, int) and 0 <= port <= 65535


def is_ip(ip):
    """Checks if an IP is a valid IPv4 or IPv6 address"""

    return valid_ipv4(ip) or valid_ipv6(ip)


def is_cidr(cidr):
    """Checks if cidr is a network in CIDR notation, e.g. 192.168.0.0/16"""

    if not isinstance(cidr, str) or "/" not in cidr:
        return False

    try:
        net = IPNetwork(cidr)
    except (AddrFormatError, ValueError):
        return False

    return str(net.cidr) == cidr


def parse_route_src(output):
    """Extract the source address from the output of ``ip route get``.

    Example:
        >>> parse_route_src("8.8.8.8 via 10.0.0.1 dev eth0 src 10.0.0.5 uid 0")
        '10.0.0.5'

    Returns:
        The address or an empty string.
    """
    fields = output.split()
    for idx, field in enumerate(fields[:-1]):
        if field == "src" and valid_ipv4(fields[idx + 1]):
            return fields[idx + 1]
    return ""
