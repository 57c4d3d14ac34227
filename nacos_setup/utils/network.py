"""
Local address detection for cluster membership entries
"""
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


def _ip_from_route() -> str:
    # UDP connect sends nothing; it only asks the kernel which interface would be used
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]


def _ip_from_interfaces() -> str:
    for addresses in psutil.net_if_addrs().values():
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                return address.address
    return ""


def get_local_ip() -> str:
    """First non-loopback IPv4 address, or 127.0.0.1 when none can be found"""
    for finder in (_ip_from_route, _ip_from_interfaces):
        try:
            ip = finder()
        except OSError as e:
            logger.debug(f"Local IP lookup failed: {e}")
            continue
        if ip and not ip.startswith("127."):
            return ip

    logger.warning(f"Could not detect non-localhost IP, using {LOOPBACK}")
    return LOOPBACK
