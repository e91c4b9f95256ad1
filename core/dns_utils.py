import aiohttp
import socket
import logging

log = logging.getLogger(__name__)


def get_connector(limit: int = 20, force_ipv4: bool = False) -> aiohttp.TCPConnector:
    """
    TCPConnector for backend requests.

    Uses the threaded resolver (no aiodns). force_ipv4 pins AF_INET for hosts
    whose IPv6 route hangs.
    """
    family = socket.AF_INET if force_ipv4 else 0
    log.debug(f"[BACKEND] connector limit={limit} ipv4_only={force_ipv4}")
    return aiohttp.TCPConnector(
        limit=limit,
        resolver=aiohttp.ThreadedResolver(),
        family=family,
        ttl_dns_cache=300,
    )
