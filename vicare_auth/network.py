"""Local network helpers for the redirect listener."""

import logging
import socket

logger = logging.getLogger(__name__)

# Any routable address works; a UDP connect() sends no packets
_PROBE_ADDRESS = ("10.255.255.255", 1)


def detect_local_address() -> str | None:
    """Find the LAN IPv4 address of this machine.

    The redirect URI must be reachable from the browser that completes the
    authorization, which often runs on another device in the same network,
    so the loopback address is only used as a last resort.

    Returns:
        The detected IPv4 address, or None if nothing usable was found
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(_PROBE_ADDRESS)
            address: str = s.getsockname()[0]
            if address and not address.startswith("0."):
                return address
    except OSError as e:
        logger.debug(f"Route probe for local address failed: {e}")

    try:
        address = socket.gethostbyname(socket.gethostname())
    except OSError as e:
        logger.warning(f"Could not detect local address: {e}")
        return None

    if address.startswith("127."):
        logger.warning(
            f"Only found loopback address {address}; "
            f"authorization must be completed on this machine"
        )
    return address or None
