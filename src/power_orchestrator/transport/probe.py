"""
Reachability probes.

A TCP connect against a known management port runs before any session is
opened. It lets the audit trail tell "host unreachable" apart from
"authentication failed".
"""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)


def tcp_probe(host: str, port: int, timeout: float = 5.0) -> bool:
    """Return True when a TCP connection to host:port can be established."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as exc:
        logger.debug("tcp probe %s:%s failed: %s", host, port, exc)
        return False


def split_endpoint(endpoint: str, default_port: int) -> tuple[str, int]:
    """
    Split host:port into its parts.

    Bare hostnames and IPv4 addresses use default_port.
    Bracketed IPv6 literals are accepted as [addr]:port.
    """
    if endpoint.startswith("["):
        host, _, rest = endpoint[1:].partition("]")
        if rest.startswith(":") and rest[1:].isdigit():
            return host, int(rest[1:])
        return host, default_port

    if endpoint.count(":") == 1:
        host, _, port = endpoint.partition(":")
        if port.isdigit():
            return host, int(port)

    return endpoint, default_port
