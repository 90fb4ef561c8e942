#!/usr/bin/env python3
"""
ICMP echo sweep

Sends one echo request to every address of a block so the OS resolves the
hardware address of each live host into its neighbor cache. Replies are not
read; the neighbor table is the result.

Each probe opens its own socket, sends, and closes it. Probes run
concurrently and a failure for one address never stops the others.

Requirements:
    - scapy (packet construction)
    - Raw socket privileges, or on Linux an unprivileged ICMP socket
      (net.ipv4.ping_group_range) with unprivileged=True
"""

import os
import socket
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, NamedTuple, Optional

from scapy.layers.inet import ICMP
from scapy.packet import Raw

logger = logging.getLogger(__name__)

# Defaults
DEFAULT_TIMEOUT = 1.0
DEFAULT_WORKERS = 64
DEFAULT_PAYLOAD = b'hello'

ICMP_ECHO_REQUEST = 8


class ProbeError(OSError):
    """An echo request could not be sent"""


class ProbeResult(NamedTuple):
    """Outcome of one probe"""
    address: str
    sent: bool
    error: Optional[str] = None


def build_echo_request(identifier: int = 1, sequence: int = 1,
                       payload: bytes = DEFAULT_PAYLOAD) -> bytes:
    """ICMP echo request bytes, checksum filled in"""
    packet = ICMP(type=ICMP_ECHO_REQUEST, code=0,
                  id=identifier & 0xFFFF, seq=sequence & 0xFFFF) / Raw(load=payload)
    return bytes(packet)


def send_echo(address: str, timeout: float = DEFAULT_TIMEOUT,
              unprivileged: bool = False, payload: bytes = DEFAULT_PAYLOAD) -> None:
    """
    Send one echo request to `address`.

    Args:
        address: IPv4 address
        timeout: Socket timeout in seconds
        unprivileged: Use a datagram ICMP socket instead of a raw one
        payload: Echo data

    Raises:
        ProbeError: the request could not be sent
    """
    sock_type = socket.SOCK_DGRAM if unprivileged else socket.SOCK_RAW
    message = build_echo_request(identifier=os.getpid(), payload=payload)

    try:
        with socket.socket(socket.AF_INET, sock_type, socket.IPPROTO_ICMP) as sock:
            sock.settimeout(timeout)
            sent = sock.sendto(message, (str(address), 0))
    except OSError as e:
        raise ProbeError(f"{address}: {e}") from e

    if sent != len(message):
        raise ProbeError(f"{address}: sent {sent} of {len(message)} bytes")


class EchoProber:
    """
    Concurrent echo sweep.

    Example:
        prober = EchoProber(timeout=0.5)
        results = prober.sweep(expand_block('192.168.1.0/24'))
    """

    def __init__(self, workers: int = DEFAULT_WORKERS, timeout: float = DEFAULT_TIMEOUT,
                 unprivileged: bool = False,
                 sender: Optional[Callable[..., None]] = None):
        """
        Initialize prober.

        Args:
            workers: Maximum concurrent probes
            timeout: Per-probe socket timeout in seconds
            unprivileged: Use datagram ICMP sockets
            sender: Replacement for send_echo (same signature)
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1: {workers}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive: {timeout}")
        self.workers = workers
        self.timeout = timeout
        self.unprivileged = unprivileged
        self.sender = sender if sender is not None else send_echo

    def probe(self, address) -> ProbeResult:
        """Probe one address; failures are returned, not raised"""
        address = str(address)
        try:
            self.sender(address, timeout=self.timeout, unprivileged=self.unprivileged)
        except Exception as e:
            logger.debug("Probe failed for %s: %s", address, e)
            return ProbeResult(address, False, str(e))
        return ProbeResult(address, True)

    def sweep(self, addresses: Iterable) -> List[ProbeResult]:
        """
        Probe every address and wait for all probes to finish.

        Returns:
            One ProbeResult per address, in input order
        """
        addresses = list(addresses)
        if not addresses:
            return []

        workers = min(self.workers, len(addresses))
        logger.info("Probing %d addresses with %d workers", len(addresses), workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self.probe, addresses))

        failures = sum(1 for r in results if not r.sent)
        if failures:
            logger.info("%d of %d probes failed", failures, len(results))
        return results
