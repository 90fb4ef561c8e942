#!/usr/bin/env python3
"""
arpsweep - Live host discovery on one address block

Sends an ICMP echo request to every usable address of a CIDR block so the OS
resolves each live host's hardware address, then reads the OS neighbor cache
(ARP table) and reports the entries that fall inside the block.

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - scapy
    - Administrator/root access for raw ICMP sockets (or --unprivileged)

Usage:
    sudo arpsweep 192.168.1.0/24              # Sweep, then print "mac: ip" lines
    sudo arpsweep 192.168.1.0/24 --json       # Same as JSON
    arpsweep 192.168.1.0/24 --no-probe        # Read the cache only
    arpsweep --version                        # Show version
"""

import sys
import json
import logging
import argparse
import ipaddress
from typing import Any, Dict, Optional

from arpsweep import __version__
from arpsweep.address_range import AddressBlockError, expand_block, parse_block
from arpsweep.echo_probe import DEFAULT_TIMEOUT, DEFAULT_WORKERS, EchoProber
from arpsweep.ipnet import NeighborTableError
from arpsweep.neighbor_info import NeighborTableQuery

logger = logging.getLogger(__name__)


def get_version() -> str:
    """Get arpsweep version"""
    return __version__


def run_sweep(network: ipaddress.IPv4Network,
              prober: Optional[EchoProber] = None,
              query: Optional[NeighborTableQuery] = None,
              restrict: bool = True) -> Dict[str, Any]:
    """
    Probe a block and collect the neighbor entries it produced.

    Args:
        network: Block to sweep
        prober: Prober to use, or None to skip probing
        query: Neighbor table query (defaults to this OS's backend)
        restrict: Only report entries inside `network`

    Returns:
        Dictionary with the block, probe outcome and neighbor entries

    Raises:
        NeighborTableError: the neighbor table could not be read
    """
    addresses = expand_block(network)
    result = {
        'cidr': str(network),
        'probed': 0,
        'probe_failures': [],
    }

    if prober is not None:
        probes = prober.sweep(addresses)
        result['probed'] = len(probes)
        result['probe_failures'] = [
            {'address': p.address, 'error': p.error} for p in probes if not p.sent
        ]

    query = query if query is not None else NeighborTableQuery()
    with query:
        table = query.fetch()

    if restrict:
        table = table.within(network)
    logger.info("%d neighbor entries for %s", len(table), network)

    result['table'] = table
    return result


def main() -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog='arpsweep',
        description='Discover live hosts on an address block via ICMP echo and the ARP cache',
        epilog='Note: Run with administrator/root privileges for raw ICMP sockets',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('cidr',
                        help='Address block in CIDR notation (e.g., 192.168.1.0/24)')

    parser.add_argument('--version', '-v', action='version',
                        version=f'arpsweep {get_version()}')

    parser.add_argument('--json', '-j', action='store_true',
                        help='JSON output (default: "mac: ip" lines)')

    parser.add_argument('--compact', '-c', action='store_true',
                        help='Compact JSON output (default: pretty-print)')

    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                        metavar='SECONDS',
                        help=f'Per-probe socket timeout (default: {DEFAULT_TIMEOUT})')

    parser.add_argument('--workers', type=int, default=DEFAULT_WORKERS,
                        metavar='N',
                        help=f'Concurrent probes (default: {DEFAULT_WORKERS})')

    parser.add_argument('--unprivileged', action='store_true',
                        help='Use datagram ICMP sockets (Linux ping_group_range)')

    parser.add_argument('--no-probe', action='store_true',
                        help='Skip the echo sweep and read the neighbor table only')

    parser.add_argument('--no-sort', action='store_true',
                        help='Keep the order the OS returns rows in')

    parser.add_argument('--all', '-a', action='store_true',
                        help='Report every neighbor entry, not just those in the block')

    parser.add_argument('--debug', action='store_true',
                        help='Debug logging on stderr')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        network = parse_block(args.cidr)
    except AddressBlockError as e:
        print(f"Error: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 2

    try:
        prober = None
        if not args.no_probe:
            prober = EchoProber(workers=args.workers, timeout=args.timeout,
                                unprivileged=args.unprivileged)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        result = run_sweep(network,
                           prober=prober,
                           query=NeighborTableQuery(order=not args.no_sort),
                           restrict=not args.all)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except NeighborTableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    table = result.pop('table')

    if args.json:
        result['neighbors'] = table.to_list()
        result['_metadata'] = {
            'version': get_version(),
            'python_version': f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        }
        if not args.compact:
            print(json.dumps(result, indent=2, sort_keys=False))
        else:
            print(json.dumps(result, separators=(',', ':')))
    else:
        for entry in table:
            print(entry)

    return 0


if __name__ == '__main__':
    sys.exit(main())
