#!/usr/bin/env python3
"""
IPv4 Neighbor Table (ARP cache) Query

Reads the operating system's IPv4 neighbor cache through the IP Helper style
two-step query and decodes the returned buffer into typed entries:
- Interface index and name
- Hardware (MAC) address, exactly as many bytes as the OS declares
- IPv4 address
- Entry type (OTHER, INVALID, DYNAMIC, STATIC, or UNKNOWN)

Entry Types Explained:
- OTHER: Type the OS does not classify further
- INVALID: Unresolved or failed entry (incomplete ARP resolution)
- DYNAMIC: Learned by ARP, ages out
- STATIC: Configured by hand, never expires
- UNKNOWN: Type code outside the documented set (kept, never rejected)

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - Windows, or Linux with a C compiler for the netlink helper

Usage:
    python3 neighbor_info.py                    # Full JSON output
    python3 neighbor_info.py --summary          # Human-readable summary
    python3 neighbor_info.py --no-sort          # Keep the OS's row order
    python3 neighbor_info.py -d eth0            # Filter by device/interface
    python3 neighbor_info.py --type dynamic     # Filter by entry type
"""

import sys
import json
import enum
import socket
import struct
import logging
import ipaddress
from collections.abc import Sequence
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from arpsweep.ipnet import (
    ADDR_OFFSET,
    ERROR_INSUFFICIENT_BUFFER,
    HEADER_SIZE,
    INDEX_OFFSET,
    MAXLEN_PHYSADDR,
    PHYS_ADDR_OFFSET,
    PHYS_LEN_OFFSET,
    ROW_SIZE,
    TYPE_OFFSET,
    Failed,
    IpNetPlatform,
    NeedsLargerBuffer,
    NeighborDecodeError,
    NeighborFetchError,
    NeighborProtocolError,
    NeighborTableError,
    Ready,
    platform_for,
    status_name,
)

logger = logging.getLogger(__name__)


class RowType(enum.IntEnum):
    """MIB_IPNET_TYPE values, plus UNKNOWN for anything else"""
    UNKNOWN = 0
    OTHER = 1
    INVALID = 2
    DYNAMIC = 3
    STATIC = 4

    @classmethod
    def from_code(cls, code: int) -> 'RowType':
        """Map a raw type code; codes outside 1-4 become UNKNOWN"""
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


def format_mac(hardware_address: bytes) -> str:
    """Colon separated lowercase hex, '' for an empty address"""
    return ':'.join(f'{b:02x}' for b in hardware_address)


def interface_name(index: int) -> str:
    """Interface name for an index, or 'if<index>' when it cannot be resolved"""
    try:
        return socket.if_indextoname(index)
    except (OSError, OverflowError, AttributeError):
        return f'if{index}'


class NeighborEntry(NamedTuple):
    """One IPv4 to hardware address mapping"""
    index: int
    hardware_address: bytes
    ip_address: ipaddress.IPv4Address
    entry_type: RowType
    type_code: int

    @property
    def mac(self) -> str:
        return format_mac(self.hardware_address)

    @property
    def ifname(self) -> str:
        return interface_name(self.index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ifindex': self.index,
            'ifname': self.ifname,
            'dst': str(self.ip_address),
            'lladdr': self.mac,
            'lladdr_len': len(self.hardware_address),
            'type': self.type_code,
            'type_name': self.entry_type.name,
        }

    def __str__(self) -> str:
        return f'{self.mac}: {self.ip_address}'


class NeighborTable(Sequence):
    """
    Immutable, ordered collection of NeighborEntry.

    Rows keep the order the OS returned them in. The same IPv4 address may
    appear more than once.
    """

    __slots__ = ('_entries',)

    def __init__(self, entries: Iterable[NeighborEntry] = ()):
        self._entries = tuple(entries)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return NeighborTable(self._entries[item])
        return self._entries[item]

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        if isinstance(other, NeighborTable):
            return self._entries == other._entries
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f'NeighborTable({list(self._entries)!r})'

    def within(self, network: ipaddress.IPv4Network) -> 'NeighborTable':
        """Entries whose IPv4 address lies inside `network`, order preserved"""
        return NeighborTable(e for e in self._entries if e.ip_address in network)

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]


# ============================================================================
# Decoding
# ============================================================================

def decode_row(row: bytes) -> NeighborEntry:
    """
    Decode one MIB_IPNETROW.

    Args:
        row: Exactly ROW_SIZE bytes

    Returns:
        NeighborEntry

    Raises:
        NeighborDecodeError: wrong row size or hardware address length
            outside the 8-byte field
    """
    if len(row) != ROW_SIZE:
        raise NeighborDecodeError(
            f"Row is {len(row)} bytes, expected {ROW_SIZE}")

    index, = struct.unpack_from('<i', row, INDEX_OFFSET)
    phys_len, = struct.unpack_from('<i', row, PHYS_LEN_OFFSET)
    if phys_len > MAXLEN_PHYSADDR:
        raise NeighborDecodeError(
            f"Physical address length {phys_len} exceeds {MAXLEN_PHYSADDR} bytes")
    # A DWORD of 2**31 or more reads back negative
    if phys_len < 0:
        raise NeighborDecodeError(
            f"Physical address length {phys_len} is outside 0..{MAXLEN_PHYSADDR}")

    hardware_address = bytes(row[PHYS_ADDR_OFFSET:PHYS_ADDR_OFFSET + phys_len])
    # dwAddr is stored in network byte order
    ip_address = ipaddress.IPv4Address(bytes(row[ADDR_OFFSET:ADDR_OFFSET + 4]))
    type_code, = struct.unpack_from('<i', row, TYPE_OFFSET)

    return NeighborEntry(
        index=index,
        hardware_address=hardware_address,
        ip_address=ip_address,
        entry_type=RowType.from_code(type_code),
        type_code=type_code,
    )


def decode_table(data: bytes) -> NeighborTable:
    """
    Decode a whole MIB_IPNETTABLE buffer.

    Only the row count header and the real buffer length are trusted. Nothing
    is returned unless every row decodes.

    Raises:
        NeighborDecodeError: buffer shorter than its header implies, or a
            row fails to decode
    """
    if len(data) < HEADER_SIZE:
        raise NeighborDecodeError(
            f"Buffer is {len(data)} bytes, too short for the row count")

    count, = struct.unpack_from('<I', data, 0)
    needed = HEADER_SIZE + count * ROW_SIZE
    if len(data) < needed:
        raise NeighborDecodeError(
            f"Header declares {count} rows ({needed} bytes) "
            f"but buffer is {len(data)} bytes")

    view = memoryview(data)
    entries = []
    for i in range(count):
        offset = HEADER_SIZE + i * ROW_SIZE
        entries.append(decode_row(view[offset:offset + ROW_SIZE]))

    return NeighborTable(entries)


# ============================================================================
# Fetching
# ============================================================================

class NeighborTableQuery:
    """
    Query the IPv4 neighbor table.

    Can be used with context manager or direct calls:
        # Option 1: Context manager (platform loaded on entry)
        with NeighborTableQuery() as ntq:
            table = ntq.fetch()

        # Option 2: Direct call (platform loaded on first use)
        table = NeighborTableQuery().fetch()

        # Option 3: Substitute platform (tests, other OS backends)
        table = NeighborTableQuery(platform=my_platform).fetch()
    """

    def __init__(self, platform: Optional[IpNetPlatform] = None, order: bool = True):
        """
        Initialize neighbor table query.

        Args:
            platform: Backend to query (defaults to the one for this OS)
            order: Ask the OS to sort rows by IPv4 address
        """
        self.platform = platform if platform is not None else platform_for()
        self.order = order

    def open(self):
        """Explicitly load the platform library"""
        self.platform.load()

    def close(self):
        """Release the platform library"""
        self.platform.unload()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def fetch(self) -> NeighborTable:
        """
        Fetch and decode the current neighbor table.

        First asks for the required buffer size with an empty buffer, then
        queries again with a buffer of exactly that size. If the cache grows
        between the two calls the second call fails and the whole fetch fails;
        callers may retry.

        Returns:
            A new NeighborTable

        Raises:
            NeighborProtocolError: size probe did not report a required size
            NeighborFetchError: data query failed
            NeighborDecodeError: returned buffer is inconsistent
        """
        probe = self.platform.get_ip_net_table(0, self.order)
        if isinstance(probe, Failed):
            raise NeighborProtocolError(
                f"Size query failed with {status_name(probe.code)} ({probe.code})",
                status=probe.code)
        if isinstance(probe, Ready):
            raise NeighborProtocolError(
                f"Size query returned {status_name(probe.status)} ({probe.status}); "
                "expected ERROR_INSUFFICIENT_BUFFER",
                status=probe.status)
        if not isinstance(probe, NeedsLargerBuffer):
            raise NeighborProtocolError(f"Unexpected size query result: {probe!r}")

        logger.debug("Neighbor table needs %d bytes", probe.size)

        result = self.platform.get_ip_net_table(probe.size, self.order)
        if isinstance(result, NeedsLargerBuffer):
            logger.debug("Neighbor table grew to %d bytes between queries", result.size)
            raise NeighborFetchError(ERROR_INSUFFICIENT_BUFFER)
        if isinstance(result, Failed):
            raise NeighborFetchError(result.code)
        if not isinstance(result, Ready):
            raise NeighborTableError(f"Unexpected query result: {result!r}")

        table = decode_table(result.data)
        logger.debug("Decoded %d neighbor entries", len(table))
        return table

    def get_neighbors(self) -> List[Dict[str, Any]]:
        """Fetch the table as a list of JSON-ready dictionaries"""
        return self.fetch().to_list()


def main():
    """Main entry point for the command."""
    import argparse

    parser = argparse.ArgumentParser(description='IPv4 Neighbor Table Query Tool (ARP)')
    parser.add_argument('--summary', '-t', '--text', action='store_true',
                        help='Show human-readable summary')
    parser.add_argument('--no-sort', action='store_true',
                        help='Keep the order the OS returns rows in')
    parser.add_argument('-d', '--device', '--interface',
                        type=str,
                        dest='device',
                        metavar='DEVICE',
                        help='Filter by device/interface name (e.g., eth0)')
    parser.add_argument('--type',
                        dest='entry_type',
                        choices=[t.name.lower() for t in RowType],
                        help='Filter by entry type')
    parser.add_argument('-j', '--json', action='store_true',
                        help='Output in pure JSON format (default)')
    parser.add_argument('--debug', action='store_true',
                        help='Log query steps to stderr')

    args = parser.parse_args()
    if args.json and args.summary:
        parser.error('--summary is not allowed with -j or --json')

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        with NeighborTableQuery(order=not args.no_sort) as ntq:
            table = ntq.fetch()
    except NeighborTableError as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1

    entries = list(table)
    if args.device:
        entries = [e for e in entries if e.ifname == args.device]
    if args.entry_type:
        entries = [e for e in entries if e.entry_type.name.lower() == args.entry_type]

    if args.summary:
        print(f'\nFound {len(entries)} neighbor entries:')
        print('=' * 70)
        for entry in entries:
            mac = entry.mac or 'N/A'
            print(f'  {str(entry.ip_address):16s} -> {mac:23s}  '
                  f'[{entry.entry_type.name:8s}] on {entry.ifname}')
    else:
        print(json.dumps([e.to_dict() for e in entries], indent=2))

    return 0


if __name__ == '__main__':
    sys.exit(main())
