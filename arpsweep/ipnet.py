#!/usr/bin/env python3
"""
IP Helper neighbor table contract shared by every platform backend.

The operating system hands back the IPv4 neighbor cache (ARP table) as one
opaque buffer laid out like the Windows MIB_IPNETTABLE structure:

    offset 0   DWORD  dwNumEntries        (little-endian row count)
    offset 4   MIB_IPNETROW table[count]  (24 bytes per row)

Each MIB_IPNETROW is:

    offset 0   DWORD  dwIndex             interface index
    offset 4   DWORD  dwPhysAddrLen       valid bytes in bPhysAddr
    offset 8   BYTE   bPhysAddr[8]        hardware address
    offset 16  DWORD  dwAddr              IPv4 address, network byte order
    offset 20  DWORD  dwType              1=other 2=invalid 3=dynamic 4=static

The buffer size is unknown up front. A query with a too-small buffer fails
with ERROR_INSUFFICIENT_BUFFER and reports the size it needs, so every
backend exposes the same two-step query and the raw status codes are turned
into tagged results here, in one place.
"""

import sys
import struct
from typing import NamedTuple, Optional, Union

# Status codes (winerror.h values; the Linux backend reuses them)
NO_ERROR = 0
ERROR_GEN_FAILURE = 0x1F
ERROR_NOT_SUPPORTED = 0x32
ERROR_INVALID_PARAMETER = 0x57
ERROR_INSUFFICIENT_BUFFER = 0x7A
ERROR_NO_DATA = 0xE8

STATUS_NAMES = {
    NO_ERROR: 'NO_ERROR',
    ERROR_GEN_FAILURE: 'ERROR_GEN_FAILURE',
    ERROR_NOT_SUPPORTED: 'ERROR_NOT_SUPPORTED',
    ERROR_INVALID_PARAMETER: 'ERROR_INVALID_PARAMETER',
    ERROR_INSUFFICIENT_BUFFER: 'ERROR_INSUFFICIENT_BUFFER',
    ERROR_NO_DATA: 'ERROR_NO_DATA',
}

# Buffer layout
MAXLEN_PHYSADDR = 8
HEADER_SIZE = 4
ROW_SIZE = 24

INDEX_OFFSET = 0
PHYS_LEN_OFFSET = 4
PHYS_ADDR_OFFSET = 8
ADDR_OFFSET = 16
TYPE_OFFSET = 20

# A table with zero rows
EMPTY_TABLE = struct.pack('<I', 0)


def status_name(status: int) -> str:
    """Readable name for a status code"""
    return STATUS_NAMES.get(status, f'STATUS_{status:#x}')


# ============================================================================
# Errors
# ============================================================================

class NeighborTableError(RuntimeError):
    """Base class for every neighbor table fetch failure"""


class PlatformNotSupportedError(NeighborTableError):
    """No neighbor table backend exists for this operating system"""


class PlatformLoadError(NeighborTableError):
    """The native library could not be opened or built"""


class NeighborProtocolError(NeighborTableError):
    """The size probe did not answer with ERROR_INSUFFICIENT_BUFFER"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NeighborFetchError(NeighborTableError):
    """The data query returned a status other than success or no-data"""

    def __init__(self, status: int):
        super().__init__(
            f"GetIpNetTable failed with {status_name(status)} ({status})")
        self.status = status


class NeighborDecodeError(NeighborTableError):
    """The returned buffer does not hold what its header declares"""


# ============================================================================
# Tagged query results
# ============================================================================

class NeedsLargerBuffer(NamedTuple):
    """The destination buffer was too small; `size` bytes are required"""
    size: int


class Ready(NamedTuple):
    """
    The query succeeded; `data` holds the raw table buffer.

    `status` is NO_ERROR, or ERROR_NO_DATA when the cache is empty and
    `data` is the synthesized zero-row table.
    """
    data: bytes
    status: int = NO_ERROR


class Failed(NamedTuple):
    """The query failed with a status code that has no special meaning"""
    code: int


QueryResult = Union[NeedsLargerBuffer, Ready, Failed]


def classify_status(status: int, required_size: int, data: bytes = b'') -> QueryResult:
    """
    Turn a raw status code into a tagged result.

    Args:
        status: Status code returned by the query primitive
        required_size: Buffer size reported back through the in/out size cell
        data: Destination buffer contents after the call

    Returns:
        NeedsLargerBuffer, Ready or Failed
    """
    if status == ERROR_INSUFFICIENT_BUFFER:
        return NeedsLargerBuffer(int(required_size))
    if status == NO_ERROR:
        return Ready(bytes(data))
    if status == ERROR_NO_DATA:
        # The cache is legitimately empty
        return Ready(EMPTY_TABLE, ERROR_NO_DATA)
    return Failed(int(status))


# ============================================================================
# Platform access
# ============================================================================

class IpNetPlatform:
    """
    Access to one operating system's neighbor table query.

    Construct explicitly and pass to NeighborTableQuery. Native resources are
    acquired once, by load(), on first use or when called directly; nothing
    is shared between instances.
    """

    name = 'abstract'

    def __init__(self):
        self._lib = None

    @property
    def loaded(self) -> bool:
        return self._lib is not None

    def load(self):
        """Acquire the native library. Safe to call more than once."""
        if self._lib is None:
            self._lib = self._open_library()
        return self

    def unload(self):
        """Drop the native library reference"""
        self._lib = None

    def _open_library(self):
        raise NotImplementedError

    def _query(self, size: int, order: bool) -> QueryResult:
        raise NotImplementedError

    def get_ip_net_table(self, size: int, order: bool = True) -> QueryResult:
        """
        Run one neighbor table query.

        Args:
            size: Destination buffer size in bytes (0 asks for the size only)
            order: Ask the OS to sort rows by IPv4 address

        Returns:
            Tagged query result
        """
        if size < 0:
            raise ValueError(f"buffer size must not be negative: {size}")
        self.load()
        return self._query(size, order)


def platform_for(name: Optional[str] = None) -> IpNetPlatform:
    """
    Construct the neighbor table backend for an OS.

    Args:
        name: sys.platform style name (defaults to the running OS)

    Returns:
        A new, not yet loaded, IpNetPlatform
    """
    name = sys.platform if name is None else name

    if name == 'win32':
        from arpsweep.ipnet_windows import WindowsIpNetPlatform
        return WindowsIpNetPlatform()
    if name.startswith('linux'):
        from arpsweep.ipnet_linux import LinuxIpNetPlatform
        return LinuxIpNetPlatform()

    raise PlatformNotSupportedError(
        f"No neighbor table backend for platform '{name}'")
