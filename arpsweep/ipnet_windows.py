#!/usr/bin/env python3
"""
Windows IPv4 neighbor table access via Iphlpapi.dll and CFFI (ABI mode)

Calls GetIpNetTable directly:

    DWORD GetIpNetTable(
      _Out_   PMIB_IPNETTABLE pIpNetTable,
      _Inout_ PULONG          pdwSize,
      _In_    BOOL            bOrder
    );

Requirements:
    - Windows
    - cffi>=1.0.0
"""

import logging

from cffi import FFI

from arpsweep.ipnet import (
    IpNetPlatform,
    PlatformLoadError,
    QueryResult,
    classify_status,
    status_name,
)

logger = logging.getLogger(__name__)

IPHLPAPI_DLL = "Iphlpapi.dll"

ffi = FFI()
ffi.cdef("""
    typedef unsigned long DWORD;
    typedef unsigned long ULONG;
    typedef int BOOL;

    DWORD __stdcall GetIpNetTable(void* pIpNetTable, ULONG* pdwSize, BOOL bOrder);
""")


class WindowsIpNetPlatform(IpNetPlatform):
    """GetIpNetTable from the IP Helper API"""

    name = 'windows'

    def __init__(self, dll_name: str = IPHLPAPI_DLL):
        super().__init__()
        self.dll_name = dll_name

    def _open_library(self):
        try:
            lib = ffi.dlopen(self.dll_name)
        except OSError as e:
            raise PlatformLoadError(f"Failed to load {self.dll_name}: {e}") from e
        logger.debug("Loaded %s", self.dll_name)
        return lib

    def _query(self, size: int, order: bool) -> QueryResult:
        size_ptr = ffi.new("ULONG*", size)
        if size:
            buf = ffi.new("unsigned char[]", size)
        else:
            buf = ffi.NULL

        status = self._lib.GetIpNetTable(buf, size_ptr, 1 if order else 0)
        logger.debug("GetIpNetTable(size=%d) -> %s, size=%d",
                     size, status_name(status), size_ptr[0])

        data = ffi.buffer(buf, size)[:] if size else b''
        return classify_status(status, size_ptr[0], data)
