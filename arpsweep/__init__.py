"""
arpsweep - Live host discovery from ICMP echo sweeps and the OS neighbor cache

A Python package that probes every address of an IPv4 block and then reads
the operating system's ARP table to recover the hardware address of each
live host.

Modules:
    address_range: CIDR block expansion
    echo_probe: Concurrent ICMP echo sweep
    ipnet: Neighbor table query contract, status codes and errors
    neighbor_info: Neighbor table fetch and decode
    sweep: Command-line front end

Example:
    >>> from arpsweep import neighbor_info
    >>> table = neighbor_info.NeighborTableQuery().fetch()
"""

__version__ = "1.0.0"
__author__ = "arpsweep developers"
__license__ = "MIT"

# Import main modules for convenient access
try:
    from . import ipnet
    from . import address_range
    from . import neighbor_info
    from . import echo_probe
    from . import sweep
except ImportError:
    # Modules may not be importable in all contexts (e.g., during build)
    pass

__all__ = [
    "ipnet",
    "address_range",
    "neighbor_info",
    "echo_probe",
    "sweep",
    "__version__",
]
