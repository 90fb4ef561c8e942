#!/usr/bin/env python3
"""
Address block expansion

Turns a CIDR block such as 192.168.1.0/24 into the ordered list of usable
host addresses. Network and broadcast addresses are dropped for blocks with
a prefix of /30 or shorter; /31 and /32 keep every address.
"""

import ipaddress
from typing import List, Union


class AddressBlockError(ValueError):
    """The address block is not a valid IPv4 CIDR block"""


def parse_block(block: str) -> ipaddress.IPv4Network:
    """
    Parse an IPv4 CIDR block.

    Host bits are masked off, so 192.168.1.5/24 means 192.168.1.0/24.

    Raises:
        AddressBlockError: malformed block or not IPv4
    """
    try:
        network = ipaddress.ip_network(block.strip(), strict=False)
    except (ValueError, TypeError, AttributeError) as e:
        raise AddressBlockError(f"Invalid address block '{block}': {e}") from e

    if network.version != 4:
        raise AddressBlockError(f"Not an IPv4 address block: '{block}'")
    return network


def expand_block(block: Union[str, ipaddress.IPv4Network]) -> List[ipaddress.IPv4Address]:
    """Usable host addresses of a block, in ascending order"""
    if not isinstance(block, ipaddress.IPv4Network):
        block = parse_block(block)
    return list(block.hosts())
