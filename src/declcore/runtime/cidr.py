"""
Network prefix arithmetic for the cidr* functions.

All arithmetic is exact integer arithmetic on addresses, for both IPv4 and
IPv6. Host bits set in the input prefix are ignored, so "10.1.2.3/16" is
treated as "10.1.0.0/16".
"""

import ipaddress
from typing import List, Sequence, Union

from ..errors import error_function_call


Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_prefix(function: str, prefix: str) -> Network:
    """Parse an address prefix in CIDR notation."""
    if "/" not in prefix:
        raise error_function_call(function, f"invalid CIDR address '{prefix}': missing prefix length")
    try:
        return ipaddress.ip_network(prefix, strict=False)
    except ValueError as exc:
        raise error_function_call(function, f"invalid CIDR address '{prefix}': {exc}") from exc


def _subnet_at(network: Network, new_length: int, number: int) -> Network:
    size_bits = network.max_prefixlen - new_length
    base = int(network.network_address) + (number << size_bits)
    return type(network)((base, new_length))


def cidrsubnet(prefix: str, newbits: int, netnum: int) -> str:
    """
    Calculate a subnet address within a prefix.

    ``newbits`` extends the prefix length; ``netnum`` picks which of the
    ``2**newbits`` subnets to return.
    """
    network = parse_prefix("cidrsubnet", prefix)
    if newbits < 0:
        raise error_function_call("cidrsubnet", f"newbits must not be negative, got {newbits}")
    new_length = network.prefixlen + newbits
    if new_length > network.max_prefixlen:
        raise error_function_call(
            "cidrsubnet",
            f"insufficient address space to extend prefix of {network.prefixlen} by {newbits}",
        )
    if netnum < 0 or netnum >= (1 << newbits):
        raise error_function_call(
            "cidrsubnet",
            f"prefix extension of {newbits} does not accommodate a subnet numbered {netnum}",
        )
    return str(_subnet_at(network, new_length, netnum))


def cidrhost(prefix: str, hostnum: int) -> str:
    """
    Calculate a full host address within a prefix.

    Negative host numbers count back from the end of the range, so -1 is
    the last address.
    """
    network = parse_prefix("cidrhost", prefix)
    size = network.num_addresses
    index = hostnum + size if hostnum < 0 else hostnum
    if index < 0 or index >= size:
        raise error_function_call(
            "cidrhost", f"prefix of {network.prefixlen} does not accommodate a host numbered {hostnum}")
    return str(network.network_address + index)


def cidrnetmask(prefix: str) -> str:
    """Dotted-decimal netmask of an IPv4 prefix."""
    network = parse_prefix("cidrnetmask", prefix)
    if network.version != 4:
        raise error_function_call("cidrnetmask", "only IPv4 prefixes have a netmask form")
    return str(network.netmask)


def cidrsubnets(prefix: str, newbits: Sequence[int]) -> List[str]:
    """
    Allocate consecutive subnets of the given sizes.

    Each subnet starts at the first address after the previous one that is
    aligned to its own size.
    """
    network = parse_prefix("cidrsubnets", prefix)
    start = int(network.network_address)
    end = start + network.num_addresses
    cursor = start
    result = []
    for position, bits in enumerate(newbits, start=1):
        if bits < 1:
            raise error_function_call(
                "cidrsubnets", f"argument {position + 1}: newbits must be at least 1, got {bits}")
        new_length = network.prefixlen + bits
        if new_length > network.max_prefixlen:
            raise error_function_call(
                "cidrsubnets",
                f"argument {position + 1}: insufficient address space to extend "
                f"prefix of {network.prefixlen} by {bits}",
            )
        block = 1 << (network.max_prefixlen - new_length)
        cursor = -(-cursor // block) * block
        if cursor + block > end:
            raise error_function_call(
                "cidrsubnets",
                f"argument {position + 1}: not enough remaining address space for a subnet "
                f"with a prefix of {new_length} bits",
            )
        result.append(str(type(network)((cursor, new_length))))
        cursor += block
    return result
