"""
Address codec: human notation <-> fixed-width hex wire form <-> integers.

Widths are in bits (32 for IPv4, 128 for IPv6). Python ints are arbitrary
precision, so the 128-bit path never truncates; every conversion back to an
address checks the value against the width instead of wrapping.
"""
import ipaddress
from typing import Union

from .exceptions import ValidationError

IPV4_WIDTH = 32
IPV6_WIDTH = 128

_WIDTHS = {4: IPV4_WIDTH, 6: IPV6_WIDTH}


def width_for_version(version: int) -> int:
    try:
        return _WIDTHS[version]
    except KeyError:
        raise ValidationError(f"Unsupported IP version: {version}", {"version": version})


def width_of(address: str) -> int:
    """Width of a human-notation address."""
    try:
        return width_for_version(ipaddress.ip_address(address).version)
    except ValueError:
        raise ValidationError(f"Invalid IP address: {address}", {"address": address})


def _check_width(width: int):
    if width not in (IPV4_WIDTH, IPV6_WIDTH):
        raise ValidationError(f"Unsupported address width: {width}", {"width": width})


def max_value(width: int) -> int:
    _check_width(width)
    return (1 << width) - 1


def address_to_int(address: str, width: int) -> int:
    _check_width(width)
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        raise ValidationError(f"Invalid IP address: {address}", {"address": address})
    if ip.max_prefixlen != width:
        raise ValidationError(
            f"Address {address} is not a {width}-bit address",
            {"address": address, "width": width}
        )
    return int(ip)


def int_to_address(value: int, width: int) -> str:
    """Inverse of address_to_int. Rejects values that do not fit the width."""
    if value < 0 or value > max_value(width):
        raise ValidationError(
            f"Value {value} overflows a {width}-bit address",
            {"value": value, "width": width}
        )
    if width == IPV4_WIDTH:
        return str(ipaddress.IPv4Address(value))
    return str(ipaddress.IPv6Address(value))


def int_to_wire(value: int, width: int) -> str:
    if value < 0 or value > max_value(width):
        raise ValidationError(
            f"Value {value} overflows a {width}-bit address",
            {"value": value, "width": width}
        )
    return format(value, f"0{width // 4}x")


def wire_to_int(wire: str, width: int) -> int:
    _check_width(width)
    if len(wire) != width // 4:
        raise ValidationError(
            f"Wire address {wire!r} must be {width // 4} hex digits",
            {"wire": wire, "width": width}
        )
    try:
        return int(wire, 16)
    except ValueError:
        raise ValidationError(f"Invalid wire address: {wire!r}", {"wire": wire})


def to_wire(address: str, width: int) -> str:
    """'10.0.0.1' -> '0a000001'; IPv6 addresses give 32 hex digits."""
    return int_to_wire(address_to_int(address, width), width)


def from_wire(wire: str, width: int) -> str:
    return int_to_address(wire_to_int(wire, width), width)


def _check_prefix(prefix_length: int, width: int):
    _check_width(width)
    if not 0 <= prefix_length <= width:
        raise ValidationError(
            f"Prefix length {prefix_length} out of range for a {width}-bit address",
            {"prefix_length": prefix_length, "width": width}
        )


def prefix_to_size(prefix_length: int, width: int) -> int:
    _check_prefix(prefix_length, width)
    return 1 << (width - prefix_length)


def size_to_prefix(size: int, width: int) -> int:
    """Inverse of prefix_to_size; size must be an exact power of two."""
    _check_width(width)
    if size <= 0 or size & (size - 1):
        raise ValidationError(f"Block size {size} is not a power of two", {"size": size})
    prefix_length = width - (size.bit_length() - 1)
    if prefix_length < 0:
        raise ValidationError(
            f"Block size {size} exceeds a {width}-bit address space",
            {"size": size, "width": width}
        )
    return prefix_length


def prefix_to_netmask(prefix_length: int) -> str:
    """IPv4 only: 24 -> '255.255.255.0'."""
    _check_prefix(prefix_length, IPV4_WIDTH)
    host_bits = (1 << (IPV4_WIDTH - prefix_length)) - 1
    return int_to_address(max_value(IPV4_WIDTH) ^ host_bits, IPV4_WIDTH)


def netmask_to_prefix(netmask: str) -> int:
    mask = address_to_int(netmask, IPV4_WIDTH)
    inverted = max_value(IPV4_WIDTH) ^ mask
    if inverted & (inverted + 1):
        raise ValidationError(f"Non-contiguous netmask: {netmask}", {"netmask": netmask})
    return IPV4_WIDTH - inverted.bit_length()


def is_aligned(start: int, size: int) -> bool:
    return start % size == 0


def format_prefix(start: Union[int, str], prefix_length: int, width: int) -> str:
    """'10.0.0.0/24' from an integer or wire start."""
    if isinstance(start, str):
        start = wire_to_int(start, width)
    return f"{int_to_address(start, width)}/{prefix_length}"
