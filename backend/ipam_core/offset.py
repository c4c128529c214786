"""
Gateway placement at a signed offset inside a block.
"""
from typing import Optional

from .codec import int_to_address, max_value
from .exceptions import OffsetOutOfRangeError


def resolve_offset(block_start: int, block_size: int, offset: int, width: int) -> Optional[int]:
    """
    Address at `offset` from the block start (offset > 0) or end (offset < 0).

    0 means no gateway and returns None. A negative offset counts back from
    the end: -1 is the last address of the block.
    """
    if offset == 0:
        return None

    if offset > 0:
        address = block_start + offset
    else:
        address = block_start + block_size - abs(offset)

    last = block_start + block_size - 1
    if address < block_start or address > last or address > max_value(width):
        raise OffsetOutOfRangeError(offset, _describe(block_start, width), block_size)
    return address


def _describe(block_start: int, width: int) -> str:
    if 0 <= block_start <= max_value(width):
        return int_to_address(block_start, width)
    return str(block_start)
