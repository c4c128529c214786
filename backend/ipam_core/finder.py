"""
Candidate finder: asks the inventory for free space and returns an ordered
list of candidates. Nothing is reserved here; the list is a hint that can go
stale as soon as another caller reserves from it.
"""
from typing import List, Optional

from .codec import address_to_int, is_aligned, size_to_prefix
from .exceptions import NoFreeSpaceError, ValidationError
from .inventory import BlockInfo, Inventory
from .logger import log_operation

DEFAULT_MAX_CANDIDATES = 16
VLAN_MIN = 1
VLAN_MAX = 4094


def find_free_blocks(
    inventory: Inventory,
    scope_id: int,
    size: int,
    width: int,
    parent: Optional[BlockInfo] = None,
    requested_address: Optional[str] = None,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> List[int]:
    """
    Start addresses of free, aligned blocks of `size` addresses.

    With `requested_address` the search is skipped and the address itself is
    the only candidate, once it is known to be aligned and inside the parent.
    """
    prefix_length = size_to_prefix(size, width)

    if parent is not None and parent.terminal:
        raise ValidationError(
            f"Block {parent.name} is terminal and cannot contain subnets",
            {"block": parent.name}
        )

    if requested_address:
        start = address_to_int(requested_address, width)
        if not is_aligned(start, size):
            raise ValidationError(
                f"Requested address {requested_address} is not aligned to /{prefix_length}",
                {"request_ip": requested_address, "prefix_size": prefix_length}
            )
        if parent is not None and not parent.contains(start, size):
            raise ValidationError(
                f"Requested address {requested_address}/{prefix_length} is outside block {parent.name}",
                {"request_ip": requested_address, "block": parent.name}
            )
        return [start]

    candidates = inventory.find_free_blocks(
        scope_id, parent.id if parent else None, size, width, max_candidates
    )
    if not candidates:
        log_operation("find_free_blocks", "failed", {"scope_id": scope_id, "prefix_size": prefix_length})
        raise NoFreeSpaceError(parent.name if parent else f"space {scope_id}", size)

    candidates = sorted(candidates)[:max_candidates]
    log_operation("find_free_blocks", "success", {"count": len(candidates), "prefix_size": prefix_length})
    return candidates


def find_free_ranges(
    inventory: Inventory,
    block: BlockInfo,
    size: int,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> List[int]:
    """Start addresses of free pool ranges of `size` addresses inside a terminal block."""
    if size <= 0 or size > block.size:
        raise ValidationError(
            f"Pool size {size} does not fit subnet {block.name}",
            {"size": size, "subnet": block.name}
        )
    if not block.terminal:
        raise ValidationError(f"Pools can only be created in a terminal subnet, {block.name} is not")

    candidates = inventory.find_free_ranges(block.id, size, max_candidates)
    if not candidates:
        raise NoFreeSpaceError(block.name, size)
    return sorted(candidates)[:max_candidates]


def find_free_vlan_ids(
    inventory: Inventory,
    domain_id: int,
    requested_id: Optional[int] = None,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> List[int]:
    """Free VLAN IDs of a domain; an explicit id is the only candidate."""
    if requested_id is not None:
        if not VLAN_MIN <= requested_id <= VLAN_MAX:
            raise ValidationError(
                f"VLAN ID {requested_id} is outside {VLAN_MIN}..{VLAN_MAX}",
                {"request_id": requested_id}
            )
        return [requested_id]

    candidates = inventory.find_free_identifiers(domain_id, max_candidates)
    if not candidates:
        raise NoFreeSpaceError(f"vlan domain {domain_id}", 1)
    return sorted(candidates)[:max_candidates]
