"""
Boundary between the allocation engine and the authoritative inventory.

The engine only reads hints (free blocks, free identifiers) and issues
create-if-absent reservations; the inventory is the single source of truth
and must make `reserve` atomic and exclusive.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from .models import ResourceKind


@dataclass(frozen=True)
class BlockInfo:
    """Resolved block: numeric range plus container semantics."""
    id: int
    space_id: int
    name: str
    width: int
    start: int
    prefix_length: int
    terminal: bool
    level: int

    @property
    def size(self) -> int:
        return 1 << (self.width - self.prefix_length)

    @property
    def end(self) -> int:
        return self.start + self.size - 1

    def contains(self, start: int, size: int) -> bool:
        return self.start <= start and start + size - 1 <= self.end


class Inventory(Protocol):
    """Operations the engine needs from the inventory."""

    def resolve_scope_id(self, name: str) -> int: ...

    def resolve_domain_id(self, name: str) -> int: ...

    def block_info(self, scope_id: int, name: str, width: int) -> BlockInfo: ...

    def find_free_blocks(
        self, scope_id: int, parent_id: Optional[int], size: int, width: int, max_candidates: int
    ) -> List[int]: ...

    def find_free_ranges(self, block_id: int, size: int, max_candidates: int) -> List[int]: ...

    def find_free_identifiers(self, domain_id: int, max_candidates: int) -> List[int]: ...

    def used_space(self, block_id: int) -> int: ...

    def reserve(self, kind: ResourceKind, candidate: int, attributes: Dict[str, Any]) -> int:
        """Create-if-absent. Returns the entity id or raises ConflictError."""
        ...

    def get(self, kind: ResourceKind, entity_id: int) -> Any: ...

    def update(self, kind: ResourceKind, entity_id: int, changes: Dict[str, Any]) -> Any: ...

    def check_deletable(self, kind: ResourceKind, entity_id: int) -> None:
        """Raise if the entity cannot be deleted yet (children, pools)."""
        ...

    def delete(self, kind: ResourceKind, entity_id: int) -> None: ...

    def find_address(self, scope_id: int, address: int, width: int) -> Optional[int]: ...

    def find_pool(self, block_id: int, address: int, width: int) -> Any: ...

    def find_block_by_prefix(self, scope_id: int, start: int, prefix_length: int, width: int) -> Any: ...

    def list_blocks(self, scope_id: int, width: Optional[int] = None) -> List[Any]: ...

    def list_vlans(self, domain_id: int) -> List[Any]: ...

    def create_device(self, name: str, class_name: str = "", tags: Optional[Dict[str, str]] = None) -> Any: ...

    def list_devices(self) -> List[Any]: ...

    def space_name(self, space_id: int) -> str: ...

    def domain_name(self, domain_id: int) -> str: ...
