"""
VLAN ID allocation: the reservation protocol over the flat 1..4094 space.
"""
from typing import Optional

from .config import get_settings
from .finder import find_free_vlan_ids
from .inventory import Inventory
from .logger import log_operation
from .models import ResourceKind, Vlan, VlanRead
from .reservation import reserve_first_available


def allocate_vlan(
    inventory: Inventory,
    domain_name: str,
    name: str,
    requested_id: Optional[int] = None,
    max_candidates: Optional[int] = None,
    max_jitter: Optional[float] = None,
    **options,
) -> VlanRead:
    """Reserve a VLAN ID in `domain_name`, either `requested_id` or the first free one that sticks."""
    settings = get_settings()
    domain_id = inventory.resolve_domain_id(domain_name)

    candidates = find_free_vlan_ids(
        inventory,
        domain_id,
        requested_id=requested_id,
        max_candidates=max_candidates or settings.max_candidates,
    )
    reservation = reserve_first_available(
        inventory,
        ResourceKind.VLAN,
        candidates,
        {"domain_id": domain_id, "name": name},
        max_jitter=settings.max_jitter if max_jitter is None else max_jitter,
        **options,
    )

    log_operation("allocate_vlan", "success", {"domain": domain_name, "vlan_id": reservation.candidate})
    return vlan_to_read(inventory.get(ResourceKind.VLAN, reservation.entity_id), domain_name)


def vlan_to_read(vlan: Vlan, domain_name: str) -> VlanRead:
    return VlanRead(id=vlan.id, domain=domain_name, vlan_id=vlan.vlan_id, name=vlan.name)
