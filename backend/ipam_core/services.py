"""
Business logic services for IPAM Core
Handles subnet, pool, VLAN and device lifecycles on top of the allocation engine.

Creation always goes through candidate search + optimistic reservation.
Updates touch name, class and tags in place and never re-allocate.
Deletion checks the container can go, frees an attached gateway, then deletes the container.
"""
import re
from typing import Dict, List, Optional

from .codec import (
    IPV4_WIDTH,
    address_to_int,
    format_prefix,
    int_to_address,
    prefix_to_netmask,
    prefix_to_size,
    wire_to_int,
    width_for_version,
    width_of,
)
from .config import get_settings
from .exceptions import (
    ConflictError,
    GatewayUnavailableError,
    InventoryError,
    InvalidCIDRError,
    OffsetOutOfRangeError,
    ResourceNotFoundError,
    ValidationError,
)
from .finder import find_free_blocks, find_free_ranges
from .inventory import Inventory
from .logic import calculate_utilization
from .logger import log_operation
from .models import AddressRead, Block, BlockRead, Device, DeviceRead, Pool, PoolRead, ResourceKind, VlanRead
from .offset import resolve_offset
from .reservation import reserve_first_available
from .vlan import allocate_vlan, vlan_to_read

GATEWAY_TAG = "gateway"
HOSTNAME_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$")


def _check_tags(tags: Optional[Dict[str, str]]):
    if tags and GATEWAY_TAG in tags:
        raise ValidationError(f"Tag key '{GATEWAY_TAG}' is reserved and set from gateway_offset")


def _version(width: int) -> int:
    return 4 if width == IPV4_WIDTH else 6


def _engine_options(max_candidates: Optional[int], max_jitter: Optional[float]):
    settings = get_settings()
    return (
        max_candidates or settings.max_candidates,
        settings.max_jitter if max_jitter is None else max_jitter,
    )


def _check_address_width(address: str, width: int, field: str):
    if width_of(address) != width:
        raise ValidationError(
            f"{field} {address} is not an IPv{_version(width)} address",
            {field: address}
        )


# ============================================================================
# GATEWAYS
# ============================================================================

def _attach_gateway(
    inventory: Inventory,
    kind: ResourceKind,
    entity_id: int,
    space_id: int,
    block_id: int,
    width: int,
    start: int,
    size: int,
    offset: int,
    tags: Dict[str, str],
) -> Optional[str]:
    """
    Reserve the gateway address and record it as the entity's gateway tag.
    The entity is already reserved; failures here leave it without a gateway.
    """
    try:
        gateway = resolve_offset(start, size, offset, width)
    except OffsetOutOfRangeError as e:
        e.reserved_id = entity_id
        log_operation("attach_gateway", "failed", {"kind": kind.value, "id": entity_id, "offset": offset})
        raise
    if gateway is None:
        return None

    address = int_to_address(gateway, width)
    try:
        inventory.reserve(
            ResourceKind.ADDRESS,
            gateway,
            {"space_id": space_id, "block_id": block_id, "width": width, "name": GATEWAY_TAG},
        )
    except ConflictError as e:
        log_operation("attach_gateway", "failed", {"kind": kind.value, "id": entity_id, "gateway": address})
        raise GatewayUnavailableError(address, entity_id) from e
    except InventoryError as e:
        e.reserved_id = entity_id
        log_operation("attach_gateway", "failed", {"kind": kind.value, "id": entity_id, "gateway": address})
        raise

    inventory.update(kind, entity_id, {"tags": {**tags, GATEWAY_TAG: address}})
    log_operation("attach_gateway", "success", {"kind": kind.value, "id": entity_id, "gateway": address})
    return address


def _release_gateway(inventory: Inventory, space_id: int, width: int, tags: Optional[Dict[str, str]]):
    gateway = (tags or {}).get(GATEWAY_TAG)
    if not gateway:
        return
    address_id = inventory.find_address(space_id, address_to_int(gateway, width), width)
    if address_id is None:
        log_operation("release_gateway", "skipped", {"gateway": gateway, "reason": "not_found"})
        return
    inventory.delete(ResourceKind.ADDRESS, address_id)
    log_operation("release_gateway", "success", {"gateway": gateway})


def _merged_tags(stored: Optional[Dict[str, str]], tags: Dict[str, str]) -> Dict[str, str]:
    merged = dict(tags)
    if stored and GATEWAY_TAG in stored:
        merged[GATEWAY_TAG] = stored[GATEWAY_TAG]
    return merged


# ============================================================================
# SUBNETS
# ============================================================================

def block_to_read(inventory: Inventory, block: Block) -> BlockRead:
    start = wire_to_int(block.start_addr, block.width)
    used = inventory.used_space(block.id)
    tags = dict(block.tags or {})
    return BlockRead(
        id=block.id,
        space=inventory.space_name(block.space_id),
        name=block.name,
        version=_version(block.width),
        address=int_to_address(start, block.width),
        prefix=format_prefix(start, block.prefix_length, block.width),
        prefix_size=block.prefix_length,
        netmask=prefix_to_netmask(block.prefix_length) if block.width == IPV4_WIDTH else None,
        gateway=tags.get(GATEWAY_TAG),
        terminal=block.terminal,
        level=block.level,
        utilization=calculate_utilization(used, prefix_to_size(block.prefix_length, block.width)),
        parent_id=block.parent_id,
        class_name=block.class_name,
        tags=tags,
    )


def create_subnet(
    inventory: Inventory,
    space: str,
    name: str,
    prefix_size: int,
    version: int = 4,
    block: Optional[str] = None,
    request_ip: Optional[str] = None,
    gateway_offset: int = 0,
    terminal: bool = True,
    class_name: str = "",
    tags: Optional[Dict[str, str]] = None,
    max_candidates: Optional[int] = None,
    max_jitter: Optional[float] = None,
    **options,
) -> BlockRead:
    """
    Allocate a subnet inside `block`, or a top-level block when no parent is given.

    Flow: resolve space (and parent) -> candidate search -> reservation loop ->
    gateway. A top-level block cannot be terminal.
    """
    tags = dict(tags or {})
    _check_tags(tags)
    width = width_for_version(version)
    size = prefix_to_size(prefix_size, width)
    max_candidates, max_jitter = _engine_options(max_candidates, max_jitter)

    space_id = inventory.resolve_scope_id(space)
    parent = inventory.block_info(space_id, block, width) if block else None
    if parent is None and terminal:
        raise ValidationError(f"Can't create a terminal IP block subnet: {name}")
    if request_ip:
        _check_address_width(request_ip, width, "request_ip")

    candidates = find_free_blocks(
        inventory, space_id, size, width,
        parent=parent, requested_address=request_ip, max_candidates=max_candidates,
    )
    reservation = reserve_first_available(
        inventory,
        ResourceKind.BLOCK,
        candidates,
        {
            "space_id": space_id,
            "parent_id": parent.id if parent else None,
            "name": name,
            "width": width,
            "prefix_length": prefix_size,
            "terminal": terminal,
            "class_name": class_name,
            "tags": tags,
        },
        max_jitter=max_jitter,
        describe=lambda start: format_prefix(start, prefix_size, width),
        **options,
    )

    if gateway_offset:
        _attach_gateway(
            inventory, ResourceKind.BLOCK, reservation.entity_id, space_id, reservation.entity_id,
            width, reservation.candidate, size, gateway_offset, tags,
        )

    log_operation("create_subnet", "success", {
        "id": reservation.entity_id,
        "prefix": format_prefix(reservation.candidate, prefix_size, width),
        "attempts": reservation.attempts,
    })
    return get_subnet(inventory, reservation.entity_id)


def get_subnet(inventory: Inventory, subnet_id: int) -> BlockRead:
    return block_to_read(inventory, inventory.get(ResourceKind.BLOCK, subnet_id))


def list_subnets(inventory: Inventory, space: str, version: Optional[int] = None) -> List[BlockRead]:
    space_id = inventory.resolve_scope_id(space)
    width = width_for_version(version) if version else None
    return [block_to_read(inventory, b) for b in inventory.list_blocks(space_id, width)]


def import_subnet(inventory: Inventory, space: str, prefix: str) -> BlockRead:
    """Look up an existing subnet by its 'address/prefix' notation."""
    address, _, length = prefix.partition("/")
    try:
        prefix_length = int(length)
    except ValueError:
        raise InvalidCIDRError(prefix)
    width = width_of(address)
    start = address_to_int(address, width)
    if start % prefix_to_size(prefix_length, width):
        raise InvalidCIDRError(prefix, {"reason": "host bits set"})

    space_id = inventory.resolve_scope_id(space)
    block = inventory.find_block_by_prefix(space_id, start, prefix_length, width)
    log_operation("import_subnet", "success", {"space": space, "prefix": prefix, "id": block.id})
    return block_to_read(inventory, block)


def update_subnet(
    inventory: Inventory,
    subnet_id: int,
    name: Optional[str] = None,
    class_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
) -> BlockRead:
    _check_tags(tags)
    changes = {}
    if name is not None:
        changes["name"] = name
    if class_name is not None:
        changes["class_name"] = class_name
    if tags is not None:
        stored = inventory.get(ResourceKind.BLOCK, subnet_id)
        changes["tags"] = _merged_tags(stored.tags, tags)

    block = inventory.update(ResourceKind.BLOCK, subnet_id, changes) if changes else inventory.get(ResourceKind.BLOCK, subnet_id)
    log_operation("update_subnet", "success", {"id": subnet_id, "fields": sorted(changes)})
    return block_to_read(inventory, block)


def delete_subnet(inventory: Inventory, subnet_id: int) -> None:
    block = inventory.get(ResourceKind.BLOCK, subnet_id)
    inventory.check_deletable(ResourceKind.BLOCK, subnet_id)
    _release_gateway(inventory, block.space_id, block.width, block.tags)
    inventory.delete(ResourceKind.BLOCK, subnet_id)
    log_operation("delete_subnet", "success", {"id": subnet_id, "name": block.name})


# ============================================================================
# POOLS
# ============================================================================

def pool_to_read(inventory: Inventory, pool: Pool) -> PoolRead:
    block = inventory.get(ResourceKind.BLOCK, pool.block_id)
    start = wire_to_int(pool.start_addr, pool.width)
    end = wire_to_int(pool.end_addr, pool.width)
    tags = dict(pool.tags or {})
    return PoolRead(
        id=pool.id,
        subnet_id=pool.block_id,
        name=pool.name,
        version=_version(pool.width),
        start=int_to_address(start, pool.width),
        end=int_to_address(end, pool.width),
        size=end - start + 1,
        prefix=format_prefix(block.start_addr, block.prefix_length, block.width),
        gateway=tags.get(GATEWAY_TAG),
        class_name=pool.class_name,
        tags=tags,
    )


def create_pool(
    inventory: Inventory,
    space: str,
    subnet: str,
    name: str,
    version: int = 4,
    start: Optional[str] = None,
    end: Optional[str] = None,
    size: Optional[int] = None,
    gateway_offset: int = 0,
    class_name: str = "",
    tags: Optional[Dict[str, str]] = None,
    max_candidates: Optional[int] = None,
    max_jitter: Optional[float] = None,
    **options,
) -> PoolRead:
    """Reserve an explicit [start, end] range or the first free range of `size` addresses."""
    tags = dict(tags or {})
    _check_tags(tags)
    width = width_for_version(version)
    max_candidates, max_jitter = _engine_options(max_candidates, max_jitter)

    space_id = inventory.resolve_scope_id(space)
    block = inventory.block_info(space_id, subnet, width)
    if not block.terminal:
        raise ValidationError(f"Pools can only be created in a terminal subnet, {block.name} is not")

    if start or end:
        if not (start and end):
            raise ValidationError("Both start and end are required for an explicit pool range")
        _check_address_width(start, width, "start")
        _check_address_width(end, width, "end")
        first, last = address_to_int(start, width), address_to_int(end, width)
        if last < first:
            raise ValidationError(f"Pool end {end} is before start {start}")
        pool_size = last - first + 1
        if not block.contains(first, pool_size):
            raise ValidationError(f"Pool range {start}-{end} is outside subnet {block.name}")
        candidates = [first]
    elif size:
        pool_size = size
        candidates = find_free_ranges(inventory, block, size, max_candidates)
    else:
        raise ValidationError("Either start/end or size is required to create a pool")

    reservation = reserve_first_available(
        inventory,
        ResourceKind.POOL,
        candidates,
        {"block_id": block.id, "name": name, "width": width, "size": pool_size, "class_name": class_name, "tags": tags},
        max_jitter=max_jitter,
        describe=lambda first: f"{int_to_address(first, width)}-{int_to_address(first + pool_size - 1, width)}",
        **options,
    )

    if gateway_offset:
        _attach_gateway(
            inventory, ResourceKind.POOL, reservation.entity_id, space_id, block.id,
            width, reservation.candidate, pool_size, gateway_offset, tags,
        )

    log_operation("create_pool", "success", {"id": reservation.entity_id, "subnet": subnet})
    return get_pool(inventory, reservation.entity_id)


def get_pool(inventory: Inventory, pool_id: int) -> PoolRead:
    return pool_to_read(inventory, inventory.get(ResourceKind.POOL, pool_id))


def update_pool(
    inventory: Inventory,
    pool_id: int,
    name: Optional[str] = None,
    class_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
) -> PoolRead:
    _check_tags(tags)
    changes = {}
    if name is not None:
        changes["name"] = name
    if class_name is not None:
        changes["class_name"] = class_name
    if tags is not None:
        stored = inventory.get(ResourceKind.POOL, pool_id)
        changes["tags"] = _merged_tags(stored.tags, tags)

    pool = inventory.update(ResourceKind.POOL, pool_id, changes) if changes else inventory.get(ResourceKind.POOL, pool_id)
    log_operation("update_pool", "success", {"id": pool_id, "fields": sorted(changes)})
    return pool_to_read(inventory, pool)


def delete_pool(inventory: Inventory, pool_id: int) -> None:
    pool = inventory.get(ResourceKind.POOL, pool_id)
    block = inventory.get(ResourceKind.BLOCK, pool.block_id)
    _release_gateway(inventory, block.space_id, pool.width, pool.tags)
    inventory.delete(ResourceKind.POOL, pool_id)
    log_operation("delete_pool", "success", {"id": pool_id, "name": pool.name})


# ============================================================================
# VLANS
# ============================================================================

def create_vlan(
    inventory: Inventory,
    domain: str,
    name: str,
    request_id: Optional[int] = None,
    max_candidates: Optional[int] = None,
    max_jitter: Optional[float] = None,
    **options,
) -> VlanRead:
    return allocate_vlan(
        inventory, domain, name,
        requested_id=request_id, max_candidates=max_candidates, max_jitter=max_jitter, **options,
    )


def get_vlan(inventory: Inventory, vlan_id: int) -> VlanRead:
    vlan = inventory.get(ResourceKind.VLAN, vlan_id)
    return vlan_to_read(vlan, inventory.domain_name(vlan.domain_id))


def list_vlans(inventory: Inventory, domain: str) -> List[VlanRead]:
    domain_id = inventory.resolve_domain_id(domain)
    return [vlan_to_read(v, domain) for v in inventory.list_vlans(domain_id)]


def update_vlan(inventory: Inventory, vlan_id: int, name: str) -> VlanRead:
    vlan = inventory.update(ResourceKind.VLAN, vlan_id, {"name": name})
    log_operation("update_vlan", "success", {"id": vlan_id})
    return vlan_to_read(vlan, inventory.domain_name(vlan.domain_id))


def delete_vlan(inventory: Inventory, vlan_id: int) -> None:
    inventory.delete(ResourceKind.VLAN, vlan_id)
    log_operation("delete_vlan", "success", {"id": vlan_id})


# ============================================================================
# ADDRESSES
# ============================================================================

def lookup_address(inventory: Inventory, space: str, address: str) -> AddressRead:
    """Reserved address with the subnet and pool it belongs to."""
    width = width_of(address)
    value = address_to_int(address, width)
    space_id = inventory.resolve_scope_id(space)
    address_id = inventory.find_address(space_id, value, width)
    if address_id is None:
        raise ResourceNotFoundError("Address", address)

    row = inventory.get(ResourceKind.ADDRESS, address_id)
    found = AddressRead(
        id=row.id,
        space=space,
        version=_version(width),
        address=int_to_address(value, width),
        name=row.name,
    )
    if row.block_id is not None:
        block = inventory.get(ResourceKind.BLOCK, row.block_id)
        found.subnet = block.name
        found.prefix = format_prefix(block.start_addr, block.prefix_length, block.width)
        found.prefix_size = block.prefix_length
        pool = inventory.find_pool(block.id, value, width)
        if pool is not None:
            found.pool = pool.name
    return found


# ============================================================================
# DEVICES
# ============================================================================

def device_to_read(device: Device) -> DeviceRead:
    return DeviceRead(id=device.id, name=device.name, class_name=device.class_name, tags=dict(device.tags or {}))


def create_device(
    inventory: Inventory,
    name: str,
    class_name: str = "",
    tags: Optional[Dict[str, str]] = None,
) -> DeviceRead:
    """Register a device; names are hostnames and stored lowercase."""
    name = name.lower()
    if not HOSTNAME_RE.match(name):
        raise ValidationError(f"Unsupported device name format: {name}", {"name": name})
    device = inventory.create_device(name, class_name, tags)
    log_operation("create_device", "success", {"id": device.id, "name": name})
    return device_to_read(device)


def get_device(inventory: Inventory, device_id: int) -> DeviceRead:
    return device_to_read(inventory.get(ResourceKind.DEVICE, device_id))


def list_devices(inventory: Inventory) -> List[DeviceRead]:
    return [device_to_read(d) for d in inventory.list_devices()]


def update_device(
    inventory: Inventory,
    device_id: int,
    name: Optional[str] = None,
    class_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
) -> DeviceRead:
    """Class and tags change in place; a device is never renamed."""
    stored = inventory.get(ResourceKind.DEVICE, device_id)
    if name is not None and name.lower() != stored.name:
        raise ValidationError(f"Device {stored.name} cannot be renamed", {"name": name})
    changes = {}
    if class_name is not None:
        changes["class_name"] = class_name
    if tags is not None:
        changes["tags"] = tags
    device = inventory.update(ResourceKind.DEVICE, device_id, changes) if changes else stored
    log_operation("update_device", "success", {"id": device_id, "fields": sorted(changes)})
    return device_to_read(device)


def delete_device(inventory: Inventory, device_id: int) -> None:
    inventory.delete(ResourceKind.DEVICE, device_id)
    log_operation("delete_device", "success", {"id": device_id})
