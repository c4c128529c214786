"""
Reference inventory backed by SQLModel.

Reservations are create-if-absent: the overlap check, the insert and the
commit run under one write lock, and the unique constraints on the tables
reject anything that slips past it. The engine never sees the lock; it only
sees ConflictError.
"""
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .codec import format_prefix, int_to_address, int_to_wire, is_aligned, prefix_to_size, wire_to_int
from .exceptions import (
    ConflictError,
    DuplicateResourceError,
    InventoryError,
    IPAMError,
    ResourceNotFoundError,
    ValidationError,
)
from .finder import VLAN_MAX, VLAN_MIN
from .inventory import BlockInfo
from .logger import log_database_operation
from .logic import find_free_slots, free_identifiers, merge_ranges, ranges_overlap
from .models import Address, Block, Device, Pool, ResourceKind, Space, Vlan, VlanDomain

_MODELS = {
    ResourceKind.BLOCK: Block,
    ResourceKind.POOL: Pool,
    ResourceKind.ADDRESS: Address,
    ResourceKind.VLAN: Vlan,
    ResourceKind.DEVICE: Device,
}

_UPDATABLE = {"name", "class_name", "tags"}


def block_info(block: Block) -> BlockInfo:
    return BlockInfo(
        id=block.id,
        space_id=block.space_id,
        name=block.name,
        width=block.width,
        start=wire_to_int(block.start_addr, block.width),
        prefix_length=block.prefix_length,
        terminal=block.terminal,
        level=block.level,
    )


def block_range(block: Block):
    start = wire_to_int(block.start_addr, block.width)
    return start, start + prefix_to_size(block.prefix_length, block.width) - 1


def pool_range(pool: Pool):
    return wire_to_int(pool.start_addr, pool.width), wire_to_int(pool.end_addr, pool.width)


def describe_candidate(kind: ResourceKind, candidate: int, attrs: Dict[str, Any]) -> str:
    """Human notation of a reservation candidate, for error messages."""
    width = attrs.get("width")
    if kind is ResourceKind.BLOCK:
        return format_prefix(candidate, attrs["prefix_length"], width)
    if kind is ResourceKind.ADDRESS:
        return int_to_address(candidate, width)
    if kind is ResourceKind.POOL and width:
        return f"{int_to_address(candidate, width)}-{int_to_address(candidate + attrs['size'] - 1, width)}"
    return str(candidate)


class SQLInventory:
    def __init__(self, engine):
        self.engine = engine
        self._write_lock = threading.Lock()

    @contextmanager
    def _session(self, operation: str):
        try:
            with Session(self.engine) as session:
                yield session
        except IPAMError:
            raise
        except SQLAlchemyError as e:
            raise InventoryError(operation, e) from e

    def _get(self, session: Session, kind: ResourceKind, entity_id: int):
        entity = session.get(_MODELS[kind], entity_id)
        if not entity:
            raise ResourceNotFoundError(kind.value.capitalize(), entity_id)
        return entity

    # ------------------------------------------------------------------
    # Scopes, domains and devices
    # ------------------------------------------------------------------

    def create_space(self, name: str) -> Space:
        with self._session("create_space") as session:
            if session.exec(select(Space).where(Space.name == name)).first():
                raise DuplicateResourceError("Space", name)
            space = Space(name=name)
            session.add(space)
            session.commit()
            session.refresh(space)
            log_database_operation("CREATE", "Space", "success", details={"id": space.id, "name": name})
            return space

    def list_spaces(self) -> List[Space]:
        with self._session("list_spaces") as session:
            return list(session.exec(select(Space).order_by(Space.name)).all())

    def resolve_scope_id(self, name: str) -> int:
        with self._session("resolve_scope_id") as session:
            space = session.exec(select(Space).where(Space.name == name)).first()
            if not space:
                raise ResourceNotFoundError("Space", name)
            return space.id

    def space_name(self, space_id: int) -> str:
        with self._session("space_name") as session:
            space = session.get(Space, space_id)
            if not space:
                raise ResourceNotFoundError("Space", space_id)
            return space.name

    def create_vlan_domain(self, name: str, first_id: int = VLAN_MIN, last_id: int = VLAN_MAX) -> VlanDomain:
        if not VLAN_MIN <= first_id <= last_id <= VLAN_MAX:
            raise ValidationError(
                f"VLAN domain range must lie within {VLAN_MIN}..{VLAN_MAX}",
                {"first_id": first_id, "last_id": last_id}
            )
        with self._session("create_vlan_domain") as session:
            if session.exec(select(VlanDomain).where(VlanDomain.name == name)).first():
                raise DuplicateResourceError("VlanDomain", name)
            domain = VlanDomain(name=name, first_id=first_id, last_id=last_id)
            session.add(domain)
            session.commit()
            session.refresh(domain)
            log_database_operation("CREATE", "VlanDomain", "success", details={"id": domain.id, "name": name})
            return domain

    def list_vlan_domains(self) -> List[VlanDomain]:
        with self._session("list_vlan_domains") as session:
            return list(session.exec(select(VlanDomain).order_by(VlanDomain.name)).all())

    def resolve_domain_id(self, name: str) -> int:
        with self._session("resolve_domain_id") as session:
            domain = session.exec(select(VlanDomain).where(VlanDomain.name == name)).first()
            if not domain:
                raise ResourceNotFoundError("VlanDomain", name)
            return domain.id

    def domain_name(self, domain_id: int) -> str:
        with self._session("domain_name") as session:
            domain = session.get(VlanDomain, domain_id)
            if not domain:
                raise ResourceNotFoundError("VlanDomain", domain_id)
            return domain.name

    def create_device(self, name: str, class_name: str = "", tags: Optional[Dict[str, str]] = None) -> Device:
        with self._session("create_device") as session:
            if session.exec(select(Device).where(Device.name == name)).first():
                raise DuplicateResourceError("Device", name)
            device = Device(name=name, class_name=class_name, tags=dict(tags or {}))
            session.add(device)
            session.commit()
            session.refresh(device)
            log_database_operation("CREATE", "Device", "success", details={"id": device.id, "name": name})
            return device

    def list_devices(self) -> List[Device]:
        with self._session("list_devices") as session:
            return list(session.exec(select(Device).order_by(Device.name)).all())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def block_info(self, scope_id: int, name: str, width: int) -> BlockInfo:
        with self._session("block_info") as session:
            block = session.exec(
                select(Block)
                .where(Block.space_id == scope_id, Block.name == name, Block.width == width)
                .order_by(Block.id)
            ).first()
            if not block:
                raise ResourceNotFoundError("Block", name)
            return block_info(block)

    def find_block_by_prefix(self, scope_id: int, start: int, prefix_length: int, width: int) -> Block:
        with self._session("find_block_by_prefix") as session:
            block = session.exec(
                select(Block).where(
                    Block.space_id == scope_id,
                    Block.width == width,
                    Block.start_addr == int_to_wire(start, width),
                    Block.prefix_length == prefix_length,
                )
                .order_by(desc(Block.level))
            ).first()
            if not block:
                raise ResourceNotFoundError("Block", f"{start}/{prefix_length}")
            return block

    def find_address(self, scope_id: int, address: int, width: int) -> Optional[int]:
        with self._session("find_address") as session:
            found = session.exec(
                select(Address).where(
                    Address.space_id == scope_id,
                    Address.width == width,
                    Address.address == int_to_wire(address, width),
                )
            ).first()
            return found.id if found else None

    def find_pool(self, block_id: int, address: int, width: int) -> Optional[Pool]:
        """Pool of the block whose range holds `address`, if any."""
        with self._session("find_pool") as session:
            for pool in session.exec(select(Pool).where(Pool.block_id == block_id, Pool.width == width)).all():
                start, end = pool_range(pool)
                if start <= address <= end:
                    return pool
            return None

    def list_blocks(self, scope_id: int, width: Optional[int] = None) -> List[Block]:
        with self._session("list_blocks") as session:
            query = select(Block).where(Block.space_id == scope_id)
            if width:
                query = query.where(Block.width == width)
            blocks = session.exec(query.order_by(Block.width, Block.start_addr, Block.prefix_length)).all()
            log_database_operation("READ", "Block", "success", count=len(blocks))
            return list(blocks)

    def list_vlans(self, domain_id: int) -> List[Vlan]:
        with self._session("list_vlans") as session:
            return list(session.exec(select(Vlan).where(Vlan.domain_id == domain_id).order_by(Vlan.vlan_id)).all())

    # ------------------------------------------------------------------
    # Free space queries
    # ------------------------------------------------------------------

    def find_free_blocks(
        self, scope_id: int, parent_id: Optional[int], size: int, width: int, max_candidates: int
    ) -> List[int]:
        with self._session("find_free_blocks") as session:
            query = select(Block).where(Block.space_id == scope_id, Block.width == width)
            if parent_id is None:
                parent_start, parent_size = 0, 1 << width
                query = query.where(Block.parent_id == None)  # noqa: E711
            else:
                parent = self._get(session, ResourceKind.BLOCK, parent_id)
                parent_start, end = block_range(parent)
                parent_size = end - parent_start + 1
                query = query.where(Block.parent_id == parent_id)

            occupied = [block_range(b) for b in session.exec(query).all()]
            return find_free_slots(parent_start, parent_size, occupied, size, max_candidates)

    def find_free_ranges(self, block_id: int, size: int, max_candidates: int) -> List[int]:
        with self._session("find_free_ranges") as session:
            block = self._get(session, ResourceKind.BLOCK, block_id)
            start, end = block_range(block)
            pools = session.exec(select(Pool).where(Pool.block_id == block_id)).all()
            occupied = [pool_range(p) for p in pools]
            return find_free_slots(start, end - start + 1, occupied, size, max_candidates, aligned=False)

    def used_space(self, block_id: int) -> int:
        """Addresses of the block covered by child blocks or pools."""
        with self._session("used_space") as session:
            children = session.exec(select(Block).where(Block.parent_id == block_id)).all()
            pools = session.exec(select(Pool).where(Pool.block_id == block_id)).all()
            ranges = [block_range(b) for b in children] + [pool_range(p) for p in pools]
            return sum(end - start + 1 for start, end in merge_ranges(ranges))

    def find_free_identifiers(self, domain_id: int, max_candidates: int) -> List[int]:
        with self._session("find_free_identifiers") as session:
            domain = session.get(VlanDomain, domain_id)
            if not domain:
                raise ResourceNotFoundError("VlanDomain", domain_id)
            used = session.exec(select(Vlan.vlan_id).where(Vlan.domain_id == domain_id)).all()
            return free_identifiers(domain.first_id, domain.last_id, used, max_candidates)

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def reserve(self, kind: ResourceKind, candidate: int, attributes: Dict[str, Any]) -> int:
        builders = {
            ResourceKind.BLOCK: self._build_block,
            ResourceKind.POOL: self._build_pool,
            ResourceKind.ADDRESS: self._build_address,
            ResourceKind.VLAN: self._build_vlan,
        }
        written = False
        with self._write_lock:
            try:
                with Session(self.engine) as session:
                    entity = builders[kind](session, candidate, attributes)
                    session.add(entity)
                    written = True
                    session.commit()
                    session.refresh(entity)
            except IntegrityError as e:
                raise ConflictError(kind.value, describe_candidate(kind, candidate, attributes), "unique constraint") from e
            except IPAMError:
                raise
            except SQLAlchemyError as e:
                raise InventoryError(f"reserve {kind.value}", e, write_applied=None if written else False) from e

        log_database_operation("CREATE", kind.value.capitalize(), "success", details={"id": entity.id})
        return entity.id

    def _build_block(self, session: Session, candidate: int, attrs: Dict[str, Any]) -> Block:
        width = attrs["width"]
        prefix_length = attrs["prefix_length"]
        size = prefix_to_size(prefix_length, width)
        if not is_aligned(candidate, size):
            raise ValidationError(
                f"Block start {candidate} is not aligned to /{prefix_length}",
                {"candidate": candidate, "prefix_length": prefix_length}
            )

        parent_id = attrs.get("parent_id")
        level = 0
        siblings = select(Block).where(Block.space_id == attrs["space_id"], Block.width == width)
        if parent_id is None:
            if candidate + size - 1 > (1 << width) - 1:
                raise ValidationError(f"Block start {candidate} overflows the address space")
            siblings = siblings.where(Block.parent_id == None)  # noqa: E711
        else:
            parent = self._get(session, ResourceKind.BLOCK, parent_id)
            info = block_info(parent)
            if info.terminal:
                raise ValidationError(f"Block {parent.name} is terminal and cannot contain subnets")
            if not info.contains(candidate, size):
                raise ValidationError(
                    f"Candidate {candidate}/{prefix_length} is outside block {parent.name}",
                    {"candidate": candidate}
                )
            level = info.level + 1
            siblings = siblings.where(Block.parent_id == parent_id)

        wanted = (candidate, candidate + size - 1)
        for sibling in session.exec(siblings).all():
            if ranges_overlap(wanted, block_range(sibling)):
                raise ConflictError("block", describe_candidate(ResourceKind.BLOCK, candidate, attrs), f"overlaps {sibling.name}")

        return Block(
            space_id=attrs["space_id"],
            parent_id=parent_id,
            name=attrs["name"],
            width=width,
            start_addr=int_to_wire(candidate, width),
            prefix_length=prefix_length,
            terminal=attrs.get("terminal", True),
            level=level,
            class_name=attrs.get("class_name", ""),
            tags=dict(attrs.get("tags") or {}),
        )

    def _build_pool(self, session: Session, candidate: int, attrs: Dict[str, Any]) -> Pool:
        block = self._get(session, ResourceKind.BLOCK, attrs["block_id"])
        info = block_info(block)
        size = attrs["size"]
        if not info.terminal:
            raise ValidationError(f"Pools can only be created in a terminal subnet, {block.name} is not")
        if size <= 0 or not info.contains(candidate, size):
            raise ValidationError(
                f"Pool range is outside subnet {block.name}",
                {"start": candidate, "size": size}
            )

        wanted = (candidate, candidate + size - 1)
        for sibling in session.exec(select(Pool).where(Pool.block_id == block.id)).all():
            if ranges_overlap(wanted, pool_range(sibling)):
                raise ConflictError("pool", describe_candidate(ResourceKind.POOL, candidate, attrs), f"overlaps {sibling.name}")

        return Pool(
            block_id=block.id,
            name=attrs["name"],
            width=info.width,
            start_addr=int_to_wire(candidate, info.width),
            end_addr=int_to_wire(candidate + size - 1, info.width),
            class_name=attrs.get("class_name", ""),
            tags=dict(attrs.get("tags") or {}),
        )

    def _build_address(self, session: Session, candidate: int, attrs: Dict[str, Any]) -> Address:
        width = attrs["width"]
        existing = session.exec(
            select(Address).where(
                Address.space_id == attrs["space_id"],
                Address.width == width,
                Address.address == int_to_wire(candidate, width),
            )
        ).first()
        if existing:
            raise ConflictError("address", int_to_address(candidate, width))
        return Address(
            space_id=attrs["space_id"],
            block_id=attrs.get("block_id"),
            width=width,
            address=int_to_wire(candidate, width),
            name=attrs.get("name", ""),
        )

    def _build_vlan(self, session: Session, candidate: int, attrs: Dict[str, Any]) -> Vlan:
        domain = session.get(VlanDomain, attrs["domain_id"])
        if not domain:
            raise ResourceNotFoundError("VlanDomain", attrs["domain_id"])
        if not domain.first_id <= candidate <= domain.last_id:
            raise ValidationError(
                f"VLAN ID {candidate} is outside domain {domain.name} ({domain.first_id}-{domain.last_id})",
                {"vlan_id": candidate}
            )
        existing = session.exec(
            select(Vlan).where(Vlan.domain_id == domain.id, Vlan.vlan_id == candidate)
        ).first()
        if existing:
            raise ConflictError("vlan", candidate)
        return Vlan(domain_id=domain.id, vlan_id=candidate, name=attrs["name"])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get(self, kind: ResourceKind, entity_id: int):
        with self._session(f"get {kind.value}") as session:
            return self._get(session, kind, entity_id)

    def update(self, kind: ResourceKind, entity_id: int, changes: Dict[str, Any]):
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Fields cannot be updated in place: {sorted(unknown)}")
        with self._session(f"update {kind.value}") as session:
            entity = self._get(session, kind, entity_id)
            for field, value in changes.items():
                if field == "tags":
                    value = dict(value)
                setattr(entity, field, value)
            session.add(entity)
            session.commit()
            session.refresh(entity)
            log_database_operation("UPDATE", kind.value.capitalize(), "success", details={"id": entity_id})
            return entity

    def _check_deletable(self, session: Session, kind: ResourceKind, entity):
        if kind is not ResourceKind.BLOCK:
            return
        if session.exec(select(Block).where(Block.parent_id == entity.id)).first():
            raise ValidationError(f"Block {entity.name} still contains subnets")
        if session.exec(select(Pool).where(Pool.block_id == entity.id)).first():
            raise ValidationError(f"Block {entity.name} still contains pools")

    def check_deletable(self, kind: ResourceKind, entity_id: int) -> None:
        """Raise if `delete` would refuse the entity; nothing is changed."""
        with self._session(f"check {kind.value}") as session:
            self._check_deletable(session, kind, self._get(session, kind, entity_id))

    def delete(self, kind: ResourceKind, entity_id: int) -> None:
        with self._write_lock, self._session(f"delete {kind.value}") as session:
            entity = self._get(session, kind, entity_id)
            self._check_deletable(session, kind, entity)
            session.delete(entity)
            session.commit()
            log_database_operation("DELETE", kind.value.capitalize(), "success", details={"id": entity_id})
