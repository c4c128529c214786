from typing import Optional, Dict
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field
from datetime import datetime
from enum import Enum

class ResourceKind(str, Enum):
    BLOCK = "block"
    POOL = "pool"
    ADDRESS = "address"
    VLAN = "vlan"
    DEVICE = "device"

# --- Space ---
class SpaceBase(SQLModel):
    name: str = Field(index=True, unique=True)

class Space(SpaceBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

# --- Block (block or subnet) ---
class Block(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("space_id", "width", "parent_id", "start_addr", "prefix_length", name="uq_block_prefix"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: int = Field(foreign_key="space.id", index=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="block.id", index=True)
    name: str = Field(index=True)
    width: int = Field(default=32)
    start_addr: str = Field(index=True)  # fixed-width hex
    prefix_length: int
    terminal: bool = Field(default=True)
    level: int = Field(default=0)
    class_name: str = Field(default="")
    tags: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)

# --- Pool ---
class Pool(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("block_id", "start_addr", name="uq_pool_start"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    block_id: int = Field(foreign_key="block.id", index=True)
    name: str
    width: int = Field(default=32)
    start_addr: str
    end_addr: str
    class_name: str = Field(default="")
    tags: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))

# --- Address (gateways) ---
class Address(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("space_id", "width", "address", name="uq_address"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: int = Field(foreign_key="space.id", index=True)
    block_id: Optional[int] = Field(default=None, foreign_key="block.id")
    width: int = Field(default=32)
    address: str = Field(index=True)  # fixed-width hex
    name: str = Field(default="")

# --- VLAN ---
class VlanDomainBase(SQLModel):
    name: str = Field(index=True, unique=True)
    first_id: int = Field(default=1)
    last_id: int = Field(default=4094)

class VlanDomain(VlanDomainBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

class Vlan(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("domain_id", "vlan_id", name="uq_vlan_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    domain_id: int = Field(foreign_key="vlandomain.id", index=True)
    vlan_id: int = Field(index=True)
    name: str

# --- Device ---
class DeviceBase(SQLModel):
    name: str = Field(index=True, unique=True)
    class_name: str = Field(default="")

class Device(DeviceBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tags: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)

# --- Requests ---
class SubnetCreate(SQLModel):
    """Allocate a block (no parent) or a subnet inside `block`."""
    name: str
    prefix_size: int
    version: int = 4
    block: Optional[str] = None
    request_ip: Optional[str] = None
    gateway_offset: int = 0
    terminal: bool = True
    class_name: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)

class PoolCreate(SQLModel):
    subnet: str
    name: str
    version: int = 4
    start: Optional[str] = None
    end: Optional[str] = None
    size: Optional[int] = None
    gateway_offset: int = 0
    class_name: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)

class VlanCreate(SQLModel):
    name: str
    request_id: Optional[int] = None

class DeviceCreate(DeviceBase):
    tags: Dict[str, str] = Field(default_factory=dict)

class EntityUpdate(SQLModel):
    name: Optional[str] = None
    class_name: Optional[str] = None
    tags: Optional[Dict[str, str]] = None

# --- Responses ---
class BlockRead(SQLModel):
    id: int
    space: str
    name: str
    version: int
    address: str
    prefix: str
    prefix_size: int
    netmask: Optional[str] = None
    gateway: Optional[str] = None
    terminal: bool
    level: int
    utilization: float = 0.0
    parent_id: Optional[int] = None
    class_name: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)

class PoolRead(SQLModel):
    id: int
    subnet_id: int
    name: str
    version: int
    start: str
    end: str
    size: int
    prefix: str
    gateway: Optional[str] = None
    class_name: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)

class VlanRead(SQLModel):
    id: int
    domain: str
    vlan_id: int
    name: str

class AddressRead(SQLModel):
    id: int
    space: str
    version: int
    address: str
    name: str
    subnet: Optional[str] = None
    prefix: Optional[str] = None
    prefix_size: Optional[int] = None
    pool: Optional[str] = None

class DeviceRead(SQLModel):
    id: int
    name: str
    class_name: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)
