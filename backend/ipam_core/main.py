"""
IPAM Core FastAPI Application with comprehensive logging and error handling.
"""
from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine
from typing import List, Optional
import time

from . import services
from .config import get_settings
from .exceptions import IPAMError, ValidationError
from .logger import logger, log_error, log_request
from .models import (
    AddressRead,
    BlockRead,
    DeviceCreate,
    DeviceRead,
    EntityUpdate,
    PoolCreate,
    PoolRead,
    Space,
    SpaceBase,
    SubnetCreate,
    VlanCreate,
    VlanDomain,
    VlanDomainBase,
    VlanRead,
)
from .sql_inventory import SQLInventory

VERSION = "1.0.0"

# Database Setup
settings = get_settings()
engine_options = {"echo": False}
if settings.database_url.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}
    if settings.database_url in ("sqlite://", "sqlite:///:memory:"):
        engine_options["poolclass"] = StaticPool
engine = create_engine(settings.database_url, **engine_options)

inventory = SQLInventory(engine)


def get_inventory() -> SQLInventory:
    """Dependency returning the inventory handle used by every engine call."""
    return inventory


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("IPAM Core starting up...")
    try:
        SQLModel.metadata.create_all(engine)
        logger.info("Database schema created/verified")
    except Exception as e:
        logger.error(f"Startup failed: {str(e)}", exc_info=True)
        raise

    yield

    logger.info("IPAM Core shutting down...")


app = FastAPI(
    title="IPAM Core",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_logging(request, call_next):
    """Middleware to log all HTTP requests with timing."""
    start_time = time.time()
    path = request.url.path
    method = request.method

    try:
        response = await call_next(request)
        duration = (time.time() - start_time) * 1000
        log_request(method, path, response.status_code, duration)
        return response
    except Exception:
        logger.error(f"Request failed: {method} {path}", exc_info=True)
        raise


# ============================================================================
# SPACE ENDPOINTS
# ============================================================================

@app.get("/spaces", response_model=List[Space])
def list_spaces(inv: SQLInventory = Depends(get_inventory)):
    """List all spaces."""
    try:
        return inv.list_spaces()
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "list_spaces")
        raise HTTPException(status_code=500, detail="Failed to fetch spaces")


@app.post("/spaces", response_model=Space, status_code=201)
def create_space(space: SpaceBase, inv: SQLInventory = Depends(get_inventory)):
    """Create a new space."""
    try:
        return inv.create_space(space.name)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_space", {"name": space.name})
        raise HTTPException(status_code=500, detail="Failed to create space")


# ============================================================================
# SUBNET ENDPOINTS
# ============================================================================

@app.post("/spaces/{space}/subnets", response_model=BlockRead, status_code=201)
def create_subnet(space: str, subnet_data: SubnetCreate, inv: SQLInventory = Depends(get_inventory)):
    """Allocate a subnet (or a top-level block when no parent block is given)."""
    try:
        return services.create_subnet(inv, space, **subnet_data.model_dump())
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_subnet", {"space": space, "name": subnet_data.name})
        raise HTTPException(status_code=500, detail="Failed to create subnet")


@app.get("/spaces/{space}/subnets", response_model=List[BlockRead])
def list_subnets(space: str, version: Optional[int] = None, inv: SQLInventory = Depends(get_inventory)):
    """List subnets of a space, optionally filtered by IP version."""
    try:
        return services.list_subnets(inv, space, version)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "list_subnets", {"space": space})
        raise HTTPException(status_code=500, detail="Failed to fetch subnets")


@app.get("/spaces/{space}/subnets/lookup", response_model=BlockRead)
def import_subnet(space: str, prefix: str, inv: SQLInventory = Depends(get_inventory)):
    """Find an existing subnet by prefix, e.g. ?prefix=10.0.0.0/24."""
    try:
        return services.import_subnet(inv, space, prefix)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "import_subnet", {"space": space, "prefix": prefix})
        raise HTTPException(status_code=500, detail="Failed to look up subnet")


@app.get("/subnets/{subnet_id}", response_model=BlockRead)
def get_subnet(subnet_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.get_subnet(inv, subnet_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "get_subnet", {"subnet_id": subnet_id})
        raise HTTPException(status_code=500, detail="Failed to fetch subnet")


@app.patch("/subnets/{subnet_id}", response_model=BlockRead)
def update_subnet(subnet_id: int, update: EntityUpdate, inv: SQLInventory = Depends(get_inventory)):
    """Rename or re-tag a subnet in place."""
    try:
        return services.update_subnet(inv, subnet_id, **update.model_dump(exclude_unset=True))
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "update_subnet", {"subnet_id": subnet_id})
        raise HTTPException(status_code=500, detail="Failed to update subnet")


@app.delete("/subnets/{subnet_id}", status_code=204)
def delete_subnet(subnet_id: int, inv: SQLInventory = Depends(get_inventory)):
    """Delete a subnet, releasing its gateway first."""
    try:
        services.delete_subnet(inv, subnet_id)
        return None
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "delete_subnet", {"subnet_id": subnet_id})
        raise HTTPException(status_code=500, detail="Failed to delete subnet")


# ============================================================================
# POOL ENDPOINTS
# ============================================================================

@app.post("/spaces/{space}/pools", response_model=PoolRead, status_code=201)
def create_pool(space: str, pool_data: PoolCreate, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.create_pool(inv, space, **pool_data.model_dump())
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_pool", {"space": space, "name": pool_data.name})
        raise HTTPException(status_code=500, detail="Failed to create pool")


@app.get("/pools/{pool_id}", response_model=PoolRead)
def get_pool(pool_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.get_pool(inv, pool_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "get_pool", {"pool_id": pool_id})
        raise HTTPException(status_code=500, detail="Failed to fetch pool")


@app.patch("/pools/{pool_id}", response_model=PoolRead)
def update_pool(pool_id: int, update: EntityUpdate, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.update_pool(inv, pool_id, **update.model_dump(exclude_unset=True))
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "update_pool", {"pool_id": pool_id})
        raise HTTPException(status_code=500, detail="Failed to update pool")


@app.delete("/pools/{pool_id}", status_code=204)
def delete_pool(pool_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        services.delete_pool(inv, pool_id)
        return None
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "delete_pool", {"pool_id": pool_id})
        raise HTTPException(status_code=500, detail="Failed to delete pool")


# ============================================================================
# VLAN ENDPOINTS
# ============================================================================

@app.get("/vlan-domains", response_model=List[VlanDomain])
def list_vlan_domains(inv: SQLInventory = Depends(get_inventory)):
    try:
        return inv.list_vlan_domains()
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "list_vlan_domains")
        raise HTTPException(status_code=500, detail="Failed to fetch VLAN domains")


@app.post("/vlan-domains", response_model=VlanDomain, status_code=201)
def create_vlan_domain(domain: VlanDomainBase, inv: SQLInventory = Depends(get_inventory)):
    try:
        return inv.create_vlan_domain(domain.name, domain.first_id, domain.last_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_vlan_domain", {"name": domain.name})
        raise HTTPException(status_code=500, detail="Failed to create VLAN domain")


@app.post("/vlan-domains/{domain}/vlans", response_model=VlanRead, status_code=201)
def create_vlan(domain: str, vlan_data: VlanCreate, inv: SQLInventory = Depends(get_inventory)):
    """Reserve a VLAN ID, the requested one or the next free one."""
    try:
        return services.create_vlan(inv, domain, vlan_data.name, request_id=vlan_data.request_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_vlan", {"domain": domain, "name": vlan_data.name})
        raise HTTPException(status_code=500, detail="Failed to create VLAN")


@app.get("/vlan-domains/{domain}/vlans", response_model=List[VlanRead])
def list_vlans(domain: str, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.list_vlans(inv, domain)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "list_vlans", {"domain": domain})
        raise HTTPException(status_code=500, detail="Failed to fetch VLANs")


@app.get("/vlans/{vlan_id}", response_model=VlanRead)
def get_vlan(vlan_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.get_vlan(inv, vlan_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "get_vlan", {"vlan_id": vlan_id})
        raise HTTPException(status_code=500, detail="Failed to fetch VLAN")


@app.patch("/vlans/{vlan_id}", response_model=VlanRead)
def update_vlan(vlan_id: int, update: EntityUpdate, inv: SQLInventory = Depends(get_inventory)):
    """Rename a VLAN; the ID itself never changes."""
    try:
        if not update.name:
            raise ValidationError("A VLAN update needs a name")
        return services.update_vlan(inv, vlan_id, update.name)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "update_vlan", {"vlan_id": vlan_id})
        raise HTTPException(status_code=500, detail="Failed to update VLAN")


@app.delete("/vlans/{vlan_id}", status_code=204)
def delete_vlan(vlan_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        services.delete_vlan(inv, vlan_id)
        return None
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "delete_vlan", {"vlan_id": vlan_id})
        raise HTTPException(status_code=500, detail="Failed to delete VLAN")


# ============================================================================
# ADDRESS ENDPOINTS
# ============================================================================

@app.get("/spaces/{space}/addresses/lookup", response_model=AddressRead)
def lookup_address(space: str, address: str, inv: SQLInventory = Depends(get_inventory)):
    """Find a reserved address, e.g. ?address=10.0.0.1, with its subnet and pool."""
    try:
        return services.lookup_address(inv, space, address)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "lookup_address", {"space": space, "address": address})
        raise HTTPException(status_code=500, detail="Failed to look up address")


# ============================================================================
# DEVICE ENDPOINTS
# ============================================================================

@app.get("/devices", response_model=List[DeviceRead])
def list_devices(inv: SQLInventory = Depends(get_inventory)):
    """List all devices."""
    try:
        return services.list_devices(inv)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "list_devices")
        raise HTTPException(status_code=500, detail="Failed to fetch devices")


@app.post("/devices", response_model=DeviceRead, status_code=201)
def create_device(device: DeviceCreate, inv: SQLInventory = Depends(get_inventory)):
    """Create a new device."""
    try:
        return services.create_device(inv, device.name, device.class_name, device.tags)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "create_device", {"name": device.name})
        raise HTTPException(status_code=500, detail="Failed to create device")


@app.get("/devices/{device_id}", response_model=DeviceRead)
def get_device(device_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.get_device(inv, device_id)
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "get_device", {"device_id": device_id})
        raise HTTPException(status_code=500, detail="Failed to fetch device")


@app.patch("/devices/{device_id}", response_model=DeviceRead)
def update_device(device_id: int, update: EntityUpdate, inv: SQLInventory = Depends(get_inventory)):
    try:
        return services.update_device(inv, device_id, **update.model_dump(exclude_unset=True))
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "update_device", {"device_id": device_id})
        raise HTTPException(status_code=500, detail="Failed to update device")


@app.delete("/devices/{device_id}", status_code=204)
def delete_device(device_id: int, inv: SQLInventory = Depends(get_inventory)):
    try:
        services.delete_device(inv, device_id)
        return None
    except IPAMError as e:
        raise e.to_http_exception()
    except Exception as e:
        log_error(e, "delete_device", {"device_id": device_id})
        raise HTTPException(status_code=500, detail="Failed to delete device")


# ============================================================================
# HEALTH & STATUS ENDPOINTS
# ============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint for monitoring."""
    try:
        with Session(engine) as session:
            session.connection().execute(text("SELECT 1"))
        return {"status": "healthy", "version": VERSION, "database": "connected"}
    except Exception as e:
        logger.error("Health check failed", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "version": VERSION, "database": "disconnected", "error": str(e)},
        )


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "IPAM Core",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
