from sqlmodel import SQLModel

from ipam_core.exceptions import DuplicateResourceError, ResourceNotFoundError
from ipam_core.main import engine, inventory
from ipam_core import services

SQLModel.metadata.create_all(engine)


def ensure_block(space, name, prefix, version=4):
    """Top-level container block, created once at a fixed prefix."""
    try:
        return services.import_subnet(inventory, space, prefix)
    except ResourceNotFoundError:
        address, _, length = prefix.partition("/")
        return services.create_subnet(
            inventory, space, name, int(length),
            version=version, request_ip=address, terminal=False, max_jitter=0,
        )


def seed():
    # 1. Spaces
    for name in ("Prod", "Dev"):
        try:
            inventory.create_space(name)
        except DuplicateResourceError:
            pass

    # 2. Blocks
    ensure_block("Prod", "prod-v4", "10.0.0.0/16")
    ensure_block("Prod", "prod-v6", "2001:db8::/48", version=6)
    ensure_block("Dev", "dev-v4", "192.168.0.0/16")

    # 3. Subnets with gateways
    if not services.list_subnets(inventory, "Prod", version=4)[1:]:
        services.create_subnet(inventory, "Prod", "web", 24, block="prod-v4", gateway_offset=1, max_jitter=0)
        services.create_subnet(inventory, "Prod", "db", 26, block="prod-v4", gateway_offset=-1, max_jitter=0)
        services.create_subnet(inventory, "Prod", "web6", 64, version=6, block="prod-v6", gateway_offset=1, max_jitter=0)

    # 4. VLAN domain
    try:
        inventory.create_vlan_domain("campus", 100, 199)
        services.create_vlan(inventory, "campus", "users", max_jitter=0)
        services.create_vlan(inventory, "campus", "voice", request_id=150, max_jitter=0)
    except DuplicateResourceError:
        pass

    print("Seeded spaces:", [s.name for s in inventory.list_spaces()])


if __name__ == "__main__":
    seed()
