"""
Subnet and pool lifecycles against the SQL inventory.
"""
import ipaddress
from unittest.mock import Mock

import pytest

from ipam_core import services
from ipam_core.codec import IPV4_WIDTH
from ipam_core.exceptions import (
    AllocationExhaustedError,
    ConflictError,
    DuplicateResourceError,
    GatewayUnavailableError,
    InventoryError,
    InvalidCIDRError,
    NoFreeSpaceError,
    OffsetOutOfRangeError,
    ResourceNotFoundError,
    ValidationError,
)
from ipam_core.models import ResourceKind

BASE = int(ipaddress.IPv4Address("10.0.0.0"))


@pytest.fixture
def root(inventory, space):
    """10.0.0.0/24 container block."""
    return services.create_subnet(
        inventory, space, "root", 24, request_ip="10.0.0.0", terminal=False, max_jitter=0
    )


@pytest.fixture
def lan(inventory, space, root):
    """Terminal 10.0.0.0/24 inside root, ready for pools."""
    return services.create_subnet(inventory, space, "lan", 24, block="root", max_jitter=0)


class TestCreateSubnet:
    def test_top_level_block(self, root):
        assert root.prefix == "10.0.0.0/24"
        assert root.netmask == "255.255.255.0"
        assert root.level == 0
        assert root.terminal is False

    def test_top_level_block_cannot_be_terminal(self, inventory, space):
        with pytest.raises(ValidationError):
            services.create_subnet(inventory, space, "leaf", 24, request_ip="10.1.0.0", max_jitter=0)

    def test_top_level_search_starts_at_zero(self, inventory, space):
        subnet = services.create_subnet(inventory, space, "first", 8, terminal=False, max_jitter=0)
        assert subnet.prefix == "0.0.0.0/8"

    def test_first_free_candidate_is_used(self, inventory, space, root):
        services.create_subnet(inventory, space, "a", 25, block="root", max_jitter=0)
        subnet = services.create_subnet(inventory, space, "b", 26, block="root", max_jitter=0)

        assert subnet.prefix == "10.0.0.128/26"
        assert subnet.parent_id == root.id
        assert subnet.level == 1

    def test_gateway_at_positive_offset(self, inventory, space, root):
        subnet = services.create_subnet(inventory, space, "web", 26, block="root", gateway_offset=1, max_jitter=0)
        assert subnet.gateway == "10.0.0.1"
        assert subnet.tags["gateway"] == "10.0.0.1"
        space_id = inventory.resolve_scope_id(space)
        assert inventory.find_address(space_id, BASE + 1, IPV4_WIDTH) is not None

    def test_gateway_at_negative_offset(self, inventory, space, root):
        subnet = services.create_subnet(inventory, space, "db", 26, block="root", gateway_offset=-1, max_jitter=0)
        assert subnet.gateway == "10.0.0.63"

    def test_offset_out_of_range_keeps_the_block(self, inventory, space, root):
        with pytest.raises(OffsetOutOfRangeError) as excinfo:
            services.create_subnet(inventory, space, "web", 26, block="root", gateway_offset=64, max_jitter=0)

        kept = services.get_subnet(inventory, excinfo.value.reserved_id)
        assert kept.prefix == "10.0.0.0/26"
        assert kept.gateway is None

    def test_requested_address(self, inventory, space, root):
        subnet = services.create_subnet(
            inventory, space, "web", 26, block="root", request_ip="10.0.0.192", max_jitter=0
        )
        assert subnet.prefix == "10.0.0.192/26"

    def test_misaligned_requested_address(self, inventory, space, root):
        with pytest.raises(ValidationError):
            services.create_subnet(inventory, space, "web", 26, block="root", request_ip="10.0.0.10", max_jitter=0)

    def test_requested_address_already_taken(self, inventory, space, root):
        services.create_subnet(inventory, space, "a", 26, block="root", request_ip="10.0.0.64", max_jitter=0)
        with pytest.raises(AllocationExhaustedError) as excinfo:
            services.create_subnet(inventory, space, "b", 26, block="root", request_ip="10.0.0.64", max_jitter=0)
        assert excinfo.value.attempts == 1

    def test_no_free_space(self, inventory, space, root):
        services.create_subnet(inventory, space, "all", 24, block="root", max_jitter=0)
        with pytest.raises(NoFreeSpaceError):
            services.create_subnet(inventory, space, "more", 26, block="root", max_jitter=0)

    def test_terminal_parent(self, inventory, space, lan):
        with pytest.raises(ValidationError):
            services.create_subnet(inventory, space, "child", 26, block="lan", max_jitter=0)

    def test_reserved_gateway_tag(self, inventory, space, root):
        with pytest.raises(ValidationError):
            services.create_subnet(
                inventory, space, "web", 26, block="root", tags={"gateway": "10.0.0.1"}, max_jitter=0
            )

    def test_stale_candidates_fall_through(self, inventory, space, root, monkeypatch):
        services.create_subnet(inventory, space, "a", 26, block="root", max_jitter=0)
        monkeypatch.setattr(services, "find_free_blocks", lambda *args, **kwargs: [BASE, BASE + 64])

        subnet = services.create_subnet(inventory, space, "b", 26, block="root", max_jitter=0)

        assert subnet.prefix == "10.0.0.64/26"

    def test_ipv6(self, inventory, space):
        services.create_subnet(
            inventory, space, "v6root", 48, version=6, request_ip="2001:db8::", terminal=False, max_jitter=0
        )
        subnet = services.create_subnet(
            inventory, space, "v6", 64, version=6, block="v6root", gateway_offset=1, max_jitter=0
        )
        assert subnet.prefix == "2001:db8::/64"
        assert subnet.gateway == "2001:db8::1"
        assert subnet.netmask is None
        assert subnet.version == 6


class TestSubnetLifecycle:
    def test_list_and_filter_by_version(self, inventory, space, root):
        services.create_subnet(
            inventory, space, "v6root", 48, version=6, request_ip="2001:db8::", terminal=False, max_jitter=0
        )
        assert len(services.list_subnets(inventory, space)) == 2
        assert [s.name for s in services.list_subnets(inventory, space, version=4)] == ["root"]

    def test_import_subnet(self, inventory, space, root):
        assert services.import_subnet(inventory, space, "10.0.0.0/24").id == root.id

    def test_import_prefers_the_deepest_block(self, inventory, space, root, lan):
        assert services.import_subnet(inventory, space, "10.0.0.0/24").id == lan.id

    def test_import_unknown_prefix(self, inventory, space, root):
        with pytest.raises(ResourceNotFoundError):
            services.import_subnet(inventory, space, "10.9.0.0/24")

    @pytest.mark.parametrize("prefix", ["10.0.0.1/24", "10.0.0.0/abc", "10.0.0.0"])
    def test_import_invalid_prefix(self, inventory, space, root, prefix):
        with pytest.raises(InvalidCIDRError):
            services.import_subnet(inventory, space, prefix)

    def test_update_keeps_gateway(self, inventory, space, root):
        subnet = services.create_subnet(inventory, space, "web", 26, block="root", gateway_offset=1, max_jitter=0)

        updated = services.update_subnet(inventory, subnet.id, name="frontend", tags={"env": "prod"})

        assert updated.name == "frontend"
        assert updated.tags == {"env": "prod", "gateway": "10.0.0.1"}
        assert updated.prefix == subnet.prefix

    def test_update_rejects_gateway_tag(self, inventory, space, root):
        with pytest.raises(ValidationError):
            services.update_subnet(inventory, root.id, tags={"gateway": "10.0.0.9"})

    def test_delete_releases_gateway_before_block(self, inventory, space, root):
        subnet = services.create_subnet(inventory, space, "web", 26, block="root", gateway_offset=1, max_jitter=0)
        tracked = Mock(wraps=inventory)

        services.delete_subnet(tracked, subnet.id)

        kinds = [c.args[0] for c in tracked.delete.call_args_list]
        assert kinds == [ResourceKind.ADDRESS, ResourceKind.BLOCK]
        space_id = inventory.resolve_scope_id(space)
        assert inventory.find_address(space_id, BASE + 1, IPV4_WIDTH) is None
        with pytest.raises(ResourceNotFoundError):
            services.get_subnet(inventory, subnet.id)

    def test_freed_space_is_reused(self, inventory, space, root):
        subnet = services.create_subnet(inventory, space, "web", 26, block="root", max_jitter=0)
        services.delete_subnet(inventory, subnet.id)
        again = services.create_subnet(inventory, space, "web2", 26, block="root", max_jitter=0)
        assert again.prefix == subnet.prefix

    def test_block_with_children_cannot_be_deleted(self, inventory, space, root, lan):
        with pytest.raises(ValidationError):
            services.delete_subnet(inventory, root.id)


class TestPools:
    def test_explicit_range(self, inventory, space, lan):
        pool = services.create_pool(inventory, space, "lan", "static", start="10.0.0.100", end="10.0.0.149", max_jitter=0)
        assert (pool.start, pool.end, pool.size) == ("10.0.0.100", "10.0.0.149", 50)
        assert pool.prefix == "10.0.0.0/24"
        assert pool.subnet_id == lan.id

    def test_sized_ranges_fill_gaps_in_order(self, inventory, space, lan):
        services.create_pool(inventory, space, "lan", "static", start="10.0.0.100", end="10.0.0.149", max_jitter=0)

        first = services.create_pool(inventory, space, "lan", "dhcp", size=50, max_jitter=0)
        second = services.create_pool(inventory, space, "lan", "dhcp2", size=60, max_jitter=0)

        assert (first.start, first.end) == ("10.0.0.0", "10.0.0.49")
        assert (second.start, second.end) == ("10.0.0.150", "10.0.0.209")

    def test_pool_gateway(self, inventory, space, lan):
        pool = services.create_pool(
            inventory, space, "lan", "static", start="10.0.0.100", end="10.0.0.149", gateway_offset=-1, max_jitter=0
        )
        assert pool.gateway == "10.0.0.149"

    def test_overlapping_explicit_range(self, inventory, space, lan):
        services.create_pool(inventory, space, "lan", "a", start="10.0.0.100", end="10.0.0.149", max_jitter=0)
        with pytest.raises(AllocationExhaustedError):
            services.create_pool(inventory, space, "lan", "b", start="10.0.0.140", end="10.0.0.160", max_jitter=0)

    def test_range_outside_subnet(self, inventory, space, lan):
        with pytest.raises(ValidationError):
            services.create_pool(inventory, space, "lan", "a", start="10.0.0.200", end="10.0.1.10", max_jitter=0)

    def test_needs_range_or_size(self, inventory, space, lan):
        with pytest.raises(ValidationError):
            services.create_pool(inventory, space, "lan", "a", max_jitter=0)
        with pytest.raises(ValidationError):
            services.create_pool(inventory, space, "lan", "a", start="10.0.0.1", max_jitter=0)

    def test_container_block_rejects_pools(self, inventory, space, root):
        with pytest.raises(ValidationError):
            services.create_pool(inventory, space, "root", "a", size=10, max_jitter=0)

    def test_update_pool(self, inventory, space, lan):
        pool = services.create_pool(inventory, space, "lan", "a", size=10, max_jitter=0)
        updated = services.update_pool(inventory, pool.id, class_name="dhcp")
        assert updated.class_name == "dhcp"
        assert updated.start == pool.start

    def test_delete_pool_releases_gateway(self, inventory, space, lan):
        pool = services.create_pool(
            inventory, space, "lan", "a", start="10.0.0.100", end="10.0.0.149", gateway_offset=1, max_jitter=0
        )
        services.delete_pool(inventory, pool.id)

        space_id = inventory.resolve_scope_id(space)
        assert inventory.find_address(space_id, BASE + 101, IPV4_WIDTH) is None
        with pytest.raises(ResourceNotFoundError):
            services.get_pool(inventory, pool.id)

    def test_subnet_with_pools_cannot_be_deleted(self, inventory, space, lan):
        services.create_pool(inventory, space, "lan", "a", size=10, max_jitter=0)
        with pytest.raises(ValidationError):
            services.delete_subnet(inventory, lan.id)


class TestGatewayFailures:
    @pytest.fixture
    def routed_root(self, inventory, space):
        """10.0.0.0/24 container whose gateway is 10.0.0.1."""
        return services.create_subnet(
            inventory, space, "root", 24, request_ip="10.0.0.0", terminal=False, gateway_offset=1, max_jitter=0
        )

    def test_gateway_in_use_keeps_the_block(self, inventory, space, routed_root):
        with pytest.raises(GatewayUnavailableError) as excinfo:
            services.create_subnet(inventory, space, "child", 26, block="root", gateway_offset=1, max_jitter=0)

        assert not isinstance(excinfo.value, ConflictError)
        assert excinfo.value.gateway == "10.0.0.1"
        kept = services.get_subnet(inventory, excinfo.value.reserved_id)
        assert kept.prefix == "10.0.0.0/26"
        assert kept.gateway is None
        assert services.get_subnet(inventory, routed_root.id).gateway == "10.0.0.1"

    def test_inventory_failure_on_gateway_reports_kept_block(self, inventory, space, root):
        tracked = Mock(wraps=inventory)

        def reserve(kind, candidate, attributes):
            if kind is ResourceKind.ADDRESS:
                raise InventoryError("reserve address", "timeout")
            return inventory.reserve(kind, candidate, attributes)

        tracked.reserve.side_effect = reserve

        with pytest.raises(InventoryError) as excinfo:
            services.create_subnet(tracked, space, "web", 26, block="root", gateway_offset=1, max_jitter=0)

        assert services.get_subnet(inventory, excinfo.value.reserved_id).prefix == "10.0.0.0/26"

    def test_refused_delete_keeps_the_gateway(self, inventory, space, routed_root):
        services.create_subnet(inventory, space, "child", 26, block="root", max_jitter=0)

        with pytest.raises(ValidationError):
            services.delete_subnet(inventory, routed_root.id)

        space_id = inventory.resolve_scope_id(space)
        assert inventory.find_address(space_id, BASE + 1, IPV4_WIDTH) is not None
        assert services.get_subnet(inventory, routed_root.id).gateway == "10.0.0.1"


class TestUtilization:
    def test_container_counts_child_blocks(self, inventory, space, root):
        services.create_subnet(inventory, space, "half", 25, block="root", max_jitter=0)
        assert services.get_subnet(inventory, root.id).utilization == 50.0

    def test_subnet_counts_pools(self, inventory, space, lan):
        assert lan.utilization == 0.0
        services.create_pool(inventory, space, "lan", "a", size=64, max_jitter=0)
        assert services.get_subnet(inventory, lan.id).utilization == 25.0


class TestLookupAddress:
    def test_subnet_gateway(self, inventory, space, root):
        services.create_subnet(inventory, space, "web", 26, block="root", gateway_offset=1, max_jitter=0)

        found = services.lookup_address(inventory, space, "10.0.0.1")

        assert found.name == "gateway"
        assert found.subnet == "web"
        assert found.prefix == "10.0.0.0/26"
        assert found.prefix_size == 26
        assert found.pool is None

    def test_pool_gateway_reports_pool(self, inventory, space, lan):
        services.create_pool(
            inventory, space, "lan", "static", start="10.0.0.100", end="10.0.0.149", gateway_offset=-1, max_jitter=0
        )
        found = services.lookup_address(inventory, space, "10.0.0.149")
        assert (found.subnet, found.pool) == ("lan", "static")

    def test_unreserved_address(self, inventory, space, root):
        with pytest.raises(ResourceNotFoundError):
            services.lookup_address(inventory, space, "10.0.0.7")

    def test_ipv6(self, inventory, space):
        services.create_subnet(
            inventory, space, "v6root", 48, version=6, request_ip="2001:db8::", terminal=False,
            gateway_offset=1, max_jitter=0,
        )
        found = services.lookup_address(inventory, space, "2001:db8::1")
        assert found.version == 6
        assert found.prefix == "2001:db8::/48"


class TestDevices:
    def test_create_lowercases_name(self, inventory):
        device = services.create_device(inventory, "Core-SW1.example.net", class_name="switch", tags={"site": "a"})
        assert device.name == "core-sw1.example.net"
        assert [d.name for d in services.list_devices(inventory)] == ["core-sw1.example.net"]

    @pytest.mark.parametrize("name", ["", "-edge", "bad_name", "spaces here"])
    def test_rejects_non_hostnames(self, inventory, name):
        with pytest.raises(ValidationError):
            services.create_device(inventory, name)

    def test_duplicate(self, inventory):
        services.create_device(inventory, "router1")
        with pytest.raises(DuplicateResourceError):
            services.create_device(inventory, "ROUTER1")

    def test_update_class_and_tags(self, inventory):
        device = services.create_device(inventory, "router1")
        updated = services.update_device(inventory, device.id, class_name="router", tags={"rack": "r2"})
        assert (updated.class_name, updated.tags) == ("router", {"rack": "r2"})

    def test_cannot_rename(self, inventory):
        device = services.create_device(inventory, "router1")
        with pytest.raises(ValidationError):
            services.update_device(inventory, device.id, name="router2")

    def test_delete(self, inventory):
        device = services.create_device(inventory, "router1")
        services.delete_device(inventory, device.id)
        with pytest.raises(ResourceNotFoundError):
            services.get_device(inventory, device.id)
