"""
Reservation messages and delete guards of the SQL inventory.
"""
import ipaddress

import pytest

from ipam_core.codec import IPV4_WIDTH
from ipam_core.exceptions import ConflictError, ValidationError
from ipam_core.models import ResourceKind

BASE = int(ipaddress.IPv4Address("10.0.0.0"))


@pytest.fixture
def space_id(inventory, space):
    return inventory.resolve_scope_id(space)


@pytest.fixture
def root_id(inventory, space_id):
    return inventory.reserve(ResourceKind.BLOCK, BASE, {
        "space_id": space_id, "parent_id": None, "name": "root",
        "width": IPV4_WIDTH, "prefix_length": 24, "terminal": False,
    })


class TestConflictMessages:
    def test_address_is_shown_in_dotted_notation(self, inventory, space_id):
        attrs = {"space_id": space_id, "width": IPV4_WIDTH, "name": "gw"}
        inventory.reserve(ResourceKind.ADDRESS, BASE + 1, attrs)

        with pytest.raises(ConflictError) as excinfo:
            inventory.reserve(ResourceKind.ADDRESS, BASE + 1, attrs)

        assert "10.0.0.1" in excinfo.value.message
        assert str(BASE + 1) not in excinfo.value.message

    def test_block_is_shown_as_prefix(self, inventory, space_id, root_id):
        attrs = {
            "space_id": space_id, "parent_id": root_id, "name": "web",
            "width": IPV4_WIDTH, "prefix_length": 26,
        }
        inventory.reserve(ResourceKind.BLOCK, BASE, attrs)

        with pytest.raises(ConflictError) as excinfo:
            inventory.reserve(ResourceKind.BLOCK, BASE, attrs)

        assert "10.0.0.0/26" in excinfo.value.message

    def test_pool_is_shown_as_range(self, inventory, space_id, root_id):
        lan_id = inventory.reserve(ResourceKind.BLOCK, BASE, {
            "space_id": space_id, "parent_id": root_id, "name": "lan",
            "width": IPV4_WIDTH, "prefix_length": 24,
        })
        attrs = {"block_id": lan_id, "name": "a", "width": IPV4_WIDTH, "size": 10}
        inventory.reserve(ResourceKind.POOL, BASE + 5, attrs)

        with pytest.raises(ConflictError) as excinfo:
            inventory.reserve(ResourceKind.POOL, BASE, attrs)

        assert "10.0.0.0-10.0.0.9" in excinfo.value.message


class TestCheckDeletable:
    def test_container_with_children(self, inventory, space_id, root_id):
        inventory.reserve(ResourceKind.BLOCK, BASE, {
            "space_id": space_id, "parent_id": root_id, "name": "web",
            "width": IPV4_WIDTH, "prefix_length": 26,
        })
        with pytest.raises(ValidationError):
            inventory.check_deletable(ResourceKind.BLOCK, root_id)

    def test_empty_block(self, inventory, root_id):
        inventory.check_deletable(ResourceKind.BLOCK, root_id)
        inventory.delete(ResourceKind.BLOCK, root_id)
