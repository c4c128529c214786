"""IPAM Core: prefix, pool and VLAN allocation over an authoritative inventory."""

__version__ = "1.0.0"
