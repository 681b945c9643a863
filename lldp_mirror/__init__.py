"""LLDP mirroring for guests on VLAN-aware Proxmox bridges."""

__version__ = "1.0.0"
