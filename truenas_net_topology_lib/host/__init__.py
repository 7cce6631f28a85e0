from .cgroup import build_incus_mapping, parse_lxc_cgroup, scan_lxc_init_processes
from .ifindex import build_ifindex_map, correlate_peers, find_container_iflinks
from .net_dev import InterfaceCounters, parse_net_dev, read_host_net_dev
from .sysfs import SysfsAttributes, normalize_state, read_all_attributes
from .vlan import VlanRecord, parse_vlan_config, read_vlan_config

__all__ = [
    # Interface counters
    "InterfaceCounters",
    "parse_net_dev",
    "read_host_net_dev",
    # Sysfs attributes
    "SysfsAttributes",
    "normalize_state",
    "read_all_attributes",
    # VLAN config
    "VlanRecord",
    "parse_vlan_config",
    "read_vlan_config",
    # Ifindex correlation
    "build_ifindex_map",
    "correlate_peers",
    "find_container_iflinks",
    # Incus/LXC cgroups
    "parse_lxc_cgroup",
    "scan_lxc_init_processes",
    "build_incus_mapping",
]
