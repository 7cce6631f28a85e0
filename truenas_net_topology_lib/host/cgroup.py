"""
Incus/LXC container discovery through process cgroups.

An LXC container's init process lives in a cgroup like:

    0::/lxc.payload.<containername>/init.scope

Only the init process is considered, every other process in the container
resolves to the same network namespace.
"""

import logging
import os
from pathlib import Path

from asyncer import asyncify

from ..options import ResolverOptions
from ..utils import read_file_string
from .ifindex import IfindexMapT, host_peers_of_pid

LXC_PAYLOAD_MARKER = "lxc.payload."
INIT_SCOPE = "/init.scope"


def parse_lxc_cgroup(content: str) -> str:
    """
    Extract the container name from /proc/<pid>/cgroup content.
    Returns an empty string unless this is an LXC container init process.
    """
    for line in content.split('\n'):
        index = line.find(LXC_PAYLOAD_MARKER)
        if index < 0:
            continue
        rest = line[index + len(LXC_PAYLOAD_MARKER):]
        slash_index = rest.find("/")
        if slash_index <= 0:
            continue
        if rest[slash_index:] != INIT_SCOPE:
            continue
        return rest[:slash_index]
    return ""


def scan_lxc_init_processes(proc_path: str | Path) -> list[tuple[int, str]]:
    """(pid, container name) of every LXC init process, ordered by pid"""
    try:
        entries = os.listdir(proc_path)
    except OSError as e:
        logging.debug(f"cannot list {proc_path}: {e}")
        return []

    pids = sorted(int(entry) for entry in entries if entry.isdigit())
    result: list[tuple[int, str]] = []
    for pid in pids:
        if pid <= 1:
            continue
        content = read_file_string(Path(proc_path) / str(pid) / "cgroup")
        if not content:
            continue
        name = parse_lxc_cgroup(content)
        if name:
            result.append((pid, name))
    return result


def _build_incus_mapping(options: ResolverOptions, ifindex_map: IfindexMapT) -> dict[str, str]:
    result: dict[str, str] = {}
    # a container is claimed by the first of its init processes that maps a veth
    mapped: set[str] = set()
    for pid, name in scan_lxc_init_processes(options.proc_path):
        if name in mapped:
            continue
        for host_iface in host_peers_of_pid(options.proc_path, pid, ifindex_map):
            result[host_iface] = name
            mapped.add(name)

    if result:
        logging.debug(f"mapped {len(result)} Incus/LXC interfaces")
    return result


async def build_incus_mapping(
    options: ResolverOptions, ifindex_map: IfindexMapT
) -> dict[str, str]:
    """host veth -> Incus/LXC container name"""
    return await asyncify(_build_incus_mapping)(options, ifindex_map)
