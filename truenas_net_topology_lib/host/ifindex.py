"""
Host ifindex correlation.

A veth pair is a wire between two namespaces. Inside a container, the
"iflink" attribute of its interface is the ifindex of the host-side peer.
Joining the iflinks found through /proc/<pid>/root against the host's
ifindex -> name map yields the host veth that belongs to that process.
"""

import logging
import os
from pathlib import Path
from typing import Mapping

from ..utils import read_int

IfindexMapT = dict[int, str]


def build_ifindex_map(ifindexes: Mapping[str, int | None]) -> IfindexMapT:
    """
    ifindexes: interface name -> ifindex as read from sysfs
    built once per pass and shared by every correlator
    """
    return {index: name for name, index in ifindexes.items() if index is not None}


def find_container_iflinks(proc_path: str | Path, pid: int) -> list[int]:
    """
    reads the iflink of every non-lo interface in the network namespace of pid
    """
    container_sys_net = Path(proc_path) / str(pid) / "root" / "sys" / "class" / "net"
    try:
        names = sorted(os.listdir(container_sys_net))
    except OSError as e:
        logging.debug(f"cannot read container sysfs of pid {pid}: {e}")
        return []

    iflinks: list[int] = []
    for name in names:
        if name == "lo":
            continue
        iflink = read_int(container_sys_net / name / "iflink")
        if iflink is not None:
            iflinks.append(iflink)
    return iflinks


def correlate_peers(iflinks: list[int], ifindex_map: IfindexMapT) -> list[str]:
    return [ifindex_map[iflink] for iflink in iflinks if iflink in ifindex_map]


def host_peers_of_pid(
    proc_path: str | Path, pid: int, ifindex_map: IfindexMapT
) -> list[str]:
    return correlate_peers(find_container_iflinks(proc_path, pid), ifindex_map)
