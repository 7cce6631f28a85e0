"""
Per-interface attributes from /sys/class/net/<iface>.

Every read is best effort: an attribute that cannot be read yields an empty
value for that one interface.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from asyncer import asyncify

from ..utils import read_file_string, read_int, read_link

LINK_STATES = ("up", "down", "unknown")


@dataclass(frozen=True)
class SysfsAttributes:
    operstate: str
    ifindex: int | None
    master: str  # parent bridge, empty if none
    has_driver: bool


def normalize_state(raw: str) -> str:
    state = raw.strip().lower()
    if state in LINK_STATES:
        return state
    return "unknown"


def read_operstate(sys_net: Path, name: str) -> str:
    return normalize_state(read_file_string(sys_net / name / "operstate"))


def read_ifindex(sys_net: Path, name: str) -> int | None:
    return read_int(sys_net / name / "ifindex")


def read_master(sys_net: Path, name: str) -> str:
    """bridge membership is a "master" symlink, its basename is the bridge"""
    target = read_link(sys_net / name / "master")
    if not target:
        return ""
    return Path(target).name


def has_device_driver(sys_net: Path, name: str) -> bool:
    """only real hardware has a device/driver link"""
    return read_link(sys_net / name / "device" / "driver") != ""


def read_attributes(sys_net: Path, name: str) -> SysfsAttributes:
    return SysfsAttributes(
        operstate=read_operstate(sys_net, name),
        ifindex=read_ifindex(sys_net, name),
        master=read_master(sys_net, name),
        has_driver=has_device_driver(sys_net, name),
    )


@asyncify
def read_all_attributes(sys_net: Path, names: Iterable[str]) -> dict[str, SysfsAttributes]:
    return {name: read_attributes(sys_net, name) for name in names}
