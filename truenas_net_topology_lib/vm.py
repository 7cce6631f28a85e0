"""
VM interface discovery.

On TrueNAS SCALE the middleware (midclt) knows every VM and its QEMU pid,
and the pid's open file descriptors tell which tap/macvtap devices it owns:

- tap devices: /dev/net/tun descriptors, with "iff: vnetX" in fdinfo
- macvtap devices: /dev/tapN descriptors, N being the macvtap ifindex

Hosts without the middleware fall back to virsh.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from asyncer import asyncify
from pydantic import BaseModel

from .host.ifindex import IfindexMapT
from .options import ResolverOptions
from .utils import CommandRunnerT, exec_command, read_file_string, read_link

TUN_DEVICE = "/dev/net/tun"
MACVTAP_DEVICE_PREFIX = "/dev/tap"
RUNNING_STATE = "RUNNING"

COMMAND_ERRORS = (RuntimeError, OSError, ValueError, asyncio.TimeoutError)


class VMEntry(BaseModel):
    name: str
    state: str = ""
    pid: int = 0

    @classmethod
    def from_midclt(cls, data: dict[str, Any]) -> "VMEntry":
        status = data.get("status")
        if not isinstance(status, dict):
            status = {}
        return cls(
            name=data.get("name", ""),
            state=status.get("state") or "",
            pid=status.get("pid") or 0,
        )

    @property
    def running(self) -> bool:
        return self.state == RUNNING_STATE and self.pid > 0


def parse_midclt_vms(output: str) -> list[VMEntry]:
    """running VMs from `midclt call vm.query`"""
    raw = json.loads(output)
    if not isinstance(raw, list):
        raise ValueError("midclt vm.query did not return a list")
    vms = [VMEntry.from_midclt(entry) for entry in raw if isinstance(entry, dict)]
    return [vm for vm in vms if vm.running]


def read_fdinfo_iff(path: str | Path) -> str:
    for line in read_file_string(path).split("\n"):
        if line.startswith("iff:"):
            return line.removeprefix("iff:").strip()
    return ""


def find_qemu_interfaces(proc_path: str | Path, pid: int, ifindex_map: IfindexMapT) -> list[str]:
    """tap and macvtap interfaces held open by a QEMU process"""
    pid_path = Path(proc_path) / str(pid)
    try:
        fds = sorted(os.listdir(pid_path / "fd"), key=lambda fd: (len(fd), fd))
    except OSError as e:
        logging.debug(f"cannot read QEMU fd dir of pid {pid}: {e}")
        return []

    interfaces: list[str] = []
    for fd in fds:
        target = read_link(pid_path / "fd" / fd)
        if target == TUN_DEVICE:
            name = read_fdinfo_iff(pid_path / "fdinfo" / fd)
            if name:
                interfaces.append(name)
        elif target.startswith(MACVTAP_DEVICE_PREFIX):
            index = target.removeprefix(MACVTAP_DEVICE_PREFIX)
            if index.isdigit() and int(index) in ifindex_map:
                interfaces.append(ifindex_map[int(index)])
    return interfaces


def parse_virsh_list(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def parse_virsh_domiflist(output: str) -> list[str]:
    """
    virsh domiflist output:
     Interface   Type     Source   Model    MAC
    -----------------------------------------------------
     vnet0       bridge   br0      virtio   52:54:00:...
    """
    interfaces: list[str] = []
    for line in output.splitlines()[2:]:
        fields = line.split()
        if fields and fields[0] != "-":
            interfaces.append(fields[0])
    return interfaces


class VMLocator:
    def __init__(self, options: ResolverOptions, runner: CommandRunnerT = exec_command) -> None:
        self._options = options
        self._runner = runner

    async def run_command(self, command: str, *args: str) -> str:
        return await self._runner(
            *self._options.wrap_command(command, *args),
            timeout=self._options.command_timeout,
        )

    async def query_midclt_vms(self) -> list[VMEntry]:
        output = await self.run_command("midclt", "call", "vm.query")
        return parse_midclt_vms(output)

    async def map_via_midclt(self, ifindex_map: IfindexMapT) -> dict[str, str]:
        result: dict[str, str] = {}
        for vm in await self.query_midclt_vms():
            interfaces = await asyncify(find_qemu_interfaces)(
                self._options.proc_path, vm.pid, ifindex_map
            )
            for interface in interfaces:
                result[interface] = vm.name
        return result

    async def map_via_virsh(self) -> dict[str, str]:
        vm_names = parse_virsh_list(
            await self.run_command("virsh", "list", "--name", "--state-running")
        )
        result: dict[str, str] = {}
        for vm_name in vm_names:
            try:
                output = await self.run_command("virsh", "domiflist", vm_name)
            except COMMAND_ERRORS as e:
                logging.debug(f"failed to get interfaces of VM {vm_name}: {e}")
                continue
            for interface in parse_virsh_domiflist(output):
                result[interface] = vm_name
        return result

    async def build_vm_mapping(self, ifindex_map: IfindexMapT) -> dict[str, str]:
        """tap/macvtap interface -> VM name, empty if neither midclt nor virsh work"""
        try:
            result = await self.map_via_midclt(ifindex_map)
        except COMMAND_ERRORS as e:
            logging.debug(f"midclt VM query failed: {e}")
        else:
            if result:
                logging.debug(f"mapped {len(result)} VM interfaces via midclt")
                return result

        try:
            return await self.map_via_virsh()
        except COMMAND_ERRORS as e:
            logging.debug(f"vm mapping not available (neither midclt nor virsh): {e}")
            return {}
