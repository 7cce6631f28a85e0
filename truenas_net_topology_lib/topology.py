"""
Interface topology resolution.

One pass turns the host's interface counters into one labelled record per
interface, in four stages:

1. snapshot: operstate, ifindex and bridge membership of every interface
2. source correlation: docker, incus, VM and VLAN mappings
3. VLAN inheritance: bridges take the VLAN of their VLAN member, bridge
   members take the VLAN of their bridge (one level only)
4. classification: the first matching rule of CLASSIFICATION_RULES wins

Nothing is kept between passes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Mapping, TypeVar

import aiohttp

from .docker.client import ContainerInfo, DockerClient, DockerNetwork
from .docker.mapping import fetch_docker_data
from .docker.naming import app_name, app_name_from_network
from .host.cgroup import build_incus_mapping
from .host.ifindex import IfindexMapT, build_ifindex_map
from .host.net_dev import InterfaceCounters, read_host_net_dev
from .host.sysfs import read_all_attributes
from .host.vlan import VlanRecord, read_vlan_config
from .options import ResolverOptions
from .vm import VMLocator

T = TypeVar("T")

LOOPBACK_INSTANCE = "loopback"
SYSTEM_APP = "system"
DOCKER_HASH_BRIDGE_PREFIX = "br-"

SOURCE_ERRORS = (OSError, RuntimeError, ValueError, asyncio.TimeoutError, aiohttp.ClientError)


class InstanceType(str, Enum):
    PHYSICAL = "physical"
    BRIDGE = "bridge"
    DOCKER = "docker"
    INCUS = "incus"
    VM = "vm"
    MACVTAP = "macvtap"
    VLAN = "vlan"
    LOOPBACK = "loopback"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InterfaceSnapshot:
    name: str
    state: str = "unknown"
    ifindex: int | None = None
    bridge: str = ""
    has_driver: bool = False


@dataclass(frozen=True)
class InterfaceInfo:
    name: str
    instance: str
    instance_type: InstanceType
    app: str
    bridge: str
    vlan: str
    state: str


@dataclass(frozen=True)
class ResolvedInterface:
    info: InterfaceInfo
    counters: InterfaceCounters


@dataclass
class TopologySources:
    veth_to_container: dict[str, ContainerInfo] = field(default_factory=dict)
    veth_to_incus: dict[str, str] = field(default_factory=dict)
    bridge_to_network: dict[str, DockerNetwork] = field(default_factory=dict)
    iface_to_vm: dict[str, str] = field(default_factory=dict)
    vlans: dict[str, VlanRecord] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolutionContext:
    sources: TopologySources
    bridge_vlans: dict[str, str]

    def inherited_vlan(self, iface: InterfaceSnapshot) -> str:
        if not iface.bridge:
            return ""
        return self.bridge_vlans.get(iface.bridge, "")


def _vlan_sort_key(vlan_id: str) -> tuple[int, int, str]:
    if vlan_id.isdigit():
        return (0, int(vlan_id), vlan_id)
    return (1, 0, vlan_id)


def compute_bridge_vlans(
    snapshot: Mapping[str, InterfaceSnapshot], vlans: Mapping[str, VlanRecord]
) -> dict[str, str]:
    """
    bridge -> VLAN id of its VLAN sub-interface member
    with several VLAN members the lowest VLAN id wins
    """
    bridge_vlans: dict[str, str] = {}
    for name, record in vlans.items():
        iface = snapshot.get(name)
        if iface is None or not iface.bridge:
            continue
        current = bridge_vlans.get(iface.bridge)
        if current is not None and current != record.vlan_id:
            logging.debug(
                f"bridge {iface.bridge} has several VLAN members ({current}, {record.vlan_id})"
            )
        if current is None or _vlan_sort_key(record.vlan_id) < _vlan_sort_key(current):
            bridge_vlans[iface.bridge] = record.vlan_id
    return bridge_vlans


def _info(
    iface: InterfaceSnapshot,
    instance_type: InstanceType,
    instance: str,
    app: str = "",
    vlan: str = "",
) -> InterfaceInfo:
    return InterfaceInfo(
        name=iface.name,
        instance=instance,
        instance_type=instance_type,
        app=app,
        bridge=iface.bridge,
        vlan=vlan,
        state=iface.state,
    )


def classify_loopback(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    return _info(iface, InstanceType.LOOPBACK, LOOPBACK_INSTANCE, SYSTEM_APP)


def classify_veth(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    """docker first, then incus, then an orphan named after its bridge's docker network"""
    sources = context.sources
    vlan = context.inherited_vlan(iface)

    container = sources.veth_to_container.get(iface.name)
    if container is not None:
        return _info(iface, InstanceType.DOCKER, container.name, app_name(container), vlan)

    incus_name = sources.veth_to_incus.get(iface.name)
    if incus_name is not None:
        return _info(iface, InstanceType.INCUS, incus_name, incus_name, vlan)

    app = ""
    network = sources.bridge_to_network.get(iface.bridge) if iface.bridge else None
    if network is not None:
        app = app_name_from_network(network.name)
    return _info(iface, InstanceType.DOCKER, iface.name, app, vlan)


def classify_vm_tap(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    vm_name = context.sources.iface_to_vm.get(iface.name)
    vlan = context.inherited_vlan(iface)
    if vm_name is None:
        return _info(iface, InstanceType.VM, iface.name, vlan=vlan)
    return _info(iface, InstanceType.VM, vm_name, vm_name, vlan)


def classify_macvtap(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    # macvtap sits directly on a physical device, never behind a bridge
    vm_name = context.sources.iface_to_vm.get(iface.name)
    if vm_name is None:
        return _info(iface, InstanceType.MACVTAP, iface.name)
    return _info(iface, InstanceType.MACVTAP, vm_name, vm_name)


def classify_vlan(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    record = context.sources.vlans.get(iface.name)
    vlan = record.vlan_id if record is not None else ""
    return _info(iface, InstanceType.VLAN, iface.name, SYSTEM_APP, vlan)


def classify_bridge(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    """
    hash-named bridges (br-<network id>) are named after their docker network,
    well-known bridges (br0, docker0, incusbr0) keep their own name
    """
    vlan = context.bridge_vlans.get(iface.name, "")
    if not iface.name.startswith(DOCKER_HASH_BRIDGE_PREFIX):
        return _info(iface, InstanceType.BRIDGE, iface.name, SYSTEM_APP, vlan)

    network = context.sources.bridge_to_network.get(iface.name)
    if network is None:
        return _info(iface, InstanceType.BRIDGE, iface.name, vlan=vlan)
    return _info(
        iface, InstanceType.BRIDGE, network.name, app_name_from_network(network.name), vlan
    )


def classify_other(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    # dot-notation VLAN aliases (eno1.100) are not caught by the prefix rule
    record = context.sources.vlans.get(iface.name)
    if record is not None:
        return _info(iface, InstanceType.VLAN, iface.name, SYSTEM_APP, record.vlan_id)

    instance_type = InstanceType.PHYSICAL if iface.has_driver else InstanceType.UNKNOWN
    return _info(iface, instance_type, iface.name, SYSTEM_APP, context.inherited_vlan(iface))


def _has_prefix(*prefixes: str) -> Callable[[str], bool]:
    return lambda name: name.startswith(prefixes)


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    matches: Callable[[str], bool]
    classify: Callable[[InterfaceSnapshot, ResolutionContext], InterfaceInfo]


# evaluated in order, the first match wins, the last rule matches everything
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("loopback", lambda name: name == "lo", classify_loopback),
    ClassificationRule("veth", _has_prefix("veth"), classify_veth),
    ClassificationRule("vm-tap", _has_prefix("vnet"), classify_vm_tap),
    ClassificationRule("macvtap", _has_prefix("macvtap", "macvlan"), classify_macvtap),
    ClassificationRule("vlan", _has_prefix("vlan"), classify_vlan),
    ClassificationRule("bridge", _has_prefix("br", "docker", "incus"), classify_bridge),
    ClassificationRule("other", lambda name: True, classify_other),
)


def classify_interface(iface: InterfaceSnapshot, context: ResolutionContext) -> InterfaceInfo:
    for rule in CLASSIFICATION_RULES:
        if rule.matches(iface.name):
            return rule.classify(iface, context)
    raise AssertionError("the last classification rule matches every interface")


def resolve_topology(
    snapshot: Mapping[str, InterfaceSnapshot], sources: TopologySources
) -> list[InterfaceInfo]:
    """stages 3 and 4, one record per snapshot entry ordered by name"""
    context = ResolutionContext(
        sources=sources, bridge_vlans=compute_bridge_vlans(snapshot, sources.vlans)
    )
    return [classify_interface(snapshot[name], context) for name in sorted(snapshot)]


async def take_snapshot(
    names: list[str], options: ResolverOptions
) -> dict[str, InterfaceSnapshot]:
    attributes = await read_all_attributes(options.sys_class_net_path, names)
    snapshot: dict[str, InterfaceSnapshot] = {}
    for name in names:
        attrs = attributes[name]
        # a master outside this pass' interface set is dropped
        bridge = attrs.master if attrs.master in attributes else ""
        snapshot[name] = InterfaceSnapshot(
            name=name,
            state=attrs.operstate,
            ifindex=attrs.ifindex,
            bridge=bridge,
            has_driver=attrs.has_driver,
        )
    return snapshot


class TopologyResolver:
    """
    Runs full resolution passes against the host.

    Every call to resolve() is an independent pass, so concurrent scrapes
    only share the (read-only) host filesystems.
    """

    def __init__(
        self,
        options: ResolverOptions,
        docker_client_factory: Callable[[], DockerClient] | None = None,
        vm_locator: VMLocator | None = None,
    ) -> None:
        self.options = options
        self._docker_client_factory = docker_client_factory or (
            lambda: DockerClient(options.docker_socket, options.api_timeout)
        )
        self._vm_locator = vm_locator or VMLocator(options)

    async def _best_effort(self, source: str, coroutine: Awaitable[T], default: T) -> T:
        try:
            return await coroutine
        except SOURCE_ERRORS as e:
            logging.debug(f"{source} unavailable, continuing without it: {e}")
            return default

    async def _fetch_docker(
        self, ifindex_map: IfindexMapT
    ) -> tuple[dict[str, ContainerInfo], dict[str, DockerNetwork]]:
        async with self._docker_client_factory() as client:
            return await fetch_docker_data(client, self.options, ifindex_map)

    async def gather_sources(self, snapshot: Mapping[str, InterfaceSnapshot]) -> TopologySources:
        """stage 2, each source is queried once and degrades on its own"""
        ifindex_map = build_ifindex_map(
            {name: iface.ifindex for name, iface in snapshot.items()}
        )

        veth_to_container, bridge_to_network = await self._best_effort(
            "docker", self._fetch_docker(ifindex_map), ({}, {})
        )
        veth_to_incus = await self._best_effort(
            "incus", build_incus_mapping(self.options, ifindex_map), {}
        )
        iface_to_vm = await self._best_effort(
            "vm locator", self._vm_locator.build_vm_mapping(ifindex_map), {}
        )
        vlans = await self._best_effort("vlan config", read_vlan_config(self.options), {})

        return TopologySources(
            veth_to_container=veth_to_container,
            veth_to_incus=veth_to_incus,
            bridge_to_network=bridge_to_network,
            iface_to_vm=iface_to_vm,
            vlans=vlans,
        )

    async def resolve(self) -> list[ResolvedInterface]:
        """
        Raises:
            FileNotFoundError, RuntimeError: if the interface counters cannot be read
        """
        counters = await read_host_net_dev(self.options)
        logging.debug(f"collected stats of {len(counters)} interfaces")

        snapshot = await take_snapshot(list(counters), self.options)
        sources = await self.gather_sources(snapshot)
        return [
            ResolvedInterface(info=info, counters=counters[info.name])
            for info in resolve_topology(snapshot, sources)
        ]
