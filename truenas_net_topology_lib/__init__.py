from .docker import ContainerInfo, DockerClient, DockerNetwork
from .host import InterfaceCounters, VlanRecord
from .options import ResolverOptions
from .topology import (
    CLASSIFICATION_RULES,
    InstanceType,
    InterfaceInfo,
    InterfaceSnapshot,
    ResolvedInterface,
    TopologyResolver,
    TopologySources,
    resolve_topology,
)
from .vm import VMLocator

__all__ = [
    "TopologyResolver",
    "ResolverOptions",
    "TopologySources",
    "InterfaceSnapshot",
    "InterfaceInfo",
    "InterfaceCounters",
    "InstanceType",
    "ResolvedInterface",
    "CLASSIFICATION_RULES",
    "resolve_topology",
    "DockerClient",
    "ContainerInfo",
    "DockerNetwork",
    "VlanRecord",
    "VMLocator",
]
