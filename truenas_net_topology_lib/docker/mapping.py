import asyncio
import logging

import aiohttp
from asyncer import asyncify

from ..host.ifindex import IfindexMapT, host_peers_of_pid
from ..options import ResolverOptions
from .client import ContainerInfo, DockerClient, DockerNetwork

DOCKER_ERRORS = (RuntimeError, ValueError, OSError, aiohttp.ClientError, asyncio.TimeoutError)


async def map_container_veths(
    containers: list[ContainerInfo], options: ResolverOptions, ifindex_map: IfindexMapT
) -> dict[str, ContainerInfo]:
    """host veth -> owning container"""
    veth_map: dict[str, ContainerInfo] = {}
    for container in containers:
        if container.pid <= 0:
            continue
        peers = await asyncify(host_peers_of_pid)(options.proc_path, container.pid, ifindex_map)
        for host_iface in peers:
            veth_map[host_iface] = container
    return veth_map


def map_network_bridges(networks: list[DockerNetwork]) -> dict[str, DockerNetwork]:
    """bridge interface -> docker network"""
    return {network.bridge_name: network for network in networks if network.bridge_name}


async def fetch_docker_data(
    client: DockerClient, options: ResolverOptions, ifindex_map: IfindexMapT
) -> tuple[dict[str, ContainerInfo], dict[str, DockerNetwork]]:
    """
    Returns the host veth -> container and bridge -> network mappings.
    An unreachable daemon yields two empty mappings, a failing call empties only its own.
    """
    veth_map: dict[str, ContainerInfo] = {}
    network_map: dict[str, DockerNetwork] = {}

    if not await client.available():
        logging.debug("docker socket not available, skipping container/network mapping")
        return veth_map, network_map

    try:
        containers = await client.list_containers()
    except DOCKER_ERRORS as e:
        logging.warning(f"failed to list docker containers: {e}")
    else:
        veth_map = await map_container_veths(containers, options, ifindex_map)

    try:
        networks = await client.list_networks()
    except DOCKER_ERRORS as e:
        logging.warning(f"failed to list docker networks: {e}")
    else:
        network_map = map_network_bridges(networks)

    return veth_map, network_map
