import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import BaseModel, Field

BRIDGE_NAME_OPTION = "com.docker.network.bridge.name"
BRIDGE_PREFIX = "br-"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class ContainerNetwork(BaseModel):
    network_id: str = Field("", alias="NetworkID")
    mac_address: str = Field("", alias="MacAddress")
    ip_address: str = Field("", alias="IPAddress")


class ContainerInfo(BaseModel):
    id: str
    name: str
    pid: int = 0
    labels: dict[str, str] = {}
    # docker network name -> endpoint
    networks: dict[str, ContainerNetwork] = {}

    @classmethod
    def from_docker_inspect(cls, data: dict[str, Any]) -> "ContainerInfo":
        if not isinstance(data, dict):
            raise ValueError("container inspect payload is not an object")
        state = _as_dict(data.get("State"))
        config = _as_dict(data.get("Config"))
        network_settings = _as_dict(data.get("NetworkSettings"))
        return cls(
            id=data["Id"],
            name=str(data.get("Name", "")).removeprefix("/"),
            pid=state.get("Pid") or 0,
            labels=_as_dict(config.get("Labels")),
            networks={
                name: ContainerNetwork(
                    **{key: value for key, value in _as_dict(endpoint).items() if value is not None}
                )
                for name, endpoint in _as_dict(network_settings.get("Networks")).items()
            },
        )


class DockerNetwork(BaseModel):
    id: str
    name: str
    bridge_name: str

    @classmethod
    def from_docker_network(cls, data: dict[str, Any]) -> "DockerNetwork":
        network_id = str(data["Id"])
        options = _as_dict(data.get("Options"))
        bridge_name = options.get(BRIDGE_NAME_OPTION) or BRIDGE_PREFIX + network_id[:12]
        return cls(id=network_id, name=data.get("Name", ""), bridge_name=bridge_name)


class DockerClient:
    """
    Minimal Docker Engine API client talking HTTP over the unix socket.
    Only the read-only calls needed for interface mapping are implemented.

    Usage:
        async with DockerClient("/var/run/docker.sock") as client:
            if await client.available():
                containers = await client.list_containers()
    """

    def __init__(self, socket_path: str, timeout: float = 10.0) -> None:
        self.socket_path = socket_path
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "DockerClient":
        connector = aiohttp.UnixConnector(path=self.socket_path)
        self._session = aiohttp.ClientSession(
            base_url="http://localhost",
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout, sock_connect=5),
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("DockerClient must be used as an async context manager")
        return self._session

    async def _get_json(self, path: str) -> Any:
        async with self._get_session().get(path) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise RuntimeError(f"docker API {path} returned {resp.status}: {body}")
            return await resp.json(content_type=None)

    async def available(self) -> bool:
        try:
            async with self._get_session().get("/version") as resp:
                return resp.status == 200
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError):
            return False

    async def inspect_container(self, container_id: str) -> ContainerInfo:
        data = await self._get_json(f"/containers/{container_id}/json")
        return ContainerInfo.from_docker_inspect(data)

    async def list_containers(self) -> list[ContainerInfo]:
        """every running container, containers gone before inspection are skipped"""
        entries = await self._get_json("/containers/json")
        if not isinstance(entries, list):
            raise RuntimeError("docker API /containers/json did not return a list")
        result: list[ContainerInfo] = []
        for entry in entries:
            container_id = entry.get("Id", "") if isinstance(entry, dict) else ""
            if not container_id:
                continue
            try:
                result.append(await self.inspect_container(container_id))
            except (RuntimeError, ValueError, KeyError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logging.debug(f"skipping container {container_id}: {e}")
        return result

    async def list_networks(self) -> list[DockerNetwork]:
        entries = await self._get_json("/networks")
        if not isinstance(entries, list):
            raise RuntimeError("docker API /networks did not return a list")
        result: list[DockerNetwork] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                result.append(DockerNetwork.from_docker_network(entry))
            except (ValueError, KeyError) as e:
                logging.debug(f"skipping malformed docker network entry: {e}")
        return result
