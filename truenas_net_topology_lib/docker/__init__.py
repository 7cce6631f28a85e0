from .client import ContainerInfo, ContainerNetwork, DockerClient, DockerNetwork
from .naming import app_name, app_name_from_network

__all__ = [
    "DockerClient",
    "ContainerInfo",
    "ContainerNetwork",
    "DockerNetwork",
    "app_name",
    "app_name_from_network",
]
