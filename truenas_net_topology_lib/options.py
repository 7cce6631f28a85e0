from pathlib import Path

from pydantic import BaseModel


class ResolverOptions(BaseModel):
    """Where the host's filesystems and sockets live.

    When the exporter runs inside a container the host's procfs, root
    filesystem and Docker socket are mounted elsewhere (e.g. /host/proc, /host).
    """

    proc_path: str = "/proc"
    rootfs_path: str = "/"
    docker_socket: str = "/var/run/docker.sock"
    command_timeout: float = 5.0  # seconds, per subprocess
    api_timeout: float = 10.0  # seconds, per Docker API request

    @property
    def is_container(self) -> bool:
        """rootfs is mounted somewhere other than /"""
        return self.rootfs_path not in ("", "/")

    @property
    def sys_class_net_path(self) -> Path:
        if self.is_container:
            return Path(self.rootfs_path) / "sys" / "class" / "net"
        return Path("/sys/class/net")

    @property
    def host_proc_net_path(self) -> Path:
        # /proc/net follows the current process' namespace, pid 1 is always on the host
        return Path(self.proc_path) / "1" / "net"

    def wrap_command(self, command: str, *args: str) -> tuple[str, ...]:
        """
        run host tools through chroot when the host root is mounted elsewhere
        """
        if self.is_container:
            return ("chroot", self.rootfs_path, command, *args)
        return (command, *args)
