import asyncio
import logging
import os
from typing import TypedDict

from aiohttp import web

from truenas_net_topology_lib import ResolverOptions, TopologyResolver

from . import __version__
from .server import create_app


class DuplicateFilter(logging.Filter):
    def filter(self, record: logging.LogRecord):
        current_log = (record.module, record.levelno, record.msg)
        if current_log != getattr(self, "last_log", None):
            self.last_log = current_log
            return True
        return False


class ConfigT(TypedDict):
    logging_level: str
    bind_host: str
    bind_port: int
    metrics_path: str
    procfs_path: str
    rootfs_path: str
    docker_socket: str
    command_timeout: float
    api_timeout: float


config: ConfigT = {
    "logging_level": os.environ.get("TNE_LOGGING_LEVEL", "INFO").upper(),
    "bind_host": os.environ.get("TNE_BIND_HOST", "0.0.0.0"),
    "bind_port": int(os.environ.get("TNE_BIND_PORT", "9551")),
    "metrics_path": os.environ.get("TNE_METRICS_PATH", "/metrics"),
    "procfs_path": os.environ.get("TNE_PROCFS_PATH", "/proc"),
    "rootfs_path": os.environ.get("TNE_ROOTFS_PATH", "/"),
    "docker_socket": os.environ.get("TNE_DOCKER_SOCKET", "/var/run/docker.sock"),
    "command_timeout": float(os.environ.get("TNE_COMMAND_TIMEOUT", "5")),
    "api_timeout": float(os.environ.get("TNE_API_TIMEOUT", "10")),
}

logging.basicConfig(
    format="%(asctime)s %(levelname)s %(message)s",
    level=config["logging_level"],
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger()
logger.addFilter(DuplicateFilter())
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def run():
    options = ResolverOptions(
        proc_path=config["procfs_path"],
        rootfs_path=config["rootfs_path"],
        docker_socket=config["docker_socket"],
        command_timeout=config["command_timeout"],
        api_timeout=config["api_timeout"],
    )
    logging.info(
        f"starting truenas-net-exporter {__version__} "
        f"(procfs={options.proc_path}, rootfs={options.rootfs_path}, "
        f"docker socket={options.docker_socket})"
    )

    app = create_app(TopologyResolver(options), config["metrics_path"])
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config["bind_host"], config["bind_port"])
    await site.start()
    logging.info(f"listening on {config['bind_host']}:{config['bind_port']}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
