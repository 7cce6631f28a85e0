"""
Host interface counters.

This module reads and parses the host's /proc/1/net/dev table. The set of
interfaces it returns is the working set of a whole resolution pass.
"""

from typing import Dict

import aiofiles
from pydantic import BaseModel

from ..options import ResolverOptions


class InterfaceCounters(BaseModel):
    """Cumulative counters of one interface from /proc/net/dev."""
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0

    @property
    def total_bytes(self) -> int:
        """Total bytes (received + transmitted)."""
        return self.rx_bytes + self.tx_bytes


def parse_net_dev_line(line: str) -> tuple[str, InterfaceCounters] | None:
    """
    Parse one data line of /proc/net/dev.

    Format:
        iface: rx_bytes rx_packets rx_errs rx_drop rx_fifo rx_frame rx_compressed rx_multicast
               tx_bytes tx_packets tx_errs tx_drop tx_fifo tx_colls tx_carrier tx_compressed

    Returns None for malformed lines.
    """
    if ':' not in line:
        return None

    name_part, stats_part = line.split(':', 1)
    name = name_part.strip()
    if not name:
        return None

    stats = stats_part.split()
    if len(stats) < 16:
        return None

    try:
        values = [int(value) for value in stats[:16]]
    except ValueError:
        return None
    if any(value < 0 for value in values):
        return None

    return name, InterfaceCounters(
        rx_bytes=values[0],
        rx_packets=values[1],
        rx_errors=values[2],
        rx_dropped=values[3],
        tx_bytes=values[8],
        tx_packets=values[9],
        tx_errors=values[10],
        tx_dropped=values[11],
    )


def parse_net_dev(content: str) -> Dict[str, InterfaceCounters]:
    """Parse /proc/net/dev content, skipping the two header lines."""
    result: Dict[str, InterfaceCounters] = {}
    for line in content.split('\n')[2:]:
        parsed = parse_net_dev_line(line)
        if parsed is None:
            continue
        name, counters = parsed
        result[name] = counters
    return result


async def read_host_net_dev(options: ResolverOptions) -> Dict[str, InterfaceCounters]:
    """Read the counters of every interface in the host network namespace."""
    net_dev_path = options.host_proc_net_path / "dev"

    try:
        async with aiofiles.open(net_dev_path, 'r') as f:
            content = await f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"Interface counters not found at {net_dev_path}")
    except Exception as e:
        raise RuntimeError(f"Failed to read interface counters from {net_dev_path}: {e}")
    return parse_net_dev(content)
