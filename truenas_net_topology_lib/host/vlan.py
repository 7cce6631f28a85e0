"""
802.1Q VLAN sub-interfaces from /proc/net/vlan/config.

Format:
    VLAN Dev name    | VLAN ID
    Name-Type: VLAN_NAME_TYPE_RAW_PLUS_VID_NO_PAD
    eno1.100       | 100  | eno1
"""

import logging
from typing import Dict

import aiofiles
from pydantic import BaseModel

from ..options import ResolverOptions


class VlanRecord(BaseModel):
    name: str
    vlan_id: str
    parent: str = ""


def parse_vlan_config(content: str) -> Dict[str, VlanRecord]:
    result: Dict[str, VlanRecord] = {}
    for line in content.split('\n'):
        if line.startswith("VLAN") or line.startswith("Name-Type:") or not line.strip():
            continue
        parts = line.split('|')
        if len(parts) < 3:
            continue
        name = parts[0].strip()
        vlan_id = parts[1].strip()
        if name and vlan_id:
            result[name] = VlanRecord(name=name, vlan_id=vlan_id, parent=parts[2].strip())
    return result


async def read_vlan_config(options: ResolverOptions) -> Dict[str, VlanRecord]:
    """A host without the 8021q module has no config file, that is not an error."""
    path = options.host_proc_net_path / "vlan" / "config"
    try:
        async with aiofiles.open(path, 'r') as f:
            content = await f.read()
    except OSError as e:
        logging.debug(f"VLAN config not available at {path}: {e}")
        return {}

    result = parse_vlan_config(content)
    if result:
        logging.debug(f"discovered {len(result)} VLAN interfaces")
    return result
