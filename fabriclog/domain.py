"""Domain model of a parsed fabric log: nodes, their ports and info blocks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class NodeType(str, Enum):
    """Kind of a fabric node."""

    HOST = "host"
    SWITCH = "switch"
    ROUTER = "router"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass
class Port:
    """One port of a node, with its raw CSV columns kept in ``raw``."""

    num: int = 0
    guid: str = ""
    state: int = 0
    phy_state: int = 0
    link_speed_actv: int = 0
    link_width_actv: int = 0
    lid: int = 0
    raw: Dict[str, str] = field(default_factory=dict)


@dataclass
class NodeInfo:
    """Optional per-node information blocks."""

    switch_info: Optional[Dict[str, str]] = None
    system_info: Optional[Dict[str, str]] = None
    sharp_info: Optional[Dict[str, str]] = None


@dataclass
class Node:
    """A fabric node identified by its GUID."""

    guid: str = ""
    type: str = NodeType.UNKNOWN
    desc: str = ""
    system_image_guid: str = ""
    port_guid: str = ""
    ports: List[Port] = field(default_factory=list)
    info: Optional[NodeInfo] = None


@dataclass
class Log:
    """The nodes found in one log archive."""

    nodes: List[Node] = field(default_factory=list)