"""Builds the domain model from the files of a log archive."""

from __future__ import annotations

import dataclasses
import re
from typing import Callable, Dict, Iterable, List, Optional, Union

from .domain import Log, Node, NodeInfo, NodeType, Port
from .sections import SectionEvent, _decoded_lines, iter_sections

SUFFIX_DB_CSV = ".db_csv"
SUFFIX_SHARP_AN = ".sharp_an_info"
GUID_PREFIX = "0x"
SHARP_GUID_LABEL = "SW_GUID="
SHARP_DELIMITER = "---"

SECTION_NODES = "NODES"
SECTION_PORTS = "PORTS"
SECTION_SWITCHES = "SWITCHES"
SECTION_SYSTEM_INFO = "SYSTEM_GENERAL_INFORMATION"

_NODE_TYPES = {
    "1": NodeType.HOST,
    "2": NodeType.SWITCH,
    "3": NodeType.ROUTER,
}

_INT = re.compile(r"[+-]?[0-9]+")
_INT_MIN, _INT_MAX = -(2**63), 2**63 - 1


def _parse_int_or_zero(text: str) -> int:
    if not _INT.fullmatch(text):
        return 0
    value = int(text)
    return value if _INT_MIN <= value <= _INT_MAX else 0


def _first_non_empty(*values: Optional[str]) -> str:
    return next((v for v in values if v), "")


def _node_guid(columns: Dict[str, str]) -> str:
    return _first_non_empty(columns.get("NodeGUID"), columns.get("NodeGuid"))


class Aggregator:
    """Collects nodes, ports and info blocks across the files of one log."""

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._handlers: Dict[str, Callable[[Dict[str, str]], None]] = {
            SECTION_NODES: self._add_node,
            SECTION_PORTS: self._add_port,
            SECTION_SWITCHES: self._set_switch_info,
            SECTION_SYSTEM_INFO: self._set_system_info,
        }

    def analyze_file(self, name: str, stream: Iterable[Union[str, bytes]]) -> None:
        """Read one archive member; files of other kinds are ignored."""
        if name.endswith(SUFFIX_DB_CSV):
            for event in iter_sections(stream):
                self._handle(event)
        elif name.endswith(SUFFIX_SHARP_AN):
            self._analyze_sharp(stream)

    def result(self) -> Log:
        """Return the nodes collected so far."""
        return Log(nodes=[dataclasses.replace(node) for node in self._nodes.values()])

    def _handle(self, event: SectionEvent) -> None:
        handler = self._handlers.get(event.name)
        if handler is not None:
            handler(dict(zip(event.columns, event.row)))

    def _add_node(self, columns: Dict[str, str]) -> None:
        guid = columns.get("NodeGUID", "")
        if not guid:
            return
        self._nodes[guid] = Node(
            guid=guid,
            type=_NODE_TYPES.get(columns.get("NodeType", ""), NodeType.UNKNOWN),
            desc=columns.get("NodeDesc", "").strip('"'),
            system_image_guid=columns.get("SystemImageGUID", ""),
            port_guid=columns.get("PortGUID", ""),
        )

    def _add_port(self, columns: Dict[str, str]) -> None:
        node = self._nodes.get(_node_guid(columns))
        if node is None:
            return
        node.ports.append(
            Port(
                num=_parse_int_or_zero(columns.get("PortNum", "")),
                guid=_first_non_empty(columns.get("PortGUID"), columns.get("PortGuid")),
                state=_parse_int_or_zero(columns.get("PortState", "")),
                phy_state=_parse_int_or_zero(columns.get("PortPhyState", "")),
                link_speed_actv=_parse_int_or_zero(columns.get("LinkSpeedActv", "")),
                link_width_actv=_parse_int_or_zero(columns.get("LinkWidthActv", "")),
                lid=_parse_int_or_zero(columns.get("LID", "")),
                raw=columns,
            )
        )

    def _info_for(self, guid: str) -> Optional[NodeInfo]:
        node = self._nodes.get(guid)
        if node is None:
            return None
        if node.info is None:
            node.info = NodeInfo()
        return node.info

    def _set_switch_info(self, columns: Dict[str, str]) -> None:
        info = self._info_for(_node_guid(columns))
        if info is not None:
            info.switch_info = columns

    def _set_system_info(self, columns: Dict[str, str]) -> None:
        info = self._info_for(_node_guid(columns))
        if info is not None:
            info.system_info = columns

    def _commit_sharp(self, guid: str, values: Optional[Dict[str, str]]) -> None:
        if not guid or values is None:
            return
        info = self._info_for(guid)
        if info is not None:
            info.sharp_info = values

    def _analyze_sharp(self, stream: Iterable[Union[str, bytes]]) -> None:
        guid = ""
        current: Optional[Dict[str, str]] = None

        for raw_line in _decoded_lines(stream):
            line = raw_line.strip()
            if not line or line.startswith(SHARP_DELIMITER):
                continue

            if line.startswith(SHARP_GUID_LABEL):
                self._commit_sharp(guid, current)
                value = line[len(SHARP_GUID_LABEL):]
                if not value.startswith(GUID_PREFIX):
                    value = GUID_PREFIX + value
                guid = value
                current = {}
                continue

            if current is None:
                continue
            key, sep, value = line.partition("=")
            if not sep or not key:
                continue
            current[key.strip()] = value.strip()

        self._commit_sharp(guid, current)


def _nodes_by_guid(log: Log) -> Dict[str, Node]:
    return {node.guid: node for node in log.nodes}


__all__: List[str] = ["Aggregator"]