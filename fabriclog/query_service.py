"""Read-side queries over stored logs, nodes and ports."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Union

from . import repository as repo_mod
from .repository import NodeInfoRow, NodeRow, PortRow

LogId = Union[uuid.UUID, str]


class NotFoundError(LookupError):
    """The requested log or node does not exist."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class LogMeta:
    id: uuid.UUID
    status: str
    uploaded_at: Optional[datetime]
    nodes_count: int = 0
    ports_count: int = 0
    error_message: str = ""


@dataclass(frozen=True)
class TopologyNode:
    id: int
    log_id: Optional[uuid.UUID]
    guid: str
    type: str
    desc: str = ""


@dataclass(frozen=True)
class Port:
    id: int
    node_id: int
    num: int = 0
    guid: str = ""
    state: int = 0
    phy_state: int = 0
    link_speed_actv: int = 0
    link_width_actv: int = 0
    lid: int = 0
    raw: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class Topology:
    nodes: List[TopologyNode] = field(default_factory=list)
    ports: List[Port] = field(default_factory=list)


@dataclass(frozen=True)
class NodeDetails:
    id: int
    log_id: Optional[uuid.UUID]
    guid: str
    type: str
    desc: str = ""
    system_image_guid: str = ""
    port_guid: str = ""
    switch_info: Optional[Dict[str, str]] = None
    system_info: Optional[Dict[str, str]] = None
    sharp_info: Optional[Dict[str, str]] = None


class QueryRepository(Protocol):
    def get_log(self, log_id: LogId) -> repo_mod.LogMeta: ...

    def count_by_log(self, log_id: LogId) -> repo_mod.Counts: ...

    def list_nodes(self, log_id: LogId) -> List[NodeRow]: ...

    def list_ports_by_log(self, log_id: LogId) -> List[PortRow]: ...

    def list_ports_by_node(self, node_id: int) -> List[PortRow]: ...

    def get_node(self, node_id: int) -> NodeRow: ...

    def get_node_info(self, node_id: int) -> Optional[NodeInfoRow]: ...

    def node_exists(self, node_id: int) -> bool: ...


def _to_service_port(row: PortRow) -> Port:
    return Port(
        id=row.id,
        node_id=row.node_id,
        num=row.num,
        guid=row.guid,
        state=row.state,
        phy_state=row.phy_state,
        link_speed_actv=row.link_speed_actv,
        link_width_actv=row.link_width_actv,
        lid=row.lid,
        raw=row.raw,
    )


def _build_topology(node_rows: Iterable[NodeRow], port_rows: Iterable[PortRow]) -> Topology:
    return Topology(
        nodes=[
            TopologyNode(id=n.id, log_id=n.log_id, guid=n.guid, type=n.type, desc=n.desc)
            for n in node_rows or ()
        ],
        ports=[_to_service_port(p) for p in port_rows or ()],
    )


class QueryService:
    """Answers the read queries of the API from the repository."""

    def __init__(self, repo: QueryRepository) -> None:
        self._repo = repo

    def _require_log(self, log_id: LogId) -> repo_mod.LogMeta:
        try:
            return self._repo.get_log(log_id)
        except repo_mod.NotFoundError as err:
            raise NotFoundError(f"log {log_id} not found") from err

    def get_log_meta(self, log_id: LogId) -> LogMeta:
        """Return the log's status with its node and port counts."""
        meta = self._require_log(log_id)
        counts = self._repo.count_by_log(log_id)
        return LogMeta(
            id=meta.id,
            status=meta.status,
            uploaded_at=meta.uploaded_at,
            nodes_count=counts.nodes,
            ports_count=counts.ports,
            error_message=meta.error_message,
        )

    def get_topology(self, log_id: LogId) -> Topology:
        """Return every node and port of the log."""
        self._require_log(log_id)
        node_rows = self._repo.list_nodes(log_id)
        port_rows = self._repo.list_ports_by_log(log_id)
        return _build_topology(node_rows, port_rows)

    def get_node_details(self, node_id: int) -> NodeDetails:
        """Return the node's attributes and any stored info blocks."""
        try:
            node = self._repo.get_node(node_id)
        except repo_mod.NotFoundError as err:
            raise NotFoundError(f"node {node_id} not found") from err

        info = self._repo.get_node_info(node_id) or NodeInfoRow()
        return NodeDetails(
            id=node.id,
            log_id=node.log_id,
            guid=node.guid,
            type=node.type,
            desc=node.desc,
            system_image_guid=node.system_image_guid,
            port_guid=node.port_guid,
            switch_info=info.switch_info,
            system_info=info.system_info,
            sharp_info=info.sharp_info,
        )

    def list_ports_for_node(self, node_id: int) -> List[Port]:
        """Return the node's ports; raises NotFoundError for an unknown node."""
        if not self._repo.node_exists(node_id):
            raise NotFoundError(f"node {node_id} not found")
        return [_to_service_port(row) for row in self._repo.list_ports_by_node(node_id)]