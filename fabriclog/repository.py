"""Persistence of parsed logs and the queries over them."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import create_engine, exists, func, insert, select, text, update
from sqlalchemy.engine import Connection, Engine

from .domain import Log, NodeInfo
from .schema import _utc_now, failed_logs, logs, nodes, nodes_info, ports

STATUS_PROCESSING = "processing"
STATUS_FAILED = "failed"
STATUS_OK = "ok"
REAPER_ERROR_MESSAGE = "stale: timed out by ETL"

_SCHEME_POSTGRES = "postgres://"
_SCHEME_POSTGRESQL = "postgresql://"

LogId = Union[uuid.UUID, str]


class NotFoundError(LookupError):
    """The requested record does not exist."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class LogMeta:
    id: uuid.UUID
    status: str
    uploaded_at: datetime
    error_message: str = ""


@dataclass(frozen=True)
class Counts:
    nodes: int
    ports: int


@dataclass(frozen=True)
class NodeRow:
    id: int
    log_id: uuid.UUID
    guid: str
    type: str
    desc: str
    system_image_guid: str
    port_guid: str


@dataclass(frozen=True)
class PortRow:
    id: int
    node_id: int
    num: int
    guid: str
    state: int
    phy_state: int
    link_speed_actv: int
    link_width_actv: int
    lid: int
    raw: Optional[Dict[str, str]]


@dataclass(frozen=True)
class NodeInfoRow:
    switch_info: Optional[Dict[str, str]] = None
    system_info: Optional[Dict[str, str]] = None
    sharp_info: Optional[Dict[str, str]] = None


def _normalize_dsn(dsn: str) -> str:
    if dsn.startswith(_SCHEME_POSTGRES):
        return _SCHEME_POSTGRESQL + dsn[len(_SCHEME_POSTGRES):]
    return dsn


def connect(dsn: str) -> "Repository":
    """Open a repository on the database at dsn and check that it answers."""
    engine = create_engine(_normalize_dsn(dsn), pool_pre_ping=True)
    repo = Repository(engine)
    try:
        repo.ping()
    except Exception:
        engine.dispose()
        raise
    return repo


def _key(log_id: LogId) -> str:
    return str(log_id)


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _to_json(values: Optional[Mapping[str, str]]) -> str:
    return json.dumps(values, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _json_or_null(values: Optional[Mapping[str, str]]) -> Optional[str]:
    return None if values is None else _to_json(values)


def _unmarshal_map(data: Any) -> Optional[Dict[str, str]]:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        if not data:
            return None
        try:
            data = json.loads(data)
        except ValueError:
            return None
    if not isinstance(data, dict):
        return None
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in data.items()):
        return None
    return data


def _has_any_info(info: Optional[NodeInfo]) -> bool:
    return info is not None and (
        info.switch_info is not None
        or info.system_info is not None
        or info.sharp_info is not None
    )


def _node_row(row: Any) -> NodeRow:
    return NodeRow(
        id=row.id,
        log_id=uuid.UUID(row.log_id),
        guid=row.node_guid,
        type=row.node_type,
        desc=row.node_desc,
        system_image_guid=row.system_image_guid,
        port_guid=row.port_guid,
    )


def _port_row(row: Any) -> PortRow:
    return PortRow(
        id=row.id,
        node_id=row.node_id,
        num=row.port_num,
        guid=row.port_guid,
        state=row.port_state,
        phy_state=row.port_phy_state,
        link_speed_actv=row.link_speed_actv,
        link_width_actv=row.link_width_actv,
        lid=row.lid,
        raw=_unmarshal_map(row.raw),
    )


_PORT_COLUMNS = (
    ports.c.id,
    ports.c.node_id,
    ports.c.port_num,
    ports.c.port_guid,
    ports.c.port_state,
    ports.c.port_phy_state,
    ports.c.link_speed_actv,
    ports.c.link_width_actv,
    ports.c.lid,
    ports.c.raw,
)


class Repository:
    """Stores logs with their nodes and ports and answers queries over them."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def insert_processing_log(self, log_id: LogId) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(logs).values(
                    id=_key(log_id), status=STATUS_PROCESSING, uploaded_at=_utc_now()
                )
            )

    def mark_log_failed(self, log_id: LogId, message: str) -> None:
        """Set the log's status to failed and record why, in one transaction."""
        key = _key(log_id)
        with self.engine.begin() as conn:
            conn.execute(update(logs).where(logs.c.id == key).values(status=STATUS_FAILED))
            conn.execute(insert(failed_logs).values(log_id=key, error_message=message))

    def reap_stale_processing(self, timeout: timedelta) -> int:
        """Fail logs still processing after timeout; return how many were recorded."""
        cutoff = _utc_now() - timeout
        with self.engine.begin() as conn:
            stale = list(
                conn.execute(
                    select(logs.c.id).where(
                        logs.c.status == STATUS_PROCESSING, logs.c.uploaded_at < cutoff
                    )
                ).scalars()
            )
            if not stale:
                return 0
            conn.execute(
                update(logs).where(logs.c.id.in_(stale)).values(status=STATUS_FAILED)
            )
            recorded = set(
                conn.execute(
                    select(failed_logs.c.log_id).where(failed_logs.c.log_id.in_(stale))
                ).scalars()
            )
            fresh = [log_id for log_id in stale if log_id not in recorded]
            if fresh:
                conn.execute(
                    insert(failed_logs),
                    [{"log_id": log_id, "error_message": REAPER_ERROR_MESSAGE} for log_id in fresh],
                )
            return len(fresh)

    def get_log(self, log_id: LogId) -> LogMeta:
        stmt = (
            select(
                logs.c.id,
                logs.c.status,
                logs.c.uploaded_at,
                func.coalesce(failed_logs.c.error_message, "").label("error_message"),
            )
            .select_from(logs.outerjoin(failed_logs, failed_logs.c.log_id == logs.c.id))
            .where(logs.c.id == _key(log_id))
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            raise NotFoundError(f"log {log_id} not found")
        return LogMeta(
            id=uuid.UUID(row.id),
            status=row.status,
            uploaded_at=_as_utc(row.uploaded_at),
            error_message=row.error_message,
        )

    def count_by_log(self, log_id: LogId) -> Counts:
        key = _key(log_id)
        node_count = (
            select(func.count()).select_from(nodes).where(nodes.c.log_id == key).scalar_subquery()
        )
        port_count = (
            select(func.count())
            .select_from(ports.join(nodes, ports.c.node_id == nodes.c.id))
            .where(nodes.c.log_id == key)
            .scalar_subquery()
        )
        with self.engine.connect() as conn:
            row = conn.execute(select(node_count, port_count)).one()
        return Counts(nodes=int(row[0]), ports=int(row[1]))

    def list_nodes(self, log_id: LogId) -> List[NodeRow]:
        stmt = select(nodes).where(nodes.c.log_id == _key(log_id)).order_by(nodes.c.id)
        with self.engine.connect() as conn:
            return [_node_row(row) for row in conn.execute(stmt)]

    def list_ports_by_log(self, log_id: LogId) -> List[PortRow]:
        stmt = (
            select(*_PORT_COLUMNS)
            .select_from(ports.join(nodes, nodes.c.id == ports.c.node_id))
            .where(nodes.c.log_id == _key(log_id))
            .order_by(ports.c.node_id, ports.c.port_num)
        )
        with self.engine.connect() as conn:
            return [_port_row(row) for row in conn.execute(stmt)]

    def list_ports_by_node(self, node_id: int) -> List[PortRow]:
        stmt = select(*_PORT_COLUMNS).where(ports.c.node_id == node_id).order_by(ports.c.port_num)
        with self.engine.connect() as conn:
            return [_port_row(row) for row in conn.execute(stmt)]

    def get_node(self, node_id: int) -> NodeRow:
        with self.engine.connect() as conn:
            row = conn.execute(select(nodes).where(nodes.c.id == node_id)).first()
        if row is None:
            raise NotFoundError(f"node {node_id} not found")
        return _node_row(row)

    def get_node_info(self, node_id: int) -> Optional[NodeInfoRow]:
        """Return the node's info blocks, or None when it has none stored."""
        stmt = select(
            nodes_info.c.switch_info, nodes_info.c.system_info, nodes_info.c.sharp_info
        ).where(nodes_info.c.node_id == node_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None
        return NodeInfoRow(
            switch_info=_unmarshal_map(row.switch_info),
            system_info=_unmarshal_map(row.system_info),
            sharp_info=_unmarshal_map(row.sharp_info),
        )

    def node_exists(self, node_id: int) -> bool:
        with self.engine.connect() as conn:
            return bool(conn.execute(select(exists().where(nodes.c.id == node_id))).scalar())

    def save_domain_log(self, log_id: LogId, dlog: Log) -> None:
        """Mark the log ok and store its nodes, ports and info in one transaction."""
        key = _key(log_id)
        with self.engine.begin() as conn:
            conn.execute(update(logs).where(logs.c.id == key).values(status=STATUS_OK))
            node_ids = self._insert_nodes(conn, key, dlog)
            self._insert_ports(conn, node_ids, dlog)
            self._insert_nodes_info(conn, node_ids, dlog)

    @staticmethod
    def _insert_nodes(conn: Connection, key: str, dlog: Log) -> Dict[str, int]:
        node_ids: Dict[str, int] = {}
        for node in dlog.nodes:
            result = conn.execute(
                insert(nodes).values(
                    log_id=key,
                    node_guid=node.guid,
                    node_type=str(node.type),
                    node_desc=node.desc,
                    system_image_guid=node.system_image_guid,
                    port_guid=node.port_guid,
                )
            )
            node_ids[node.guid] = result.inserted_primary_key[0]
        return node_ids

    @staticmethod
    def _insert_ports(conn: Connection, node_ids: Dict[str, int], dlog: Log) -> None:
        rows = [
            {
                "node_id": node_ids[node.guid],
                "port_num": port.num,
                "port_guid": port.guid,
                "port_state": port.state,
                "port_phy_state": port.phy_state,
                "link_speed_actv": port.link_speed_actv,
                "link_width_actv": port.link_width_actv,
                "lid": port.lid,
                "raw": _to_json(port.raw),
            }
            for node in dlog.nodes
            for port in node.ports
        ]
        if rows:
            conn.execute(insert(ports), rows)

    @staticmethod
    def _insert_nodes_info(conn: Connection, node_ids: Dict[str, int], dlog: Log) -> None:
        for node in dlog.nodes:
            if not _has_any_info(node.info):
                continue
            info = node.info
            conn.execute(
                insert(nodes_info).values(
                    node_id=node_ids[node.guid],
                    switch_info=_json_or_null(info.switch_info),
                    system_info=_json_or_null(info.system_info),
                    sharp_info=_json_or_null(info.sharp_info),
                )
            )