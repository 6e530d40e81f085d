"""Relational schema of the log store."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

_ID = BigInteger().with_variant(Integer(), "sqlite")


def _utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


metadata = MetaData()

logs = Table(
    "logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("status", String(32), nullable=False),
    Column("uploaded_at", DateTime(), nullable=False, default=_utc_now, index=True),
)

failed_logs = Table(
    "failed_logs",
    metadata,
    Column(
        "log_id",
        String(36),
        ForeignKey("logs.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("error_message", Text, nullable=False),
)

nodes = Table(
    "nodes",
    metadata,
    Column("id", _ID, primary_key=True, autoincrement=True),
    Column(
        "log_id",
        String(36),
        ForeignKey("logs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("node_guid", Text, nullable=False),
    Column("node_type", Text, nullable=False),
    Column("node_desc", Text, nullable=False, default=""),
    Column("system_image_guid", Text, nullable=False, default=""),
    Column("port_guid", Text, nullable=False, default=""),
)

ports = Table(
    "ports",
    metadata,
    Column("id", _ID, primary_key=True, autoincrement=True),
    Column(
        "node_id",
        _ID,
        ForeignKey("nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("port_num", Integer, nullable=False),
    Column("port_guid", Text, nullable=False, default=""),
    Column("port_state", Integer, nullable=False, default=0),
    Column("port_phy_state", Integer, nullable=False, default=0),
    Column("link_speed_actv", Integer, nullable=False, default=0),
    Column("link_width_actv", Integer, nullable=False, default=0),
    Column("lid", Integer, nullable=False, default=0),
    Column("raw", Text, nullable=True),
)

nodes_info = Table(
    "nodes_info",
    metadata,
    Column(
        "node_id",
        _ID,
        ForeignKey("nodes.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("switch_info", Text, nullable=True),
    Column("system_info", Text, nullable=True),
    Column("sharp_info", Text, nullable=True),
)


def create_schema(engine: Engine) -> None:
    """Create every missing table; tables that already exist are left alone."""
    metadata.create_all(engine)