from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, inspect, insert, select

from fabriclog import schema
from fabriclog.schema import create_schema

TABLES = {"logs", "failed_logs", "nodes", "ports", "nodes_info"}


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'schema.db'}")
    yield eng
    eng.dispose()


def test_creates_all_tables(engine):
    create_schema(engine)
    assert set(inspect(engine).get_table_names()) == TABLES


def test_is_idempotent(engine):
    create_schema(engine)
    create_schema(engine)
    assert set(inspect(engine).get_table_names()) == TABLES


def test_ports_columns(engine):
    create_schema(engine)
    names = {c["name"] for c in inspect(engine).get_columns("ports")}
    assert names == {
        "id",
        "node_id",
        "port_num",
        "port_guid",
        "port_state",
        "port_phy_state",
        "link_speed_actv",
        "link_width_actv",
        "lid",
        "raw",
    }


def test_uploaded_at_defaults_to_now(engine):
    create_schema(engine)
    before = datetime.utcnow() - timedelta(seconds=1)
    with engine.begin() as conn:
        conn.execute(insert(schema.logs).values(id="abc", status="processing"))
        row = conn.execute(select(schema.logs)).one()
    after = datetime.utcnow() + timedelta(seconds=1)
    assert row.status == "processing"
    assert before <= row.uploaded_at <= after


def test_node_ids_are_generated(engine):
    create_schema(engine)
    with engine.begin() as conn:
        conn.execute(insert(schema.logs).values(id="abc", status="ok"))
        first = conn.execute(
            insert(schema.nodes).values(log_id="abc", node_guid="0xa", node_type="host")
        ).inserted_primary_key[0]
        second = conn.execute(
            insert(schema.nodes).values(log_id="abc", node_guid="0xb", node_type="host")
        ).inserted_primary_key[0]
    assert second > first