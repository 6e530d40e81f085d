import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from fabriclog import schema
from fabriclog.domain import Log, Node, NodeInfo, NodeType, Port
from fabriclog.repository import (
    NodeInfoRow,
    NotFoundError,
    connect,
)
from fabriclog.schema import create_schema


@pytest.fixture
def repo(tmp_path):
    repository = connect(f"sqlite:///{tmp_path / 'store.db'}")
    create_schema(repository.engine)
    yield repository
    repository.engine.dispose()


def round_trip_log():
    return Log(
        nodes=[
            Node(
                guid="0xrt_host",
                type=NodeType.HOST,
                desc="RT_HOST",
                system_image_guid="0xrt_host",
                port_guid="0xrt_host",
                ports=[
                    Port(
                        num=1,
                        guid="0xrt_host",
                        state=4,
                        phy_state=5,
                        link_speed_actv=2048,
                        link_width_actv=2,
                        lid=1,
                        raw={"sample": "value"},
                    )
                ],
            ),
            Node(
                guid="0xrt_switch",
                type=NodeType.SWITCH,
                desc="RT_SWITCH",
                system_image_guid="0xrt_switch",
                port_guid="0xrt_switch",
                info=NodeInfo(
                    switch_info={"LinearFDBCap": "49152"},
                    system_info={"SerialNumber": "TEST1"},
                ),
                ports=[Port(num=0, state=4, raw={}), Port(num=1, state=4, raw={})],
            ),
        ]
    )


def test_save_domain_log_round_trip(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(log_id, round_trip_log())

    meta = repo.get_log(log_id)
    assert meta.status == "ok"
    assert meta.error_message == ""
    assert meta.id == log_id

    counts = repo.count_by_log(log_id)
    assert counts.nodes == 2
    assert counts.ports == 3

    node_rows = repo.list_nodes(log_id)
    assert len(node_rows) == 2
    assert [n.guid for n in node_rows] == ["0xrt_host", "0xrt_switch"]
    assert all(n.log_id == log_id for n in node_rows)

    port_rows = repo.list_ports_by_log(log_id)
    assert len(port_rows) == 3

    switch = next(n for n in node_rows if n.type == "switch")
    info = repo.get_node_info(switch.id)
    assert info is not None
    assert info.switch_info["LinearFDBCap"] == "49152"
    assert info.system_info["SerialNumber"] == "TEST1"
    assert info.sharp_info is None


def test_port_fields_and_raw_round_trip(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(log_id, round_trip_log())

    host = next(n for n in repo.list_nodes(log_id) if n.type == "host")
    port_rows = repo.list_ports_by_node(host.id)
    assert len(port_rows) == 1
    port = port_rows[0]
    assert port.node_id == host.id
    assert (port.num, port.state, port.phy_state, port.lid) == (1, 4, 5, 1)
    assert port.link_speed_actv == 2048
    assert port.link_width_actv == 2
    assert port.raw == {"sample": "value"}


def test_ports_ordered_by_number(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(
        log_id,
        Log(nodes=[Node(guid="0xs", type=NodeType.SWITCH, ports=[Port(num=3), Port(num=1), Port(num=2)])]),
    )
    node = repo.list_nodes(log_id)[0]
    assert [p.num for p in repo.list_ports_by_node(node.id)] == [1, 2, 3]


def test_mark_log_failed(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.mark_log_failed(log_id, "broken zip")

    meta = repo.get_log(log_id)
    assert meta.status == "failed"
    assert meta.error_message == "broken zip"


def test_mark_log_failed_twice_raises(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.mark_log_failed(log_id, "first")
    with pytest.raises(IntegrityError):
        repo.mark_log_failed(log_id, "second")
    assert repo.get_log(log_id).error_message == "first"


def test_get_log_not_found(repo):
    with pytest.raises(NotFoundError):
        repo.get_log(uuid.uuid4())


def test_new_log_is_processing(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    meta = repo.get_log(log_id)
    assert meta.status == "processing"
    assert meta.uploaded_at.utcoffset() == timedelta(0)


def test_reap_stale_processing(repo):
    stale_id = uuid.uuid4()
    fresh_id = uuid.uuid4()
    repo.insert_processing_log(stale_id)
    repo.insert_processing_log(fresh_id)

    with repo.engine.begin() as conn:
        conn.execute(
            update(schema.logs)
            .where(schema.logs.c.id == str(stale_id))
            .values(uploaded_at=datetime.utcnow() - timedelta(minutes=10))
        )

    count = repo.reap_stale_processing(timedelta(minutes=5))
    assert count >= 1

    stale = repo.get_log(stale_id)
    assert stale.status == "failed"
    assert "stale" in stale.error_message

    fresh = repo.get_log(fresh_id)
    assert fresh.status == "processing"

    assert repo.reap_stale_processing(timedelta(minutes=5)) == 0


def test_reads_saved_switch_details(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(
        log_id,
        Log(
            nodes=[
                Node(guid="0xhost1", type=NodeType.HOST, desc="HOST_1"),
                Node(
                    guid="0xswitch1",
                    type=NodeType.SWITCH,
                    desc="SWITCH_1",
                    info=NodeInfo(system_info={"ProductName": "Gorilla"}),
                    ports=[Port(num=1, state=4)],
                ),
            ]
        ),
    )

    assert repo.get_log(log_id).status == "ok"
    node_rows = repo.list_nodes(log_id)
    assert len(node_rows) == 2
    switch = next(n for n in node_rows if n.type == "switch")

    info = repo.get_node_info(switch.id)
    assert info == NodeInfoRow(system_info={"ProductName": "Gorilla"})

    port_rows = repo.list_ports_by_node(switch.id)
    assert len(port_rows) == 1
    assert port_rows[0].state == 4


def test_get_node_and_not_found(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(log_id, round_trip_log())
    host = repo.list_nodes(log_id)[0]

    fetched = repo.get_node(host.id)
    assert fetched == host
    assert fetched.desc == "RT_HOST"

    with pytest.raises(NotFoundError):
        repo.get_node(host.id + 1000)


def test_get_node_info_absent_is_none(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(log_id, round_trip_log())
    host = next(n for n in repo.list_nodes(log_id) if n.type == "host")
    assert repo.get_node_info(host.id) is None


def test_node_exists(repo):
    log_id = uuid.uuid4()
    repo.insert_processing_log(log_id)
    repo.save_domain_log(log_id, round_trip_log())
    node = repo.list_nodes(log_id)[0]
    assert repo.node_exists(node.id) is True
    assert repo.node_exists(node.id + 1000) is False


def test_counts_for_unknown_log_are_zero(repo):
    counts = repo.count_by_log(uuid.uuid4())
    assert (counts.nodes, counts.ports) == (0, 0)


def test_connect_fails_for_unreachable_database(tmp_path):
    with pytest.raises(OperationalError):
        connect(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'x.db'}")