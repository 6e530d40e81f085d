import pytest

from fabriclog.domain import Log, Node, NodeInfo, NodeType, Port


@pytest.mark.parametrize(
    ("value", "member"),
    [
        ("host", NodeType.HOST),
        ("switch", NodeType.SWITCH),
        ("router", NodeType.ROUTER),
        ("unknown", NodeType.UNKNOWN),
    ],
)
def test_node_type_values(value, member):
    assert NodeType(value) is member
    node = Node(guid="0xa", type=NodeType(value))
    assert node.type == value


def test_node_type_rejects_unknown_value():
    with pytest.raises(ValueError):
        NodeType("bridge")


def test_node_type_from_value():
    assert NodeType("switch") is NodeType.SWITCH
    assert str(NodeType.ROUTER) == "router"


def test_node_defaults_are_independent():
    first = Node(guid="0xa")
    second = Node(guid="0xb")
    first.ports.append(Port(num=1))
    assert second.ports == []
    assert first.info is None
    assert first.type == NodeType.UNKNOWN


def test_port_raw_default_is_fresh_dict():
    a = Port()
    b = Port()
    a.raw["k"] = "v"
    assert b.raw == {}
    assert a.num == 0


def test_node_info_defaults():
    info = NodeInfo()
    assert info.switch_info is None
    assert info.system_info is None
    assert info.sharp_info is None


def test_log_holds_nodes():
    node = Node(guid="0xa", type=NodeType.HOST)
    log = Log(nodes=[node])
    assert log.nodes[0].guid == "0xa"
    assert Log().nodes == []