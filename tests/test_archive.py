import zipfile

import pytest

from fabriclog.archive import InputNotFoundError, InputNotZipError, Parser
from fabriclog.domain import NodeType

DB_CSV = "\n".join(
    [
        "START_NODES",
        "NodeDesc,NumPorts,NodeType,SystemImageGUID,NodeGUID,PortGUID",
        '"HOST_1",1,1,0xhost1,0xhost1,0xhost1',
        '"SWITCH_1",2,2,0xswitch1,0xswitch1,0xswitch1',
        '"SWITCH_2",2,2,0xswitch2,0xswitch2,0xswitch2',
        '"SWITCH_3",2,2,0xswitch3,0xswitch3,0xswitch3',
        '"SWITCH_4",2,2,0xswitch4,0xswitch4,0xswitch4',
        "END_NODES",
        "",
        "START_PORTS",
        "NodeGuid,PortGuid,PortNum,LID,LinkSpeedActv,LinkWidthActv,PortPhyState,PortState",
        "0xhost1,0xhost1,1,1,2048,2,5,4",
        "0xswitch1,0xswitch1,1,0,2048,2,5,4",
        "0xswitch1,0xswitch1,2,0,2048,2,5,4",
        "END_PORTS",
        "",
        "START_SWITCHES",
        "NodeGUID,LinearFDBCap",
        "0xswitch1,49152",
        "END_SWITCHES",
        "",
        "START_SYSTEM_GENERAL_INFORMATION",
        "NodeGuid,SerialNumber,ProductName",
        '0xswitch1,TEST1,"Gorilla"',
        "END_SYSTEM_GENERAL_INFORMATION",
        "",
    ]
)

SHARP = "---\nSW_GUID=switch4\n---\nendianness = 0\n"


def _make_zip(path, members):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return str(path)


def test_parse_sample_log(tmp_path):
    path = _make_zip(
        tmp_path / "log.zip",
        {
            "ibdiagnet2/": "",
            "ibdiagnet2/ibdiagnet2.db_csv": DB_CSV,
            "ibdiagnet2/ibdiagnet2.sharp_an_info": SHARP,
            "ibdiagnet2/readme.txt": "ignored",
        },
    )
    log = Parser().parse(path)
    assert len(log.nodes) == 5

    types = [n.type for n in log.nodes]
    assert types.count(NodeType.HOST) == 1
    assert types.count(NodeType.SWITCH) == 4

    assert sum(len(n.ports) for n in log.nodes) > 0

    by_guid = {n.guid: n for n in log.nodes}
    switch_one = by_guid["0xswitch1"]
    assert switch_one.info is not None
    assert switch_one.info.switch_info["LinearFDBCap"] == "49152"
    assert switch_one.info.system_info["ProductName"] == "Gorilla"
    assert by_guid["0xswitch4"].info.sharp_info == {"endianness": "0"}


def test_parse_reports_column_mismatch(tmp_path):
    broken = "START_NODES\nNodeDesc,NodeType,NodeGUID\n\"SWITCH_2\",2\nEND_NODES\n"
    path = _make_zip(tmp_path / "log_mismatch_field.zip", {"x.db_csv": broken})
    with pytest.raises(ValueError) as info:
        Parser().parse(path)
    assert "column count mismatch" in str(info.value)
    assert "x.db_csv" in str(info.value)


def test_parse_reports_unclosed_section(tmp_path):
    broken = "START_NODES\nNodeDesc,NodeType,NodeGUID\n\"HOST_1\",1,0xhost1\n"
    path = _make_zip(tmp_path / "log_not_end_section.zip", {"x.db_csv": broken})
    with pytest.raises(ValueError, match="unclosed"):
        Parser().parse(path)


def test_parse_not_a_zip(tmp_path):
    path = tmp_path / "plain.txt"
    path.write_text("hello")
    with pytest.raises(ValueError, match="open zip"):
        Parser().parse(str(path))


def test_preflight_ok(tmp_path):
    path = _make_zip(tmp_path / "ok.zip", {})
    assert Parser().preflight(path) is None
    assert Parser().parse(path).nodes == []


def test_preflight_not_found(tmp_path):
    with pytest.raises(InputNotFoundError, match="input file not found"):
        Parser().preflight(str(tmp_path / "missing.zip"))


def test_preflight_not_zip(tmp_path):
    path = tmp_path / "plain.txt"
    path.write_bytes(b"hello")
    with pytest.raises(InputNotZipError, match="input is not a valid zip archive"):
        Parser().preflight(str(path))


def test_preflight_directory(tmp_path):
    with pytest.raises(InputNotZipError, match="not a regular file"):
        Parser().preflight(str(tmp_path))