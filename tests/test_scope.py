import json
import logging

import pytest

from scopesync.mock import MOCK_RESOURCE, MockResourceManager, MockScopeResource
from scopesync.scope import DEFAULT_RESOURCE, Oscilloscope, is_ds1000z


@pytest.fixture
def scope(rm):
    s = Oscilloscope(MOCK_RESOURCE, rm=rm, timeout_ms=1000)
    yield s
    s.close()


def test_connect_reads_identity(scope):
    assert scope.connect()
    assert scope.device_info.manufacturer == "RIGOL TECHNOLOGIES"
    assert scope.device_info.model == "DS1102Z-E"
    assert scope.device_info.serial == "DS1ZE000000001"
    assert scope.device_info.firmware == "00.06.02"
    assert scope.device_info.connection == MOCK_RESOURCE


def test_connect_falls_back_to_scan(rm, caplog):
    rm.extra = ["USB0::0x0957::0x1796::MY123::INSTR"]
    s = Oscilloscope(DEFAULT_RESOURCE, rm=rm)
    with caplog.at_level(logging.INFO):
        assert s.connect()
    assert s.resource_name == MOCK_RESOURCE
    assert rm.opened == [DEFAULT_RESOURCE, MOCK_RESOURCE]
    assert "Found Rigol oscilloscope" in caplog.text
    s.close()


def test_connect_gives_up(caplog):
    rm = MockResourceManager(address="USB0::0x0957::0x1796::MY123::INSTR")
    s = Oscilloscope(DEFAULT_RESOURCE, rm=rm)
    assert s.connect() is False
    assert not s.is_connected
    assert "No oscilloscope connected" in caplog.text


def test_is_ds1000z():
    assert is_ds1000z("USB0::0x1AB1::0x04CE::DS1ZA1::INSTR")
    assert is_ds1000z("usb0::0x1ab1::0x0517::DS1ZE1::INSTR")
    assert not is_ds1000z("USB0::0x1AB1::0x04B0::DS2A1::INSTR")


def test_push_and_pull(scope, resource):
    scope.connect()
    resource.set_value(":CHAN2:SCAL", 2.0)
    assert scope.pull_all()
    assert scope.mirror("channel2").get("vertical_scale") == 2.0
    assert scope.push("channel1", "vertical_offset", 150.0)
    assert resource.written[-1] == ":CHANnel1:OFFSet 100"
    assert scope.push("math", "scale", 1.0) is False


@pytest.mark.parametrize(
    "verb, command, status",
    [("run", ":RUN", "RUN"), ("stop", ":STOP", "STOP"), ("single", ":SINGle", "WAIT"),
     ("clear", ":CLEar", None), ("autoscale", ":AUToscale", "AUTO"),
     ("force_trigger", ":TFORce", "TD")],
)
def test_device_verbs(scope, resource, verb, command, status):
    scope.connect()
    assert getattr(scope, verb)()
    assert resource.written[-1] == command
    if status:
        assert resource.value(":TRIG:STAT") == status


def test_verbs_fail_when_disconnected(scope, resource):
    assert scope.run() is False
    assert resource.written == []


def test_screenshot(scope, resource):
    scope.connect()
    assert scope.screenshot_png().startswith(b"\x89PNG")


def test_export_refreshes_then_import(scope, resource, tmp_path):
    scope.connect()
    resource.set_value(":TIM:MAIN:SCAL", 2e-3)
    path = tmp_path / "bench.json"
    assert scope.export_setup(path)
    assert scope.mirror("timebase").get("main_scale") == 2e-3

    other = MockScopeResource()
    with Oscilloscope(MOCK_RESOURCE, rm=MockResourceManager(other)) as s2:
        assert s2.import_setup(path)
        assert s2.mirror("timebase").get("main_scale") == 2e-3
        assert other.written == []

        s2.connect()
        assert s2.import_setup(path, push=True)
        assert other.value(":TIM:MAIN:SCAL") == 2e-3


def test_export_offline_uses_mirror(scope, tmp_path):
    assert scope.export_setup(tmp_path / "offline.json")


def test_import_bad_file(scope, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("nope")
    assert scope.import_setup(bad) is False


def test_import_rejects_unknown_token(scope, tmp_path):
    path = tmp_path / "setup.json"
    assert scope.export_setup(path, refresh=False)
    data = json.loads(path.read_text())
    data["channel1"]["coupling"] = "XYZ"
    path.write_text(json.dumps(data))
    before = scope.mirror("channel1").snapshot()
    assert scope.import_setup(path) is False
    assert scope.mirror("channel1").snapshot() == before


def test_import_clamps_offset(scope, tmp_path):
    path = tmp_path / "setup.json"
    assert scope.export_setup(path, refresh=False)
    data = json.loads(path.read_text())
    data["channel1"]["vertical_offset"] = 5000.0
    data["trigger"]["position"] = 10.0
    path.write_text(json.dumps(data))
    assert scope.import_setup(path)
    assert scope.mirror("channel1").get("vertical_offset") == 100.0
    assert scope.mirror("trigger").snapshot().position == 10.0
