import threading

import pytest

from scopesync.errors import ValidationError
from scopesync.mirror import (
    TIMEBASE_FIELDS, TRIGGER_FIELDS, channel_fields, channel_mirror, timebase_mirror,
    trigger_mirror,
)
from scopesync.settings import ChannelSettings, TimeBaseSettings, TriggerSettings


@pytest.fixture
def ch1(transport):
    return channel_mirror(transport, 1)


class Recorder:
    def __init__(self):
        self.changed = []
        self.failed = []

    def on_changed(self, name, snap):
        self.changed.append((name, snap))

    def on_failed(self, name, reason):
        self.failed.append((name, reason))


@pytest.fixture
def rec(ch1):
    r = Recorder()
    ch1.subscribe(r.on_changed)
    ch1.subscribe_failures(r.on_failed)
    return r


class TestFieldTables:
    def test_channel_commands(self):
        cmds = [f.command for f in channel_fields(2)]
        assert cmds[:4] == [":CHANnel2:DISPlay", ":CHANnel2:PROBe",
                            ":CHANnel2:SCALe", ":CHANnel2:OFFSet"]
        assert all(c.startswith(":CHANnel2:") for c in cmds)

    def test_scale_pushed_before_offset(self):
        names = [f.name for f in channel_fields(1)]
        assert names.index("probe_ratio") < names.index("vertical_scale") < names.index("vertical_offset")
        tnames = [f.name for f in TRIGGER_FIELDS]
        assert tnames.index("edge_source") < tnames.index("edge_level")
        tbnames = [f.name for f in TIMEBASE_FIELDS]
        assert tbnames.index("main_scale") < tbnames.index("main_offset")

    def test_invalid_channel(self):
        with pytest.raises(ValueError):
            channel_fields(3)

    def test_every_snapshot_field_is_mirrored(self):
        for fields, cls in ((channel_fields(1), ChannelSettings),
                            (TRIGGER_FIELDS, TriggerSettings),
                            (TIMEBASE_FIELDS, TimeBaseSettings)):
            local = {"position"} if cls is TriggerSettings else set()
            assert {f.name for f in fields} == set(cls.__dataclass_fields__) - local


class TestPull:
    def test_pull_reads_device(self, ch1, resource, rec):
        resource.set_value(":CHAN1:SCAL", 0.5)
        resource.set_value(":CHAN1:OFFS", -1.2)
        resource.set_value(":CHAN1:COUP", "AC")
        assert ch1.pull()
        snap = ch1.snapshot()
        assert snap.vertical_scale == 0.5
        assert snap.vertical_offset == -1.2
        assert snap.coupling == "AC"
        assert len(rec.changed) == 1 and rec.failed == []

    def test_tokens_are_canonical(self, transport, resource):
        trig = trigger_mirror(transport)
        resource.set_value(":TRIG:SWE", "NORMal")
        resource.set_value(":TRIG:EDG:SOUR", "CHANnel2")
        assert trig.pull()
        assert trig.get("sweep") == "NORMal"
        assert trig.get("edge_source") == "CHANnel2"
        assert trig.get("edge_slope") == "POSitive"

    def test_partial_failure_keeps_old_values(self, ch1, resource, rec):
        resource.set_value(":CHAN1:OFFS", 3.0)
        resource.replies[":CHAN1:SCAL?"] = "garbage"
        resource.fail_queries.add(":CHAN1:COUP?")
        before = ch1.snapshot()
        assert ch1.pull() is False
        snap = ch1.snapshot()
        assert snap.vertical_scale == before.vertical_scale
        assert snap.coupling == before.coupling
        assert snap.vertical_offset == 3.0
        # the remaining fields were still read
        assert any(q.startswith(":CHANnel1:VERNier") for q in resource.queried)
        assert len(rec.changed) == 1
        assert "vertical_scale" in rec.failed[0][1] and "coupling" in rec.failed[0][1]

    def test_pull_when_disconnected(self, ch1, transport, rec):
        transport.disconnect()
        assert ch1.pull() is False
        assert rec.changed == []
        assert "not connected" in rec.failed[0][1]


class TestPush:
    def test_offset_is_clamped_to_probe_range(self, ch1, resource):
        # 10x probe at 1 V/div allows +/-100 V
        assert ch1.push("vertical_offset", 150.0)
        assert resource.written[-1] == ":CHANnel1:OFFSet 100"
        assert ch1.get("vertical_offset") == 100.0

    def test_offset_range_follows_current_scale(self, ch1, resource):
        assert ch1.push("vertical_scale", 0.2)
        assert ch1.push("vertical_offset", 50)
        assert resource.written[-1] == ":CHANnel1:OFFSet 20"

    def test_invalid_coupling_rejected_without_io(self, ch1, resource, rec):
        before = ch1.snapshot()
        assert ch1.push("coupling", "XYZ") is False
        assert resource.written == []
        assert ch1.snapshot() == before
        assert rec.changed == []
        assert "coupling" in rec.failed[0][1]

    def test_coupling_accepts_any_spelling(self, ch1, resource):
        assert ch1.push("coupling", "ac")
        assert resource.written[-1] == ":CHANnel1:COUPling AC"
        assert ch1.get("coupling") == "AC"

    def test_failed_send_leaves_snapshot(self, ch1, resource, rec):
        resource.fail_writes.add(":CHAN1:SCAL")
        before = ch1.snapshot()
        assert ch1.push("vertical_scale", 2.0) is False
        assert ch1.snapshot() == before
        assert rec.changed == []
        assert "vertical_scale" in rec.failed[0][1]

    def test_scale_must_be_on_ladder(self, ch1, resource):
        assert ch1.push("vertical_scale", 0.3) is False
        assert ch1.push("vertical_scale", 0.001) is False      # 1x-only step
        assert resource.written == []
        assert ch1.push("probe_ratio", 1)
        assert ch1.push("vertical_scale", 0.001)
        assert resource.written[-1] == ":CHANnel1:SCALe 0.001"

    def test_probe_ratio_must_be_listed(self, ch1, resource):
        assert ch1.push("probe_ratio", 3) is False
        assert resource.written == []

    def test_attenuating_probe_uses_10x_ladder(self, ch1, resource):
        assert ch1.push("probe_ratio", 0.5)
        assert ch1.push("vertical_scale", 100.0)
        assert resource.written[-1] == ":CHANnel1:SCALe 100"
        assert ch1.push("vertical_scale", 0.001) is False
        assert ch1.get("vertical_scale") == 100.0

    def test_bool_from_text(self, ch1, resource):
        assert ch1.push("invert", "ON")
        assert resource.written[-1] == ":CHANnel1:INVert ON"
        assert ch1.get("invert") is True
        assert ch1.push("enabled", False)
        assert resource.value(":CHAN1:DISP") is False

    def test_unknown_field(self, ch1):
        with pytest.raises(ValidationError):
            ch1.get("nope")
        assert ch1.push("nope", 1) is False

    def test_read_only_status(self, transport, resource):
        trig = trigger_mirror(transport)
        assert trig.push("status", "STOP") is False
        assert resource.written == []

    def test_snapshot_is_a_copy(self, ch1):
        snap = ch1.snapshot()
        snap.vertical_offset = 55.0
        assert ch1.get("vertical_offset") == 0.0

    def test_notification_carries_copy(self, ch1, rec):
        ch1.push("vertical_offset", 1.0)
        name, snap = rec.changed[-1]
        assert name == "channel1" and snap.vertical_offset == 1.0
        snap.vertical_offset = 9.0
        assert ch1.get("vertical_offset") == 1.0


class TestTriggerAndTimebase:
    def test_level_clamped_to_source_channel(self, transport, resource):
        ch1 = channel_mirror(transport, 1)
        ch2 = channel_mirror(transport, 2)
        trig = trigger_mirror(transport, peers={"CHANnel1": ch1, "CHANnel2": ch2})
        ch1.push("vertical_scale", 0.5)
        assert trig.push("edge_level", 10.0)
        assert resource.written[-1] == ":TRIGger:EDGe:LEVel 2"
        trig.push("edge_source", "CHAN2")
        assert trig.push("edge_level", 10.0)
        assert resource.written[-1] == ":TRIGger:EDGe:LEVel 4"

    def test_level_without_channel_source(self, transport, resource):
        trig = trigger_mirror(transport)
        trig.push("edge_source", "EXT")
        assert trig.push("edge_level", -9.0)
        assert trig.get("edge_level") == -4.0

    def test_holdoff_clamped(self, transport, resource):
        trig = trigger_mirror(transport)
        assert trig.push("holdoff", 1e-12)
        assert resource.written[-1] == ":TRIGger:HOLDoff 0.000000016"
        assert trig.push("holdoff", 60)
        assert trig.get("holdoff") == 10.0

    def test_timebase_offset_follows_scale(self, transport, resource):
        tb = timebase_mirror(transport)
        assert tb.push("main_scale", 1e-3)
        assert tb.push("main_offset", 1.0)
        assert tb.get("main_offset") == pytest.approx(6e-3)
        assert tb.push("main_scale", 7e-3) is False

    def test_timebase_mode(self, transport, resource):
        tb = timebase_mirror(transport)
        assert tb.push("mode", "roll")
        assert resource.value(":TIM:MODE") == "ROLL"
        assert tb.push("mode", "DELayed") is False


class TestBatches:
    def test_set_settings_pushes_in_order(self, ch1, resource):
        target = ChannelSettings(probe_ratio=1.0, vertical_scale=0.01, vertical_offset=1.5)
        assert ch1.set_settings(target)
        sent = [w.split()[0] for w in resource.written]
        assert sent[:4] == [":CHANnel1:DISPlay", ":CHANnel1:PROBe",
                            ":CHANnel1:SCALe", ":CHANnel1:OFFSet"]
        assert ch1.get("vertical_offset") == 1.5

    def test_set_settings_attempts_every_field(self, ch1, resource):
        resource.fail_writes.add(":CHAN1:PROB")
        assert ch1.set_settings(ChannelSettings(coupling="AC")) is False
        assert len(resource.written) == len(channel_fields(1)) - 1
        assert ch1.get("coupling") == "AC"

    def test_apply_snapshot_is_local(self, ch1, resource, rec):
        target = ChannelSettings(vertical_scale=2.0, coupling="GND")
        assert ch1.apply_snapshot(target)
        assert resource.written == [] and resource.queried == []
        assert ch1.snapshot() == target
        assert len(rec.changed) == 1

    def test_apply_snapshot_canonicalizes_and_clamps(self, ch1):
        assert ch1.apply_snapshot(ChannelSettings(vertical_scale=1.004, vertical_offset=5000.0,
                                                  coupling="ac", probe_ratio=10.0004))
        snap = ch1.snapshot()
        assert snap.coupling == "AC"
        assert snap.probe_ratio == 10.0
        assert snap.vertical_scale == 1.0
        assert snap.vertical_offset == 100.0

    @pytest.mark.parametrize("bad", [
        {"coupling": "XYZ"},
        {"probe_ratio": 3.0},
        {"vertical_scale": 0.001},                      # not on the 10x ladder
        {"vertical_offset": float("nan")},
    ])
    def test_apply_snapshot_rejects_out_of_domain(self, ch1, rec, bad):
        before = ch1.snapshot()
        assert ch1.apply_snapshot(ChannelSettings(**bad)) is False
        assert ch1.snapshot() == before
        assert rec.changed == []
        assert "not applied" in rec.failed[0][1]

    def test_apply_snapshot_clamps_level_to_new_channel(self, transport):
        ch1 = channel_mirror(transport, 1)
        trig = trigger_mirror(transport, peers={"CHANnel1": ch1})
        assert ch1.apply_snapshot(ChannelSettings(vertical_scale=0.1))
        assert trig.apply_snapshot(TriggerSettings(edge_level=3.0))
        assert trig.snapshot().edge_level == pytest.approx(0.4)

    def test_trigger_position_is_kept_locally(self, transport, resource):
        trig = trigger_mirror(transport)
        assert trig.set_settings(TriggerSettings(sweep="SINGle", position=10.0))
        assert trig.snapshot().position == 10.0
        assert len(resource.written) == sum(f.writable for f in TRIGGER_FIELDS)
        assert trig.apply_snapshot(TriggerSettings(position=25.0))
        assert trig.snapshot().position == 25.0


class TestGuard:
    def test_concurrent_operation_rejected(self, ch1, resource, rec):
        entered = threading.Event()
        release = threading.Event()
        results = []

        original_query = resource.query

        def blocking_query(cmd):
            if cmd.startswith(":CHANnel1:DISPlay"):
                entered.set()
                release.wait(5)
            return original_query(cmd)

        resource.query = blocking_query
        t = threading.Thread(target=lambda: results.append(ch1.pull()))
        t.start()
        assert entered.wait(5)
        assert ch1.is_syncing
        assert ch1.push("vertical_offset", 1.0) is False
        assert ch1.apply_snapshot(ChannelSettings()) is False
        release.set()
        t.join(5)
        assert results == [True]
        assert not ch1.is_syncing
        assert any("already synchronizing" in reason for _, reason in rec.failed)
