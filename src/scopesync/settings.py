"""Settings snapshots for each subsystem and the persisted setup document."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime

from mashumaro import DataClassDictMixin

from . import ranges

SETUP_VERSION = "1.0"


class _Snapshot:
    def copy(self):
        return dataclasses.replace(self)


@dataclass
class ChannelSettings(_Snapshot, DataClassDictMixin):
    enabled: bool = True
    probe_ratio: float = 10.0
    vertical_scale: float = 1.0    # V/div
    vertical_offset: float = 0.0   # V
    coupling: str = "DC"
    bandwidth_limit: str = "OFF"
    units: str = "VOLTage"
    invert: bool = False
    vernier: bool = False

    @property
    def vertical_range(self) -> float:
        return self.vertical_scale * ranges.VERTICAL_DIVISIONS

    def offset_range(self) -> ranges.Range:
        return ranges.offset_range(self.vertical_scale, self.probe_ratio)

    def scale_ladder(self) -> tuple[float, ...]:
        return ranges.scale_ladder(self.probe_ratio)

    def tick_step(self) -> float:
        return ranges.tick_step(self.offset_range())

    def __str__(self) -> str:
        return (f"{'ON' if self.enabled else 'OFF'}, {self.probe_ratio:g}x, "
                f"{self.vertical_scale:g} V/div, offset {self.vertical_offset:g} V, "
                f"{self.coupling}")


@dataclass
class TriggerSettings(_Snapshot, DataClassDictMixin):
    mode: str = "EDGe"
    sweep: str = "AUTO"
    coupling: str = "DC"
    edge_source: str = "CHANnel1"
    edge_slope: str = "POSitive"
    edge_level: float = 0.0        # V
    holdoff: float = 16e-9         # s
    noise_reject: bool = False
    status: str = "AUTO"           # read-only
    # % of screen width; kept with the setup, not sent to the instrument
    position: float = 50.0

    def __str__(self) -> str:
        return (f"{self.mode} {self.edge_source} {self.edge_slope} "
                f"@ {self.edge_level:g} V, sweep {self.sweep}, {self.coupling}")


@dataclass
class TimeBaseSettings(_Snapshot, DataClassDictMixin):
    mode: str = "MAIN"
    main_scale: float = 1e-3       # s/div
    main_offset: float = 0.0       # s
    delay_enabled: bool = False
    delay_scale: float = 1e-6      # s/div
    delay_offset: float = 0.0      # s

    @property
    def time_window(self) -> float:
        return self.main_scale * ranges.HORIZONTAL_DIVISIONS

    def offset_range(self) -> ranges.Range:
        return ranges.timebase_offset_range(self.main_scale)

    def __str__(self) -> str:
        return (f"{self.mode}, {self.main_scale:g} s/div, offset {self.main_offset:g} s, "
                f"delay {'ON' if self.delay_enabled else 'OFF'}")


@dataclass
class DeviceInfo(DataClassDictMixin):
    manufacturer: str = ""
    model: str = ""
    serial: str = ""
    firmware: str = ""
    connection: str = ""

    @classmethod
    def from_idn(cls, idn: str, connection: str = "") -> "DeviceInfo":
        """Split an ``*IDN?`` reply: maker,model,serial,firmware."""
        parts = [p.strip() for p in idn.strip().split(",")]
        parts += [""] * (4 - len(parts))
        return cls(parts[0], parts[1], parts[2], ",".join(parts[3:]).strip(","), connection)


@dataclass
class SetupDocument(DataClassDictMixin):
    """Everything needed to restore the instrument's mirrored configuration."""

    channel1: ChannelSettings = field(default_factory=ChannelSettings)
    channel2: ChannelSettings = field(default_factory=ChannelSettings)
    trigger: TriggerSettings = field(default_factory=TriggerSettings)
    timebase: TimeBaseSettings = field(default_factory=TimeBaseSettings)
    device: DeviceInfo = field(default_factory=DeviceInfo)
    version: str = SETUP_VERSION
    timestamp: datetime = field(default_factory=datetime.now)

    def subsystems(self) -> dict[str, _Snapshot]:
        return {
            "channel1": self.channel1,
            "channel2": self.channel2,
            "trigger": self.trigger,
            "timebase": self.timebase,
        }
