"""
mirror — keeps an in-memory copy of one subsystem's settings consistent with
the instrument.

A SettingsMirror is generic: what it mirrors is described by a table of
FieldSpec entries (attribute name, SCPI path, value kind, validator). The two
analog channels share one table builder, so they cannot drift apart.

Two entry points touch the snapshot:

- pull()            device -> mirror, one query per field
- push(field, v)    mirror -> device, one command, mirror updated on success

Both hold the mirror's sync guard for their whole duration; a second pull or
push started while the guard is held is rejected, not queued. Callers only
ever receive copies of the snapshot.

apply_snapshot() replaces the snapshot without device I/O, after conform() has
checked every field against the same rules a push applies. Attributes a
snapshot has beyond its field table are kept locally and never sent.

    ch1 = channel_mirror(transport, 1)
    ch1.subscribe(lambda name, snap: print(name, snap))
    ch1.pull()
    ch1.push("vertical_offset", 150.0)   # clamped to the legal range first
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from math import isfinite
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from . import codec, ranges
from .codec import TokenSet
from .errors import ProtocolError, SyncBusyError, ValidationError
from .settings import ChannelSettings, SetupDocument, TimeBaseSettings, TriggerSettings
from .transport import Transport

ChangedCallback = Callable[[str, Any], None]
FailedCallback = Callable[[str, str], None]
# (value, snapshot being built, channel snapshots by trigger-source token)
Validator = Callable[[Any, Any, Mapping[str, Any]], Any]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSpec:
    name: str
    command: str
    kind: Any = float               # float, bool or a TokenSet
    validate: Optional[Validator] = None
    writable: bool = True

    @property
    def query(self) -> str:
        return codec.query_for(self.command)

    def coerce(self, value: Any) -> Any:
        """Bring a caller value into the field's type; enumerations are rejected."""
        if isinstance(self.kind, TokenSet):
            tok = self.kind.canonical(value) if isinstance(value, str) else None
            if tok is None:
                raise ValidationError(
                    f"{self.name}: {value!r} is not one of {list(self.kind)}")
            return tok
        if self.kind is bool:
            if isinstance(value, str):
                try:
                    return codec.parse_response(value, bool)
                except ProtocolError:
                    raise ValidationError(f"{self.name}: {value!r} is not a boolean") from None
            return bool(value)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{self.name}: {value!r} is not a number") from None
        if not isfinite(number):
            raise ValidationError(f"{self.name}: {value!r} is not finite")
        return number


def conform(fields: Iterable[FieldSpec], snapshot: Any,
            peers: Optional[Mapping[str, Any]] = None) -> Any:
    """Copy of *snapshot* with every field in *fields* brought into its domain.

    Fields are checked in table order against the copy being built, so a scale
    is judged by the new probe ratio and an offset by the new scale. A value
    with no legal counterpart raises ValidationError; continuous values are
    clamped. *peers* maps trigger-source tokens to channel snapshots for the
    trigger level window.
    """
    staged = dataclasses.replace(snapshot)
    peers = peers or {}
    for spec in fields:
        requested = spec.coerce(getattr(snapshot, spec.name))
        legal = requested if spec.validate is None else spec.validate(requested, staged, peers)
        if legal != requested:
            log.info("%s: %r adjusted to %r", spec.name, requested, legal)
        setattr(staged, spec.name, legal)
    return staged


class SettingsMirror:
    def __init__(
        self,
        name: str,
        transport: Transport,
        fields: Sequence[FieldSpec],
        snapshot: Any,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self.name = name
        self.transport = transport
        self.fields: Dict[str, FieldSpec] = {f.name: f for f in fields}
        self.logger = logger or logging.getLogger(__name__)
        self.peers: Dict[str, "SettingsMirror"] = {}
        self._snapshot = snapshot
        self._guard = threading.Lock()
        self._on_changed: List[ChangedCallback] = []
        self._on_failed: List[FailedCallback] = []

    # ---- observation ----
    @property
    def is_syncing(self) -> bool:
        return self._guard.locked()

    def snapshot(self):
        return dataclasses.replace(self._snapshot)

    def get(self, field: str) -> Any:
        return getattr(self._snapshot, self._spec(field).name)

    def subscribe(self, callback: ChangedCallback) -> None:
        self._on_changed.append(callback)

    def subscribe_failures(self, callback: FailedCallback) -> None:
        self._on_failed.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        for lst in (self._on_changed, self._on_failed):
            if callback in lst:
                lst.remove(callback)

    def _notify_changed(self) -> None:
        for cb in list(self._on_changed):
            cb(self.name, self.snapshot())

    def _notify_failed(self, reason: str) -> None:
        self.logger.warning("%s: %s", self.name, reason)
        for cb in list(self._on_failed):
            cb(self.name, reason)

    def _peer_snapshots(self) -> Dict[str, Any]:
        return {token: m._snapshot for token, m in self.peers.items()}

    def _spec(self, field: str) -> FieldSpec:
        try:
            return self.fields[field]
        except KeyError:
            raise ValidationError(f"{self.name} has no field {field!r}") from None

    @contextmanager
    def _syncing(self):
        if not self._guard.acquire(blocking=False):
            raise SyncBusyError(f"{self.name} is already synchronizing")
        try:
            yield
        finally:
            self._guard.release()

    # ---- device -> mirror ----
    def pull(self) -> bool:
        """Re-read every field. True only if every field came back clean."""
        try:
            with self._syncing():
                if not self.transport.is_connected:
                    self._notify_failed("cannot pull, instrument not connected")
                    return False
                failed: List[str] = []
                updated = 0
                for spec in self.fields.values():
                    raw = self.transport.query(spec.query)
                    try:
                        value = codec.parse_response(raw, spec.kind)
                    except ProtocolError as e:
                        failed.append(spec.name)
                        self.logger.warning("%s.%s kept at %r: %s", self.name, spec.name,
                                            getattr(self._snapshot, spec.name), e)
                        continue
                    setattr(self._snapshot, spec.name, value)
                    updated += 1
        except SyncBusyError as e:
            self._notify_failed(str(e))
            return False

        if updated:
            self._notify_changed()
        if failed:
            self._notify_failed(f"pull incomplete, could not read {', '.join(failed)}")
            return False
        self.logger.info("%s pulled: %s", self.name, self._snapshot)
        return True

    # ---- mirror -> device ----
    def _prepare(self, spec: FieldSpec, value: Any) -> Any:
        if not spec.writable:
            raise ValidationError(f"{self.name}.{spec.name} is read-only")
        requested = spec.coerce(value)
        legal = (requested if spec.validate is None
                 else spec.validate(requested, self._snapshot, self._peer_snapshots()))
        if legal != requested:
            self.logger.info("%s.%s: %r adjusted to %r", self.name, spec.name, requested, legal)
        return legal

    def push(self, field: str, value: Any) -> bool:
        """Validate, send and, once the instrument took it, record one field."""
        try:
            with self._syncing():
                spec = self._spec(field)
                legal = self._prepare(spec, value)
                command = codec.format_command(spec.command, legal)
                if not self.transport.send(command):
                    self._notify_failed(
                        f"could not set {spec.name}: {self.transport.last_error or 'send failed'}")
                    return False
                setattr(self._snapshot, spec.name, legal)
        except (ValidationError, SyncBusyError) as e:
            self._notify_failed(str(e))
            return False

        self.logger.info("%s.%s set to %r", self.name, field, legal)
        self._notify_changed()
        return True

    def set_settings(self, snapshot: Any) -> bool:
        """Push every writable field of *snapshot* in table order.

        Attributes outside the field table are copied into the mirror as-is.
        """
        ok = True
        for spec in self.fields.values():
            if spec.writable and not self.push(spec.name, getattr(snapshot, spec.name)):
                ok = False
        local = [f.name for f in dataclasses.fields(snapshot) if f.name not in self.fields]
        if local:
            try:
                with self._syncing():
                    for name in local:
                        setattr(self._snapshot, name, getattr(snapshot, name))
            except SyncBusyError as e:
                self._notify_failed(str(e))
                return False
        return ok

    def apply_snapshot(self, snapshot: Any) -> bool:
        """Overwrite the mirror from *snapshot* without any device I/O.

        The snapshot goes through conform() first; if any field is outside
        its domain nothing is applied and False is returned.
        """
        try:
            with self._syncing():
                self._snapshot = conform(self.fields.values(), snapshot, self._peer_snapshots())
        except ValidationError as e:
            self._notify_failed(f"snapshot not applied, {e}")
            return False
        except SyncBusyError as e:
            self._notify_failed(str(e))
            return False
        self._notify_changed()
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}: {self._snapshot!r}>"


# ---------------------------
# Validators
# ---------------------------
def _probe_ratio(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    snapped = ranges.snap_probe_ratio(value)
    if snapped is None:
        raise ValidationError(f"probe ratio {value:g} is not one of {list(ranges.PROBE_RATIOS)}")
    return snapped


def _vertical_scale(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    probe = snap.probe_ratio
    snapped = ranges.snap_to_ladder(value, ranges.scale_ladder(probe))
    if snapped is None:
        raise ValidationError(f"{value:g} V/div is not available with a {probe:g}x probe")
    return snapped


def _vertical_offset(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    return ranges.clamp_offset(value, ranges.offset_range(snap.vertical_scale, snap.probe_ratio))


def _timebase_scale(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    snapped = ranges.snap_to_ladder(value, ranges.TIMEBASE_SCALES)
    if snapped is None:
        raise ValidationError(f"{value:g} s/div is not a timebase step")
    return snapped


def _timebase_offset(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    return ranges.clamp(value, ranges.timebase_offset_range(snap.main_scale))


def _holdoff(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    return ranges.clamp(value, ranges.HOLDOFF_RANGE)


def _edge_level(value: float, snap: Any, peers: Mapping[str, Any]) -> float:
    ch = peers.get(snap.edge_source)
    if ch is None:
        rng = ranges.DEFAULT_TRIGGER_LEVEL_RANGE
    else:
        rng = ranges.trigger_level_range(ch.vertical_scale, ch.vertical_offset)
    return ranges.clamp(value, rng)


# ---------------------------
# Field tables (order is push order)
# ---------------------------
def channel_fields(n: int) -> List[FieldSpec]:
    if n not in (1, 2):
        raise ValueError("channel must be 1 or 2")
    p = f":CHANnel{n}"
    return [
        FieldSpec("enabled", f"{p}:DISPlay", bool),
        FieldSpec("probe_ratio", f"{p}:PROBe", float, _probe_ratio),
        # scale before offset: offset legality depends on scale
        FieldSpec("vertical_scale", f"{p}:SCALe", float, _vertical_scale),
        FieldSpec("vertical_offset", f"{p}:OFFSet", float, _vertical_offset),
        FieldSpec("coupling", f"{p}:COUPling", ranges.COUPLING),
        FieldSpec("bandwidth_limit", f"{p}:BWLimit", ranges.BANDWIDTH_LIMIT),
        FieldSpec("units", f"{p}:UNITs", ranges.UNITS),
        FieldSpec("invert", f"{p}:INVert", bool),
        FieldSpec("vernier", f"{p}:VERNier", bool),
    ]


TRIGGER_FIELDS: List[FieldSpec] = [
    FieldSpec("mode", ":TRIGger:MODE", ranges.TRIGGER_MODE),
    FieldSpec("sweep", ":TRIGger:SWEep", ranges.TRIGGER_SWEEP),
    FieldSpec("edge_source", ":TRIGger:EDGe:SOURce", ranges.TRIGGER_SOURCE),
    FieldSpec("edge_slope", ":TRIGger:EDGe:SLOPe", ranges.TRIGGER_SLOPE),
    # level after source: its window comes from the source channel
    FieldSpec("edge_level", ":TRIGger:EDGe:LEVel", float, _edge_level),
    FieldSpec("coupling", ":TRIGger:COUPling", ranges.TRIGGER_COUPLING),
    FieldSpec("holdoff", ":TRIGger:HOLDoff", float, _holdoff),
    FieldSpec("noise_reject", ":TRIGger:NREJect", bool),
    FieldSpec("status", ":TRIGger:STATus", ranges.TRIGGER_STATUS, writable=False),
]

TIMEBASE_FIELDS: List[FieldSpec] = [
    FieldSpec("mode", ":TIMebase:MODE", ranges.TIMEBASE_MODE),
    FieldSpec("main_scale", ":TIMebase:MAIN:SCALe", float, _timebase_scale),
    FieldSpec("main_offset", ":TIMebase:MAIN:OFFSet", float, _timebase_offset),
    FieldSpec("delay_enabled", ":TIMebase:DELay:ENABle", bool),
    FieldSpec("delay_scale", ":TIMebase:DELay:SCALe", float, _timebase_scale),
    # the zoomed window has to sit inside the main one
    FieldSpec("delay_offset", ":TIMebase:DELay:OFFSet", float, _timebase_offset),
]


def channel_mirror(transport: Transport, n: int, **kw) -> SettingsMirror:
    return SettingsMirror(f"channel{n}", transport, channel_fields(n), ChannelSettings(), **kw)


def trigger_mirror(transport: Transport, peers: Optional[Mapping[str, SettingsMirror]] = None,
                   **kw) -> SettingsMirror:
    m = SettingsMirror("trigger", transport, TRIGGER_FIELDS, TriggerSettings(), **kw)
    if peers:
        m.peers.update(peers)
    return m


def timebase_mirror(transport: Transport, **kw) -> SettingsMirror:
    return SettingsMirror("timebase", transport, TIMEBASE_FIELDS, TimeBaseSettings(), **kw)


def conform_setup(doc: SetupDocument) -> SetupDocument:
    """Copy of *doc* with every subsystem passed through conform().

    Channels go first so the trigger level is clamped against them.
    """
    ch1 = conform(channel_fields(1), doc.channel1)
    ch2 = conform(channel_fields(2), doc.channel2)
    trigger = conform(TRIGGER_FIELDS, doc.trigger, {"CHANnel1": ch1, "CHANnel2": ch2})
    timebase = conform(TIMEBASE_FIELDS, doc.timebase)
    return dataclasses.replace(doc, channel1=ch1, channel2=ch2, trigger=trigger,
                               timebase=timebase)
