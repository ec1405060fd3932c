"""
ranges — legal value sets and bounds for DS1000Z settings.

Everything here is a pure function of the current settings. The tier
boundaries and ladders are instrument calibration constants and are
reproduced as-is.
"""
from __future__ import annotations

from math import isclose
from typing import Optional, Sequence, Tuple

from .codec import TokenSet

Range = Tuple[float, float]

# ---------------------------
# Enumerations
# ---------------------------
PROBE_RATIOS: tuple[float, ...] = (
    0.01, 0.02, 0.05, 0.1, 0.2, 0.5,
    1.0, 2.0, 5.0, 10.0, 20.0, 50.0,
    100.0, 200.0, 500.0, 1000.0,
)

_SCALES_1X: tuple[float, ...] = (
    0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0, 10.0,
)
_SCALES_NX: tuple[float, ...] = (
    0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 50.0, 100.0,
)

# 1-2-5 sequence, 1 ns/div .. 100 s/div
TIMEBASE_SCALES: tuple[float, ...] = tuple(
    float(f"{m}e{e}") for e in range(-9, 3) for m in (1, 2, 5)
    if not (e == 2 and m > 1)
)

COUPLING = TokenSet("coupling", ("DC", "AC", "GND"))
BANDWIDTH_LIMIT = TokenSet("bandwidth limit", ("OFF", "20M"))
UNITS = TokenSet("units", ("VOLTage", "WATT", "AMPere", "UNKNown"))

TRIGGER_MODE = TokenSet("trigger mode", (
    "EDGe", "PULSe", "SLOPe", "VIDeo", "PATTern", "DURATion", "TIMeout",
    "RUNT", "WINDows", "DELay", "SHOLd", "NEDGe", "RS232", "IIC", "SPI",
))
TRIGGER_SWEEP = TokenSet("trigger sweep", ("AUTO", "NORMal", "SINGle"))
TRIGGER_COUPLING = TokenSet("trigger coupling", ("AC", "DC", "LFReject", "HFReject"))
TRIGGER_SOURCE = TokenSet("trigger source", ("CHANnel1", "CHANnel2", "EXT", "ACLine"))
TRIGGER_SLOPE = TokenSet("trigger slope", ("POSitive", "NEGative", "RFALl"))
TRIGGER_STATUS = TokenSet("trigger status", ("TD", "WAIT", "RUN", "AUTO", "STOP"))

TIMEBASE_MODE = TokenSet("timebase mode", ("MAIN", "XY", "ROLL"))

HOLDOFF_RANGE: Range = (16e-9, 10.0)
DEFAULT_TRIGGER_LEVEL_RANGE: Range = (-4.0, 4.0)

VERTICAL_DIVISIONS = 8
HORIZONTAL_DIVISIONS = 12


# ---------------------------
# Vertical
# ---------------------------
def _is_unity_probe(probe_ratio: float) -> bool:
    return abs(probe_ratio - 1.0) < 1e-3


def offset_range(scale: float, probe_ratio: float) -> Range:
    """Legal vertical offset for a channel, in volts."""
    if _is_unity_probe(probe_ratio):
        if scale < 0.5:
            limit = 2.0
        elif scale >= 5.0:
            limit = 1000.0
        else:
            limit = 20.0
    else:
        if scale < 0.5:
            limit = 20.0
        elif scale >= 5.0:
            limit = 1000.0
        else:
            limit = 100.0
    return (-limit, limit)


def scale_ladder(probe_ratio: float) -> tuple[float, ...]:
    """V/div values the front panel steps through for a given probe."""
    return _SCALES_1X if _is_unity_probe(probe_ratio) else _SCALES_NX


def clamp(value: float, rng: Range) -> float:
    lo, hi = rng
    return max(lo, min(hi, value))


def clamp_offset(value: float, rng: Range) -> float:
    return clamp(value, rng)


def tick_step(rng: Range) -> float:
    span = rng[1] - rng[0]
    if span <= 4:
        return 0.2
    if span <= 40:
        return 2.0
    if span <= 200:
        return 20.0
    return 200.0


def snap_to_ladder(value: float, ladder: Sequence[float], rel_tol: float = 0.01) -> Optional[float]:
    """Return the ladder entry within *rel_tol* of *value*, else None."""
    for step in ladder:
        if isclose(value, step, rel_tol=rel_tol):
            return step
    return None


def snap_probe_ratio(value: float) -> Optional[float]:
    return snap_to_ladder(value, PROBE_RATIOS, rel_tol=1e-3)


# ---------------------------
# Trigger / timebase
# ---------------------------
def trigger_level_range(scale: float, offset: float) -> Range:
    """Edge level window for a channel source: the 8 visible divisions."""
    half = (VERTICAL_DIVISIONS / 2) * scale
    return (-half - offset, half - offset)


def timebase_offset_range(main_scale: float) -> Range:
    half = (HORIZONTAL_DIVISIONS / 2) * main_scale
    return (-half, half)
