"""Named constant settings for common measurement scenarios.

Per-subsystem presets are combined into whole-instrument setups in
SYSTEM_PRESETS; those are what SettingsSynchronizer.apply_preset() pushes.
Every lookup returns a fresh copy, so callers may modify what they get.
"""
from __future__ import annotations

from .settings import ChannelSettings, SetupDocument, TimeBaseSettings, TriggerSettings

CHANNEL_PRESETS: dict[str, ChannelSettings] = {
    # ±4 V on screen
    "general_purpose": ChannelSettings(probe_ratio=10.0, vertical_scale=0.5),
    "small_signal": ChannelSettings(probe_ratio=1.0, vertical_scale=0.01, coupling="AC"),
    "power_measurement": ChannelSettings(probe_ratio=10.0, vertical_scale=5.0, vertical_offset=-10.0),
    "high_frequency": ChannelSettings(probe_ratio=10.0, vertical_scale=1.0),
    "dc_voltage": ChannelSettings(probe_ratio=10.0, vertical_scale=2.0, bandwidth_limit="20M"),
    "ac_signal": ChannelSettings(probe_ratio=10.0, vertical_scale=1.0, coupling="AC"),
}

TRIGGER_PRESETS: dict[str, TriggerSettings] = {
    "general_purpose": TriggerSettings(),
    "single_shot": TriggerSettings(sweep="SINGle", position=10.0),
    "noisy_signal": TriggerSettings(coupling="AC", holdoff=100e-9, noise_reject=True),
    "digital": TriggerSettings(edge_level=1.65),
    "power_measurement": TriggerSettings(coupling="AC", holdoff=16e-3, noise_reject=True,
                                         position=25.0),
}

TIMEBASE_PRESETS: dict[str, TimeBaseSettings] = {
    "general_purpose": TimeBaseSettings(main_scale=1e-3, delay_scale=1e-6),
    "high_frequency": TimeBaseSettings(main_scale=10e-9, delay_scale=1e-9),
    "low_frequency": TimeBaseSettings(main_scale=10e-3, delay_scale=1e-3),
    # 50/60 Hz mains
    "power_measurement": TimeBaseSettings(main_scale=20e-3, delay_scale=5e-3),
    "digital": TimeBaseSettings(main_scale=100e-9, delay_scale=10e-9),
    "delayed_analysis": TimeBaseSettings(main_scale=1e-3, delay_enabled=True, delay_scale=100e-6),
    "single_shot": TimeBaseSettings(main_scale=500e-6, main_offset=-2e-3, delay_scale=50e-6),
    "serial_comm": TimeBaseSettings(main_scale=100e-6, delay_enabled=True, delay_scale=10e-6),
    "audio": TimeBaseSettings(main_scale=100e-6, delay_scale=10e-6),
    "emi": TimeBaseSettings(main_scale=10e-9, delay_scale=1e-9),
}


def _setup(channel: str, trigger: str, timebase: str) -> SetupDocument:
    return SetupDocument(
        channel1=CHANNEL_PRESETS[channel].copy(),
        channel2=CHANNEL_PRESETS[channel].copy(),
        trigger=TRIGGER_PRESETS[trigger].copy(),
        timebase=TIMEBASE_PRESETS[timebase].copy(),
    )


SYSTEM_PRESETS: dict[str, SetupDocument] = {
    "general_purpose": _setup("general_purpose", "general_purpose", "general_purpose"),
    "power_measurement": _setup("power_measurement", "power_measurement", "power_measurement"),
    "high_frequency": _setup("high_frequency", "general_purpose", "high_frequency"),
    "digital": _setup("general_purpose", "digital", "digital"),
}


def preset_names() -> list[str]:
    return sorted(SYSTEM_PRESETS)


def get_preset(name: str) -> SetupDocument | None:
    """Fresh copy of a named setup, or None if unknown. Names are case-insensitive."""
    doc = SYSTEM_PRESETS.get(name.strip().lower().replace("-", "_").replace(" ", "_"))
    if doc is None:
        return None
    return SetupDocument.from_dict(doc.to_dict())
