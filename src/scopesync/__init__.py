__version__ = "0.1.0"

from .errors import (
    ScopeError, TransportError, NotConnectedError, ProtocolError,
    ValidationError, SyncBusyError, SetupFileError,
)
from .transport import Transport, ConnectionState
from .settings import (
    ChannelSettings, TriggerSettings, TimeBaseSettings, DeviceInfo, SetupDocument,
)
from .mirror import (
    FieldSpec, SettingsMirror, channel_mirror, trigger_mirror, timebase_mirror,
)
from .sync import SettingsSynchronizer
from .scope import Oscilloscope, DEFAULT_RESOURCE
from .storage import save_setup, load_setup
from .presets import SYSTEM_PRESETS, get_preset, preset_names


__all__ = [
    "ScopeError","TransportError","NotConnectedError","ProtocolError",
    "ValidationError","SyncBusyError","SetupFileError",
    "Transport","ConnectionState",
    "ChannelSettings","TriggerSettings","TimeBaseSettings","DeviceInfo","SetupDocument",
    "FieldSpec","SettingsMirror","channel_mirror","trigger_mirror","timebase_mirror",
    "SettingsSynchronizer","Oscilloscope","DEFAULT_RESOURCE",
    "save_setup","load_setup","SYSTEM_PRESETS","get_preset","preset_names",
]
