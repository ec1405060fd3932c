"""
scope — the Oscilloscope façade: connection, identity, device verbs and the
settings synchronizer, over one Transport.

- connect() tries the configured resource, then scans USB once for a Rigol
  DS1000Z/DS1000Z-E (vendor 0x1AB1, product 0x04CE or 0x0517).
- Settings go through the mirrors: pull_all(), push(), apply_preset().
- Setups are exported/imported as JSON via scopesync.storage.
- Front-panel verbs (run/stop/single/clear/autoscale/force) are sent as-is.

API sketch:
    with Oscilloscope(timeout_ms=3000) as scope:
        if scope.connect():
            scope.pull_all()
            scope.push("channel1", "vertical_offset", 150.0)   # clamped to 100
            scope.apply_preset("digital")
            scope.export_setup("bench.json")
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Union

import pyvisa

from . import storage
from .errors import SetupFileError, ValidationError
from .mirror import SettingsMirror
from .settings import DeviceInfo, SetupDocument
from .sync import SettingsSynchronizer
from .transport import DEFAULT_TIMEOUT_MS, Transport

DEFAULT_RESOURCE = "USB0::0x1AB1::0x0517::DS1ZE213800586::INSTR"

RIGOL_VENDOR_ID = "0x1AB1"
DS1000Z_PRODUCT_IDS = ("0x04CE", "0x0517")


def is_ds1000z(resource_name: str) -> bool:
    u = resource_name.upper()
    return RIGOL_VENDOR_ID.upper() in u and any(p.upper() in u for p in DS1000Z_PRODUCT_IDS)


class Oscilloscope:
    def __init__(
        self,
        resource_name: str = DEFAULT_RESOURCE,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        check_errors: bool = False,
        logger: Optional[logging.Logger] = None,
        rm: Optional["pyvisa.ResourceManager"] = None,
        retries: int = 0,
        retry_delay: float = 0.1,
    ):
        self.resource_name = resource_name
        self.logger = logger or logging.getLogger(__name__)
        self.transport = Transport(
            timeout_ms=timeout_ms, check_errors=check_errors, rm=rm,
            logger=logger, retries=retries, retry_delay=retry_delay,
        )
        self.sync = SettingsSynchronizer(self.transport, logger=logger)
        self.device_info = DeviceInfo()

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    @property
    def last_error(self) -> Optional[str]:
        return self.transport.last_error

    # ---- connection ----
    def find_scopes(self) -> List[str]:
        """Resources on the USB bus that look like a DS1000Z."""
        return [r for r in self.transport.find_resources("USB?*::INSTR") if is_ds1000z(r)]

    def connect(self, resource_name: Optional[str] = None) -> bool:
        """Open *resource_name* (or the configured one), falling back to a USB scan."""
        target = resource_name or self.resource_name
        ok = self.transport.connect(target)
        if not ok:
            self.logger.info("%s not found, searching for Rigol oscilloscopes...", target)
            for found in self.find_scopes():
                if found == target:
                    continue
                self.logger.info("Found Rigol oscilloscope: %s", found)
                if self.transport.connect(found):
                    ok = True
                    break
        if not ok:
            self.logger.warning("No oscilloscope connected")
            return False

        self.resource_name = self.transport.resource_name
        idn = self.transport.query("*IDN?")
        self.device_info = DeviceInfo.from_idn(idn, connection=self.resource_name or "")
        self.logger.info("Identity: %s", idn or "<no reply>")
        return True

    def disconnect(self) -> bool:
        return self.transport.disconnect()

    def close(self) -> None:
        self.sync.shutdown()
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # ---- settings ----
    def mirror(self, subsystem: str) -> SettingsMirror:
        return self.sync.mirror(subsystem)

    def pull_all(self) -> bool:
        return self.sync.pull_all()

    def push(self, subsystem: str, field: str, value: Any) -> bool:
        try:
            m = self.mirror(subsystem)
        except ValidationError as e:
            self.logger.warning("%s", e)
            return False
        return m.push(field, value)

    def apply_preset(self, name: str) -> bool:
        return self.sync.apply_preset(name)

    def setup(self) -> SetupDocument:
        return self.sync.build_setup(self.device_info)

    def export_setup(self, path: Union[str, Path], refresh: bool = True) -> bool:
        """Write the mirrored configuration to *path*; re-pull first if connected."""
        if refresh and self.is_connected and not self.pull_all():
            self.logger.warning("Exporting with some settings not refreshed")
        try:
            storage.save_setup(self.setup(), path)
        except SetupFileError as e:
            self.logger.warning("%s", e)
            return False
        return True

    def import_setup(self, path: Union[str, Path], push: bool = False) -> bool:
        """Load *path* into the mirrors; with push=True also send it to the instrument."""
        try:
            doc = storage.load_setup(path)
        except SetupFileError as e:
            self.logger.warning("%s", e)
            return False
        if doc.device.model and self.device_info.model and doc.device.model != self.device_info.model:
            self.logger.warning("Setup was saved from %s, connected to %s",
                                doc.device.model, self.device_info.model)
        if push:
            return self.sync.apply_setup(doc)
        return self.sync.restore_setup(doc)

    # ---- device verbs ----
    def run(self) -> bool: return self.transport.send(":RUN")

    def stop(self) -> bool: return self.transport.send(":STOP")

    def single(self) -> bool: return self.transport.send(":SINGle")

    def clear(self) -> bool: return self.transport.send(":CLEar")

    def autoscale(self) -> bool: return self.transport.send(":AUToscale")

    def force_trigger(self) -> bool: return self.transport.send(":TFORce")

    def screenshot_png(self, max_bytes: int = 2_000_000) -> bytes:
        """Screen capture as PNG bytes, or b'' on failure."""
        return self.transport.query_binary(":DISPlay:DATA? ON,OFF,PNG", max_bytes)
