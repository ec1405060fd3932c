"""
sync — coordinates the four mirrors of one instrument.

SettingsSynchronizer owns channel1, channel2, trigger and timebase mirrors over
a single transport. Whole-instrument operations (pull everything, apply a
preset, restore a saved setup) are sequenced here; each mirror still enforces
its own guard. Background variants run on one worker thread so at most one
batch is ever in flight.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

from . import presets
from .errors import ValidationError
from .mirror import SettingsMirror, channel_mirror, timebase_mirror, trigger_mirror
from .settings import DeviceInfo, SetupDocument
from .transport import Transport

SUBSYSTEMS = ("channel1", "channel2", "trigger", "timebase")


def _done(result: bool) -> "Future[bool]":
    f: Future = Future()
    f.set_result(result)
    return f


class SettingsSynchronizer:
    def __init__(self, transport: Transport, *, logger: Optional[logging.Logger] = None):
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)
        self.channel1 = channel_mirror(transport, 1, logger=self.logger)
        self.channel2 = channel_mirror(transport, 2, logger=self.logger)
        self.trigger = trigger_mirror(
            transport,
            peers={"CHANnel1": self.channel1, "CHANnel2": self.channel2},
            logger=self.logger,
        )
        self.timebase = timebase_mirror(transport, logger=self.logger)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._busy = threading.Lock()

    @property
    def mirrors(self) -> Dict[str, SettingsMirror]:
        return {name: getattr(self, name) for name in SUBSYSTEMS}

    def mirror(self, subsystem: str) -> SettingsMirror:
        key = subsystem.strip().lower()
        if key in ("ch1", "chan1"):
            key = "channel1"
        elif key in ("ch2", "chan2"):
            key = "channel2"
        if key not in SUBSYSTEMS:
            raise ValidationError(f"unknown subsystem {subsystem!r}, expected one of {list(SUBSYSTEMS)}")
        return getattr(self, key)

    # ---- batches ----
    def pull_all(self) -> bool:
        """Refresh every mirror from the device. Later pulls still run if one fails."""
        results = [m.pull() for m in self.mirrors.values()]
        ok = all(results)
        if ok:
            self.logger.info("All settings synchronized from instrument")
        else:
            failed = [n for n, r in zip(SUBSYSTEMS, results) if not r]
            self.logger.warning("Synchronization incomplete: %s", ", ".join(failed))
        return ok

    def apply_setup(self, doc: SetupDocument) -> bool:
        """Push every subsystem of *doc*, channels first."""
        results = [m.set_settings(getattr(doc, name)) for name, m in self.mirrors.items()]
        return all(results)

    def apply_preset(self, name: str) -> bool:
        doc = presets.get_preset(name)
        if doc is None:
            self.logger.warning("Unknown preset %r (available: %s)", name,
                                ", ".join(presets.preset_names()))
            return False
        self.logger.info("Applying preset %s", name)
        ok = self.apply_setup(doc)
        if not ok:
            self.logger.warning("Preset %s applied partially", name)
        return ok

    def restore_setup(self, doc: SetupDocument) -> bool:
        """Load *doc* into the mirrors without talking to the instrument."""
        results = [m.apply_snapshot(getattr(doc, name)) for name, m in self.mirrors.items()]
        return all(results)

    def build_setup(self, device: Optional[DeviceInfo] = None) -> SetupDocument:
        return SetupDocument(
            channel1=self.channel1.snapshot(),
            channel2=self.channel2.snapshot(),
            trigger=self.trigger.snapshot(),
            timebase=self.timebase.snapshot(),
            device=device or DeviceInfo(),
        )

    @property
    def is_syncing(self) -> bool:
        return self._busy.locked() or any(m.is_syncing for m in self.mirrors.values())

    # ---- background ----
    def _submit(self, label: str, fn, *args) -> "Future[bool]":
        if not self._busy.acquire(blocking=False):
            self.logger.warning("%s rejected, a batch is already running", label)
            return _done(False)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scopesync")

        def run() -> bool:
            try:
                return fn(*args)
            finally:
                self._busy.release()

        try:
            return self._executor.submit(run)
        except RuntimeError:
            self._busy.release()
            raise

    def pull_all_async(self) -> "Future[bool]":
        return self._submit("pull_all", self.pull_all)

    def apply_preset_async(self, name: str) -> "Future[bool]":
        return self._submit("apply_preset", self.apply_preset, name)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
