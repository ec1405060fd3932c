"""
transport — one PyVISA session to one instrument.

- Explicit connect()/disconnect(); send()/query() refuse to touch the bus while
  disconnected and report failure instead of raising.
- Every request holds one lock: the USBTMC channel is half-duplex, one write
  paired with at most one read, so two requests are never in flight.
- Timeouts come from the VISA resource (timeout_ms). A timeout is a transport
  failure; nothing here retries it.
- Optional SYST:ERR? draining after writes (check_errors=True).
- Logging integration for state changes, I/O trace and failures.

    t = Transport(timeout_ms=3000)
    if t.connect("USB0::0x1AB1::0x0517::DS1ZE000000001::INSTR"):
        print(t.query("*IDN?"))
        t.send(":CHANnel1:SCALe 0.5")
        t.disconnect()
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Optional

import pyvisa

from .errors import NotConnectedError, ProtocolError, TransportError

# pyvisa raises its own Error family; backends and mocks may raise OSError.
IO_ERRORS = (pyvisa.errors.Error, OSError, TransportError, UnicodeDecodeError)

DEFAULT_TIMEOUT_MS = 5000


def _discard_bytes(r, count: int, chunk: int = 65536) -> None:
    while count > 0:
        got = r.read_bytes(min(chunk, count))
        if not got:
            break
        count -= len(got)


def _read_terminator(r) -> None:
    try:
        r.read_bytes(1)
    except IO_ERRORS:
        pass


class ConnectionState(Enum):
    DISCONNECTED = "Disconnected"
    CONNECTED = "Connected"


class Transport:
    def __init__(
        self,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        check_errors: bool = False,
        rm: Optional["pyvisa.ResourceManager"] = None,
        logger: Optional[logging.Logger] = None,
        retries: int = 0,
        retry_delay: float = 0.1,
    ):
        self.timeout_ms = int(timeout_ms)
        self.check_errors = check_errors
        self.rm = rm
        self.logger = logger or logging.getLogger(__name__)
        self.retries = retries
        self.retry_delay = retry_delay
        self.resource_name: Optional[str] = None
        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None
        self._resource: Any = None
        self._lock = threading.RLock()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _fail(self, message: str) -> None:
        self.last_error = message
        self.logger.warning(message)

    def _resource_manager(self):
        if self.rm is None:
            self.rm = pyvisa.ResourceManager()
        return self.rm

    # ---- lifecycle ----
    def connect(self, resource_name: str) -> bool:
        """Open *resource_name*. Returns False (and logs why) on failure."""
        with self._lock:
            if self.is_connected:
                if resource_name == self.resource_name:
                    return True
                self.disconnect()

            last_err: Optional[Exception] = None
            for attempt in range(self.retries + 1):
                try:
                    resource = self._resource_manager().open_resource(resource_name)
                    resource.write_termination = "\n"
                    resource.read_termination = "\n"
                    resource.timeout = self.timeout_ms
                except (*IO_ERRORS, ValueError) as e:
                    last_err = e
                    self.logger.debug("connect() attempt %d/%d failed: %s",
                                      attempt + 1, self.retries + 1, e)
                    if attempt < self.retries:
                        time.sleep(self.retry_delay)
                    continue

                self._resource = resource
                self.resource_name = resource_name
                self.state = ConnectionState.CONNECTED
                self.last_error = None
                self.logger.info("Connected to %s", resource_name)
                return True

            self._fail(f"Failed to open instrument at {resource_name}: {last_err}")
            return False

    def disconnect(self) -> bool:
        with self._lock:
            if self._resource is None:
                self.state = ConnectionState.DISCONNECTED
                return True
            name = self.resource_name
            ok = True
            try:
                self._resource.close()
            except IO_ERRORS as e:
                self._fail(f"Error while closing {name}: {e}")
                ok = False
            finally:
                self._resource = None
                self.state = ConnectionState.DISCONNECTED
            self.logger.info("Disconnected from %s", name)
            return ok

    def find_resources(self, query: str = "USB?*::INSTR") -> list[str]:
        """One-shot scan of the VISA bus. Returns [] if the scan fails."""
        try:
            found = list(self._resource_manager().list_resources(query))
        except (*IO_ERRORS, ValueError) as e:
            self._fail(f"Resource scan failed: {e}")
            return []
        self.logger.debug("Resources matching %s: %s", query, found)
        return found

    def close(self) -> None:
        self.disconnect()
        if self.rm is not None and hasattr(self.rm, "close"):
            try:
                self.rm.close()
            except IO_ERRORS as e:
                self.logger.debug("Resource manager close failed: %s", e)
        self.rm = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # ---- raising primitives ----
    def _require(self):
        if not self.is_connected or self._resource is None:
            raise NotConnectedError("Instrument not connected. Call connect() first.")
        return self._resource

    def write(self, cmd: str) -> None:
        """Write *cmd*; raises TransportError on any failure."""
        with self._lock:
            r = self._require()
            self.logger.debug("→ %s", cmd)
            try:
                r.write(cmd)
            except IO_ERRORS as e:
                raise TransportError(f"write '{cmd}' failed: {e}") from e
            if self.check_errors:
                self._drain_error_queue(cmd)

    def ask(self, cmd: str) -> str:
        """Query *cmd*; raises TransportError on any failure."""
        with self._lock:
            r = self._require()
            self.logger.debug("? %s", cmd)
            try:
                resp = r.query(cmd)
            except IO_ERRORS as e:
                raise TransportError(f"query '{cmd}' failed: {e}") from e
            self.logger.debug("← %s", resp.strip())
            return resp

    def _drain_error_queue(self, last_cmd: str) -> None:
        for _ in range(16):
            try:
                s = self._resource.query(":SYSTem:ERRor?").strip()
            except IO_ERRORS as e:
                self.logger.debug("Error queue check skipped: %s", e)
                return
            self.logger.debug("ERR? %s", s)
            if not s:
                return
            code_str = s.split(",")[0].strip()
            try:
                code = int(code_str)   # handles "0", "+0", "-200", etc.
            except ValueError:
                code = 1
            if code == 0:
                return
            raise TransportError(f"Instrument error after '{last_cmd}': {s}")

    # ---- boundary operations ----
    def send(self, command: str) -> bool:
        """Fire-and-forget command. False if disconnected or the write failed."""
        try:
            self.write(command)
        except TransportError as e:
            self._fail(f"Cannot send '{command}': {e}")
            return False
        return True

    def query(self, command: str) -> str:
        """Query and return the stripped reply, or '' on failure."""
        try:
            return self.ask(command).strip()
        except TransportError as e:
            self._fail(f"Cannot query '{command}': {e}")
            return ""

    def query_binary(self, command: str, max_bytes: int = 100_000) -> bytes:
        """Query an IEEE-488.2 definite-length block (``#<n><len><data>``).

        Returns the payload, or b'' on failure or if it exceeds *max_bytes*. An
        oversized block is still read off the bus and dropped.
        """
        with self._lock:
            try:
                r = self._require()
            except NotConnectedError as e:
                self._fail(f"Cannot query '{command}': {e}")
                return b""
            old_rt = getattr(r, "read_termination", None)
            try:
                r.read_termination = None
                self.logger.debug("? %s", command)
                r.write(command)
                head = r.read_bytes(2)
                if not head.startswith(b"#"):
                    raise ProtocolError(f"bad block header start: {head!r}")
                nd = int(head[1:2])
                ln = int(r.read_bytes(nd).decode("ascii"))
                if ln > max_bytes:
                    # leave nothing queued for the next query
                    _discard_bytes(r, ln)
                    _read_terminator(r)
                    raise ProtocolError(f"block of {ln} bytes exceeds {max_bytes}")
                data = r.read_bytes(ln) if ln else b""
                _read_terminator(r)
            except (*IO_ERRORS, ProtocolError, ValueError) as e:
                self._fail(f"Binary query '{command}' failed: {e}")
                return b""
            finally:
                r.read_termination = old_rt
            self.logger.debug("← %d bytes", len(data))
            return data
