"""
mock — a simulated DS1000Z for tests and ``scopesync --mock``.

MockScopeResource answers the settings commands the mirrors use, with replies
in the instrument's own formats (short-form tokens, ``5.000000E-01`` numbers,
``1``/``0`` booleans). Failures can be injected per command path:

    res = MockScopeResource()
    res.fail_queries.add(":TRIG:SWE?")     # query times out
    res.fail_writes.add(":CHAN1:OFFS")     # write times out
    res.replies[":CHAN1:SCAL?"] = "junk"   # unparsable reply
    res.fail_all = True                    # everything times out

Paths in these sets use upper-case short forms, with the ``?`` on queries.
Every write is recorded verbatim in ``res.written``.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Set

IDN = "RIGOL TECHNOLOGIES,DS1102Z-E,DS1ZE000000001,00.06.02"
MOCK_RESOURCE = "USB0::0x1AB1::0x0517::DS1ZE000000001::INSTR"

NUM, BOOL, TOK = "num", "bool", "tok"

_LOWER = re.compile(r"[a-z]")


def short_form(token: str) -> str:
    """``CHANnel1`` -> ``CHAN1``; ``:TIMebase:MAIN:SCALe`` -> ``:TIM:MAIN:SCAL``."""
    return _LOWER.sub("", token).upper()


def _channel_defaults(n: int) -> Dict[str, tuple]:
    p = f":CHAN{n}"
    return {
        f"{p}:DISP": (BOOL, n == 1),
        f"{p}:PROB": (NUM, 10.0),
        f"{p}:SCAL": (NUM, 1.0),
        f"{p}:OFFS": (NUM, 0.0),
        f"{p}:COUP": (TOK, "DC"),
        f"{p}:BWL": (TOK, "OFF"),
        f"{p}:UNIT": (TOK, "VOLT"),
        f"{p}:INV": (BOOL, False),
        f"{p}:VERN": (BOOL, False),
    }


def default_state() -> Dict[str, tuple]:
    state = {**_channel_defaults(1), **_channel_defaults(2)}
    state.update({
        ":TRIG:MODE": (TOK, "EDGE"),
        ":TRIG:SWE": (TOK, "AUTO"),
        ":TRIG:COUP": (TOK, "DC"),
        ":TRIG:HOLD": (NUM, 16e-9),
        ":TRIG:NREJ": (BOOL, False),
        ":TRIG:STAT": (TOK, "AUTO"),
        ":TRIG:EDG:SOUR": (TOK, "CHAN1"),
        ":TRIG:EDG:SLOP": (TOK, "POS"),
        ":TRIG:EDG:LEV": (NUM, 0.0),
        ":TIM:MODE": (TOK, "MAIN"),
        ":TIM:MAIN:SCAL": (NUM, 1e-3),
        ":TIM:MAIN:OFFS": (NUM, 0.0),
        ":TIM:DEL:ENAB": (BOOL, False),
        ":TIM:DEL:SCAL": (NUM, 1e-6),
        ":TIM:DEL:OFFS": (NUM, 0.0),
    })
    return state


def _reply(kind: str, value: Any) -> str:
    if kind == NUM:
        return f"{value:.6E}"
    if kind == BOOL:
        return "1" if value else "0"
    return str(value)


# front-panel verbs and the trigger status they leave behind
_VERBS = {":RUN": "RUN", ":STOP": "STOP", ":SING": "WAIT", ":CLE": None,
          ":AUT": "AUTO", ":TFOR": "TD"}


class MockScopeResource:
    def __init__(self, idn: str = IDN):
        self.idn = idn
        self.timeout = 5000
        self.write_termination = "\n"
        self.read_termination: Optional[str] = "\n"
        self.state: Dict[str, tuple] = default_state()
        self.errors: List[str] = []
        self.bin = b"\x89PNG\r\n\x1a\n" + bytes(range(32))   # fake PNG
        self.written: List[str] = []
        self.queried: List[str] = []
        self.replies: Dict[str, str] = {}
        self.fail_queries: Set[str] = set()
        self.fail_writes: Set[str] = set()
        self.fail_all = False
        self.closed = False
        self._out = b""

    # ---- helpers ----
    def value(self, path: str) -> Any:
        """Current value behind a long- or short-form path."""
        return self.state[short_form(path)][1]

    def set_value(self, path: str, value: Any) -> None:
        key = short_form(path)
        kind = self.state[key][0]
        self.state[key] = (kind, short_form(value) if kind == TOK else value)

    @staticmethod
    def _split(cmd: str):
        head, _, arg = cmd.strip().partition(" ")
        head = short_form(head)
        if not head.startswith(("*", ":")):
            head = ":" + head
        return head, arg.strip()

    def _check(self, key: str, failing: Set[str]) -> None:
        if self.closed:
            raise OSError("resource closed")
        if self.fail_all or key in failing:
            raise TimeoutError(f"VI_ERROR_TMO: timeout on {key}")

    # ---- VISA resource surface ----
    def write(self, cmd: str):
        head, arg = self._split(cmd)
        self._check(head, self.fail_writes)
        self.written.append(cmd)

        if head.endswith("?"):
            if head == ":DISP:DATA?":
                self._out = f"#9{len(self.bin):09d}".encode("ascii") + self.bin + b"\n"
            return len(cmd)
        if head in _VERBS:
            if _VERBS[head]:
                self.set_value(":TRIG:STAT", _VERBS[head])
            return len(cmd)
        if head not in self.state or not arg:
            self.errors.append('-113,"Undefined header"')
            return len(cmd)

        kind = self.state[head][0]
        try:
            if kind == NUM:
                value: Any = float(arg)
            elif kind == BOOL:
                value = {"1": True, "ON": True, "0": False, "OFF": False}[arg.upper()]
            else:
                value = short_form(arg)
        except (ValueError, KeyError):
            self.errors.append('-224,"Illegal parameter value"')
            return len(cmd)
        self.state[head] = (kind, value)
        return len(cmd)

    def query(self, cmd: str) -> str:
        head, _ = self._split(cmd)
        self._check(head, self.fail_queries)
        self.queried.append(cmd)
        if head in self.replies:
            return self.replies[head] + "\n"
        if head == "*IDN?":
            return self.idn + "\n"
        if head == "*OPC?":
            return "1\n"
        if head == ":SYST:ERR?":
            return (self.errors.pop(0) if self.errors else '0,"No error"') + "\n"
        key = head.rstrip("?")
        if head.endswith("?") and key in self.state:
            return _reply(*self.state[key]) + "\n"
        self.errors.append('-113,"Undefined header"')
        return "\n"

    def read_bytes(self, count: int) -> bytes:
        self._check(":READ", set())
        if not self._out:
            raise TimeoutError("VI_ERROR_TMO: nothing to read")
        chunk, self._out = self._out[:count], self._out[count:]
        return chunk

    def close(self):
        self.closed = True


class MockResourceManager:
    """Stands in for pyvisa.ResourceManager; serves one MockScopeResource."""

    def __init__(self, resource: Optional[MockScopeResource] = None,
                 address: str = MOCK_RESOURCE, extra: Optional[List[str]] = None):
        self._resource = resource or MockScopeResource()
        self.address = address
        self.extra = list(extra or [])
        self.opened: List[str] = []

    def list_resources(self, query: str = "?*::INSTR"):
        found = [self.address] + self.extra
        if query.upper().startswith("USB"):
            found = [r for r in found if r.upper().startswith("USB")]
        return tuple(found)

    def open_resource(self, address: str):
        self.opened.append(address)
        if address != self.address:
            raise OSError(f"VI_ERROR_RSRC_NFOUND: {address}")
        self._resource.closed = False
        return self._resource

    def close(self):
        pass
