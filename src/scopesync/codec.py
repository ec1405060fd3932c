"""
codec — turns typed setting values into SCPI command text and device replies
back into typed values.

Numbers are always rendered with '.' as the decimal point and no exponent or
grouping, whatever the process locale is, so the instrument parses them.

    format_command(":CHANnel1:OFFSet", 100.0)   -> ":CHANnel1:OFFSet 100"
    format_command(":CHANnel1:DISPlay", True)   -> ":CHANnel1:DISPlay ON"
    parse_response("5.000000E-01\\n", float)    -> 0.5
    parse_response("CHAN1", TRIGGER_SOURCE)     -> "CHANnel1"
"""
from __future__ import annotations

import re
from decimal import Decimal
from math import isfinite
from typing import Any, Iterable, Iterator, Optional, Union

from .errors import ProtocolError

# upper-case stem, lower-case tail, numeric suffix: "CHANnel1" -> CHAN, nel, 1
_KEYWORD_RE = re.compile(r"([A-Z0-9]*)([a-z]*)(\d*)")


def _keyword_forms(keyword: str) -> tuple[str, str, str]:
    m = _KEYWORD_RE.fullmatch(keyword)
    if not m or not m.group(1):
        u = keyword.upper()
        return u, u, ""
    stem, tail, digits = m.groups()
    return stem, (stem + tail).upper(), digits


def keyword_matches(keyword: str, text: str) -> bool:
    """True if *text* is any legal SCPI spelling of *keyword*.

    Short and long forms are accepted case-insensitively, e.g. ``NORM``,
    ``norm`` and ``NORMAL`` all match ``NORMal``.
    """
    stem, long_form, digits = _keyword_forms(keyword)
    u = text.strip().upper()
    if digits:
        if not u.endswith(digits):
            return False
        u = u[: len(u) - len(digits)]
    return u.startswith(stem) and long_form.startswith(u)


class TokenSet:
    """Enumerated protocol tokens for one setting, stored in canonical form."""

    def __init__(self, name: str, keywords: Iterable[str]):
        self.name = name
        self.keywords: tuple[str, ...] = tuple(keywords)

    def canonical(self, text: str) -> Optional[str]:
        for kw in self.keywords:
            if keyword_matches(kw, text):
                return kw
        return None

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and self.canonical(text) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.keywords)

    def __len__(self) -> int:
        return len(self.keywords)

    def __repr__(self) -> str:
        return f"TokenSet({self.name!r}, {list(self.keywords)!r})"


Expected = Union[type, TokenSet]


# ---------------------------
# Formatting
# ---------------------------
def format_number(x: float) -> str:
    d = Decimal(repr(float(x))) if not isinstance(x, int) else Decimal(x)
    if not d.is_finite():
        raise ValueError(f"cannot format non-finite value {x!r}")
    s = format(d.normalize(), "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return value
    raise TypeError(f"unsupported value type {type(value).__name__}")


def format_command(path: str, value: Any) -> str:
    """Render ``<path> <value>`` ready to be sent."""
    return f"{path} {format_value(value)}"


def query_for(path: str) -> str:
    return f"{path}?"


# ---------------------------
# Parsing
# ---------------------------
def _parse_float(s: str) -> float:
    try:
        v = float(s)
    except ValueError:
        raise ProtocolError(f"not a number: {s!r}") from None
    if not isfinite(v):
        raise ProtocolError(f"non-finite number: {s!r}")
    return v


def _parse_bool(s: str) -> bool:
    u = s.upper()
    if u in {"1", "ON"}:
        return True
    if u in {"0", "OFF"}:
        return False
    raise ProtocolError(f"not a boolean: {s!r}")


def parse_response(raw: str, expected: Expected) -> Any:
    """Parse one reply. Raises ProtocolError, never substitutes a default."""
    if raw is None:
        raise ProtocolError("no response")
    s = raw.strip().strip('"')
    if not s:
        raise ProtocolError("empty response")
    if isinstance(expected, TokenSet):
        tok = expected.canonical(s)
        if tok is None:
            raise ProtocolError(f"unknown {expected.name} token: {s!r}")
        return tok
    if expected is bool:
        return _parse_bool(s)
    if expected is float or expected is int:
        v = _parse_float(s)
        return int(v) if expected is int else v
    if expected is str:
        return s
    raise TypeError(f"unsupported expected type {expected!r}")
