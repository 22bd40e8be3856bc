"""Decoders for the gateway's timestamp, duration and nested fault encodings.

The gateway is inconsistent about how it writes time:

* most device and diagnostic timestamps use RFC 3339 with up to nine
  fractional digits (``2021-10-26T16:01:02.123456789-07:00``);
* the solar alert blocks report ``LastRxTime`` with microseconds;
* ``/api/status`` reports its start time as ``2021-10-23 02:09:28 +0800``;
* uptime is a duration string such as ``89h51m33.77086138s``.

Python's :class:`datetime.datetime` stops at microseconds, so instants are
represented by :class:`Instant`, which keeps nanoseconds and the offset the
gateway used.
"""

from __future__ import annotations

import functools
import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from .errors import FaultDecodeError

NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MICRO = 1_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})T(?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|z|[+-]\d{2}:\d{2})$"
)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Instant:
    """A point in time with nanosecond precision.

    ``offset_seconds`` only affects formatting; two instants are equal when
    they denote the same moment.
    """

    epoch_ns: int
    offset_seconds: int = 0

    @classmethod
    def now(cls) -> "Instant":
        return cls(time.time_ns())

    @classmethod
    def from_datetime(cls, value: datetime) -> "Instant":
        if value.tzinfo is None:
            raise ValueError("naive datetime has no UTC offset")
        micros = (value - _EPOCH) // timedelta(microseconds=1)
        offset = value.utcoffset() or timedelta(0)
        return cls(micros * _NANOS_PER_MICRO, int(offset.total_seconds()))

    @property
    def nanosecond(self) -> int:
        return self.epoch_ns % NANOS_PER_SECOND

    @property
    def utc_offset(self) -> timedelta:
        return timedelta(seconds=self.offset_seconds)

    def unix_nano(self) -> int:
        return self.epoch_ns

    def to_datetime(self) -> datetime:
        """Return an aware datetime (truncated to microseconds)."""
        value = _EPOCH + timedelta(microseconds=self.epoch_ns // _NANOS_PER_MICRO)
        return value.astimezone(timezone(self.utc_offset))

    def __add__(self, other: object) -> "Instant":
        if not isinstance(other, timedelta):
            return NotImplemented
        delta_ns = (other // timedelta(microseconds=1)) * _NANOS_PER_MICRO
        return Instant(self.epoch_ns + delta_ns, self.offset_seconds)

    def __sub__(self, other: object) -> Union["Instant", timedelta]:
        if isinstance(other, Instant):
            return timedelta(microseconds=(self.epoch_ns - other.epoch_ns) / _NANOS_PER_MICRO)
        if isinstance(other, timedelta):
            return self + (-other)
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Instant):
            return NotImplemented
        return self.epoch_ns == other.epoch_ns

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Instant):
            return NotImplemented
        return self.epoch_ns < other.epoch_ns

    def __hash__(self) -> int:
        return hash(self.epoch_ns)

    def __str__(self) -> str:
        return format_nano_instant(self)


def _parse_offset(text: str) -> int:
    if text in ("Z", "z"):
        return 0
    sign = -1 if text[0] == "-" else 1
    hours, minutes = int(text[1:3]), int(text[4:6])
    if hours > 23 or minutes > 59:
        raise ValueError(f"invalid UTC offset {text!r}")
    return sign * (hours * 3600 + minutes * 60)


def _parse_rfc3339(text: str, max_fraction_digits: int) -> Instant:
    match = _RFC3339_RE.match(text.strip())
    if match is None:
        raise ValueError(f"unrecognised timestamp {text!r}")
    fraction = match.group("fraction") or ""
    if len(fraction) > max_fraction_digits:
        raise ValueError(
            f"timestamp {text!r} has {len(fraction)} fractional digits, at most "
            f"{max_fraction_digits} allowed"
        )
    offset_seconds = _parse_offset(match.group("offset"))
    local = datetime.strptime(f"{match.group('date')} {match.group('time')}", "%Y-%m-%d %H:%M:%S")
    aware = local.replace(tzinfo=timezone(timedelta(seconds=offset_seconds)))
    seconds = (aware - _EPOCH) // timedelta(seconds=1)
    nanos = int(fraction.ljust(9, "0")) if fraction else 0
    return Instant(seconds * NANOS_PER_SECOND + nanos, offset_seconds)


def parse_nano_instant(text: str) -> Instant:
    """Parse ``2006-01-02T15:04:05.999999999-07:00`` style timestamps."""
    return _parse_rfc3339(text, 9)


def parse_micro_instant(text: str) -> Instant:
    """Parse ``2006-01-02T15:04:05.999999-07:00`` style timestamps."""
    return _parse_rfc3339(text, 6)


def parse_legacy_instant(text: str) -> Instant:
    """Parse ``2006-01-02 15:04:05 -0700`` style timestamps."""
    return Instant.from_datetime(datetime.strptime(text.strip(), "%Y-%m-%d %H:%M:%S %z"))


def format_nano_instant(value: Instant) -> str:
    """Encode ``value`` in the nanosecond-offset format, keeping its offset."""
    local_seconds = value.epoch_ns // NANOS_PER_SECOND + value.offset_seconds
    local = datetime(1970, 1, 1) + timedelta(seconds=local_seconds)
    if value.offset_seconds == 0:
        offset = "Z"
    else:
        sign = "-" if value.offset_seconds < 0 else "+"
        hours, remainder = divmod(abs(value.offset_seconds), 3600)
        offset = f"{sign}{hours:02d}:{remainder // 60:02d}"
    return f"{local:%Y-%m-%dT%H:%M:%S}.{value.nanosecond:09d}{offset}"


def parse_optional(parser, text: Optional[str]) -> Optional[Instant]:
    """Apply ``parser`` unless the gateway left the field empty."""
    if text is None or not text.strip():
        return None
    return parser(text)


# ----------------------------------------------------------------------
# Durations

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": NANOS_PER_SECOND,
    "m": 60 * NANOS_PER_SECOND,
    "h": 3600 * NANOS_PER_SECOND,
}
_DURATION_PART_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration_ns(text: str) -> int:
    """Return the number of nanoseconds in a duration such as ``1h2m3.5s``."""
    raw = text.strip()
    body = raw
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return 0
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = 0
    position = 0
    while position < len(body):
        match = _DURATION_PART_RE.match(body, position)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        number, unit = match.groups()
        whole, _, fraction = number.partition(".")
        scale = _DURATION_UNITS[unit]
        total += int(whole or "0") * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
        position = match.end()
    return sign * total


def parse_duration(text: str) -> timedelta:
    """Parse a duration string into a :class:`timedelta` (microsecond precision)."""
    nanos = parse_duration_ns(text)
    micros = abs(nanos) // _NANOS_PER_MICRO
    return timedelta(microseconds=micros if nanos >= 0 else -micros)


# ----------------------------------------------------------------------
# Grid fault payloads


@dataclass(frozen=True)
class TextValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: float


FaultValue = Union[TextValue, NumberValue]


@dataclass(frozen=True)
class DecodedAlert:
    name: str
    value: FaultValue
    units: str = ""


def _fault_value(raw: object, document: str) -> FaultValue:
    # bool is an int subclass and must not pass as a number
    if isinstance(raw, bool) or raw is None:
        raise FaultDecodeError(f"unsupported alert value {raw!r}", document)
    if isinstance(raw, str):
        return TextValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(float(raw))
    raise FaultDecodeError(f"unsupported alert value {raw!r}", document)


def unwrap_fault_alerts(document: Optional[str]) -> List[DecodedAlert]:
    """Decode the JSON list carried as a string in a grid fault's ``decoded_alert``."""
    if document is None or not document.strip():
        return []
    try:
        entries = json.loads(document)
    except ValueError as exc:
        raise FaultDecodeError(f"decoded_alert is not valid JSON: {exc}", document) from exc
    if not isinstance(entries, list):
        raise FaultDecodeError("decoded_alert is not a JSON list", document)

    alerts: List[DecodedAlert] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise FaultDecodeError(f"malformed alert entry {entry!r}", document)
        units = entry.get("units")
        alerts.append(
            DecodedAlert(
                name=entry["name"],
                value=_fault_value(entry.get("value"), document),
                units=units if isinstance(units, str) else "",
            )
        )
    return alerts


__all__ = [
    "DecodedAlert",
    "FaultValue",
    "Instant",
    "NumberValue",
    "TextValue",
    "format_nano_instant",
    "parse_duration",
    "parse_duration_ns",
    "parse_legacy_instant",
    "parse_micro_instant",
    "parse_nano_instant",
    "parse_optional",
    "unwrap_fault_alerts",
]
