"""Snapshot schedules: how often to take snapshots and how long to keep them."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

SNAPSHOT_FORMAT = "%Y-%m-%d-%H-%M-%S"

# Alignment of multiples is measured from the start of year 1, UTC.
_ZERO = datetime(1, 1, 1)

_WEEK = timedelta(weeks=1)
_YEAR = timedelta(seconds=31556952)  # 365.2425 days
_MONTH = _YEAR / 12  # 30.436875 days

_DURATION_RE = re.compile(
    r"^P"
    r"(?:(?P<years>\d+(?:[.,]\d+)?)Y)?"
    r"(?:(?P<months>\d+(?:[.,]\d+)?)M)?"
    r"(?:(?P<weeks>\d+(?:[.,]\d+)?)W)?"
    r"(?:(?P<days>\d+(?:[.,]\d+)?)D)?"
    r"(?:T"
    r"(?:(?P<hours>\d+(?:[.,]\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:[.,]\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:[.,]\d+)?)S)?"
    r")?$"
)

_UNITS = {
    "years": _YEAR,
    "months": _MONTH,
    "weeks": _WEEK,
    "days": timedelta(days=1),
    "hours": timedelta(hours=1),
    "minutes": timedelta(minutes=1),
    "seconds": timedelta(seconds=1),
}


def _parse_duration(text: str) -> timedelta:
    match = _DURATION_RE.match(text)
    if match is None or text.endswith("T") or not any(match.groupdict().values()):
        raise ValueError(f"invalid ISO 8601 duration: {text!r}")
    total = timedelta()
    for unit, amount in match.groupdict().items():
        if amount is not None:
            total += _UNITS[unit] * float(amount.replace(",", "."))
    return total


def _utc(t: datetime) -> datetime:
    """Return t as an aware UTC datetime; naive values are taken as UTC."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def _offset(t: datetime, d: timedelta) -> timedelta:
    """Return how far t lies past the last multiple of d."""
    return (_utc(t).replace(tzinfo=None) - _ZERO) % d


def _is_multiple(t: datetime, d: timedelta) -> bool:
    return _offset(t, d) == timedelta(0)


def _next_multiple(now: datetime, d: timedelta) -> datetime:
    start = _utc(now)
    return start - _offset(start, d) + d


@dataclass(frozen=True)
class SnapshotWindow:
    """Take a snapshot every ``every`` and keep it for ``keep_for``."""

    every: timedelta
    keep_for: timedelta

    def __post_init__(self) -> None:
        if self.every <= timedelta(0):
            raise ValueError("snapshot frequency must be positive")
        if self.keep_for < timedelta(0):
            raise ValueError("snapshot retention must not be negative")


def new_snapshot_window(every: str, keep_for: str) -> SnapshotWindow:
    """Build a window from two ISO 8601 duration strings.

    Raises ValueError if either string cannot be parsed.
    """
    return SnapshotWindow(every=_parse_duration(every), keep_for=_parse_duration(keep_for))


class SnapshotWindows(list):
    """A schedule made of several snapshot windows."""

    def __init__(self, windows: Iterable[SnapshotWindow] = ()) -> None:
        super().__init__(windows)

    def next(self, now: datetime | None = None) -> datetime | None:
        """Return the next time a snapshot should be taken, or None if empty."""
        now = datetime.now(timezone.utc) if now is None else now
        return min((_next_multiple(now, w.every) for w in self), default=None)

    def keep(self, snapshot_time: datetime, now: datetime | None = None) -> bool:
        """Return False if a snapshot taken at ``snapshot_time`` should be deleted."""
        now = datetime.now(timezone.utc) if now is None else now
        age = _utc(now) - _utc(snapshot_time)
        return any(
            age <= w.keep_for and _is_multiple(snapshot_time, w.every) for w in self
        )


def format_snapshot_name(t: datetime) -> str:
    """Return the snapshot name for time t (in UTC)."""
    return _utc(t).strftime(SNAPSHOT_FORMAT)


def parse_snapshot_name(name: str) -> datetime:
    """Return the UTC time a snapshot name stands for.

    Raises ValueError if the name is not in the snapshot format.
    """
    return datetime.strptime(name, SNAPSHOT_FORMAT).replace(tzinfo=timezone.utc)