"""Parser for Android logcat output lines."""

import re
from typing import Iterable, Iterator

from .models import LogEntry, LogLevel

_LEVEL = r"(?P<level>[VDIWEFA])"
_STAMP = r"(?P<timestamp>\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d{3})"

# Tried in order, most specific first.
FORMATS = {
    # "12-25 13:45:23.456  1234  5678 D MyTag  : Hello world"
    "threadtime": re.compile(
        rf"^{_STAMP}\s+(?P<pid>\d+)\s+(?P<tid>\d+)\s+{_LEVEL}\s+(?P<tag>\S+)\s*:\s*(?P<message>.*)$"
    ),
    # "12-25 13:45:23.456 D/MyTag( 1234): Hello world"
    "time": re.compile(
        rf"^{_STAMP}\s+{_LEVEL}/(?P<tag>[^(]+)\(\s*(?P<pid>\d+)\):\s*(?P<message>.*)$"
    ),
    # "D/MyTag( 1234): Hello world"
    "brief": re.compile(
        rf"^{_LEVEL}/(?P<tag>[^(]+)\(\s*(?P<pid>\d+)\):\s*(?P<message>.*)$"
    ),
    # "D/MyTag: Hello world"
    "tag": re.compile(rf"^{_LEVEL}/(?P<tag>[^:]+):\s*(?P<message>.*)$"),
    # "D( 1234) Hello world"
    "process": re.compile(rf"^{_LEVEL}\(\s*(?P<pid>\d+)\)\s*(?P<message>.*)$"),
}


def parse_logcat_line(line: str) -> LogEntry:
    """Parse a single logcat line.

    Lines that match no known format come back with only raw_line set.
    """
    line = line.rstrip("\r\n")
    for pattern in FORMATS.values():
        match = pattern.match(line)
        if match:
            return _entry_from_groups(line, match.groupdict())
    return LogEntry(raw_line=line)


def _entry_from_groups(raw_line: str, groups: dict[str, str | None]) -> LogEntry:
    tag = groups.get("tag")
    return LogEntry(
        raw_line=raw_line,
        timestamp=groups.get("timestamp"),
        pid=_to_int(groups.get("pid")),
        tid=_to_int(groups.get("tid")),
        level=LogLevel.from_str(groups["level"]),
        tag=tag.strip() if tag else None,
        message=groups.get("message") or "",
    )


def _to_int(value: str | None) -> int | None:
    return int(value) if value else None


def parse_logcat_lines(lines: Iterable[str]) -> Iterator[LogEntry]:
    for line in lines:
        yield parse_logcat_line(line)
