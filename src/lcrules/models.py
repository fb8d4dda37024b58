"""Data models for lcrules."""

from dataclasses import dataclass
from enum import Enum


class LogLevel(Enum):
    """Android logcat log levels, in increasing severity."""
    VERBOSE = "V"
    DEBUG = "D"
    INFO = "I"
    WARNING = "W"
    ERROR = "E"
    FATAL = "F"
    ASSERT = "A"

    @property
    def label(self) -> str:
        """Readable name, also the code stored in filter content."""
        return self.name.capitalize()

    @classmethod
    def from_str(cls, value: str) -> "LogLevel":
        """Parse a log level from its letter ("W") or its name ("Warning")."""
        value = value.strip()
        for level in cls:
            if value.upper() == level.value or value.lower() == level.label.lower():
                return level
        raise ValueError(f"Unknown log level: {value}")


class FilterType(Enum):
    """Kinds of filter rules."""
    KEYWORD = "keyword"
    TAG = "tag"
    PID = "pid"
    TID = "tid"
    LOG_LEVELS = "log_levels"


class Partition(Enum):
    """Which list a filter rule belongs to."""
    INCLUSIONS = "inclusions"
    EXCLUSIONS = "exclusions"

    @property
    def exclude(self) -> bool:
        return self is Partition.EXCLUSIONS

    @classmethod
    def of(cls, exclude: bool) -> "Partition":
        return cls.EXCLUSIONS if exclude else cls.INCLUSIONS


@dataclass(frozen=True)
class LogEntry:
    """A parsed logcat log entry.

    Attributes:
        raw_line: The original unparsed line.
        timestamp: The timestamp string (if present).
        pid: Process ID (if present).
        tid: Thread ID (if present).
        level: Log level.
        tag: The log tag.
        message: The log message content.
    """
    raw_line: str
    timestamp: str | None = None
    pid: int | None = None
    tid: int | None = None
    level: LogLevel | None = None
    tag: str | None = None
    message: str = ""


@dataclass(frozen=True)
class FilterRecord:
    """One stored filter rule.

    Records are never edited; replace one by deleting it and inserting a new
    record.

    Attributes:
        kind: What the content is matched against.
        content: Rule payload. For LOG_LEVELS, a comma-joined list of level
            names, e.g. "Debug,Warning".
        is_exclusion: True for exclusion rules, False for inclusion rules.
        id: Identity assigned by the store, None until persisted.
    """
    kind: FilterType
    content: str
    is_exclusion: bool = False
    id: int | None = None

    @property
    def partition(self) -> Partition:
        return Partition.of(self.is_exclusion)

    def levels(self) -> set[LogLevel]:
        """Decode LOG_LEVELS content; unknown codes are dropped."""
        levels = set()
        for code in self.content.split(","):
            try:
                levels.add(LogLevel.from_str(code))
            except ValueError:
                continue
        return levels

    def matches(self, entry: LogEntry) -> bool:
        """Check if this rule matches the log entry."""
        match self.kind:
            case FilterType.KEYWORD:
                return self.content.lower() in entry.message.lower()
            case FilterType.TAG:
                return entry.tag == self.content
            case FilterType.PID:
                return _int_equals(self.content, entry.pid)
            case FilterType.TID:
                return _int_equals(self.content, entry.tid)
            case FilterType.LOG_LEVELS:
                return entry.level is not None and entry.level in self.levels()
            case _:
                return False


def _int_equals(content: str, value: int | None) -> bool:
    if value is None:
        return False
    try:
        return int(content) == value
    except ValueError:
        return False


@dataclass(frozen=True)
class DisplayItem:
    """Readable projection of a FilterRecord for a presentation surface."""
    type_label: str
    display_text: str
    source: FilterRecord


@dataclass
class FilterResult:
    """Result of filtering a log entry against stored rules."""
    entry: LogEntry
    should_display: bool
    matched_rule: FilterRecord | None = None
