"""Reading and writing .logcatfilters rule files."""

from pathlib import Path
from typing import Iterable

from .models import FilterRecord, FilterType
from .presenter import InvalidInputError, normalize_levels

PREFIXES = {
    "KEYWORD": FilterType.KEYWORD,
    "TAG": FilterType.TAG,
    "PID": FilterType.PID,
    "TID": FilterType.TID,
    "LEVELS": FilterType.LOG_LEVELS,
}

EXCLUDE_MARKER = "!"


class RulesParseError(Exception):
    """Error parsing a .logcatfilters file."""

    def __init__(self, message: str, line_number: int, line_content: str):
        self.line_number = line_number
        self.line_content = line_content
        super().__init__(f"Line {line_number}: {message}\n  Content: {line_content!r}")


def parse_rules_file(path: Path) -> list[FilterRecord]:
    """Parse a .logcatfilters file from disk.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        RulesParseError: If the file contains invalid syntax.
    """
    return parse_rules_content(path.read_text(encoding="utf-8"))


def parse_rules_content(content: str) -> list[FilterRecord]:
    """Parse .logcatfilters content, in file order."""
    records = []
    for line_number, line in enumerate(content.splitlines(), start=1):
        record = parse_rules_line(line, line_number)
        if record is not None:
            records.append(record)
    return records


def parse_rules_line(line: str, line_number: int) -> FilterRecord | None:
    """Parse one line: ``[!]TYPE:value``.

    Returns:
        A FilterRecord, or None for blank and comment lines.

    Raises:
        RulesParseError: If the line is not a valid rule.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    exclude = stripped.startswith(EXCLUDE_MARKER)
    body = stripped[1:].lstrip() if exclude else stripped

    if ":" not in body:
        raise RulesParseError("Invalid rule format. Expected TYPE:value", line_number, line)

    prefix, _, value = body.partition(":")
    prefix = prefix.strip().upper()
    value = value.strip()

    kind = PREFIXES.get(prefix)
    if kind is None:
        raise RulesParseError(
            f"Unknown rule type: {prefix}. Expected {', '.join(PREFIXES)}",
            line_number,
            line,
        )
    if not value:
        raise RulesParseError(f"Empty value for rule type {prefix}", line_number, line)

    if kind in (FilterType.PID, FilterType.TID) and not value.isdigit():
        raise RulesParseError(f"{prefix} must be a number", line_number, line)

    if kind is FilterType.LOG_LEVELS:
        try:
            value = normalize_levels(v for v in value.split(",") if v.strip())
        except InvalidInputError as e:
            raise RulesParseError(str(e), line_number, line) from e

    return FilterRecord(kind=kind, content=value, is_exclusion=exclude)


def format_rules(records: Iterable[FilterRecord]) -> str:
    """Render records in .logcatfilters syntax, inclusions first.

    Raises:
        ValueError: If a record's content holds a line break, since it would
            not read back as a single rule.
    """
    records = list(records)
    prefixes = {kind: prefix for prefix, kind in PREFIXES.items()}
    lines = []
    for exclude, heading in ((False, "# Inclusions"), (True, "# Exclusions")):
        group = [r for r in records if r.is_exclusion == exclude and r.kind in prefixes]
        if not group:
            continue
        if lines:
            lines.append("")
        lines.append(heading)
        for record in group:
            if "\n" in record.content or "\r" in record.content:
                raise ValueError(f"Filter {record.content!r} spans several lines")
            marker = EXCLUDE_MARKER if exclude else ""
            lines.append(f"{marker}{prefixes[record.kind]}:{record.content}")
    return "\n".join(lines) + "\n" if lines else ""


SAMPLE_LOGCATFILTERS = """\
# .logcatfilters - Inclusion and exclusion filters for logcat
#
# Supported rule types:
#   KEYWORD:text          - Message contains text (case-insensitive)
#   TAG:TagName           - Tag equals TagName
#   PID:1234              - Process id
#   TID:5678              - Thread id
#   LEVELS:Warning,Error  - Any of these levels (names or letters V/D/I/W/E/F/A)
#
# Prefix a rule with ! to make it an exclusion.
# When any inclusion exists, only matching lines are shown.

# Show warnings and worse
LEVELS:Warning,Error,Fatal,Assert

# Hide framework noise
!TAG:chatty
!TAG:ViewRootImpl
!KEYWORD:GC freed
"""


def generate_sample_rules_file(path: Path) -> bool:
    """Generate a sample .logcatfilters file.

    Returns:
        True if file was created, False if it already exists.
    """
    if path.exists():
        return False

    path.write_text(SAMPLE_LOGCATFILTERS, encoding="utf-8")
    return True
