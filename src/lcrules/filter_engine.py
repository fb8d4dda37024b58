"""Filter engine for applying stored filter rules to log entries."""

from collections import Counter
from typing import Iterable, Iterator

from .models import FilterRecord, FilterResult, FilterType, LogEntry, Partition
from .store import FilterStore


class FilterEngine:
    """Decides which log entries to show, given inclusion and exclusion rules.

    An entry is displayed when it matches at least one inclusion rule (or
    there are no inclusion rules) and matches no exclusion rule.

    Attributes:
        inclusions: Rules an entry must match one of.
        exclusions: Rules that hide an entry.
    """

    def __init__(
        self,
        inclusions: Iterable[FilterRecord] = (),
        exclusions: Iterable[FilterRecord] = (),
    ) -> None:
        self.inclusions = list(inclusions)
        self.exclusions = list(exclusions)

    @classmethod
    def from_store(cls, store: FilterStore) -> "FilterEngine":
        """Build an engine from the store's current rules."""
        return cls(
            inclusions=store.snapshot(Partition.INCLUSIONS),
            exclusions=store.snapshot(Partition.EXCLUSIONS),
        )

    def filter_entry(self, entry: LogEntry) -> FilterResult:
        """Filter a single log entry.

        matched_rule is the exclusion that hid the entry, or the inclusion
        that let it through (None when no inclusions are configured).
        """
        for rule in self.exclusions:
            if rule.matches(entry):
                return FilterResult(entry=entry, should_display=False, matched_rule=rule)

        if not self.inclusions:
            return FilterResult(entry=entry, should_display=True)

        for rule in self.inclusions:
            if rule.matches(entry):
                return FilterResult(entry=entry, should_display=True, matched_rule=rule)

        return FilterResult(entry=entry, should_display=False)

    def filter_entries(self, entries: Iterable[LogEntry]) -> Iterator[FilterResult]:
        for entry in entries:
            yield self.filter_entry(entry)

    def filter_and_yield_visible(self, entries: Iterable[LogEntry]) -> Iterator[LogEntry]:
        """Yield only the entries that should be displayed."""
        for result in self.filter_entries(entries):
            if result.should_display:
                yield result.entry


class FilterStats:
    """Tally of a dry run: how many lines each partition kept or hid.

    Lines hidden because no inclusion matched are counted as
    ``hidden_unmatched``; lines shown while no inclusions exist count as
    ``shown_unfiltered``. Everything else is attributed to the rule that
    decided it.
    """

    def __init__(self) -> None:
        self.total_entries = 0
        self.shown_by: Counter[str] = Counter()
        self.hidden_by: Counter[str] = Counter()
        self.shown_unfiltered = 0
        self.hidden_unmatched = 0

    def record(self, result: FilterResult) -> None:
        self.total_entries += 1
        rule = result.matched_rule
        if result.should_display:
            if rule is None:
                self.shown_unfiltered += 1
            else:
                self.shown_by[rule_label(rule)] += 1
        elif rule is None:
            self.hidden_unmatched += 1
        else:
            self.hidden_by[rule_label(rule)] += 1

    @property
    def displayed_entries(self) -> int:
        return self.shown_unfiltered + sum(self.shown_by.values())

    @property
    def hidden_entries(self) -> int:
        return self.hidden_unmatched + sum(self.hidden_by.values())

    @property
    def filter_rate(self) -> float:
        """Share of lines hidden, in percent."""
        if not self.total_entries:
            return 0.0
        return self.hidden_entries * 100 / self.total_entries

    def summary(self) -> str:
        lines = [
            f"Total entries: {self.total_entries}",
            f"Displayed: {self.displayed_entries}",
            f"Hidden: {self.hidden_entries} ({self.filter_rate:.1f}%)",
        ]
        if self.hidden_unmatched:
            lines.append(f"  no inclusion matched: {self.hidden_unmatched}")
        for heading, counts in (("Hidden by", self.hidden_by), ("Kept by", self.shown_by)):
            if counts:
                lines.append(f"\n{heading}:")
                lines.extend(f"  {label}: {count}" for label, count in counts.most_common())
        return "\n".join(lines)


def rule_label(rule: FilterRecord) -> str:
    """A rule in .logcatfilters-like notation, e.g. ``!TAG:chatty``."""
    kind = rule.kind.name if isinstance(rule.kind, FilterType) else str(rule.kind)
    return f"{'!' if rule.is_exclusion else ''}{kind}:{rule.content}"
