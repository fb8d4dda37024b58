"""Presentation logic for one partition of filter rules.

The presenter sits between a FilterStore and whatever displays the rules
(a terminal table, a GUI list...). It turns each store snapshot into
DisplayItems, keeps the current list, and forwards add/remove requests to
the store on a background executor.
"""

import logging
from concurrent.futures import Executor, Future
from typing import Callable, Iterable, Protocol, Sequence

from .models import DisplayItem, FilterRecord, FilterType, LogLevel, Partition
from .store import FilterStore, Subscription
from .workers import WRITE_EXECUTOR, log_failure

logger = logging.getLogger(__name__)

Dispatch = Callable[[Callable[[], None]], None]

TYPE_LABELS = {
    FilterType.LOG_LEVELS: "Log level",
    FilterType.KEYWORD: "Keyword",
    FilterType.TAG: "Tag",
    FilterType.PID: "Pid",
    FilterType.TID: "Tid",
}


class InvalidFilterStateError(Exception):
    """A stored record has a kind that cannot be displayed."""

    def __init__(self, record: FilterRecord):
        self.record = record
        super().__init__(f"invalid type: {record.kind!r}")


class InvalidInputError(ValueError):
    """A caller passed a value the presenter cannot store."""


class InvalidIndexError(IndexError):
    """remove() was given a position outside the current list."""


class PresentationSurface(Protocol):
    """Receives the rendered list every time it changes."""

    def on_items_changed(self, items: Sequence[DisplayItem], is_empty: bool) -> None: ...


def format_levels(content: str) -> str:
    """Expand stored level codes into readable names.

    "Debug,W" -> "Debug, Warning". Unknown codes become empty strings.
    """
    names = []
    for code in content.split(","):
        try:
            names.append(LogLevel.from_str(code).label)
        except ValueError:
            names.append("")
    return ", ".join(names)


def to_display_item(record: FilterRecord) -> DisplayItem:
    """Map a stored record to its display form.

    Raises:
        InvalidFilterStateError: If the record's kind is not a FilterType.
    """
    if record.kind not in TYPE_LABELS:
        raise InvalidFilterStateError(record)
    if record.kind is FilterType.LOG_LEVELS:
        text = format_levels(record.content)
    else:
        text = record.content
    return DisplayItem(type_label=TYPE_LABELS[record.kind], display_text=text, source=record)


def normalize_levels(levels: Iterable[str | LogLevel]) -> str:
    """Canonical LOG_LEVELS content: names, deduplicated, sorted, comma-joined.

    Raises:
        InvalidInputError: If a level is not a known letter or name.
    """
    names = set()
    for level in levels:
        if not isinstance(level, LogLevel):
            try:
                level = LogLevel.from_str(level)
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
        names.add(level.label)
    return ",".join(sorted(names))


def build_records(
    keyword: str = "",
    tag: str = "",
    pid: str = "",
    tid: str = "",
    log_levels: Iterable[str | LogLevel] = (),
    exclude: bool = False,
) -> list[FilterRecord]:
    """Build one record per non-empty field, all in the same partition.

    Raises InvalidInputError for a non-numeric pid or tid, for text holding a
    line break, or for an unknown log level.
    """
    records = []
    for kind, value in (
        (FilterType.KEYWORD, keyword),
        (FilterType.TAG, tag),
        (FilterType.PID, pid),
        (FilterType.TID, tid),
    ):
        value = (value or "").strip()
        if not value:
            continue
        if "\n" in value or "\r" in value:
            raise InvalidInputError(f"{kind.name.lower()} must be a single line: {value!r}")
        if kind in (FilterType.PID, FilterType.TID) and not value.isdigit():
            raise InvalidInputError(f"{kind.name.lower()} must be a number: {value!r}")
        records.append(FilterRecord(kind=kind, content=value, is_exclusion=exclude))

    levels = normalize_levels(log_levels or ())
    if levels:
        records.append(
            FilterRecord(kind=FilterType.LOG_LEVELS, content=levels, is_exclusion=exclude)
        )
    return records


def _run_inline(task: Callable[[], None]) -> None:
    task()


class FilterPresenter:
    """Keeps the display list of one partition in sync with a FilterStore.

    Snapshot handling and surface callbacks run through ``dispatch`` (the
    foreground context); store mutations run on ``executor``.

    The default dispatch runs inline, so snapshots that follow an add() or
    remove() are applied on the write executor's worker thread, concurrently
    with the owner's thread. An owner with its own event loop or UI thread
    must pass a dispatch that hands the callable over to that thread, e.g.
    ``loop.call_soon_threadsafe`` or ``queue.put``. Only the CLI, which waits
    on each returned Future before reading ``items``, relies on the default.

    Usage:
        presenter = FilterPresenter(store, Partition.EXCLUSIONS, surface=view)
        presenter.initialize()
        presenter.add(tag="chatty")
        ...
        presenter.dispose()
    """

    def __init__(
        self,
        store: FilterStore,
        partition: Partition = Partition.INCLUSIONS,
        surface: PresentationSurface | None = None,
        executor: Executor | None = None,
        dispatch: Dispatch | None = None,
    ) -> None:
        self.store = store
        self.partition = partition
        self.surface = surface
        self._executor = executor or WRITE_EXECUTOR
        self._dispatch = dispatch or _run_inline
        self._items: list[DisplayItem] = []
        self._subscription: Subscription | None = None
        self._disposed = False

    @property
    def items(self) -> list[DisplayItem]:
        """A copy of the current display list."""
        return list(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> DisplayItem:
        return self._items[index]

    def __enter__(self) -> "FilterPresenter":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False

    def initialize(self) -> None:
        """Subscribe to the store. The first snapshot arrives immediately."""
        if self._disposed:
            raise RuntimeError("presenter has been disposed")
        if self._subscription is not None:
            return
        self._subscription = self.store.subscribe(self.partition, self._on_snapshot)

    def dispose(self) -> None:
        """Cancel the subscription. No surface callbacks happen afterwards."""
        self._disposed = True
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _on_snapshot(self, records: list[FilterRecord]) -> None:
        self._dispatch(lambda: self._apply_snapshot(records))

    def _apply_snapshot(self, records: list[FilterRecord]) -> None:
        if self._disposed:
            return

        items = []
        for record in records:
            try:
                items.append(to_display_item(record))
            except InvalidFilterStateError as e:
                logger.error("Skipping filter record %s: %s", record.id, e)

        if records and not items:
            logger.error(
                "No displayable records in %s snapshot; keeping previous list",
                self.partition.value,
            )
            return

        self._items = items
        self._notify_surface()

    def _notify_surface(self) -> None:
        if self.surface is not None and not self._disposed:
            self.surface.on_items_changed(self.items, self.is_empty)

    def add(
        self,
        keyword: str = "",
        tag: str = "",
        pid: str = "",
        tid: str = "",
        log_levels: Iterable[str | LogLevel] = (),
    ) -> Future | None:
        """Store one new rule per non-empty field.

        Returns the pending insert, or None when every field was empty.

        Raises:
            InvalidInputError: If a field fails build_records() validation.
        """
        records = build_records(
            keyword, tag, pid, tid, log_levels, exclude=self.partition.exclude
        )
        if not records:
            return None

        logger.debug("Submitting %d %s record(s)", len(records), self.partition.value)
        future = self._executor.submit(self.store.insert, records)
        future.add_done_callback(log_failure(f"Insert of {len(records)} filter(s)"))
        return future

    def remove(self, index: int) -> Future:
        """Drop the item at ``index`` now and delete its record in the background.

        If the delete fails, the list stays out of step with the store until
        the next snapshot replaces it.

        Raises:
            InvalidIndexError: If index is not a position in the current list.
        """
        if not 0 <= index < len(self._items):
            raise InvalidIndexError(
                f"index {index} out of range for {len(self._items)} item(s)"
            )

        item = self._items.pop(index)
        self._notify_surface()

        future = self._executor.submit(self.store.delete, item.source)
        future.add_done_callback(log_failure(f"Delete of filter {item.source.id}"))
        return future
