"""Tests for the filter presenter."""

import queue
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest

from lcrules.models import DisplayItem, FilterRecord, FilterType, LogLevel, Partition
from lcrules.presenter import (
    FilterPresenter,
    InvalidFilterStateError,
    InvalidIndexError,
    InvalidInputError,
    build_records,
    format_levels,
    normalize_levels,
    to_display_item,
)
from lcrules.store import FilterStoreError, MemoryFilterStore


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, /, *args, **kwargs):
        self.submitted.append((fn, args))
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor(Executor):
    """Queues submitted work until run_all() is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args))
        return future

    def run_all(self):
        while self.pending:
            future, fn, args = self.pending.pop(0)
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)


class RecordingSurface:
    """Collects every on_items_changed call."""

    def __init__(self):
        self.calls = []

    def on_items_changed(self, items, is_empty):
        self.calls.append((list(items), is_empty))

    @property
    def last(self):
        return self.calls[-1]


class FailingStore(MemoryFilterStore):
    def insert(self, records):
        raise FilterStoreError("disk full")

    def delete(self, record):
        raise FilterStoreError("database is locked")


def make_presenter(store=None, partition=Partition.INCLUSIONS, executor=None):
    store = store if store is not None else MemoryFilterStore()
    surface = RecordingSurface()
    presenter = FilterPresenter(
        store,
        partition,
        surface=surface,
        executor=executor or InlineExecutor(),
    )
    return presenter, store, surface


class TestToDisplayItem:
    """Tests for mapping records to display items."""

    def test_log_levels(self):
        """Level names are expanded and joined with a comma and space."""
        record = FilterRecord(FilterType.LOG_LEVELS, "Debug,Warning")
        item = to_display_item(record)
        assert item.type_label == "Log level"
        assert item.display_text == "Debug, Warning"
        assert item.source is record

    def test_log_level_letters(self):
        """Single-letter codes are understood too."""
        record = FilterRecord(FilterType.LOG_LEVELS, "A,E,F")
        assert to_display_item(record).display_text == "Assert, Error, Fatal"

    def test_unknown_level_code_becomes_empty(self):
        """An unknown level code maps to an empty element, not an error."""
        assert format_levels("Debug,X,Info") == "Debug, , Info"

    @pytest.mark.parametrize(
        "kind, label",
        [
            (FilterType.KEYWORD, "Keyword"),
            (FilterType.TAG, "Tag"),
            (FilterType.PID, "Pid"),
            (FilterType.TID, "Tid"),
        ],
    )
    def test_text_kinds_pass_content_through(self, kind, label):
        """Non-level kinds use their content verbatim."""
        item = to_display_item(FilterRecord(kind, "MyTag"))
        assert item == DisplayItem(type_label=label, display_text="MyTag",
                                   source=FilterRecord(kind, "MyTag"))

    def test_unknown_kind_raises(self):
        """An unrecognized kind is a data-integrity error."""
        record = FilterRecord("regex", "foo.*")
        with pytest.raises(InvalidFilterStateError) as exc_info:
            to_display_item(record)
        assert exc_info.value.record is record


class TestBuildRecords:
    """Tests for turning add() input into records."""

    def test_one_record_per_field(self):
        """Each non-empty field produces exactly one record."""
        records = build_records(keyword="crash", tag="MyApp", pid="42", tid="43",
                                log_levels={"Error"})
        assert [r.kind for r in records] == [
            FilterType.KEYWORD,
            FilterType.TAG,
            FilterType.PID,
            FilterType.TID,
            FilterType.LOG_LEVELS,
        ]
        assert [r.content for r in records] == ["crash", "MyApp", "42", "43", "Error"]

    def test_partition_flag(self):
        """Every record carries the exclusion flag."""
        records = build_records(keyword="a", tag="b", exclude=True)
        assert all(r.is_exclusion for r in records)

    def test_empty_fields_skipped(self):
        """Empty and whitespace-only fields produce no record."""
        records = build_records(keyword="", tag="  ", pid="7")
        assert records == [FilterRecord(FilterType.PID, "7")]

    def test_nothing_to_build(self):
        """All-empty input builds nothing."""
        assert build_records() == []

    def test_levels_sorted_and_deduplicated(self):
        """Levels are stored in sorted order regardless of input order."""
        assert normalize_levels(["Warning", "Debug"]) == "Debug,Warning"
        assert normalize_levels(["W", "Warning", "d"]) == "Debug,Warning"
        assert normalize_levels([LogLevel.FATAL, "info"]) == "Fatal,Info"

    def test_unknown_level_rejected(self):
        """An unknown level is invalid input."""
        with pytest.raises(InvalidInputError):
            normalize_levels(["Loud"])

    @pytest.mark.parametrize("field", ["pid", "tid"])
    @pytest.mark.parametrize("value", ["system_server", "12a", "-1", "4.2"])
    def test_non_numeric_ids_rejected(self, field, value):
        """Pid and tid must be plain numbers, as the rules file requires."""
        with pytest.raises(InvalidInputError, match="must be a number"):
            build_records(**{field: value})

    def test_numeric_ids_are_stripped(self):
        """Surrounding whitespace is not part of a pid."""
        assert build_records(pid=" 1234 ") == [FilterRecord(FilterType.PID, "1234")]

    @pytest.mark.parametrize("field", ["keyword", "tag"])
    @pytest.mark.parametrize("value", ["foo\nTAG:injected", "foo\rbar", "a\r\nb"])
    def test_line_breaks_rejected(self, field, value):
        """Text holding a line break could not be exported as one rule."""
        with pytest.raises(InvalidInputError, match="single line"):
            build_records(**{field: value})

    def test_trailing_newline_is_stripped(self):
        """Only inner line breaks are refused."""
        assert build_records(tag="MyApp\n") == [FilterRecord(FilterType.TAG, "MyApp")]


class TestSnapshots:
    """Tests for reacting to store snapshots."""

    def test_initialize_delivers_current_state(self):
        """The first snapshot arrives on initialize()."""
        store = MemoryFilterStore([FilterRecord(FilterType.TAG, "MyTag")])
        presenter, _, surface = make_presenter(store)

        presenter.initialize()

        items, is_empty = surface.last
        assert is_empty is False
        assert [(i.type_label, i.display_text) for i in items] == [("Tag", "MyTag")]
        assert presenter.items == items

    def test_empty_snapshot_reports_empty(self):
        """An empty partition is reported as empty."""
        presenter, _, surface = make_presenter()
        presenter.initialize()
        assert surface.last == ([], True)
        assert presenter.is_empty

    def test_only_own_partition(self):
        """Records of the other partition are not shown."""
        store = MemoryFilterStore([
            FilterRecord(FilterType.TAG, "included"),
            FilterRecord(FilterType.TAG, "excluded", is_exclusion=True),
        ])
        presenter, _, _ = make_presenter(store, Partition.EXCLUSIONS)
        presenter.initialize()
        assert [i.display_text for i in presenter.items] == ["excluded"]

    def test_store_changes_replace_items(self):
        """Each store change replaces the whole list."""
        presenter, store, surface = make_presenter()
        presenter.initialize()

        store.insert([FilterRecord(FilterType.KEYWORD, "one")])
        store.insert([FilterRecord(FilterType.KEYWORD, "two")])

        assert [i.display_text for i in presenter.items] == ["one", "two"]
        assert len(surface.calls) == 3

    def test_invalid_record_skipped(self, caplog):
        """A record with an unknown kind is dropped and logged; others stay."""
        store = MemoryFilterStore([
            FilterRecord(FilterType.TAG, "good"),
            FilterRecord("bogus", "bad"),
        ])
        presenter, _, surface = make_presenter(store)

        presenter.initialize()

        assert [i.display_text for i in presenter.items] == ["good"]
        assert surface.last[1] is False
        assert "Skipping filter record" in caplog.text

    def test_fully_invalid_snapshot_keeps_previous_items(self):
        """A snapshot with nothing displayable does not clear the list."""
        presenter, store, surface = make_presenter()
        presenter.initialize()
        store.insert([FilterRecord(FilterType.TAG, "good")])
        calls = len(surface.calls)

        presenter._on_snapshot([FilterRecord("bogus", "bad")])

        assert [i.display_text for i in presenter.items] == ["good"]
        assert len(surface.calls) == calls

    def test_dispose_stops_updates(self):
        """No callbacks arrive after dispose()."""
        presenter, store, surface = make_presenter()
        presenter.initialize()
        presenter.dispose()

        store.insert([FilterRecord(FilterType.TAG, "late")])

        assert len(surface.calls) == 1
        assert presenter.is_empty

    def test_dispose_drops_already_dispatched_snapshot(self):
        """A snapshot queued on the foreground context is ignored after dispose()."""
        queued = []
        store = MemoryFilterStore([FilterRecord(FilterType.TAG, "x")])
        surface = RecordingSurface()
        presenter = FilterPresenter(store, surface=surface, executor=InlineExecutor(),
                                    dispatch=queued.append)

        presenter.initialize()
        presenter.dispose()
        for task in queued:
            task()

        assert surface.calls == []

    def test_initialize_after_dispose_fails(self):
        """A disposed presenter cannot be restarted."""
        presenter, _, _ = make_presenter()
        presenter.dispose()
        with pytest.raises(RuntimeError):
            presenter.initialize()

    def test_context_manager(self):
        """Using the presenter as a context manager subscribes and disposes."""
        presenter, store, surface = make_presenter()
        with presenter:
            store.insert([FilterRecord(FilterType.TAG, "a")])
        store.insert([FilterRecord(FilterType.TAG, "b")])
        assert [i.display_text for i in presenter.items] == ["a"]


class TestAdd:
    """Tests for FilterPresenter.add."""

    def test_add_stores_records_in_partition(self):
        """Added records land in the presenter's partition."""
        presenter, store, _ = make_presenter(partition=Partition.EXCLUSIONS)
        presenter.initialize()

        future = presenter.add(keyword="timeout", tag="chatty")

        stored = future.result()
        assert len(stored) == 2
        assert all(r.is_exclusion for r in store.snapshot(Partition.EXCLUSIONS))
        assert store.snapshot(Partition.INCLUSIONS) == []
        assert [i.display_text for i in presenter.items] == ["timeout", "chatty"]

    def test_add_levels_in_sorted_order(self):
        """Log levels are stored sorted."""
        presenter, store, _ = make_presenter()
        presenter.add(log_levels={"Warning", "Debug"})
        [record] = store.snapshot(Partition.INCLUSIONS)
        assert record.kind is FilterType.LOG_LEVELS
        assert record.content == "Debug,Warning"

    def test_add_nothing_is_noop(self):
        """All-empty input submits nothing."""
        executor = InlineExecutor()
        presenter, store, _ = make_presenter(executor=executor)

        assert presenter.add() is None
        assert presenter.add("", "", "", "", set()) is None
        assert executor.submitted == []

    def test_add_does_not_block(self):
        """add() returns before the insert runs."""
        executor = DeferredExecutor()
        presenter, store, _ = make_presenter(executor=executor)
        presenter.initialize()

        future = presenter.add(tag="MyApp")

        assert not future.done()
        assert store.snapshot(Partition.INCLUSIONS) == []
        executor.run_all()
        assert [i.display_text for i in presenter.items] == ["MyApp"]

    def test_add_invalid_level(self):
        """Unknown levels raise before anything is submitted."""
        executor = InlineExecutor()
        presenter, _, _ = make_presenter(executor=executor)
        with pytest.raises(InvalidInputError):
            presenter.add(tag="x", log_levels=["Loud"])
        assert executor.submitted == []

    def test_add_non_numeric_pid(self):
        """A pid the rules file could not read back is refused before submit."""
        executor = InlineExecutor()
        presenter, store, _ = make_presenter(executor=executor)
        with pytest.raises(InvalidInputError):
            presenter.add(tag="ok", pid="system_server")
        assert executor.submitted == []
        assert store.snapshot(Partition.INCLUSIONS) == []

    def test_insert_failure_is_logged(self, caplog):
        """A failed insert is logged and not raised to the caller."""
        presenter, _, _ = make_presenter(store=FailingStore())
        future = presenter.add(tag="x")
        assert isinstance(future.exception(), FilterStoreError)
        assert "Insert of 1 filter(s) failed" in caplog.text


class TestRemove:
    """Tests for FilterPresenter.remove."""

    def make_loaded(self, executor=None, store=None):
        store = store if store is not None else MemoryFilterStore()
        store.insert([
            FilterRecord(FilterType.TAG, "a"),
            FilterRecord(FilterType.TAG, "b"),
            FilterRecord(FilterType.TAG, "c"),
        ])
        presenter, _, surface = make_presenter(store, executor=executor)
        presenter.initialize()
        return presenter, store, surface

    def test_remove_evicts_immediately(self):
        """The item disappears before the delete runs; order is preserved."""
        executor = DeferredExecutor()
        presenter, store, surface = self.make_loaded(executor)

        presenter.remove(1)

        assert [i.display_text for i in presenter.items] == ["a", "c"]
        assert [i.display_text for i in surface.last[0]] == ["a", "c"]
        assert len(store.snapshot(Partition.INCLUSIONS)) == 3

        executor.run_all()
        assert [r.content for r in store.snapshot(Partition.INCLUSIONS)] == ["a", "c"]

    def test_remove_deletes_evicted_record(self):
        """The delete request targets the evicted record."""
        executor = InlineExecutor()
        presenter, _, _ = self.make_loaded(executor)
        evicted = presenter[0].source

        presenter.remove(0)

        fn, args = executor.submitted[-1]
        assert args == (evicted,)

    def test_remove_last_reports_empty(self):
        """Removing every item reports an empty list."""
        presenter, _, surface = self.make_loaded()
        for _ in range(3):
            presenter.remove(0)
        assert surface.last == ([], True)

    @pytest.mark.parametrize("index", [-1, 3, 99])
    def test_remove_out_of_range(self, index):
        """Invalid positions are rejected without touching the list."""
        executor = InlineExecutor()
        presenter, _, _ = self.make_loaded(executor)
        before = presenter.items

        with pytest.raises(InvalidIndexError):
            presenter.remove(index)

        assert presenter.items == before
        assert executor.submitted == []

    def test_delete_failure_resyncs_on_next_snapshot(self, caplog):
        """After a failed delete the next snapshot restores the item."""
        store = FailingStore([
            FilterRecord(FilterType.TAG, "a"),
            FilterRecord(FilterType.TAG, "b"),
        ])
        presenter, _, _ = make_presenter(store)
        presenter.initialize()

        future = presenter.remove(0)

        assert isinstance(future.exception(), FilterStoreError)
        assert "failed" in caplog.text
        assert [i.display_text for i in presenter.items] == ["b"]

        MemoryFilterStore.insert(store, [FilterRecord(FilterType.TAG, "c")])
        assert [i.display_text for i in presenter.items] == ["a", "b", "c"]


class TestDispatch:
    """Tests for handing snapshots to the owner's thread."""

    def test_queued_dispatch_applies_on_owner_thread(self):
        """With a queue dispatch, writer-side snapshots wait for the owner."""
        pending = queue.Queue()
        applied_on = []

        class ThreadNotingSurface:
            def on_items_changed(self, items, is_empty):
                applied_on.append(threading.current_thread())

        with ThreadPoolExecutor(max_workers=1) as pool:
            presenter = FilterPresenter(
                MemoryFilterStore(),
                surface=ThreadNotingSurface(),
                executor=pool,
                dispatch=pending.put,
            )
            presenter.initialize()
            presenter.add(tag="MyApp").result()

        assert presenter.items == []
        while not pending.empty():
            pending.get_nowait()()

        assert [i.display_text for i in presenter.items] == ["MyApp"]
        assert applied_on
        assert all(t is threading.current_thread() for t in applied_on)

    def test_inline_dispatch_applies_on_writer_thread(self):
        """The default dispatch applies snapshots where the write happened."""
        applied_on = []

        class ThreadNotingSurface:
            def on_items_changed(self, items, is_empty):
                applied_on.append(threading.current_thread())

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="writer") as pool:
            presenter = FilterPresenter(
                MemoryFilterStore(), surface=ThreadNotingSurface(), executor=pool
            )
            presenter.initialize()
            presenter.add(tag="MyApp").result()

        assert [t.name.startswith("writer") for t in applied_on] == [False, True]
