"""
Unit tests for masking/engine.py

Runs the engine against the in-memory store from conftest: protection of
allowlisted rows, rollback on failure, batching, null injection, timeouts
and schema validation.
"""

import copy
import logging
import math
import random

import pytest

from masking.config.rules import ColumnRule, RuleRegistry, TableConfig
from masking.config.settings import MaskingSettings
from masking.engine import ColumnResult, MaskingEngine, RunSummary
from masking.errors import (
    ConfigurationError,
    GeneratorError,
    MaskingTimeoutError,
    StoreReadError,
    StoreWriteError,
)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _engine(store, registry, rng_seed=0, **settings):
    return MaskingEngine(store, registry, MaskingSettings(**settings), rng=random.Random(rng_seed))


class TestScenario:
    """Two rows, one protected"""

    def test_protected_row_keeps_value_other_row_masked(self, make_store):
        store = make_store({
            "user": [{"id": 10, "email": "a@example.com"}],
            "t": [
                {"id": 1, "name": "A", "email": "a@example.com"},
                {"id": 2, "name": "B", "email": "b@example.com"},
            ],
        })
        registry = RuleRegistry(
            tables={"t": TableConfig(columns={"name": ColumnRule(lambda: "Generated")})},
            protected_tables=frozenset({"t"}),
        )

        summary = _engine(store, registry).run()

        assert store.row("t", id=1)["name"] == "A"
        assert store.row("t", id=2)["name"] == "Generated"
        assert summary.columns_masked == 1
        assert summary.rows_masked == 1
        assert summary.rows_skipped == 1
        assert store.committed is True


class TestProtection:
    """Protected rows are never altered"""

    def test_normalized_identities_protect_rows(self, member_store, member_registry):
        _engine(member_store, member_registry).run()

        # staff@ and tester@ match after trim/lower-case
        assert member_store.row("member", id=1)["name"] == "Alice"
        assert member_store.row("member", id=3)["name"] == "Carol"
        # empty / NULL identities never match
        assert member_store.row("member", id=2)["name"].startswith("name-")
        assert member_store.row("member", id=4)["name"].startswith("name-")
        assert member_store.row("member", id=5)["name"].startswith("name-")

    def test_protected_rows_are_never_in_an_update(self, member_store, member_registry):
        _engine(member_store, member_registry).run()

        updated_keys = {pk for update in member_store.updates for pk, _ in update.rows}
        assert updated_keys == {(2,), (4,), (5,)}

    def test_unprotected_table_masks_every_row(self, make_store, make_counter):
        store = make_store({
            "user": [{"id": 1, "email": "staff@example.com"}],
            "notes": [
                {"id": 1, "body": "x", "email": "staff@example.com"},
                {"id": 2, "body": "y", "email": "other@example.com"},
            ],
        })
        registry = RuleRegistry(tables={"notes": TableConfig(columns={"body": ColumnRule(make_counter())})})

        summary = _engine(store, registry).run()

        assert summary.rows_masked == 2
        assert summary.rows_skipped == 0

    def test_skip_set_resolved_once_per_table(self, member_store, make_counter):
        registry = RuleRegistry(
            tables={
                "member": TableConfig(columns={
                    "name": ColumnRule(make_counter("n")),
                    "email": ColumnRule(make_counter("e")),
                }),
            },
            protected_tables=frozenset({"member"}),
        )

        _engine(member_store, registry).run()

        member_loads = [
            call for call in member_store.calls
            if call[0] == "fetch_rows" and call[1] == "member"
        ]
        # one allowlist load, then one load per masked column
        assert len(member_loads) == 3
        assert member_store.row("member", id=1)["email"] == "staff@example.com"
        assert member_store.row("member", id=2)["email"].startswith("e-")

    def test_identities_not_loaded_without_protected_tables(self, member_store, make_counter):
        registry = RuleRegistry(tables={"member": TableConfig(columns={"name": ColumnRule(make_counter())})})

        _engine(member_store, registry).run()

        assert not any(call[1] == "user" for call in member_store.calls if len(call) > 1)


class TestCompositeKeys:
    """Tables keyed by more than one field"""

    def test_only_row_matching_both_fields_is_protected(self, make_store, make_counter):
        store = make_store({
            "user": [{"id": 1, "email": "keep@example.com"}],
            "attendance": [
                {"meeting_id": 1, "member_id": 1, "note": "n11", "email": "x@example.com"},
                {"meeting_id": 1, "member_id": 2, "note": "n12", "email": "keep@example.com"},
                {"meeting_id": 2, "member_id": 1, "note": "n21", "email": "y@example.com"},
                {"meeting_id": 2, "member_id": 2, "note": "n22", "email": "z@example.com"},
            ],
        })
        registry = RuleRegistry(
            tables={
                "attendance": TableConfig(
                    primary_key=("meeting_id", "member_id"),
                    columns={"note": ColumnRule(make_counter())},
                ),
            },
            protected_tables=frozenset({"attendance"}),
        )

        _engine(store, registry).run()

        assert store.row("attendance", meeting_id=1, member_id=2)["note"] == "n12"
        for meeting_id, member_id in [(1, 1), (2, 1), (2, 2)]:
            note = store.row("attendance", meeting_id=meeting_id, member_id=member_id)["note"]
            assert note.startswith("masked-")
        assert {pk for update in store.updates for pk, _ in update.rows} == {(1, 1), (2, 1), (2, 2)}


class TestAtomicity:
    """Any failure leaves the store as it was"""

    def test_failure_on_last_column_rolls_back_everything(self, member_store, make_counter):
        registry = RuleRegistry(
            tables={
                "member": TableConfig(columns={
                    "name": ColumnRule(make_counter()),
                    "email": ColumnRule(make_counter()),
                }),
            },
            protected_tables=frozenset({"member"}),
        )
        before = copy.deepcopy(member_store.tables)
        member_store.fail_update_on = ("member", "email")

        with pytest.raises(StoreWriteError) as exc_info:
            _engine(member_store, registry).run()

        assert member_store.tables == before
        assert member_store.calls[-1] == ("rollback",)
        assert member_store.committed is False
        assert exc_info.value.table == "member"
        assert exc_info.value.column == "email"
        assert "member.email" in str(exc_info.value)

    def test_later_columns_do_not_run_after_failure(self, make_store, make_counter):
        store = make_store({
            "a": [{"id": 1, "v": "1"}],
            "b": [{"id": 1, "v": "1"}],
        })
        registry = RuleRegistry(tables={
            "a": TableConfig(columns={"v": ColumnRule(make_counter())}),
            "b": TableConfig(columns={"v": ColumnRule(make_counter())}),
        })
        store.fail_update_on = ("a", "v")

        with pytest.raises(StoreWriteError):
            _engine(store, registry).run()

        assert ("fetch_rows", "b", ("id", "v")) not in store.calls

    def test_generator_failure_is_wrapped_and_located(self, member_store):
        def broken():
            raise RuntimeError("provider exploded")

        registry = RuleRegistry(tables={"member": TableConfig(columns={"name": ColumnRule(broken)})})
        before = copy.deepcopy(member_store.tables)

        with pytest.raises(GeneratorError) as exc_info:
            _engine(member_store, registry).run()

        assert exc_info.value.location == "member.name"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert member_store.tables == before

    def test_read_failure_aborts_run(self, member_store, member_registry):
        member_store.fail_fetch_on = "member"

        with pytest.raises(StoreReadError) as exc_info:
            _engine(member_store, member_registry).run()

        assert exc_info.value.table == "member"
        assert ("rollback",) in member_store.calls

    def test_failure_is_logged_with_location(self, member_store, make_counter, caplog):
        registry = RuleRegistry(tables={"member": TableConfig(columns={"name": ColumnRule(make_counter())})})
        member_store.fail_update_on = ("member", "name")

        with caplog.at_level(logging.ERROR, logger="masking.engine"):
            with pytest.raises(StoreWriteError):
                _engine(member_store, registry).run()

        assert "Failed to mask member.name" in caplog.text


class TestBatching:
    """Rows are written in ceil(N / B) statements"""

    @pytest.mark.parametrize("rows,batch_size", [(7, 3), (6, 3), (1, 500), (10, 1), (500, 500), (501, 500)])
    def test_batch_count_and_coverage(self, make_store, make_counter, rows, batch_size):
        store = make_store({"items": [{"id": i, "label": f"l{i}"} for i in range(rows)]})
        registry = RuleRegistry(tables={"items": TableConfig(columns={"label": ColumnRule(make_counter())})})

        summary = _engine(store, registry, batch_size=batch_size).run()

        assert len(store.updates) == math.ceil(rows / batch_size)
        assert summary.batches == len(store.updates)
        touched = [pk for update in store.updates for pk, _ in update.rows]
        assert len(touched) == len(set(touched)) == rows
        assert all(len(update) <= batch_size for update in store.updates)

    def test_batches_only_contain_rows_to_mask(self, member_store, member_registry):
        _engine(member_store, member_registry, batch_size=2).run()

        assert len(member_store.updates) == 2
        assert [len(update) for update in member_store.updates] == [2, 1]


class TestNullFrequency:
    """Null injection boundaries and determinism"""

    def _items(self, make_store, count=50):
        return make_store({"items": [{"id": i, "label": f"l{i}"} for i in range(count)]})

    def test_zero_frequency_never_nulls(self, make_store):
        store = self._items(make_store)
        registry = RuleRegistry(tables={"items": TableConfig(columns={"label": ColumnRule(lambda: "x")})})

        _engine(store, registry).run()

        assert all(row["label"] == "x" for row in store.tables["items"])

    def test_full_frequency_always_nulls(self, make_store):
        calls = []
        store = self._items(make_store)
        registry = RuleRegistry(tables={
            "items": TableConfig(columns={"label": ColumnRule(lambda: calls.append(1) or "x", null_frequency=1.0)}),
        })

        summary = _engine(store, registry).run()

        assert all(row["label"] is None for row in store.tables["items"])
        assert calls == []
        assert summary.columns[0].rows_nulled == 50

    def test_same_seed_same_null_pattern(self, make_store):
        patterns = []
        for _ in range(2):
            store = self._items(make_store)
            registry = RuleRegistry(tables={
                "items": TableConfig(columns={"label": ColumnRule(lambda: "x", null_frequency=0.5)}),
            })
            MaskingEngine(store, registry, MaskingSettings(seed=7)).run()
            patterns.append([row["label"] is None for row in store.tables["items"]])

        assert patterns[0] == patterns[1]
        assert any(patterns[0]) and not all(patterns[0])

    def test_choose_value_draws_even_without_null_frequency(self, make_store):
        rng = random.Random(3)
        engine = MaskingEngine(make_store({}), RuleRegistry(tables={}), rng=rng)
        expected = random.Random(3)
        expected.random()

        engine.choose_value(ColumnRule(lambda: "x"))

        assert rng.random() == expected.random()


class TestEmptyAndProtectedColumns:
    """No-op columns still count as processed"""

    def test_empty_table_warns_and_counts(self, make_store, make_counter, caplog):
        store = make_store({"empty": []}, columns={"empty": ["id", "v"]})
        registry = RuleRegistry(tables={"empty": TableConfig(columns={"v": ColumnRule(make_counter())})})

        with caplog.at_level(logging.WARNING, logger="masking.engine"):
            summary = _engine(store, registry).run()

        assert "No data in empty.v - skipping" in caplog.text
        assert summary.columns_masked == 1
        assert store.updates == []

    def test_all_rows_protected_is_noop(self, make_store, make_counter, caplog):
        store = make_store({
            "user": [{"id": 1, "email": "a@example.com"}],
            "member": [{"id": 1, "name": "A", "email": "a@example.com"}],
        })
        registry = RuleRegistry(
            tables={"member": TableConfig(columns={"name": ColumnRule(make_counter())})},
            protected_tables=frozenset({"member"}),
        )

        with caplog.at_level(logging.INFO, logger="masking.engine"):
            summary = _engine(store, registry).run()

        assert "All rows protected - nothing to mask" in caplog.text
        assert store.updates == []
        assert summary.columns[0].rows_skipped == 1


class TestTransaction:
    """Transaction boundaries, dry run and timeout"""

    def test_statement_timeout_follows_settings(self, member_store, member_registry):
        _engine(member_store, member_registry, timeout_seconds=12.5).run()

        assert member_store.calls[0] == ("begin",)
        assert member_store.statement_timeouts[0] == 12.5
        assert all(timeout <= 12.5 for timeout in member_store.statement_timeouts)
        assert member_store.calls[-1] == ("commit",)

    def test_dry_run_rolls_back(self, member_store, member_registry):
        before = copy.deepcopy(member_store.tables)

        summary = _engine(member_store, member_registry, dry_run=True).run()

        assert summary.dry_run is True
        assert summary.rows_masked == 3
        assert member_store.tables == before
        assert member_store.committed is False

    def test_statement_timeout_shrinks_with_elapsed_time(self, member_store):
        clock = FakeClock()

        def slow_generator():
            clock.advance(2)
            return "x"

        registry = RuleRegistry(tables={"member": TableConfig(columns={"name": ColumnRule(slow_generator)})})
        engine = MaskingEngine(
            member_store, registry, MaskingSettings(timeout_seconds=60, batch_size=2), clock=clock
        )

        engine.run()

        timeouts = member_store.statement_timeouts
        assert timeouts[0] == 60
        assert timeouts == sorted(timeouts, reverse=True)
        # five rows generated at 2s each before the three batches
        assert timeouts[-3:] == [50.0, 50.0, 50.0]

    def test_timeout_aborts_and_rolls_back(self, member_store):
        clock = FakeClock()

        def slow_generator():
            clock.advance(10)
            return "x"

        registry = RuleRegistry(tables={"member": TableConfig(columns={"name": ColumnRule(slow_generator)})})
        before = copy.deepcopy(member_store.tables)
        engine = MaskingEngine(member_store, registry, MaskingSettings(timeout_seconds=5), clock=clock)

        with pytest.raises(MaskingTimeoutError) as exc_info:
            engine.run()

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.location == "member.name"
        assert member_store.updates == []
        assert member_store.tables == before


class TestSchemaValidation:
    """Registry entries must exist in the store"""

    def test_missing_table(self, member_store, make_counter):
        registry = RuleRegistry(tables={"ghost": TableConfig(columns={"v": ColumnRule(make_counter())})})

        with pytest.raises(ConfigurationError) as exc_info:
            _engine(member_store, registry).run()

        assert exc_info.value.table == "ghost"
        assert "does not exist" in str(exc_info.value)

    def test_missing_column(self, member_store, make_counter):
        registry = RuleRegistry(tables={"member": TableConfig(columns={"nickname": ColumnRule(make_counter())})})

        with pytest.raises(ConfigurationError) as exc_info:
            _engine(member_store, registry).run()

        assert exc_info.value.location == "member.nickname"

    def test_missing_primary_key_field(self, member_store, make_counter):
        registry = RuleRegistry(tables={
            "member": TableConfig(primary_key="member_id", columns={"name": ColumnRule(make_counter())}),
        })

        with pytest.raises(ConfigurationError, match="primary key field"):
            _engine(member_store, registry).run()

    def test_missing_identity_column(self, make_store, make_counter):
        store = make_store({
            "user": [{"id": 1, "login": "x"}],
            "member": [{"id": 1, "name": "A", "email": "a@example.com"}],
        })
        registry = RuleRegistry(
            tables={"member": TableConfig(columns={"name": ColumnRule(make_counter())})},
            protected_tables=frozenset({"member"}),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            _engine(store, registry).run()

        assert exc_info.value.location == "user.email"

    def test_validation_failure_writes_nothing(self, member_store, make_counter):
        registry = RuleRegistry(tables={
            "member": TableConfig(columns={"name": ColumnRule(make_counter())}),
            "ghost": TableConfig(columns={"v": ColumnRule(make_counter())}),
        })

        with pytest.raises(ConfigurationError):
            _engine(member_store, registry).run()

        assert member_store.updates == []

    def test_column_types_passed_to_updates(self, make_store, make_counter):
        store = make_store(
            {"member": [{"id": 1, "dob": "1990-01-01"}]},
            types={"member": {"dob": "date"}},
        )
        registry = RuleRegistry(tables={"member": TableConfig(columns={"dob": ColumnRule(make_counter())})})

        _engine(store, registry).run()

        assert "CAST(v.new_value AS date)" in store.updates[0].sql


class TestRunSummary:
    """Summary aggregation"""

    def test_to_dict(self):
        summary = RunSummary(
            columns_masked=2,
            elapsed_seconds=1.23456,
            columns=[
                ColumnResult("member", "name", rows_total=5, rows_masked=3, rows_skipped=2, batches=1),
                ColumnResult("member", "email", rows_total=5, rows_masked=3, rows_skipped=2, rows_nulled=1, batches=2),
            ],
        )

        data = summary.to_dict()

        assert data["columns_masked"] == 2
        assert data["rows_masked"] == 6
        assert data["rows_skipped"] == 4
        assert data["batches"] == 3
        assert data["elapsed_seconds"] == 1.235
        assert data["dry_run"] is False
        assert data["columns"][1]["rows_nulled"] == 1

    def test_completion_logged(self, member_store, member_registry, caplog):
        with caplog.at_level(logging.INFO, logger="masking.engine"):
            _engine(member_store, member_registry).run()

        assert "Starting data obfuscation" in caplog.text
        assert "1 columns masked" in caplog.text
