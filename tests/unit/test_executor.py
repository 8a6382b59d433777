"""
Unit tests for masking/executor.py

Tests verify:
- Rendered UPDATE ... FROM (VALUES ...) statements
- Bound parameter layout for simple and composite keys
- Parameter-limit clamping of batch sizes
- Identifier and type-name validation
"""

import logging
from unittest.mock import Mock

import pytest

from masking.errors import ConfigurationError, StoreWriteError
from masking.executor import (
    MAX_PARAMETERS,
    apply_batch,
    build_bulk_update,
    effective_batch_size,
    max_batch_size,
)


class TestBuildBulkUpdate:
    """Test build_bulk_update"""

    def test_single_key_statement(self):
        update = build_bulk_update("member", "email", ["id"], [((1,), "a@x"), ((2,), None)], "text")

        assert update.sql == (
            'UPDATE "member" AS t\n'
            'SET "email" = CAST(v.new_value AS text)\n'
            'FROM (VALUES (%s, %s), (%s, %s)) AS v(pk_0, new_value)\n'
            'WHERE t."id"::text = v.pk_0::text'
        )
        assert update.params == (1, "a@x", 2, None)
        assert len(update) == 2

    def test_composite_key_ands_every_field(self):
        update = build_bulk_update(
            "group_meeting_record",
            "prayer_request",
            ("group_meeting_id", "member_id"),
            [((10, 1), "p1"), ((10, 2), "p2")],
        )

        assert 'AS v(pk_0, pk_1, new_value)' in update.sql
        assert (
            't."group_meeting_id"::text = v.pk_0::text AND t."member_id"::text = v.pk_1::text'
            in update.sql
        )
        assert "(%s, %s, %s), (%s, %s, %s)" in update.sql
        assert update.params == (10, 1, "p1", 10, 2, "p2")

    def test_without_type_assigns_raw_value(self):
        update = build_bulk_update("t", "c", ["id"], [((1,), "x")])

        assert 'SET "c" = v.new_value' in update.sql

    def test_schema_qualified_table(self):
        update = build_bulk_update("public.member", "name", ["id"], [((1,), "x")])

        assert update.sql.startswith('UPDATE "public"."member" AS t')

    def test_values_are_never_interpolated(self):
        hostile = "'; DROP TABLE member; --"
        update = build_bulk_update("member", "name", ["id"], [((1,), hostile)])

        assert hostile not in update.sql
        assert hostile in update.params

    def test_quoted_catalog_type(self):
        update = build_bulk_update("member", "role", ["id"], [((1,), "ADMIN")], 'public."Role"')

        assert 'CAST(v.new_value AS public."Role")' in update.sql

    @pytest.mark.parametrize("table,column,pk", [
        ("member; DROP", "name", ["id"]),
        ("member", "na me", ["id"]),
        ("member", "name", ["id\"--"]),
    ])
    def test_invalid_identifiers_rejected(self, table, column, pk):
        with pytest.raises(ConfigurationError):
            build_bulk_update(table, column, pk, [((1,), "x")])

    def test_invalid_type_rejected(self):
        with pytest.raises(ConfigurationError):
            build_bulk_update("member", "name", ["id"], [((1,), "x")], "text); DELETE FROM member; --")

    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError, match="must not be empty"):
            build_bulk_update("member", "name", ["id"], [])

    def test_key_arity_mismatch_rejected(self):
        with pytest.raises(ValueError, match="does not match primary key"):
            build_bulk_update("t", "c", ["a", "b"], [((1,), "x")])

    def test_oversized_batch_rejected(self):
        batch = [((i,), "x") for i in range(max_batch_size(1) + 1)]

        with pytest.raises(ValueError, match="parameter limit"):
            build_bulk_update("t", "c", ["id"], batch)


class TestBatchSizing:
    """Test the bind-parameter limit arithmetic"""

    def test_max_batch_size(self):
        assert max_batch_size(1) == MAX_PARAMETERS // 2
        assert max_batch_size(2) == MAX_PARAMETERS // 3

    def test_effective_batch_size_keeps_small_sizes(self):
        assert effective_batch_size(500, 2) == 500

    def test_effective_batch_size_clamps_to_limit(self):
        size = effective_batch_size(1_000_000, 3)

        assert size == MAX_PARAMETERS // 4
        assert size * 4 <= MAX_PARAMETERS


class TestApplyBatch:
    """Test apply_batch"""

    def test_executes_one_statement(self):
        store = Mock()
        store.execute_update.return_value = 2

        updated = apply_batch(store, "member", "name", ["id"], [((1,), "a"), ((2,), "b")])

        assert updated == 2
        store.execute_update.assert_called_once()
        update = store.execute_update.call_args[0][0]
        assert update.table == "member"
        assert update.rows == (((1,), "a"), ((2,), "b"))

    def test_row_count_mismatch_is_logged(self, caplog):
        store = Mock()
        store.execute_update.return_value = 1

        with caplog.at_level(logging.WARNING, logger="masking.executor"):
            apply_batch(store, "member", "name", ["id"], [((1,), "a"), ((2,), "b")])

        assert "touched 1 rows, expected 2" in caplog.text

    def test_store_errors_propagate(self):
        store = Mock()
        store.execute_update.side_effect = StoreWriteError("boom")

        with pytest.raises(StoreWriteError, match="boom"):
            apply_batch(store, "member", "name", ["id"], [((1,), "a")])
