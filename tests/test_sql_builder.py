"""
Statement compilation tests — no database involved.
"""

import pytest

from quarry.faults import UnknownColumnFault, ValidationFault
from quarry.models.sql_builder import (
    DeleteBuilder,
    InsertBuilder,
    QueryBuilder,
    SelectBuilder,
    UpdateBuilder,
)
from quarry.models.types import Predicate, TableSchema


@pytest.fixture
def schema():
    return TableSchema({
        "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
        "name": {"type": "TEXT", "not_null": True},
        "age": {"type": "INTEGER"},
        "city": {"type": "TEXT", "default": "nowhere"},
        "tags": {"type": "ARRAY", "default": list},
    })


@pytest.fixture
def qb():
    return QueryBuilder()


# ============================================================================
# Fluent builders
# ============================================================================


class TestFluentBuilders:
    """Low-level SQL assembly."""

    def test_select_all(self):
        assert SelectBuilder("t").build() == ('SELECT * FROM "t"', [])

    def test_select_full(self):
        sql, params = (
            SelectBuilder("t")
            .select('"a"')
            .where(Predicate('"a" = ?', (1,)))
            .order_by("a", "DESC")
            .limit(5)
            .offset(10)
            .build()
        )
        assert sql == 'SELECT "a" FROM "t" WHERE "a" = ? ORDER BY "a" DESC LIMIT ? OFFSET ?'
        assert params == [1, 5, 10]

    def test_offset_without_limit(self):
        sql, params = SelectBuilder("t").offset(3).build()
        assert sql == 'SELECT * FROM "t" LIMIT ? OFFSET ?'
        assert params == [-1, 3]

    def test_empty_predicate_means_no_where(self):
        assert "WHERE" not in SelectBuilder("t").where(Predicate("")).build()[0]

    def test_insert_default_values(self):
        assert InsertBuilder("t").from_dict({}).build() == ('INSERT INTO "t" DEFAULT VALUES', [])

    def test_insert(self):
        assert InsertBuilder("t").from_dict({"a": 1, "b": "x"}).build() == (
            'INSERT INTO "t" ("a", "b") VALUES (?, ?)', [1, "x"]
        )

    def test_update(self):
        sql, params = UpdateBuilder("t").set_dict({"a": 1}).where(Predicate('"b" = ?', (2,))).build()
        assert sql == 'UPDATE "t" SET "a" = ? WHERE "b" = ?'
        assert params == [1, 2]

    def test_delete(self):
        assert DeleteBuilder("t").where(Predicate('"a" = ?', (1,))).build() == (
            'DELETE FROM "t" WHERE "a" = ?', [1]
        )


# ============================================================================
# SELECT
# ============================================================================


class TestCompileSelect:
    """QueryOptions → SELECT."""

    def test_default_projection_is_declared_order(self, qb, schema):
        stmt = qb.compile_select("users", schema)
        assert stmt.sql == 'SELECT "id", "name", "age", "city", "tags" FROM "users"'
        assert stmt.params == ()
        assert stmt.mutates is False

    def test_where_order_limit(self, qb, schema):
        stmt = qb.compile_select("users", schema, {
            "where": {"name": {"$like": "al%"}, "age": {"$gte": 18}},
            "order_by": ["-age", ("name", "asc")],
            "limit": 10,
            "columns": ["id", "name"],
        })
        assert stmt.sql == (
            'SELECT "id", "name" FROM "users" WHERE "name" LIKE ? ESCAPE \'\\\' AND "age" >= ? '
            'ORDER BY "age" DESC, "name" ASC LIMIT ?'
        )
        assert stmt.params == ("al%", 18, 10)

    def test_limit_is_bound_not_interpolated(self, qb, schema):
        stmt = qb.compile_select("users", schema, {"limit": 7, "offset": 2})
        assert "7" not in stmt.sql and "2" not in stmt.sql
        assert stmt.params == (7, 2)

    def test_unknown_projection(self, qb, schema):
        with pytest.raises(UnknownColumnFault):
            qb.compile_select("users", schema, {"columns": ["id", "email"]})

    def test_unknown_order_column(self, qb, schema):
        with pytest.raises(UnknownColumnFault):
            qb.compile_select("users", schema, {"order_by": ["-email"]})

    def test_bad_direction(self, qb, schema):
        with pytest.raises(ValidationFault, match="ASC or DESC"):
            qb.compile_select("users", schema, {"order_by": [("age", "UP")]})

    def test_negative_limit(self, qb, schema):
        with pytest.raises(ValidationFault, match="non-negative"):
            qb.compile_select("users", schema, {"limit": -1})

    def test_malformed_descriptor(self, qb, schema):
        with pytest.raises(ValidationFault, match="malformed QueryOptions"):
            qb.compile_select("users", schema, {"filter": {"age": 1}})

    def test_count(self, qb, schema):
        stmt = qb.compile_count("users", schema, {"age": {"$gt": 1}})
        assert stmt.sql == 'SELECT COUNT(*) FROM "users" WHERE "age" > ?'
        assert stmt.params == (1,)


# ============================================================================
# Aggregates
# ============================================================================


class TestCompileAggregate:
    """AggregateOptions → SELECT fn(...)."""

    def test_count_star(self, qb, schema):
        stmt = qb.compile_aggregate("users", schema, {"function": "COUNT"})
        assert stmt.sql == 'SELECT COUNT(*) AS "result" FROM "users"'

    def test_sum_with_where(self, qb, schema):
        stmt = qb.compile_aggregate("users", schema, {"function": "sum", "column": "age", "where": {"city": "x"}})
        assert stmt.sql == 'SELECT SUM("age") AS "result" FROM "users" WHERE "city" = ?'
        assert stmt.params == ("x",)

    @pytest.mark.parametrize("fn", ["SUM", "AVG", "MIN", "MAX"])
    def test_column_required(self, qb, schema, fn):
        with pytest.raises(ValidationFault, match="requires a column"):
            qb.compile_aggregate("users", schema, {"function": fn})

    def test_group_by(self, qb, schema):
        stmt = qb.compile_aggregate("users", schema, {"function": "AVG", "column": "age", "group_by": ["city"]})
        assert stmt.sql == 'SELECT AVG("age") AS "result", "city" FROM "users" GROUP BY "city"'

    def test_group_by_must_be_projected(self, qb, schema):
        with pytest.raises(ValidationFault, match="not in the projected columns"):
            qb.compile_aggregate("users", schema, {
                "function": "COUNT", "group_by": ["city"], "columns": ["name"],
            })

    def test_group_by_subset_of_projection(self, qb, schema):
        stmt = qb.compile_aggregate("users", schema, {
            "function": "COUNT", "group_by": ["city"], "columns": ["city", "name"],
        })
        assert stmt.sql == 'SELECT COUNT(*) AS "result", "city", "name" FROM "users" GROUP BY "city"'

    def test_unknown_aggregate_column(self, qb, schema):
        with pytest.raises(UnknownColumnFault):
            qb.compile_aggregate("users", schema, {"function": "MAX", "column": "salary"})


# ============================================================================
# INSERT
# ============================================================================


class TestCompileInsert:
    """Record → INSERT."""

    def test_autoincrement_omitted_and_defaults_applied(self, qb, schema):
        stmt = qb.compile_insert("users", schema, {"name": "alice"})
        assert stmt.sql == 'INSERT INTO "users" ("name", "city", "tags") VALUES (?, ?, ?)'
        assert stmt.params == ("alice", "nowhere", "[]")
        assert stmt.mutates is True

    def test_explicit_none_key_is_omitted(self, qb, schema):
        stmt = qb.compile_insert("users", schema, {"id": None, "name": "a"})
        assert '"id"' not in stmt.sql

    def test_explicit_key_kept(self, qb, schema):
        stmt = qb.compile_insert("users", schema, {"id": 5, "name": "a"})
        assert stmt.params[0] == 5

    def test_missing_required(self, qb, schema):
        with pytest.raises(ValidationFault, match="missing required column 'name'"):
            qb.compile_insert("users", schema, {"age": 3})

    def test_null_in_not_null(self, qb, schema):
        with pytest.raises(ValidationFault, match="may not be null"):
            qb.compile_insert("users", schema, {"name": None})

    def test_unknown_column(self, qb, schema):
        with pytest.raises(UnknownColumnFault):
            qb.compile_insert("users", schema, {"name": "a", "email": "x"})

    def test_record_must_be_mapping(self, qb, schema):
        with pytest.raises(ValidationFault, match="must be a mapping"):
            qb.compile_insert("users", schema, [("name", "a")])


# ============================================================================
# UPDATE / DELETE
# ============================================================================


class TestCompileMutations:
    """Scoped UPDATE and DELETE."""

    def test_update(self, qb, schema):
        stmt = qb.compile_update("users", schema, {"where": {"id": 1}, "set": {"age": 31, "tags": ["a"]}})
        assert stmt.sql == 'UPDATE "users" SET "age" = ?, "tags" = ? WHERE "id" = ?'
        assert stmt.params == (31, '["a"]', 1)

    @pytest.mark.parametrize("where", [None, {}])
    def test_update_requires_where(self, qb, schema, where):
        with pytest.raises(ValidationFault, match="without a where-condition"):
            qb.compile_update("users", schema, {"where": where, "set": {"age": 1}})

    def test_update_all_rows_opt_in(self, qb, schema):
        stmt = qb.compile_update("users", schema, {"set": {"age": 1}, "all_rows": True})
        assert stmt.sql == 'UPDATE "users" SET "age" = ?'

    def test_update_requires_set(self, qb, schema):
        with pytest.raises(ValidationFault, match="at least one column"):
            qb.compile_update("users", schema, {"where": {"id": 1}, "set": {}})

    def test_update_autoincrement_rejected(self, qb, schema):
        with pytest.raises(ValidationFault, match="cannot be assigned"):
            qb.compile_update("users", schema, {"where": {"id": 1}, "set": {"id": 9}})

    def test_update_null_not_null(self, qb, schema):
        with pytest.raises(ValidationFault, match="may not be null"):
            qb.compile_update("users", schema, {"where": {"id": 1}, "set": {"name": None}})

    def test_delete(self, qb, schema):
        stmt = qb.compile_delete("users", schema, {"age": {"$lt": 18}})
        assert stmt.sql == 'DELETE FROM "users" WHERE "age" < ?'
        assert stmt.params == (18,)

    def test_delete_requires_where(self, qb, schema):
        with pytest.raises(ValidationFault, match="pass all_rows=True"):
            qb.compile_delete("users", schema, {})

    def test_delete_all_rows(self, qb, schema):
        assert qb.compile_delete("users", schema, None, all_rows=True).sql == 'DELETE FROM "users"'
