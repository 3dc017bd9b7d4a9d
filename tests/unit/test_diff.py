"""
Unit tests for CVR diffing.

Tests cover:
- First pull (empty CVR)
- Changed, unchanged, new and removed rows
- Completeness of the next CVR
"""

from pullsync.cvr_server.store.rows import SyncRow
from pullsync.cvr_server.sync.diff import compute_diff


def row(table, row_id, version, key=None):
    return SyncRow(table=table, id=row_id, key=key or f"/{table}/{row_id}", version=version)


class TestComputeDiff:
    """Tests for compute_diff."""

    def test_empty_cvr_puts_everything(self):
        """Without a CVR every visible row is put and nothing deleted."""
        rows = [("stage", [row("stage", "a", 1), row("stage", "b", 2)]), ("app", [row("app", "x", 3)])]

        diff = compute_diff({}, rows)

        assert [r.id for r in diff.to_put["stage"]] == ["a", "b"]
        assert [r.id for r in diff.to_put["app"]] == ["x"]
        assert diff.to_delete == []
        assert diff.next_data == {"/stage/a": 1, "/stage/b": 2, "/app/x": 3}

    def test_unchanged_rows_are_not_put(self):
        old = {"/stage/a": 1, "/stage/b": 2}

        diff = compute_diff(old, [("stage", [row("stage", "a", 1), row("stage", "b", 2)])])

        assert diff.empty
        assert diff.to_put == {"stage": []}
        assert diff.next_data == old

    def test_changed_version_is_put(self):
        old = {"/stage/a": 1, "/stage/b": 2}

        diff = compute_diff(old, [("stage", [row("stage", "a", 1), row("stage", "b", 5)])])

        assert [r.id for r in diff.to_put["stage"]] == ["b"]
        assert diff.next_data["/stage/b"] == 5

    def test_older_version_is_also_put(self):
        """Any numeric difference counts, not only increases."""
        diff = compute_diff({"/stage/a": 10}, [("stage", [row("stage", "a", 7)])])

        assert diff.put_count == 1

    def test_missing_rows_are_deleted(self):
        old = {"/stage/a": 1, "/stage/gone": 2, "/app/gone": 3}

        diff = compute_diff(old, [("stage", [row("stage", "a", 1)]), ("app", [])])

        assert sorted(diff.to_delete) == ["/app/gone", "/stage/gone"]
        assert "/stage/gone" not in diff.next_data

    def test_next_cvr_is_complete(self):
        """Puts plus unchanged prior keys equal the next CVR key set."""
        old = {"/stage/a": 1, "/stage/b": 2, "/stage/c": 3}
        fresh = [row("stage", "a", 1), row("stage", "b", 9), row("stage", "d", 4)]

        diff = compute_diff(old, [("stage", fresh)])

        put_keys = {r.key for r in diff.to_put["stage"]}
        unchanged = {k for k in old if k in diff.next_data and k not in put_keys}
        assert put_keys | unchanged == set(diff.next_data)
        assert diff.to_delete == ["/stage/c"]

    def test_old_data_not_mutated(self):
        old = {"/stage/a": 1}

        compute_diff(old, [("stage", [])])

        assert old == {"/stage/a": 1}

    def test_accepts_lazy_row_sources(self):
        """Rows may be produced lazily, table by table."""
        scanned = []

        def scan(table):
            scanned.append(table)
            return [row(table, "1", 1)]

        diff = compute_diff({}, ((name, scan(name)) for name in ["stage", "app"]))

        assert scanned == ["stage", "app"]
        assert diff.put_count == 2
