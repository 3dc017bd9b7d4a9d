"""
Unit tests for the row version source.

Tests cover:
- Version normalization (epoch ms, ISO-8601, malformed values)
- Tenant scoping and per-table filters
- Paged fetches ordered by id
"""

from datetime import datetime, timezone

import pytest

from pullsync.cvr_server.actor import Actor
from pullsync.cvr_server.errors import MalformedRowError
from pullsync.cvr_server.store.rows import fetch_rows, normalize_version, scan_row_versions
from tests.conftest import OTHER_WORKSPACE_ID, WORKSPACE_ID, insert_row


class TestNormalizeVersion:
    """Tests for normalize_version."""

    def test_integer_is_epoch_ms(self):
        assert normalize_version("stage", "s", 1714564800000) == 1714564800000

    def test_iso_with_zulu(self):
        assert normalize_version("stage", "s", "2024-05-01T12:00:00Z") == 1714564800000

    def test_naive_iso_is_utc(self):
        assert normalize_version("stage", "s", "2024-05-01 12:00:00") == 1714564800000

    def test_milliseconds_preserved(self):
        assert normalize_version("stage", "s", "2024-05-01T12:00:00.250+00:00") == 1714564800250

    def test_offset_applied(self):
        assert normalize_version("stage", "s", "2024-05-01T14:00:00+02:00") == 1714564800000

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-05-01T12:00:00.1Z", 1714564800100),
            ("2024-05-01T12:00:00.12Z", 1714564800120),
            ("2024-05-01T12:00:00.1234Z", 1714564800123),
            ("2024-05-01T12:00:00.123456789+00:00", 1714564800123),
        ],
    )
    def test_any_fraction_length(self, value, expected):
        """Fractional seconds of any precision are accepted and truncated."""
        assert normalize_version("stage", "s", value) == expected

    def test_datetime_value(self):
        value = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

        assert normalize_version("stage", "s", value) == 1714564800000

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, b"\x00"])
    def test_malformed_values_raise(self, value):
        with pytest.raises(MalformedRowError) as excinfo:
            normalize_version("stage", "s", value)

        assert excinfo.value.code == "MALFORMED_ROW"
        assert excinfo.value.table == "stage"


class TestScanRowVersions:
    """Tests for scan_row_versions against the console catalog."""

    def test_tenant_scoping(self, database, registry, member):
        with database.connect() as conn:
            insert_row(conn, "stage", id="stg_a", workspace_id=WORKSPACE_ID, app_id="app", name="a")
            insert_row(conn, "stage", id="stg_b", workspace_id=OTHER_WORKSPACE_ID, app_id="app", name="b")

            rows = scan_row_versions(conn, registry.get("stage"), member)

        assert [(r.id, r.key) for r in rows] == [("stg_a", "/stage/stg_a")]
        assert rows[0].version == 1714564800000

    def test_workspace_is_its_own_tenant(self, seeded, registry, member):
        with seeded.connect() as conn:
            rows = scan_row_versions(conn, registry.get("workspace"), member)

        assert [r.key for r in rows] == [f"/workspace/{WORKSPACE_ID}"]

    def test_scope_columns_in_key(self, seeded, registry, member):
        with seeded.connect() as conn:
            rows = scan_row_versions(conn, registry.get("issue"), member)

        assert [r.key for r in rows] == ["/issue/stg_prod/iss_1"]

    def test_soft_deleted_issues_hidden(self, seeded, registry, member):
        with seeded.connect() as conn:
            conn.execute("UPDATE issue SET time_deleted = '2024-05-02T00:00:00Z'")

            rows = scan_row_versions(conn, registry.get("issue"), member)

        assert rows == []

    def test_log_searches_scoped_to_user(self, database, registry, member):
        with database.connect() as conn:
            insert_row(conn, "log_search", id="ls_1", workspace_id=WORKSPACE_ID, user_id="usr_alice")
            insert_row(conn, "log_search", id="ls_2", workspace_id=WORKSPACE_ID, user_id="usr_bob")

            rows = scan_row_versions(conn, registry.get("log_search"), member)

        assert [r.id for r in rows] == ["ls_1"]

    def test_malformed_rows_skipped(self, database, registry, member):
        """Rows without a last-modified timestamp are left out, not fatal."""
        with database.connect() as conn:
            insert_row(conn, "app", id="app_ok", workspace_id=WORKSPACE_ID, name="ok")
            insert_row(conn, "app", id="app_bad", workspace_id=WORKSPACE_ID, name="bad", time_updated=None)

            rows = scan_row_versions(conn, registry.get("app"), member)

        assert [r.id for r in rows] == ["app_ok"]

    def test_account_holder_sees_own_users(self, seeded, registry):
        actor = Actor.account_holder("alice@acme.test")

        with seeded.connect() as conn:
            users = scan_row_versions(conn, registry.get("user"), actor)
            workspaces = scan_row_versions(conn, registry.get("workspace"), actor)

        assert [r.key for r in users] == ["/user/usr_alice"]
        assert [r.key for r in workspaces] == [f"/workspace/{WORKSPACE_ID}"]

    def test_account_holder_skips_deleted_workspaces(self, seeded, registry):
        actor = Actor.account_holder("alice@acme.test")

        with seeded.connect() as conn:
            conn.execute(
                "UPDATE workspace SET time_deleted = '2024-06-01T00:00:00Z' WHERE id = ?",
                (WORKSPACE_ID,),
            )
            users = scan_row_versions(conn, registry.get("user"), actor)
            workspaces = scan_row_versions(conn, registry.get("workspace"), actor)

        assert users == []
        assert workspaces == []


class TestFetchRows:
    """Tests for fetch_rows paging."""

    def test_pages_ordered_by_id(self, database, registry, member):
        with database.connect() as conn:
            for i in range(7):
                insert_row(conn, "app", id=f"app_{i}", workspace_id=WORKSPACE_ID, name=str(i))

            pages = list(
                fetch_rows(
                    conn,
                    registry.get("app"),
                    member,
                    ["app_6", "app_0", "app_3", "app_4", "app_1"],
                    page_size=2,
                )
            )

        assert [[r["id"] for r in page] for page in pages] == [
            ["app_0", "app_1"],
            ["app_3", "app_4"],
            ["app_6"],
        ]

    def test_exact_multiple_ends_with_empty_page(self, database, registry, member):
        with database.connect() as conn:
            for i in range(4):
                insert_row(conn, "app", id=f"app_{i}", workspace_id=WORKSPACE_ID, name=str(i))

            pages = list(
                fetch_rows(conn, registry.get("app"), member, [f"app_{i}" for i in range(4)], page_size=2)
            )

        assert [len(page) for page in pages] == [2, 2, 0]

    def test_rescoped_by_tenant(self, database, registry, member):
        """Ids from another tenant are never returned to a member."""
        with database.connect() as conn:
            insert_row(conn, "app", id="app_mine", workspace_id=WORKSPACE_ID, name="mine")
            insert_row(conn, "app", id="app_theirs", workspace_id=OTHER_WORKSPACE_ID, name="theirs")

            pages = list(fetch_rows(conn, registry.get("app"), member, ["app_mine", "app_theirs"]))

        assert [r["id"] for r in pages[0]] == ["app_mine"]

    def test_rejects_non_positive_page_size(self, database, registry, member):
        with database.connect() as conn:
            with pytest.raises(ValueError):
                list(fetch_rows(conn, registry.get("app"), member, ["a"], page_size=0))
