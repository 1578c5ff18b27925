"""Unit tests for authority/store.py -- CredentialStore persistence contract.

Covers:
- create() / find_by_username() round trip, default USER authority
- create() on an existing username raises DuplicateUsername, original untouched
- update_password_hash() / update_authority() / delete() return False on a miss
- usernames are case-sensitive and stored verbatim (no SQL injection via names)
- a held write lock surfaces as StorageUnavailable within the configured timeout
- driver errors are translated to StorageUnavailable without leaking messages
- the timeout reaches the driver as busy/statement/read timeouts per backend
- racing creates of one username give exactly one winner; create racing delete
  leaves the row whole or absent
"""

from __future__ import annotations

import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from authority.exceptions import DuplicateUsername, StorageUnavailable
from authority.models import AuthorityLevel
from authority.store import CredentialStore

# ---------------------------------------------------------------------------
# Create / find
# ---------------------------------------------------------------------------


class TestCreateAndFind:
    def test_create_then_find_returns_credential(self, store: CredentialStore) -> None:
        created = store.create("alice", b"hash-1")
        found = store.find_by_username("alice")
        assert found is not None
        assert found.username == "alice"
        assert found.password_hash == b"hash-1"
        assert found.authority is AuthorityLevel.USER
        assert found.created_at == created.created_at

    def test_create_with_admin_authority(self, store: CredentialStore) -> None:
        store.create("root", b"h", AuthorityLevel.ADMIN)
        assert store.find_by_username("root").authority is AuthorityLevel.ADMIN

    def test_find_unknown_returns_none(self, store: CredentialStore) -> None:
        assert store.find_by_username("nobody") is None

    def test_usernames_are_case_sensitive(self, store: CredentialStore) -> None:
        store.create("Alice", b"h")
        assert store.find_by_username("alice") is None

    def test_duplicate_create_raises_and_keeps_original(self, store: CredentialStore) -> None:
        store.create("alice", b"original", AuthorityLevel.USER)
        with pytest.raises(DuplicateUsername) as excinfo:
            store.create("alice", b"second", AuthorityLevel.ADMIN)
        assert excinfo.value.username == "alice"
        found = store.find_by_username("alice")
        assert found.password_hash == b"original"
        assert found.authority is AuthorityLevel.USER

    def test_quote_characters_are_stored_verbatim(self, store: CredentialStore) -> None:
        """A username shaped like an injection payload is just data."""
        nasty = "x' or '1'='1"
        store.create("victim", b"h")
        store.create(nasty, b"n")
        assert store.update_authority(nasty, AuthorityLevel.ADMIN) is True
        assert store.find_by_username("victim").authority is AuthorityLevel.USER
        assert store.find_by_username(nasty).authority is AuthorityLevel.ADMIN

    def test_count_and_has_admin(self, store: CredentialStore) -> None:
        assert store.count() == 0
        assert store.has_admin() is False
        store.create("a", b"h")
        store.create("b", b"h", AuthorityLevel.ADMIN)
        assert store.count() == 2
        assert store.has_admin() is True


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestMutations:
    def test_update_password_hash(self, store: CredentialStore) -> None:
        store.create("alice", b"old")
        assert store.update_password_hash("alice", b"new") is True
        assert store.find_by_username("alice").password_hash == b"new"

    def test_update_password_hash_missing_returns_false(self, store: CredentialStore) -> None:
        assert store.update_password_hash("ghost", b"new") is False

    def test_update_authority(self, store: CredentialStore) -> None:
        store.create("bob", b"h")
        assert store.update_authority("bob", AuthorityLevel.ADMIN) is True
        assert store.find_by_username("bob").authority is AuthorityLevel.ADMIN

    def test_update_authority_missing_returns_false(self, store: CredentialStore) -> None:
        assert store.update_authority("ghost", AuthorityLevel.ADMIN) is False

    def test_update_touches_only_target_row(self, store: CredentialStore) -> None:
        store.create("alice", b"a")
        store.create("bob", b"b")
        store.update_password_hash("alice", b"a2")
        assert store.find_by_username("bob").password_hash == b"b"

    def test_delete(self, store: CredentialStore) -> None:
        store.create("alice", b"h")
        assert store.delete("alice") is True
        assert store.find_by_username("alice") is None
        assert store.delete("alice") is False

    def test_recreate_after_delete_gets_new_generation(self, store: CredentialStore) -> None:
        first = store.create("alice", b"h")
        store.delete("alice")
        time.sleep(0.001)
        second = store.create("alice", b"h")
        assert second.created_at != first.created_at


# ---------------------------------------------------------------------------
# Failure translation
# ---------------------------------------------------------------------------


class TestStorageFailures:
    def test_locked_database_times_out_as_storage_unavailable(self, tmp_path) -> None:
        """A writer holding an exclusive lock must not hang create() past the timeout."""
        db_file = tmp_path / "creds.db"
        store = CredentialStore(f"sqlite:///{db_file}", timeout=0.2)
        blocker = sqlite3.connect(db_file, isolation_level=None)
        try:
            blocker.execute("BEGIN EXCLUSIVE")
            start = time.monotonic()
            with pytest.raises(StorageUnavailable):
                store.create("alice", b"h")
            assert time.monotonic() - start < 5
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
            store.close()

    def test_driver_error_is_translated_without_leaking(self, store: CredentialStore) -> None:
        error = OperationalError("SELECT secret_table", {}, Exception("disk I/O error at /var/db"))
        with patch.object(store.engine, "connect", side_effect=error):
            with pytest.raises(StorageUnavailable) as excinfo:
                store.find_by_username("alice")
        assert "secret_table" not in str(excinfo.value)
        assert "/var/db" not in excinfo.value.message

    def test_ping_reports_failure_instead_of_raising(self, store: CredentialStore) -> None:
        assert store.ping() is True
        error = OperationalError("SELECT 1", {}, Exception("gone"))
        with patch.object(store.engine, "connect", side_effect=error):
            assert store.ping() is False


# ---------------------------------------------------------------------------
# Timeout wiring
# ---------------------------------------------------------------------------


class TestTimeoutWiring:
    @staticmethod
    def _engine_kwargs(db_url: str, timeout: float) -> dict:
        """Build a store without touching a database; return create_engine's kwargs."""
        with (
            patch("authority.store.create_engine") as create_engine,
            patch("authority.store.event"),
            patch("authority.store._metadata"),
        ):
            CredentialStore(db_url, timeout=timeout)
        return create_engine.call_args.kwargs

    def test_postgresql_bounds_statements_and_locks(self) -> None:
        kwargs = self._engine_kwargs("postgresql+psycopg2://auth@db/credentials", 2.5)
        assert kwargs["connect_args"] == {
            "connect_timeout": 3,
            "options": "-c statement_timeout=2500 -c lock_timeout=2500",
        }
        assert kwargs["pool_timeout"] == 2.5
        assert kwargs["pool_pre_ping"] is True

    def test_mysql_bounds_reads_and_writes(self) -> None:
        kwargs = self._engine_kwargs("mysql+pymysql://auth@db/credentials", 0.5)
        assert kwargs["connect_args"] == {"connect_timeout": 1, "read_timeout": 1, "write_timeout": 1}
        assert kwargs["pool_timeout"] == 0.5

    def test_sqlite_bounds_busy_wait(self) -> None:
        kwargs = self._engine_kwargs("sqlite:///credentials.db", 0.2)
        assert kwargs["connect_args"] == {"check_same_thread": False, "timeout": 0.2}
        assert "pool_timeout" not in kwargs

    def test_engine_options_pass_through(self) -> None:
        store = CredentialStore("sqlite:///:memory:", timeout=1.0, poolclass=StaticPool)
        try:
            assert isinstance(store.engine.pool, StaticPool)
            store.create("alice", b"h")
            assert store.find_by_username("alice") is not None
        finally:
            store.close()


# ---------------------------------------------------------------------------
# Concurrent writes
# ---------------------------------------------------------------------------


THREADS = 8


def _race(action, count: int = THREADS) -> list:
    """Run action(i) on `count` threads released together; return results in index order."""
    barrier = threading.Barrier(count)

    def run(i: int):
        barrier.wait()
        return action(i)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(run, range(count)))


class TestConcurrentWrites:
    def test_racing_creates_have_exactly_one_winner(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'race.db'}", timeout=5.0)

        def create(i: int) -> str:
            try:
                store.create("same", f"hash-{i}".encode())
            except DuplicateUsername:
                return "duplicate"
            return "created"

        try:
            outcomes = _race(create)
            winner = store.find_by_username("same")
            assert store.count() == 1
        finally:
            store.close()
        assert sorted(outcomes) == ["created"] + ["duplicate"] * (THREADS - 1)
        assert winner.password_hash == f"hash-{outcomes.index('created')}".encode()

    def test_create_racing_delete_leaves_whole_row_or_none(self, tmp_path) -> None:
        store = CredentialStore(f"sqlite:///{tmp_path / 'race.db'}", timeout=5.0)
        store.create("bob", b"seed")

        def act(i: int) -> tuple[str, bool]:
            if i % 2:
                return "delete", store.delete("bob")
            try:
                store.create("bob", f"hash-{i}".encode(), AuthorityLevel.ADMIN)
            except DuplicateUsername:
                return "create", False
            return "create", True

        try:
            outcomes = _race(act)
            found = store.find_by_username("bob")
        finally:
            store.close()

        created = sum(1 for kind, ok in outcomes if kind == "create" and ok)
        deleted = sum(1 for kind, ok in outcomes if kind == "delete" and ok)
        # Each successful create needs the row absent, each delete needs it present.
        assert 1 + created - deleted == (1 if found is not None else 0)
        if found is not None:
            whole_rows = {(b"seed", AuthorityLevel.USER)} | {
                (f"hash-{i}".encode(), AuthorityLevel.ADMIN) for i in range(0, THREADS, 2)
            }
            assert (found.password_hash, found.authority) in whole_rows
            assert found.created_at
