"""
authority/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_credential is the mapper.
The authenticator and administration service never touch SQL directly.

Security:
  All queries are SQLAlchemy expressions with bound parameters. No f-strings
  or concatenation in SQL -- usernames come straight from request paths.

Atomicity:
  Every mutation is a single UPDATE/INSERT/DELETE keyed on username inside its
  own transaction (engine.begin()). A reader sees either the old row or the new
  one, never a partial write. Concurrent creates of the same username are
  settled by the primary-key constraint: the loser gets DuplicateUsername.
  Create racing delete is last-writer-wins in commit order.

Timeouts:
  The caller-supplied timeout bounds every storage call:
    sqlite       busy wait on a locked database (sqlite3 "timeout")
    postgresql   connect_timeout, plus statement_timeout and lock_timeout set
                 per session through libpq "options" (psycopg2 and psycopg)
    mysql        connect_timeout, read_timeout and write_timeout (PyMySQL and
                 mysqlclient)
  Server databases also bound the pool checkout (pool_timeout). Other backends
  get only the pool bound and a warning at startup. Any timeout or driver
  failure is re-raised as StorageUnavailable; callers decide whether to retry.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, LargeBinary, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from authority.exceptions import DuplicateUsername, StorageUnavailable
from authority.models import AuthorityLevel, Credential

logger = logging.getLogger("credauthority.store")

DEFAULT_TIMEOUT_SECONDS = 5.0

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("username", String(255), primary_key=True),
    Column("password_hash", LargeBinary, nullable=False),
    Column("authority", Integer, nullable=False, server_default="0"),  # AuthorityLevel value
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed while a write is in flight.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _timeout_connect_args(backend: str, timeout: float) -> dict:
    """Driver connect arguments that bound connecting and executing by `timeout`.

    libpq and the MySQL drivers only take whole seconds for connect and
    read/write timeouts, so those round up.
    """
    seconds = max(1, math.ceil(timeout))
    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": timeout}
    if backend == "postgresql":
        ms = max(1, int(timeout * 1000))
        return {
            "connect_timeout": seconds,
            "options": f"-c statement_timeout={ms} -c lock_timeout={ms}",
        }
    if backend in ("mysql", "mariadb"):
        return {"connect_timeout": seconds, "read_timeout": seconds, "write_timeout": seconds}
    return {}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Credential records keyed by username.

    Usage:
        store = CredentialStore("sqlite:///credentials.db", timeout=5.0)
        store.create("alice", hasher.hash("secret"), AuthorityLevel.USER)
        cred = store.find_by_username("alice")
        store.close()

    Extra keyword arguments go to sqlalchemy.create_engine (e.g. poolclass);
    connect_args are merged over the timeout arguments.
    """

    def __init__(self, db_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS, **engine_options) -> None:
        self.timeout = timeout
        backend = make_url(db_url).get_backend_name()
        connect_args = _timeout_connect_args(backend, timeout)
        connect_args.update(engine_options.pop("connect_args", {}))
        if backend != "sqlite":
            engine_options.setdefault("pool_timeout", timeout)
            engine_options.setdefault("pool_pre_ping", True)
        if backend not in ("sqlite", "postgresql", "mysql", "mariadb"):
            logger.warning("No statement timeout for %s backend; only pool checkout is bounded", backend)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_options)
        if backend == "sqlite":
            event.listen(self.engine, "connect", _set_wal_mode)
        with self._guard("create_schema"):
            _metadata.create_all(self.engine)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate driver failures and pool timeouts into StorageUnavailable.

        IntegrityError never reaches here from create(); it is mapped to
        DuplicateUsername first.
        """
        try:
            yield
        except (PoolTimeoutError, DBAPIError) as exc:
            logger.warning("Credential store %s failed: %s", operation, type(exc).__name__)
            raise StorageUnavailable() from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Credential | None:
        """Look up a credential by exact username (case-sensitive). Returns None if absent."""
        with self._guard("find_by_username"):
            with self.engine.connect() as conn:
                row = conn.execute(_credentials.select().where(_credentials.c.username == username)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def count(self) -> int:
        """Return the number of stored credentials."""
        with self._guard("count"):
            with self.engine.connect() as conn:
                result = conn.execute(select(func.count()).select_from(_credentials)).scalar()
        return result or 0

    def has_admin(self) -> bool:
        """Return True if at least one ADMIN credential exists.

        Used at startup to warn when the deployment has no way to perform
        administrative actions.
        """
        with self._guard("has_admin"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(_credentials.c.username)
                    .where(_credentials.c.authority == int(AuthorityLevel.ADMIN))
                    .limit(1)
                ).fetchone()
        return row is not None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Never raises."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except (PoolTimeoutError, DBAPIError):
            logger.warning("Credential store ping failed")
            return False

    # ------------------------------------------------------------------
    # Mutations -- one statement, one transaction each
    # ------------------------------------------------------------------

    def create(self, username: str, password_hash: bytes, authority: AuthorityLevel = AuthorityLevel.USER) -> Credential:
        """Insert a new credential and return it.

        Raises DuplicateUsername if the username already exists; the existing
        row is left untouched.
        """
        created_at = _now_iso()
        with self._guard("create"):
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        _credentials.insert().values(
                            username=username,
                            password_hash=password_hash,
                            authority=int(authority),
                            created_at=created_at,
                        )
                    )
            except IntegrityError as exc:
                raise DuplicateUsername(username) from exc
        return Credential(
            username=username,
            password_hash=password_hash,
            authority=AuthorityLevel(authority),
            created_at=created_at,
        )

    def update_password_hash(self, username: str, new_hash: bytes) -> bool:
        """Replace the stored hash. Returns False if no credential matched."""
        return self._update(username, "update_password_hash", password_hash=new_hash)

    def update_authority(self, username: str, new_authority: AuthorityLevel) -> bool:
        """Replace the stored authority level. Returns False if no credential matched."""
        return self._update(username, "update_authority", authority=int(new_authority))

    def delete(self, username: str) -> bool:
        """Permanently delete a credential. Returns True if deleted, False if not found."""
        with self._guard("delete"):
            with self.engine.begin() as conn:
                result = conn.execute(_credentials.delete().where(_credentials.c.username == username))
        return result.rowcount == 1

    def _update(self, username: str, operation: str, **fields) -> bool:
        # Column names come from the two callers above, never from input.
        with self._guard(operation):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _credentials.update().where(_credentials.c.username == username).values(**fields)
                )
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        username=row.username,
        password_hash=bytes(row.password_hash),
        authority=AuthorityLevel(row.authority),
        created_at=row.created_at,
    )
