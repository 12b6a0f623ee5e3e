"""Durable record of every issued or recorded code.

The ledger is a single ``codes`` table with a uniqueness constraint on the
``code`` column. Uniqueness is enforced by the database itself, so the
constraint check and the insert happen in one atomic statement and stay
correct across restarts and across processes sharing the same file.
"""

import logging
import os
from dataclasses import dataclass

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from qr_code_issuer.errors import CollisionError, StorageError

logger = logging.getLogger(__name__)

metadata = MetaData()

# Stable on-disk contract: do not rename these.
codes_table = Table(
    "codes",
    metadata,
    Column("code", Text, primary_key=True),
    Column("created_at", Integer, nullable=False),
)

MEMORY = ":memory:"

_UNIQUE_SQLSTATE = "23505"
_SQLITE_UNIQUE_ERRORS = ("SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE")


@dataclass(frozen=True)
class LedgerEntry:
    """One persisted (code, created_at) pair."""

    code: str
    created_at: int


def _database_url(location) -> str:
    location = os.fspath(location)
    if "://" in location:
        return location
    if location == MEMORY:
        return "sqlite://"
    return f"sqlite:///{location}"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Tell a uniqueness violation apart from any other integrity failure."""
    orig = exc.orig
    if getattr(orig, "sqlite_errorname", None) in _SQLITE_UNIQUE_ERRORS:
        return True
    if _UNIQUE_SQLSTATE in (getattr(orig, "sqlstate", None), getattr(orig, "pgcode", None)):
        return True
    return "unique" in str(orig).lower()


class Ledger:
    """Uniqueness-enforcing store of issued codes.

    Usage::

        with Ledger.open("codes.db") as ledger:
            ledger.commit("ABC123", int(time.time()))
    """

    def __init__(self, location=MEMORY):
        self.location = os.fspath(location)
        self._engine: Engine | None = None

    @classmethod
    def open(cls, location) -> "Ledger":
        """Create a ledger for ``location`` and initialize it."""
        ledger = cls(location)
        ledger.initialize()
        return ledger

    def initialize(self) -> None:
        """Open or create the backing store and ensure the schema exists.

        Safe to call on an existing store: existing entries are untouched.

        Raises:
            StorageError: If the location is inaccessible or not a valid database.
        """
        if self._engine is None:
            url = _database_url(self.location)
            kwargs = {}
            if url == "sqlite://":
                # One shared connection, otherwise every checkout sees a fresh empty DB.
                kwargs = {
                    "poolclass": StaticPool,
                    "connect_args": {"check_same_thread": False},
                }
            try:
                self._engine = create_engine(url, **kwargs)
            except SQLAlchemyError as e:
                raise StorageError(f"Invalid ledger location '{self.location}': {e}") from e

        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            self._engine.dispose()
            self._engine = None
            raise StorageError(
                f"Could not open ledger at '{self.location}': {getattr(e, 'orig', None) or e}"
            ) from e
        logger.debug("Ledger ready at %s", self.location)

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise StorageError("Ledger is not open. Call initialize() first.")
        return self._engine

    def commit(self, code: str, created_at: int) -> None:
        """Durably record ``code`` with its issuance timestamp.

        Raises:
            CollisionError: If ``code`` is already in the ledger.
            StorageError: For any other persistence failure.
        """
        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                conn.execute(
                    insert(codes_table).values(code=code, created_at=int(created_at))
                )
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise CollisionError(code) from e
            raise StorageError(f"Could not record code '{code}': {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(
                f"Could not record code '{code}': {getattr(e, 'orig', None) or e}"
            ) from e

    def contains(self, code: str) -> bool:
        stmt = select(codes_table.c.code).where(codes_table.c.code == code)
        return self._scalar(stmt) is not None

    def count(self, length: int | None = None, alphabet: str | None = None) -> int:
        """Count entries, optionally only codes of ``length`` drawn from ``alphabet``.

        Both filters run in the database, so nothing is loaded into memory.
        """
        stmt = select(func.count()).select_from(codes_table)
        if length is not None:
            stmt = stmt.where(func.length(codes_table.c.code) == length)
        if alphabet is not None:
            # Codes made only of alphabet characters reduce to "".
            stripped = codes_table.c.code
            for ch in dict.fromkeys(alphabet):
                stripped = func.replace(stripped, ch, "")
            stmt = stmt.where(stripped == "")
        return self._scalar(stmt)

    def entries(self, length: int | None = None) -> list[LedgerEntry]:
        """Return ledger entries, oldest first, optionally only codes of ``length``."""
        stmt = select(codes_table.c.code, codes_table.c.created_at)
        if length is not None:
            stmt = stmt.where(func.length(codes_table.c.code) == length)
        stmt = stmt.order_by(codes_table.c.created_at, codes_table.c.code)

        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read ledger: {e}") from e
        return [LedgerEntry(code=row.code, created_at=row.created_at) for row in rows]

    def _scalar(self, stmt):
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                return conn.execute(stmt).scalar()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read ledger: {e}") from e

    def close(self) -> None:
        """Release the storage handle. Calling it twice is harmless."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    @property
    def closed(self) -> bool:
        return self._engine is None

    def __enter__(self) -> "Ledger":
        if self._engine is None:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
