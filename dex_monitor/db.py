"""
Async SQLAlchemy store: watched wallets in, candidate wallets out.
Tables are created automatically on first run (no Alembic needed).
"""

import asyncio
import datetime as dt
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Float, Integer, String, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, sessionmaker
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from dex_monitor.config import Settings
from dex_monitor.debug import dbg

Base = declarative_base()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
class WatchedWallet(Base):
    __tablename__ = "wallets"
    wallet_address: Mapped[str] = mapped_column(String(44), primary_key=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)


class CandidateWallet(Base):
    __tablename__ = "candidate_wallets"
    wallet_address: Mapped[str] = mapped_column(String(44), primary_key=True)
    discovery_timestamp: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    discovery_source: Mapped[str] = mapped_column(String(32))
    discovery_type: Mapped[str] = mapped_column(String(32))
    initial_score: Mapped[int] = mapped_column(Integer)
    confidence: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    discovery_metadata: Mapped[dict] = mapped_column(JSON, default=dict)


class RawTransaction(Base):
    __tablename__ = "raw_transactions"
    tx_signature: Mapped[str] = mapped_column(String(128), primary_key=True)
    slot: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    logs: Mapped[list] = mapped_column(JSON, default=list)
    err: Mapped[Any] = mapped_column(JSON, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )


class LogEntry(Base):
    __tablename__ = "logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ts: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    level: Mapped[str] = mapped_column(String(8))
    msg: Mapped[str] = mapped_column(String(512))


# ─────────────────────────── general helpers ──────────────────────────────────
class session_ctx:
    """Async context‑manager wrapper for a session."""

    def __init__(self, factory):
        self._ctx = factory()

    async def __aenter__(self):
        return self._ctx

    async def __aexit__(self, *e):
        await self._ctx.close()


class Store:
    """Persistence handle. Every call is bounded by ``timeout`` seconds."""

    def __init__(
        self,
        dsn: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        echo: bool = False,
    ):
        pool = {} if dsn.startswith("sqlite") else {"pool_size": 10, "max_overflow": 20}
        self.engine = create_async_engine(dsn, echo=echo, **pool)
        self.sessions = sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(
            settings.DB_DSN,
            timeout=settings.STORE_TIMEOUT_SEC,
            max_retries=settings.MAX_RETRIES,
            backoff=settings.BACKOFF_SEC,
            echo=settings.DEBUG == "verbose",
        )

    async def init(self) -> None:
        """Create tables if they do not yet exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    def _insert(self, model):
        if self.engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def _upsert(self, model, row: dict, key: str) -> None:
        stmt = self._insert(model).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[key],
            set_={col: stmt.excluded[col] for col in row if col != key},
        )

        async def _run():
            async with session_ctx(self.sessions) as s:
                await s.execute(stmt)
                await s.commit()

        await asyncio.wait_for(_run(), timeout=self.timeout)
        dbg(f"SQL UPSERT {model.__tablename__} {row[key]}")

    async def load_watched_accounts(self) -> set[str]:
        """Addresses flagged as verified in the ``wallets`` table."""

        async def _run() -> set[str]:
            async with session_ctx(self.sessions) as s:
                rows = await s.scalars(
                    select(WatchedWallet.wallet_address).where(
                        WatchedWallet.is_verified.is_(True)
                    )
                )
                return set(rows.all())

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff),
            reraise=True,
        ):
            with attempt:
                return await asyncio.wait_for(_run(), timeout=self.timeout)

    async def upsert_candidate_wallet(self, row: dict) -> None:
        await self._upsert(CandidateWallet, row, "wallet_address")

    async def upsert_raw_transaction(self, row: dict) -> None:
        await self._upsert(RawTransaction, row, "tx_signature")

    async def log(self, level: str, msg: str) -> None:
        async def _run():
            async with session_ctx(self.sessions) as s:
                s.add(LogEntry(level=level[:8], msg=msg[:510]))
                await s.commit()

        await asyncio.wait_for(_run(), timeout=self.timeout)
        dbg(f"SQL LOG {level} {msg}")
