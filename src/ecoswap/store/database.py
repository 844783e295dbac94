"""Wallet store engine and sessions.

Sessions opened through a WalletStore refuse to flush changes to rows
that are already stored, so a record can be added or deleted but never
rewritten in place.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session

from ecoswap.config import Settings, get_settings
from ecoswap.store.models import Base, StoredWallet
from ecoswap.store.repository import ImmutableWalletError

logger = logging.getLogger(__name__)


class WalletSession(Session):
    """Sync session behind every AsyncSession the store hands out."""


@event.listens_for(WalletSession, "before_flush")
def _reject_wallet_updates(session, flush_context, instances):
    for obj in session.dirty:
        if isinstance(obj, StoredWallet) and session.is_modified(obj):
            raise ImmutableWalletError(f"stored wallet {obj.account_id} cannot be modified")


def normalize_url(database_url: str) -> str:
    """Use the async sqlite driver for plain sqlite URLs."""
    if database_url.startswith("sqlite:///"):
        database_url = database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return database_url


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class WalletStore:
    """Engine and session factory for the wallet table.

    Usage:
        async with WalletStore() as store:
            async with store.session() as session:
                await WalletRepository(session).save_record(account_id, record)
    """

    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.database_url = normalize_url(database_url or settings.database_url)
        _ensure_sqlite_dir(self.database_url)

        self.engine = create_async_engine(
            self.database_url,
            echo=settings.debug and not settings.is_production,
        )
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            sync_session_class=WalletSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self.engine.dispose()

    async def __aenter__(self) -> "WalletStore":
        await self.create_tables()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        url = make_url(self.database_url).render_as_string(hide_password=True)
        return f"WalletStore({url})"
