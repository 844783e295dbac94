"""Repository for stored wallet records."""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecoswap.errors import EcoswapError
from ecoswap.store.models import StoredWallet
from ecoswap.wallet.base import WalletRecord

logger = logging.getLogger(__name__)


class WalletExistsError(EcoswapError):
    """Account already has a wallet; records are never overwritten."""
    user_message = "A wallet already exists for this account."


class ImmutableWalletError(EcoswapError):
    """A stored wallet row was changed in place."""
    user_message = "Stored wallets cannot be changed."


class WalletRepository:
    """Stores WalletRecords by account id."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save_record(self, account_id: str, record: WalletRecord) -> StoredWallet:
        """Store a new record.

        Raises:
            WalletExistsError: The account or the public key is already stored
        """
        stmt = select(StoredWallet).where(
            (StoredWallet.account_id == account_id)
            | (StoredWallet.public_key == record.public_key)
        )
        result = await self.session.execute(stmt)
        # The account and the key may each match a different row
        if result.scalars().first() is not None:
            raise WalletExistsError(f"wallet already stored for account {account_id}")

        row = StoredWallet(
            account_id=account_id,
            public_key=record.public_key,
            encrypted_secret=record.encrypted_secret,
        )
        self.session.add(row)
        await self.session.flush()
        logger.info(f"Stored wallet {record.public_key} for account {account_id}")
        return row

    async def get_by_account(self, account_id: str) -> Optional[WalletRecord]:
        stmt = select(StoredWallet).where(StoredWallet.account_id == account_id)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return row.to_record() if row else None

    async def get_by_public_key(self, public_key: str) -> Optional[WalletRecord]:
        stmt = select(StoredWallet).where(StoredWallet.public_key == public_key)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return row.to_record() if row else None

    async def list_public_keys(self) -> list[str]:
        stmt = select(StoredWallet.public_key).order_by(StoredWallet.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_for_account(self, account_id: str) -> bool:
        """Remove an account's wallet. Returns False if none was stored."""
        stmt = delete(StoredWallet).where(StoredWallet.account_id == account_id)
        result = await self.session.execute(stmt)
        if result.rowcount:
            logger.warning(f"Deleted stored wallet for account {account_id}")
        return bool(result.rowcount)
