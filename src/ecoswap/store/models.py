"""SQLAlchemy models for the local wallet store."""

from datetime import datetime

from sqlalchemy import DateTime, LargeBinary, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ecoswap.wallet.base import WalletRecord


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class StoredWallet(Base):
    """Encrypted wallet of one account. Never updated once written."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    public_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    encrypted_secret: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def to_record(self) -> WalletRecord:
        return WalletRecord(public_key=self.public_key, encrypted_secret=self.encrypted_secret)

    def __repr__(self) -> str:
        return f"<StoredWallet {self.account_id}: {self.public_key}>"
