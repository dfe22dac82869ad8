"""Lock model — timelock parameters attached to a UTXO row."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sats_engine.engine.domain import LockedUtxo
from sats_engine.engine.models.base import Base, TimestampMixin
from sats_engine.engine.models.utxo import UtxoRow


class LockRow(Base, TimestampMixin):
    """A timelocked output. ``unlocked_at`` is set once the lock is spent."""

    __tablename__ = "locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    utxo_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("utxos.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    unlock_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    lock_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    public_key_hex: Mapped[str] = mapped_column(String(66), nullable=False, default="")
    ordinal_origin: Mapped[str | None] = mapped_column(Text, nullable=True)
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)

    utxo: Mapped[UtxoRow] = relationship(lazy="joined")

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None

    def to_domain(self) -> LockedUtxo:
        return LockedUtxo(
            txid=self.utxo.txid,
            vout=self.utxo.vout,
            satoshis=self.utxo.satoshis,
            locking_script=self.utxo.locking_script,
            unlock_block=self.unlock_block,
            public_key_hex=self.public_key_hex,
            lock_block=self.lock_block,
            ordinal_origin=self.ordinal_origin,
            created_at=self.created_at,
            account_id=self.account_id,
        )

    def __repr__(self) -> str:
        return f"<LockRow utxo={self.utxo_id} unlock_block={self.unlock_block}>"
