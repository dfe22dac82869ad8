"""UTXO model — outputs the wallet owns or tracks."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sats_engine.engine.domain import SpendingStatus, Utxo
from sats_engine.engine.models.base import Base, TimestampMixin


class UtxoRow(Base, TimestampMixin):
    """An output tracked per account, keyed by ``(txid, vout)``.

    ``spending_status`` moves ``unspent -> pending -> spent`` and back to
    ``unspent`` when a broadcast is rolled back.
    """

    __tablename__ = "utxos"
    __table_args__ = (UniqueConstraint("txid", "vout", "account_id", name="uq_utxo_outpoint"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    txid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vout: Mapped[int] = mapped_column(Integer, nullable=False)
    satoshis: Mapped[int] = mapped_column(BigInteger, nullable=False)
    locking_script: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Hex-encoded locking script"
    )
    address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    basket: Mapped[str] = mapped_column(String(32), nullable=False, default="default", index=True)
    spendable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    spending_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SpendingStatus.UNSPENT.value,
        comment="unspent | pending | spent",
    )
    pending_spending_txid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pending_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    spent_txid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    spent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)

    def to_domain(self) -> Utxo:
        return Utxo(
            txid=self.txid,
            vout=self.vout,
            satoshis=self.satoshis,
            locking_script=self.locking_script,
            address=self.address,
            basket=self.basket,
            spendable=self.spendable,
            spending_status=SpendingStatus(self.spending_status),
            pending_txid=self.pending_spending_txid,
            spent_txid=self.spent_txid,
            account_id=self.account_id,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<UtxoRow {self.txid[:16]}:{self.vout} sats={self.satoshis} {self.spending_status}>"
