"""Transaction record model."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sats_engine.engine.domain import TransactionRecord, TxStatus
from sats_engine.engine.models.base import Base, TimestampMixin


class TransactionRecordRow(Base, TimestampMixin):
    """A transaction the wallet broadcast or observed.

    ``amount`` is signed relative to the wallet: negative for outgoing
    (including the fee), positive for incoming.
    """

    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("txid", "account_id", name="uq_transaction_account"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    txid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    raw_hex: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TxStatus.PENDING.value, comment="pending | confirmed | failed"
    )
    block_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)

    def to_domain(self) -> TransactionRecord:
        return TransactionRecord(
            txid=self.txid,
            raw_hex=self.raw_hex,
            description=self.description,
            labels=list(self.labels or []),
            amount=self.amount,
            status=TxStatus(self.status),
            block_height=self.block_height,
            account_id=self.account_id,
        )

    def __repr__(self) -> str:
        return f"<TransactionRecordRow {self.txid[:16]}... amount={self.amount} status={self.status}>"
