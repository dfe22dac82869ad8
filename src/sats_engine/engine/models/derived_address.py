"""Derived address model — payment addresses whose keys are never stored."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sats_engine.engine.domain import DerivedAddress
from sats_engine.engine.models.base import Base, TimestampMixin


class DerivedAddressRow(Base, TimestampMixin):
    """A counterparty-derived receiving address.

    The spending key is recomputed from the identity key, ``sender_pubkey``
    and ``invoice_number``. ``private_key_wif`` is only populated for rows
    imported from older wallets that stored the key.
    """

    __tablename__ = "derived_addresses"
    __table_args__ = (
        UniqueConstraint("sender_pubkey", "invoice_number", name="uq_derived_sender_invoice"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    sender_pubkey: Mapped[str] = mapped_column(String(66), nullable=False)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_wif: Mapped[str | None] = mapped_column(String(64), nullable=True)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)

    def to_domain(self) -> DerivedAddress:
        return DerivedAddress(
            address=self.address,
            sender_pubkey=self.sender_pubkey,
            invoice_number=self.invoice_number,
            label=self.label,
            legacy_private_key_wif=self.private_key_wif,
            account_id=self.account_id,
        )

    def __repr__(self) -> str:
        return f"<DerivedAddressRow {self.address} invoice={self.invoice_number!r}>"
