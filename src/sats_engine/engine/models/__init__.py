"""Ledger data models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for migration and table creation.
"""

from sats_engine.engine.models.base import Base, TimestampMixin
from sats_engine.engine.models.derived_address import DerivedAddressRow
from sats_engine.engine.models.lock import LockRow
from sats_engine.engine.models.transaction import TransactionRecordRow
from sats_engine.engine.models.utxo import UtxoRow

ALL_MODELS: list[type[Base]] = [
    UtxoRow,
    LockRow,
    TransactionRecordRow,
    DerivedAddressRow,
]

__all__ = [
    "ALL_MODELS",
    "Base",
    "DerivedAddressRow",
    "LockRow",
    "TimestampMixin",
    "TransactionRecordRow",
    "UtxoRow",
]
