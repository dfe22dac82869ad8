"""ARC data models — broadcast response and status codes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

SKIP_SCRIPT_FLAGS = "DISCOURAGE_UPGRADABLE_NOPS"


class TXStatus(enum.StrEnum):
    """ARC transaction status codes.

    Lifecycle: QUEUED → RECEIVED → STORED → ANNOUNCED_TO_NETWORK
               → SENT_TO_NETWORK → ACCEPTED_BY_NETWORK → SEEN_ON_NETWORK
               → MINED, or REJECTED.
    """

    UNKNOWN = "UNKNOWN"
    QUEUED = "QUEUED"
    RECEIVED = "RECEIVED"
    STORED = "STORED"
    ANNOUNCED_TO_NETWORK = "ANNOUNCED_TO_NETWORK"
    SENT_TO_NETWORK = "SENT_TO_NETWORK"
    ACCEPTED = "ACCEPTED"
    ACCEPTED_BY_NETWORK = "ACCEPTED_BY_NETWORK"
    SEEN_ON_NETWORK = "SEEN_ON_NETWORK"
    MINED = "MINED"
    REJECTED = "REJECTED"

    @classmethod
    def from_string(cls, value: str) -> TXStatus:
        """Parse a status string, returning UNKNOWN for unrecognised values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# Statuses that count as a successful broadcast.
ACCEPTED_STATUSES = frozenset({TXStatus.SEEN_ON_NETWORK, TXStatus.ACCEPTED})


@dataclass
class TXInfo:
    """ARC response to ``POST /v1/tx``.

    Attributes:
        txid: Transaction ID (hex).
        tx_status: Status string (maps to TXStatus).
        extra_info: Additional info from ARC.
        detail: Error detail for rejected transactions.
        title: Error title for rejected transactions.
        competing_txs: Competing transaction IDs (double-spend).
    """

    txid: str = ""
    tx_status: str = ""
    extra_info: str = ""
    detail: str = ""
    title: str = ""
    competing_txs: list[str] = field(default_factory=list)

    @property
    def status(self) -> TXStatus:
        return TXStatus.from_string(self.tx_status)

    @property
    def is_accepted(self) -> bool:
        return bool(self.txid) and self.status in ACCEPTED_STATUSES

    @property
    def error_message(self) -> str:
        return self.detail or self.extra_info or self.title or "Unknown ARC error"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TXInfo:
        """Create TXInfo from an ARC JSON response dict."""
        return cls(
            txid=data.get("txid") or "",
            tx_status=data.get("txStatus") or "",
            extra_info=data.get("extraInfo") or "",
            detail=data.get("detail") or "",
            title=data.get("title") or "",
            competing_txs=data.get("competingTxs") or [],
        )
