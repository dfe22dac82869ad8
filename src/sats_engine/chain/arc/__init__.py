"""ARC — transaction broadcasting."""

from sats_engine.chain.arc.models import ACCEPTED_STATUSES, TXInfo, TXStatus
from sats_engine.chain.arc.service import ARCService

__all__ = ["ACCEPTED_STATUSES", "ARCService", "TXInfo", "TXStatus"]
