"""Chain service — WhatsOnChain + ARC + mAPI integration."""

from sats_engine.chain.mapi.client import FeeQuote, MAPIClient
from sats_engine.chain.service import ChainService
from sats_engine.chain.woc.client import WoCClient

__all__ = ["ChainService", "FeeQuote", "MAPIClient", "WoCClient"]
