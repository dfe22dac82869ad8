"""WhatsOnChain, ARC and mAPI client errors."""

from __future__ import annotations

from sats_engine.errors.wallet_errors import WalletError


class WoCError(WalletError):
    """Error from the WhatsOnChain REST API."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="woc-error")


class ARCError(WalletError):
    """Error from an ARC transaction broadcaster."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="arc-error")


class MAPIError(WalletError):
    """Error from a merchant API (mAPI) endpoint."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="mapi-error")
