"""WalletError — base exception class and the typed wallet error taxonomy.

Every expected failure of an engine operation is one of these classes. Lower
layers raise them; the public operations on :class:`~sats_engine.engine.client.WalletEngine`
catch them and hand them back inside a :class:`~sats_engine.engine.result.Result`.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base error for all wallet engine operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code for a collaborator surface.
        code: Machine-readable error code string.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "wallet-error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class InsufficientFunds(WalletError):
    """Selected inputs cannot cover the outputs plus fee."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"insufficient funds: need {required} sats, have {available}",
            status_code=422,
            code="insufficient-funds",
        )
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class InvalidAmount(WalletError):
    """Amount is not a positive integer number of satoshis."""

    def __init__(self, message: str = "amount must be a positive integer") -> None:
        super().__init__(message, status_code=400, code="invalid-amount")


class InvalidParams(WalletError):
    """Malformed input such as bad script hex, address or block height."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400, code="invalid-params")


class LockNotSpendable(WalletError):
    """A timelocked output cannot be spent at the current chain height."""

    def __init__(self, blocks_remaining: int, *, unlock_block: int = 0) -> None:
        super().__init__(
            f"lock not spendable for another {blocks_remaining} blocks",
            status_code=409,
            code="lock-not-spendable",
        )
        self.blocks_remaining = blocks_remaining
        self.unlock_block = unlock_block


class BroadcastFailed(WalletError):
    """The transaction could not be broadcast to the network."""

    def __init__(self, cause: str | BaseException) -> None:
        super().__init__(f"broadcast failed: {cause}", status_code=502, code="broadcast-failed")
        self.cause = cause


class DatabaseError(WalletError):
    """A ledger store read or write failed."""

    def __init__(self, cause: str | BaseException) -> None:
        super().__init__(f"database error: {cause}", status_code=500, code="database-error")
        self.cause = cause


class WalletLocked(WalletError):
    """Signing keys are unavailable because the wallet is locked."""

    def __init__(self, message: str = "wallet is locked") -> None:
        super().__init__(message, status_code=423, code="wallet-locked")


class NetworkTimeout(WalletError):
    """A network call exceeded its timeout."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"{operation} timed out after {timeout:g}s",
            status_code=504,
            code="network-timeout",
        )
        self.operation = operation
        self.timeout = timeout
