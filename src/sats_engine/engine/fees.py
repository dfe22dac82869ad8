"""Fee model — pure functions from transaction shape to a satoshi fee.

Sizes are the standard P2PKH estimates:

- input: outpoint 36 + script length 1 + scriptSig ~107 + sequence 4 = 148
- output: value 8 + script length 1 + script 25 = 34
- overhead: version 4 + locktime 4 + input/output counts ~2 = 10

All functions take the rate explicitly; the rate source is
:class:`~sats_engine.engine.services.fee_service.FeeRateProvider`.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from sats_engine.bsv.transaction import varint_size
from sats_engine.engine.domain import Utxo

P2PKH_INPUT_SIZE = 148
P2PKH_OUTPUT_SIZE = 34
TX_OVERHEAD = 10

DEFAULT_FEE_RATE = 0.05
MIN_FEE_RATE = 0.01
MAX_FEE_RATE = 1.0
FEE_RATE_CACHE_TTL = 300

# Remainders at or below this many sats are not budgeted as a change output when sizing the fee.
CHANGE_THRESHOLD = 100


@dataclass(frozen=True)
class MaxSend:
    max_sats: int
    fee: int
    num_inputs: int


@dataclass(frozen=True)
class ExactFee:
    fee: int
    input_count: int
    output_count: int
    total_input: int
    can_send: bool


def fee_from_bytes(size: int, rate: float) -> int:
    """``ceil(size * rate)`` with a floor of 1 sat."""
    return max(1, math.ceil(size * rate))


def clamp_fee_rate(rate: float) -> float:
    return max(MIN_FEE_RATE, min(MAX_FEE_RATE, rate))


def calculate_tx_fee(num_inputs: int, num_outputs: int, rate: float, extra_bytes: int = 0) -> int:
    """Fee for a transaction of P2PKH inputs and outputs plus *extra_bytes*."""
    size = TX_OVERHEAD + num_inputs * P2PKH_INPUT_SIZE + num_outputs * P2PKH_OUTPUT_SIZE + extra_bytes
    return fee_from_bytes(size, rate)


def lock_output_size(script_size: int) -> int:
    """Serialized size of an output carrying a *script_size*-byte script."""
    return 8 + varint_size(script_size) + script_size


def calculate_lock_fee(
    num_inputs: int,
    timelock_script_size: int,
    rate: float,
    op_return_extra_bytes: int = 0,
) -> int:
    """Fee for a lock transaction: timelock output, one change output, optional OP_RETURN.

    Args:
        num_inputs: Number of P2PKH funding inputs.
        timelock_script_size: Actual byte length of the compiled timelock script.
        rate: Fee rate in sat/byte.
        op_return_extra_bytes: Full serialized size of any OP_RETURN output.
    """
    size = (
        TX_OVERHEAD
        + num_inputs * P2PKH_INPUT_SIZE
        + lock_output_size(timelock_script_size)
        + P2PKH_OUTPUT_SIZE
        + op_return_extra_bytes
    )
    return fee_from_bytes(size, rate)


def calculate_max_send(utxos: Sequence[Utxo], rate: float) -> MaxSend:
    """Largest amount sendable by spending every UTXO to a single output."""
    if not utxos:
        return MaxSend(max_sats=0, fee=0, num_inputs=0)
    total = sum(u.satoshis for u in utxos)
    fee = calculate_tx_fee(len(utxos), 1, rate)
    return MaxSend(max_sats=max(0, total - fee), fee=fee, num_inputs=len(utxos))


def calculate_exact_fee(amount: int, utxos: Sequence[Utxo], rate: float) -> ExactFee:
    """Greedy input selection for *amount*, recomputing the fee per added input.

    The output count is 2 while the remainder above *amount* exceeds
    :data:`CHANGE_THRESHOLD` and 1 otherwise. Selection stops as soon as
    ``total >= amount + fee``.
    """
    if amount <= 0 or not utxos:
        return ExactFee(fee=0, input_count=0, output_count=0, total_input=0, can_send=False)

    total = 0
    fee = 0
    num_outputs = 1
    for count, utxo in enumerate(utxos, start=1):
        total += utxo.satoshis
        num_outputs = 2 if total - amount > CHANGE_THRESHOLD else 1
        fee = calculate_tx_fee(count, num_outputs, rate)
        if total >= amount + fee:
            return ExactFee(
                fee=fee,
                input_count=count,
                output_count=num_outputs,
                total_input=total,
                can_send=True,
            )

    return ExactFee(
        fee=fee,
        input_count=len(utxos),
        output_count=num_outputs,
        total_input=total,
        can_send=False,
    )
