"""Coin selection — greedy accumulation in encounter order.

Inputs are not sorted by value: callers pass UTXOs in the order they want
them spent (owned address first, then derived addresses).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from sats_engine.engine.domain import OutpointKey, Utxo
from sats_engine.engine.fees import CHANGE_THRESHOLD, calculate_tx_fee
from sats_engine.errors.wallet_errors import InsufficientFunds

logger = logging.getLogger(__name__)

DEFAULT_SELECTION_BUFFER = 100


@dataclass(frozen=True)
class Selection:
    """Outcome of :func:`select_coins`."""

    utxos: list[Utxo]
    total: int
    fee: int
    change: int
    num_outputs: int

    @property
    def keys(self) -> list[OutpointKey]:
        return [u.key for u in self.utxos]


def dedupe_utxos(utxos: Iterable[Utxo]) -> list[Utxo]:
    """Drop repeated ``(txid, vout)`` keys, keeping the first occurrence."""
    seen: set[OutpointKey] = set()
    result: list[Utxo] = []
    for utxo in utxos:
        key = utxo.key
        if key in seen:
            logger.debug("Dropping duplicate outpoint %s:%d", key[0], key[1])
            continue
        seen.add(key)
        result.append(utxo)
    return result


def accumulate(utxos: Iterable[Utxo], threshold: int) -> tuple[list[Utxo], int]:
    """Take deduplicated UTXOs in order until their sum reaches *threshold*.

    Returns every candidate when the threshold is never reached.
    """
    selected: list[Utxo] = []
    total = 0
    for utxo in dedupe_utxos(utxos):
        selected.append(utxo)
        total += utxo.satoshis
        if total >= threshold:
            break
    return selected, total


def accumulate_covering(
    utxos: Iterable[Utxo],
    target: int,
    buffer: int,
    fee_for: Callable[[int, int], int],
) -> tuple[list[Utxo], int, int]:
    """Accumulate to ``target + buffer``, then keep adding inputs until the fee is covered.

    Args:
        utxos: Candidates in spend order; duplicates are removed first.
        target: Satoshis the selection must pay out.
        buffer: Initial headroom above *target*.
        fee_for: ``(input_count, total) -> fee`` for a candidate selection.

    Returns:
        ``(selected, total, fee)``. When the candidates run out the fee may
        still exceed ``total - target``; callers decide how to fail.
    """
    candidates = dedupe_utxos(utxos)
    selected, total = accumulate(candidates, target + buffer)
    fee = fee_for(len(selected), total)
    for utxo in candidates[len(selected) :]:
        if total >= target + fee:
            break
        selected.append(utxo)
        total += utxo.satoshis
        fee = fee_for(len(selected), total)
    return selected, total, fee


def select_coins(
    utxos: Sequence[Utxo],
    target: int,
    rate: float,
    *,
    buffer: int = DEFAULT_SELECTION_BUFFER,
    extra_outputs: int = 0,
    extra_bytes: int = 0,
) -> Selection:
    """Select UTXOs covering *target* plus fee.

    Args:
        utxos: Candidate UTXOs; duplicates are removed first.
        target: Sum of the payment outputs in satoshis.
        rate: Fee rate in sat/byte.
        buffer: Accumulate at least until ``total >= target + buffer``; more
            inputs are added while the fee is still uncovered.
        extra_outputs: Payment outputs beyond the first (multi-recipient sends).
        extra_bytes: Additional non-P2PKH bytes in the transaction.

    Raises:
        InsufficientFunds: If the selection cannot cover ``target + fee``.
    """

    def _outputs(total: int) -> int:
        return 1 + extra_outputs + (1 if total - target > CHANGE_THRESHOLD else 0)

    selected, total, fee = accumulate_covering(
        utxos,
        target,
        buffer,
        lambda count, subtotal: calculate_tx_fee(count, _outputs(subtotal), rate, extra_bytes),
    )
    num_outputs = _outputs(total)

    if total < target + fee:
        raise InsufficientFunds(required=target + fee, available=total)

    return Selection(
        utxos=selected,
        total=total,
        fee=fee,
        change=total - target - fee,
        num_outputs=num_outputs,
    )
