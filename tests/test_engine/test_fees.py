"""Tests for the fee model."""

from __future__ import annotations

import random

import pytest
from factories import make_utxo

from sats_engine.engine.fees import (
    CHANGE_THRESHOLD,
    MAX_FEE_RATE,
    MIN_FEE_RATE,
    calculate_exact_fee,
    calculate_lock_fee,
    calculate_max_send,
    calculate_tx_fee,
    clamp_fee_rate,
    fee_from_bytes,
    lock_output_size,
)


class TestFeeFromBytes:
    def test_rounds_up(self) -> None:
        assert fee_from_bytes(226, 0.1) == 23

    def test_floor_of_one_sat(self) -> None:
        assert fee_from_bytes(1, 0.01) == 1
        assert fee_from_bytes(0, 0.5) == 1

    def test_exact_product(self) -> None:
        assert fee_from_bytes(1000, 0.05) == 50


class TestClamp:
    @pytest.mark.parametrize(
        ("rate", "expected"),
        [(0.0, MIN_FEE_RATE), (0.001, MIN_FEE_RATE), (0.05, 0.05), (5.0, MAX_FEE_RATE)],
    )
    def test_clamp(self, rate: float, expected: float) -> None:
        assert clamp_fee_rate(rate) == expected


class TestTxFee:
    def test_one_in_two_out(self) -> None:
        # 10 + 148 + 2 * 34 = 226 bytes
        assert calculate_tx_fee(1, 2, 0.1) == 23

    def test_extra_bytes(self) -> None:
        assert calculate_tx_fee(1, 1, 1.0, extra_bytes=50) == 10 + 148 + 34 + 50

    @pytest.mark.parametrize("rate", [MIN_FEE_RATE, 0.05, 0.1, 0.5, MAX_FEE_RATE])
    def test_monotonic_in_inputs_and_outputs(self, rate: float) -> None:
        for num_inputs in range(1, 25):
            for num_outputs in range(1, 25):
                fee = calculate_tx_fee(num_inputs, num_outputs, rate)
                assert fee >= 1
                assert calculate_tx_fee(num_inputs + 1, num_outputs, rate) >= fee
                assert calculate_tx_fee(num_inputs, num_outputs + 1, rate) >= fee

    def test_monotonic_in_rate(self) -> None:
        rates = [MIN_FEE_RATE, 0.02, 0.05, 0.1, 0.25, 0.5, MAX_FEE_RATE]
        fees = [calculate_tx_fee(3, 2, rate) for rate in rates]
        assert fees == sorted(fees)


class TestLockFee:
    def test_uses_real_script_size(self) -> None:
        small = calculate_lock_fee(1, 100, 1.0)
        large = calculate_lock_fee(1, 900, 1.0)
        assert large - small == lock_output_size(900) - lock_output_size(100)

    def test_layout(self) -> None:
        # overhead + input + (8 + varint + script) + change output
        assert calculate_lock_fee(1, 300, 1.0) == 10 + 148 + (8 + 3 + 300) + 34

    def test_op_return_bytes(self) -> None:
        assert calculate_lock_fee(1, 300, 1.0, 40) == calculate_lock_fee(1, 300, 1.0) + 40


class TestMaxSend:
    def test_empty(self) -> None:
        result = calculate_max_send([], 0.1)
        assert (result.max_sats, result.fee, result.num_inputs) == (0, 0, 0)

    def test_spends_everything(self) -> None:
        utxos = [make_utxo("aa", satoshis=5_000), make_utxo("bb", satoshis=3_000)]
        result = calculate_max_send(utxos, 0.1)
        fee = calculate_tx_fee(2, 1, 0.1)
        assert result.fee == fee
        assert result.max_sats == 8_000 - fee
        assert result.num_inputs == 2

    def test_dust_never_negative(self) -> None:
        result = calculate_max_send([make_utxo(satoshis=1)], 1.0)
        assert result.max_sats == 0


class TestExactFee:
    def test_non_positive_amount(self) -> None:
        result = calculate_exact_fee(0, [make_utxo()], 0.1)
        assert not result.can_send
        assert result.input_count == 0

    def test_single_input_with_change(self) -> None:
        result = calculate_exact_fee(5_000, [make_utxo(satoshis=10_000)], 0.1)
        assert result.can_send
        assert result.fee == 23
        assert result.output_count == 2
        assert result.input_count == 1

    def test_no_change_output_below_threshold(self) -> None:
        amount = 10_000 - CHANGE_THRESHOLD
        result = calculate_exact_fee(amount, [make_utxo(satoshis=10_000)], 0.1)
        assert result.output_count == 1

    def test_adds_inputs_until_covered(self) -> None:
        utxos = [make_utxo("aa", satoshis=3_000), make_utxo("bb", satoshis=3_000), make_utxo("cc", satoshis=3_000)]
        result = calculate_exact_fee(5_000, utxos, 0.1)
        assert result.can_send
        assert result.input_count == 2
        assert result.total_input == 6_000

    def test_cannot_send(self) -> None:
        result = calculate_exact_fee(50_000, [make_utxo(satoshis=10_000)], 0.1)
        assert not result.can_send
        assert result.total_input == 10_000

    @pytest.mark.parametrize("seed", range(10))
    def test_can_send_implies_covered(self, seed: int) -> None:
        rng = random.Random(seed)
        for _ in range(25):
            utxos = [make_utxo(f"{i:02x}", satoshis=rng.randint(1, 50_000)) for i in range(rng.randint(1, 10))]
            amount = rng.randint(1, sum(u.satoshis for u in utxos) + 1_000)
            rate = rng.choice([MIN_FEE_RATE, 0.05, 0.1, 0.5, MAX_FEE_RATE])
            result = calculate_exact_fee(amount, utxos, rate)
            if result.can_send:
                assert result.total_input >= amount + result.fee
                assert result.input_count <= len(utxos)
                assert result.total_input == sum(u.satoshis for u in utxos[: result.input_count])
            else:
                assert result.input_count == len(utxos)
