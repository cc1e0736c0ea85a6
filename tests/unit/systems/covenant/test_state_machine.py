"""
Unit tests for the covenant state machine.

Tests reproduce / feed / spawn arithmetic, death at the dust floor,
conservation of value, immutability of the fixed state fields, and the
verification equality check.
"""

from __future__ import annotations

import pytest

from organism.errors import (
    CovenantViolation,
    DeadOrganism,
    InsufficientBalance,
    InvalidAmount,
)
from organism.primitives.common import UINT32_MAX
from organism.systems.covenant import state_machine
from organism.systems.covenant.annotation import annotation_script, decode
from organism.systems.covenant.scripts import decode_state_script, encode_state_script, p2pkh_script
from organism.systems.covenant.types import (
    ZERO_ORIGIN,
    AnnotationRecord,
    CovenantOperation,
    OrganismOutput,
    OrganismParams,
    OrganismState,
    OutPoint,
    OutputRole,
    TxOutput,
)

CODE = bytes.fromhex("0063c0de")
SPAWN_TXID = "aa" * 32
CLAIMER = "11" * 20


# ─── Fixtures ────────────────────────────────────────────────────


def make_params(**kwargs) -> OrganismParams:
    defaults = {"species": 0, "reward": 1_000, "fee": 3_000, "dust_floor": 546}
    return OrganismParams(**{**defaults, **kwargs})


def make_output(
    balance: int,
    *,
    params: OrganismParams | None = None,
    generation: int = 0,
    origin: str = ZERO_ORIGIN,
    txid: str = SPAWN_TXID,
) -> OrganismOutput:
    state = OrganismState(
        **(params or make_params()).model_dump(),
        lineage_origin=origin,
        generation=generation,
    )
    return OrganismOutput(
        outpoint=OutPoint(txid=txid, vout=0),
        value=balance,
        code_hex=CODE.hex(),
        state=state,
    )


def replace(outputs, index: int, **changes) -> list[TxOutput]:
    tampered = list(outputs)
    tampered[index] = tampered[index].model_copy(update=changes)
    return tampered


# ─── Spawn ───────────────────────────────────────────────────────


class TestSpawn:
    def test_genesis_layout(self):
        result = state_machine.spawn(make_params(), CODE, 100_000)

        assert result.operation == CovenantOperation.SPAWN
        assert result.roles == (OutputRole.CONTINUATION, OutputRole.ANNOTATION)
        assert result.outputs[0].value == 100_000
        assert result.outputs[1].value == 0
        assert result.generation == 0

        code, state = decode_state_script(result.outputs[0].script)
        assert code == CODE
        assert state.generation == 0
        assert state.lineage_origin == ZERO_ORIGIN
        assert decode(result.outputs[1].script).generation == 0

    def test_zero_reward_is_rejected(self):
        with pytest.raises(InvalidAmount) as exc_info:
            state_machine.spawn(make_params(reward=0), CODE, 100_000)
        assert exc_info.value.field == "reward"

    def test_balance_below_dust_is_rejected(self):
        with pytest.raises(InvalidAmount) as exc_info:
            state_machine.spawn(make_params(), CODE, 500)
        assert exc_info.value.field == "balance"

    def test_payload_carried_verbatim(self):
        result = state_machine.spawn(make_params(species=1), CODE, 100_000, b"\x03job")
        assert result.annotation.payload == b"\x03job"
        assert decode(result.outputs[1].script).payload == b"\x03job"


# ─── Reproduce ───────────────────────────────────────────────────


class TestReproduce:
    def test_alive_continuation(self):
        result = state_machine.reproduce(make_output(100_000), CLAIMER)

        assert result.alive
        assert result.roles == (OutputRole.CONTINUATION, OutputRole.ANNOTATION, OutputRole.REWARD)
        assert result.outputs[0].value == 96_000
        assert result.generation == 1
        assert result.output_for(OutputRole.REWARD).value == 1_000
        assert result.output_for(OutputRole.REWARD).script == p2pkh_script(CLAIMER)
        assert result.fee == 3_000
        assert result.next_state.generation == 1

    def test_first_reproduce_adopts_spawn_txid_as_origin(self):
        result = state_machine.reproduce(make_output(100_000), CLAIMER)

        assert result.next_state.lineage_origin == SPAWN_TXID
        assert result.annotation.lineage_origin == SPAWN_TXID
        _, state = decode_state_script(result.outputs[0].script)
        assert state.lineage_origin == SPAWN_TXID

    def test_established_origin_is_kept(self):
        origin = "bb" * 32
        output = make_output(96_000, generation=1, origin=origin, txid="cc" * 32)
        result = state_machine.reproduce(output, CLAIMER)
        assert result.next_state.lineage_origin == origin

    def test_death_at_exact_zero(self):
        result = state_machine.reproduce(make_output(4_000), CLAIMER)

        assert not result.alive
        assert result.next_state is None
        assert result.continuation is None
        assert result.roles == (OutputRole.ANNOTATION, OutputRole.REWARD)
        assert result.generation == 1
        assert result.fee == 3_000

    def test_death_residual_joins_fee(self):
        result = state_machine.reproduce(make_output(4_300), CLAIMER)

        assert not result.alive
        assert result.fee == 3_300
        assert sum(o.value for o in result.outputs) + result.fee == 4_300

    def test_insufficient_balance(self):
        with pytest.raises(InsufficientBalance) as exc_info:
            state_machine.reproduce(make_output(3_500), CLAIMER)
        assert exc_info.value.required == 4_000
        assert exc_info.value.available == 3_500

    def test_dead_organism_cannot_reproduce(self):
        with pytest.raises(DeadOrganism):
            state_machine.reproduce(make_output(500), CLAIMER)

    def test_generation_limit(self):
        output = make_output(100_000, generation=UINT32_MAX, origin="bb" * 32)
        with pytest.raises(InvalidAmount) as exc_info:
            state_machine.reproduce(output, CLAIMER)
        assert exc_info.value.field == "generation"


# ─── Feed ────────────────────────────────────────────────────────


class TestFeed:
    def test_balance_grows_generation_unchanged(self):
        result = state_machine.feed(make_output(50_000, generation=3, origin="bb" * 32), 20_000)

        assert result.operation == CovenantOperation.FEED
        assert result.outputs[0].value == 70_000
        assert result.generation == 3
        assert result.next_state.generation == 3
        assert result.output_for(OutputRole.REWARD) is None
        assert result.fee == 0

    def test_feed_from_spawn_adopts_origin(self):
        result = state_machine.feed(make_output(50_000), 20_000)
        assert result.next_state.lineage_origin == SPAWN_TXID

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, amount: int):
        with pytest.raises(InvalidAmount):
            state_machine.feed(make_output(50_000), amount)

    def test_generation_limit(self):
        output = make_output(50_000, generation=UINT32_MAX + 1, origin="bb" * 32)
        with pytest.raises(InvalidAmount) as exc_info:
            state_machine.feed(output, 20_000)
        assert exc_info.value.field == "generation"

    def test_feed_at_last_annotatable_generation(self):
        output = make_output(50_000, generation=UINT32_MAX, origin="bb" * 32)
        assert state_machine.feed(output, 20_000).annotation.generation == UINT32_MAX

    def test_dead_organism_cannot_be_fed(self):
        with pytest.raises(DeadOrganism):
            state_machine.feed(make_output(100), 20_000)


# ─── Lineage-level properties ────────────────────────────────────


class TestLineageProperties:
    def test_conservation_and_immutability_until_death(self):
        params = make_params()
        output = make_output(100_000, params=params)
        fixed = None
        steps = 0

        while True:
            result = state_machine.reproduce(output, CLAIMER)
            steps += 1
            assert result.consumed_value == sum(o.value for o in result.outputs) + result.fee
            if not result.alive:
                break
            if fixed is None:
                fixed = result.next_state.fixed_fields()
            assert result.next_state.fixed_fields() == fixed
            output = OrganismOutput(
                outpoint=OutPoint(txid=f"{steps:064x}", vout=0),
                value=result.next_balance,
                code_hex=CODE.hex(),
                state=result.next_state,
            )

        assert steps == state_machine.remaining_generations(100_000, params) + 1

    def test_remaining_generations(self):
        assert state_machine.remaining_generations(100_000, make_params()) == 24
        assert state_machine.remaining_generations(4_000, make_params()) == 0


# ─── Verification ────────────────────────────────────────────────


class TestVerify:
    def test_conforming_reproduce(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        assert state_machine.verify(output, expected.outputs) == expected

    def test_conforming_death(self):
        output = make_output(4_300)
        expected = state_machine.reproduce(output, CLAIMER)
        assert state_machine.verify(output, expected.outputs) == expected

    def test_conforming_feed_with_change(self):
        output = make_output(50_000)
        expected = state_machine.feed(output, 20_000)
        observed = [*expected.outputs, TxOutput.from_script(7_000, p2pkh_script("22" * 20))]
        assert state_machine.verify(output, observed) == expected

    def test_continuation_value_mismatch(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        observed = replace(expected.outputs, 0, value=96_500)

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed, txid="dd" * 32)
        exc = exc_info.value
        assert exc.field == "continuation.value"
        assert exc.expected == 96_000
        assert exc.observed == 96_500
        assert exc.generation == 0
        assert exc.txid == "dd" * 32

    def test_reward_value_mismatch(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        observed = replace(expected.outputs, 2, value=2_000)

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "reward.value"

    def test_altered_state_in_continuation(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        greedy = expected.next_state.model_copy(update={"fee": 1})
        observed = replace(expected.outputs, 0, script_hex=encode_state_script(CODE, greedy).hex())
        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "continuation.script"

    def test_reward_not_pay_to_pubkey_hash(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        observed = replace(expected.outputs, 2, script_hex="51")

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "reward.script"

    def test_extra_output_on_reproduce(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        observed = [*expected.outputs, TxOutput.from_script(1, p2pkh_script(CLAIMER))]

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "outputs"

    def test_missing_annotation(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        observed = [expected.outputs[0], expected.outputs[2]]

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "annotation"

    def test_skipped_generation(self):
        output = make_output(100_000)
        expected = state_machine.reproduce(output, CLAIMER)
        skipped = AnnotationRecord(species=0, generation=2, lineage_origin=SPAWN_TXID)
        observed = replace(expected.outputs, 1, script_hex=annotation_script(skipped).hex())

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "annotation.generation"

    def test_feed_that_shrinks_balance(self):
        output = make_output(50_000)
        expected = state_machine.feed(output, 20_000)
        observed = replace(expected.outputs, 0, value=40_000)

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "continuation.value"

    def test_feed_with_two_change_outputs(self):
        output = make_output(50_000)
        expected = state_machine.feed(output, 20_000)
        change = TxOutput.from_script(3_000, p2pkh_script("22" * 20))
        observed = [*expected.outputs, change, change]

        with pytest.raises(CovenantViolation) as exc_info:
            state_machine.verify(output, observed)
        assert exc_info.value.field == "change"
