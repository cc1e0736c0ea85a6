"""
UTXO Organism — Transition Builder

Assembles concrete, unsigned transitions for spawn, reproduce and feed.
All covenant arithmetic is delegated to the state machine; the builder
only adds what the covenant leaves to the caller (funding inputs, change)
and then runs its own output back through state_machine.verify(), so a
transition built here always passes the check an observer would apply.

Output order is fixed:
  continuation (if alive), annotation, reward (reproduce), change (feed/spawn)

Side effects: none. Signing and submission belong to the service layer.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from organism.errors import CovenantViolation, FeeMismatch, InsufficientBalance, InvalidAmount
from organism.systems.covenant import state_machine
from organism.systems.covenant.scripts import encode_state_script, p2pkh_script
from organism.systems.covenant.types import (
    CovenantOperation,
    ExpectedResult,
    InputRole,
    OrganismOutput,
    OrganismParams,
    OutPoint,
    OutputRole,
    TransitionInput,
    TxOutput,
    UnsignedTransition,
    UnspentOutput,
)

if TYPE_CHECKING:
    from organism.config import CovenantConfig

logger = structlog.get_logger("organism.covenant.builder")


def funding_inputs(utxos: Sequence[UnspentOutput], pubkey_hash: str | bytes) -> tuple[TransitionInput, ...]:
    """Wrap a funder's unspent P2PKH outputs as transition inputs."""
    script_hex = p2pkh_script(pubkey_hash).hex()
    return tuple(
        TransitionInput(
            outpoint=OutPoint(txid=u.txid, vout=u.vout),
            value=u.value,
            script_hex=script_hex,
            role=InputRole.FUNDING,
        )
        for u in utxos
    )


def organism_input(output: OrganismOutput) -> TransitionInput:
    return TransitionInput(
        outpoint=output.outpoint,
        value=output.value,
        script_hex=encode_state_script(output.code, output.state).hex(),
        role=InputRole.ORGANISM,
    )


class TransitionBuilder:
    """
    Builds unsigned transitions against one covenant code.

    The code is explicit configuration: the builder holds no wallet, no
    network client and no global state.
    """

    def __init__(self, code: bytes, config: CovenantConfig) -> None:
        if not code:
            raise ValueError("covenant code is empty")
        self._code = code
        self._config = config
        self._logger = logger.bind(component="transition_builder")

    @property
    def code(self) -> bytes:
        return self._code

    # ── Spawn ─────────────────────────────────────────────────

    def build_spawn(
        self,
        params: OrganismParams,
        budget: int,
        funding: Sequence[TransitionInput],
        change_to: str | bytes,
        *,
        payload: bytes = b"",
        processing_fee: int | None = None,
    ) -> UnsignedTransition:
        """Genesis transition funded from the spawner's own outputs."""
        fee = self._config.spawn_fee if processing_fee is None else processing_fee
        if fee < 0:
            raise InvalidAmount("processing fee must be non-negative", field="processing_fee", value=fee)

        expected = state_machine.spawn(params, self._code, budget, payload)
        available = sum(i.value for i in funding)
        required = budget + fee
        if not funding or available < required:
            raise InsufficientBalance(
                "funding outputs cannot cover budget and processing fee",
                required=required,
                available=available,
            )

        outputs, roles, implied_fee = self._with_change(expected, available - required, fee, change_to)
        transition = UnsignedTransition(
            operation=CovenantOperation.SPAWN,
            inputs=tuple(funding),
            outputs=outputs,
            roles=roles,
            expected=expected,
            processing_fee=implied_fee,
        )
        self._check_fee(transition, implied_fee, generation=0)
        if transition.outputs[: len(expected.outputs)] != expected.outputs:
            raise CovenantViolation(
                "spawn outputs diverged from the covenant result",
                generation=0,
                field="outputs",
                expected=[o.script_hex for o in expected.outputs],
                observed=[o.script_hex for o in transition.outputs],
            )

        self._logger.info(
            "spawn_built",
            species=params.species,
            budget=budget,
            remaining_generations=state_machine.remaining_generations(budget, params),
            inputs=len(transition.inputs),
            change=len(outputs) > len(expected.outputs),
        )
        return transition

    # ── Reproduce ─────────────────────────────────────────────

    def build_reproduce(
        self,
        output: OrganismOutput,
        claimer: str | bytes,
        *,
        payload: bytes = b"",
    ) -> UnsignedTransition:
        """Single covenant input; outputs exactly as the covenant dictates."""
        expected = state_machine.reproduce(output, claimer, payload)
        transition = UnsignedTransition(
            operation=CovenantOperation.REPRODUCE,
            inputs=(organism_input(output),),
            outputs=expected.outputs,
            roles=expected.roles,
            expected=expected,
            processing_fee=expected.fee,
        )
        self._check_fee(transition, expected.fee, generation=expected.generation)
        state_machine.verify(output, transition.outputs)

        self._logger.info(
            "reproduce_built",
            organism=str(output.outpoint),
            generation=expected.generation,
            balance=output.value,
            next_balance=expected.next_balance,
            alive=expected.alive,
        )
        return transition

    # ── Feed ──────────────────────────────────────────────────

    def build_feed(
        self,
        output: OrganismOutput,
        amount: int,
        funding: Sequence[TransitionInput],
        change_to: str | bytes,
        *,
        payload: bytes = b"",
        processing_fee: int | None = None,
    ) -> UnsignedTransition:
        """
        Covenant input plus the feeder's inputs. The feeder's funds cover the
        amount and this transition's processing cost; the organism's own
        balance only grows.
        """
        fee = self._config.feed_fee if processing_fee is None else processing_fee
        if fee < 0:
            raise InvalidAmount("processing fee must be non-negative", field="processing_fee", value=fee)

        expected = state_machine.feed(output, amount, payload)
        available = sum(i.value for i in funding)
        required = amount + fee
        if not funding or available < required:
            raise InsufficientBalance(
                "funding outputs cannot cover feed amount and processing fee",
                required=required,
                available=available,
                generation=output.state.generation,
            )

        outputs, roles, implied_fee = self._with_change(expected, available - required, fee, change_to)
        transition = UnsignedTransition(
            operation=CovenantOperation.FEED,
            inputs=(organism_input(output), *funding),
            outputs=outputs,
            roles=roles,
            expected=expected,
            processing_fee=implied_fee,
        )
        self._check_fee(transition, implied_fee, generation=expected.generation)
        state_machine.verify(output, transition.outputs)

        self._logger.info(
            "feed_built",
            organism=str(output.outpoint),
            generation=expected.generation,
            balance=output.value,
            new_balance=expected.next_balance,
            amount=amount,
        )
        return transition

    # ── Internals ─────────────────────────────────────────────

    def _with_change(
        self,
        expected: ExpectedResult,
        change: int,
        fee: int,
        change_to: str | bytes,
    ) -> tuple[tuple[TxOutput, ...], tuple[OutputRole, ...], int]:
        """Append a change output when it clears the dust floor; else it joins the fee."""
        outputs = expected.outputs
        roles = expected.roles
        if change > self._config.dust_floor:
            outputs = (*outputs, TxOutput.from_script(change, p2pkh_script(change_to)))
            roles = (*roles, OutputRole.CHANGE)
            return outputs, roles, fee
        return outputs, roles, fee + change

    @staticmethod
    def _check_fee(transition: UnsignedTransition, fee: int, *, generation: int) -> None:
        if transition.implied_fee != fee:
            raise FeeMismatch(expected_fee=fee, actual_fee=transition.implied_fee, generation=generation)
