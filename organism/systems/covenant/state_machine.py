"""
UTXO Organism — Covenant State Machine

The covenant, re-expressed as pure functions. Each operation takes the
consumed organism output (state + carried value) and returns the complete
ExpectedResult: every resulting output, in order, with exact value and
script. verify() recomputes that result for an observed transition and
demands byte-for-byte equality. That equality check is the trust boundary.

Per lineage:
  Alive(g, b) --reproduce--> Alive(g+1, b - reward - fee)   if >= dust_floor
  Alive(g, b) --reproduce--> Dead(g+1)                       otherwise
  Alive(g, b) --feed(x)----> Alive(g, b + x)
  Dead        -- nothing is legal --

Output layout (positional):
  spawn      [continuation, annotation]
  reproduce  [continuation?, annotation, reward]
  feed       [continuation, annotation]   (+ one change output, builder side)

On the death path the sub-dust residual cannot form a continuation and is
paid out as processing fee, so conservation reads
  consumed == continuation + reward + fee
with continuation treated as 0 and fee including the residual.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from organism.errors import (
    CovenantViolation,
    DeadOrganism,
    FeeMismatch,
    InsufficientBalance,
    InvalidAmount,
    TransitionRejected,
)
from organism.primitives.common import UINT32_MAX, UINT64_MAX
from organism.systems.covenant.annotation import annotation_script, find_annotation
from organism.systems.covenant.scripts import (
    encode_state_script,
    p2pkh_script,
    parse_p2pkh,
)
from organism.systems.covenant.types import (
    AnnotationRecord,
    CovenantOperation,
    ExpectedResult,
    OrganismOutput,
    OrganismParams,
    OrganismState,
    OutputRole,
    TxOutput,
)

logger = structlog.get_logger("organism.covenant.state_machine")


# ─── Helpers ─────────────────────────────────────────────────────


def _continuation(code: bytes, state: OrganismState, value: int) -> TxOutput:
    return TxOutput.from_script(value, encode_state_script(code, state))


def _annotation(state: OrganismState, generation: int, payload: bytes) -> tuple[AnnotationRecord, TxOutput]:
    record = AnnotationRecord(
        species=state.species,
        generation=generation,
        lineage_origin=state.lineage_origin,
        payload_hex=payload.hex(),
    )
    return record, TxOutput.from_script(0, annotation_script(record))


def _require_alive(output: OrganismOutput) -> None:
    if output.value < output.state.dust_floor:
        raise DeadOrganism(
            generation=output.state.generation,
            balance=output.value,
            dust_floor=output.state.dust_floor,
        )


def _check_conservation(consumed: int, outputs: Sequence[TxOutput], fee: int, generation: int) -> None:
    implied = consumed - sum(o.value for o in outputs)
    if implied != fee:
        raise FeeMismatch(expected_fee=fee, actual_fee=implied, generation=generation)


def remaining_generations(balance: int, params: OrganismParams) -> int:
    """How many more reproductions the balance can pay for before death."""
    cost = params.reward + params.fee
    if cost <= 0:
        raise InvalidAmount("reward + fee must be positive", field="cost", value=cost)
    return max(0, (balance - params.dust_floor) // cost)


# ─── Operations ──────────────────────────────────────────────────


def spawn(params: OrganismParams, code: bytes, balance: int, payload: bytes = b"") -> ExpectedResult:
    """
    Genesis: one continuation holding the initial balance and a generation-0
    annotation. The lineage origin is the zero sentinel because the spawn
    transition's own identifier does not exist yet.
    """
    if params.reward <= 0:
        raise InvalidAmount("reward per generation must be positive", field="reward", value=params.reward)
    if balance < params.dust_floor:
        raise InvalidAmount("initial balance is below the dust floor", field="balance", value=balance)
    if balance > UINT64_MAX:
        raise InvalidAmount("initial balance exceeds uint64", field="balance", value=balance)

    state = OrganismState.genesis(params)
    record, data_out = _annotation(state, 0, payload)
    outputs = (_continuation(code, state, balance), data_out)

    return ExpectedResult(
        operation=CovenantOperation.SPAWN,
        outputs=outputs,
        roles=(OutputRole.CONTINUATION, OutputRole.ANNOTATION),
        annotation=record,
        next_state=state,
        alive=True,
        consumed_value=balance,
        generation=0,
    )


def reproduce(output: OrganismOutput, claimer: str | bytes, payload: bytes = b"") -> ExpectedResult:
    """
    Continue the lineage: pay reward to claimer, deduct fee, advance the
    generation. Produces no continuation when the next balance falls below
    the dust floor. That is death, not a failure.
    """
    _require_alive(output)
    state = output.state.adopt_origin(output.txid)
    balance = output.value
    cost = state.reward + state.fee
    next_balance = balance - cost

    if next_balance < 0:
        raise InsufficientBalance(
            "balance cannot pay reward and fee",
            required=cost,
            available=balance,
            generation=state.generation,
        )

    next_generation = state.generation + 1
    if next_generation > UINT32_MAX:
        raise InvalidAmount(
            "generation no longer fits the annotation", field="generation", value=next_generation
        )

    alive = next_balance >= state.dust_floor
    next_state = state.with_generation(next_generation)
    record, data_out = _annotation(next_state, next_generation, payload)
    reward_out = TxOutput.from_script(state.reward, p2pkh_script(claimer))

    if alive:
        outputs: tuple[TxOutput, ...] = (_continuation(output.code, next_state, next_balance), data_out, reward_out)
        roles: tuple[OutputRole, ...] = (OutputRole.CONTINUATION, OutputRole.ANNOTATION, OutputRole.REWARD)
        fee = state.fee
    else:
        outputs = (data_out, reward_out)
        roles = (OutputRole.ANNOTATION, OutputRole.REWARD)
        fee = state.fee + next_balance

    _check_conservation(balance, outputs, fee, next_generation)

    return ExpectedResult(
        operation=CovenantOperation.REPRODUCE,
        outputs=outputs,
        roles=roles,
        annotation=record,
        next_state=next_state if alive else None,
        alive=alive,
        consumed_value=balance,
        reward=state.reward,
        fee=fee,
        generation=next_generation,
    )


def feed(output: OrganismOutput, amount: int, payload: bytes = b"") -> ExpectedResult:
    """
    Grow the balance without advancing the generation. The feeder pays the
    transition's own processing cost from separate funds.
    """
    _require_alive(output)
    if amount <= 0:
        raise InvalidAmount("feed amount must be positive", field="amount", value=amount)

    state = output.state.adopt_origin(output.txid)
    if state.generation > UINT32_MAX:
        raise InvalidAmount(
            "generation no longer fits the annotation", field="generation", value=state.generation
        )
    new_balance = output.value + amount
    if new_balance > UINT64_MAX:
        raise InvalidAmount("fed balance exceeds uint64", field="amount", value=amount)

    record, data_out = _annotation(state, state.generation, payload)
    outputs = (_continuation(output.code, state, new_balance), data_out)

    return ExpectedResult(
        operation=CovenantOperation.FEED,
        outputs=outputs,
        roles=(OutputRole.CONTINUATION, OutputRole.ANNOTATION),
        annotation=record,
        next_state=state,
        alive=True,
        consumed_value=output.value,
        generation=state.generation,
    )


# ─── Verification ────────────────────────────────────────────────


def _compare(
    expected: ExpectedResult,
    observed: Sequence[TxOutput],
    generation: int,
    txid: str | None,
) -> None:
    for index, (want, role) in enumerate(zip(expected.outputs, expected.roles)):
        got = observed[index]
        if got.value != want.value:
            raise CovenantViolation(
                f"output {index} carries {got.value}, covenant requires {want.value}",
                generation=generation,
                field=f"{role.value}.value",
                expected=want.value,
                observed=got.value,
                txid=txid,
            )
        if got.script_hex != want.script_hex:
            raise CovenantViolation(
                f"output {index} script differs from the covenant's",
                generation=generation,
                field=f"{role.value}.script",
                expected=want.script_hex,
                observed=got.script_hex,
                txid=txid,
            )


def verify(output: OrganismOutput, observed: Sequence[TxOutput], txid: str | None = None) -> ExpectedResult:
    """
    Check an observed transition that consumed `output`.

    Classifies it by the annotated generation (g+1 reproduce, g feed),
    recomputes the expected result from the consumed state and value, and
    requires exact equality. Anything else raises CovenantViolation.
    """
    state = output.state
    gen = state.generation

    def violation(message: str, field: str, expected: object = None, observed_value: object = None) -> CovenantViolation:
        return CovenantViolation(
            message, generation=gen, field=field, expected=expected, observed=observed_value, txid=txid
        )

    found = find_annotation(observed)
    if found is None:
        raise violation("transition carries no ORG1 annotation", "annotation")
    _, record = found

    if record.generation == gen + 1:
        next_balance = output.value - state.reward - state.fee
        alive = next_balance >= state.dust_floor
        reward_pos = 2 if alive else 1
        if next_balance < 0 or len(observed) != reward_pos + 1:
            raise violation(
                f"reproduce expects {reward_pos + 1} outputs",
                "outputs",
                expected=reward_pos + 1,
                observed_value=len(observed),
            )
        claimer = parse_p2pkh(observed[reward_pos].script)
        if claimer is None:
            raise violation("reward output is not pay-to-pubkey-hash", "reward.script")
        try:
            expected = reproduce(output, claimer, record.payload)
        except TransitionRejected as exc:
            raise violation(str(exc), "reproduce") from exc
        _compare(expected, observed, gen, txid)

    elif record.generation == gen:
        if not observed:
            raise violation("feed has no outputs", "outputs")
        amount = observed[0].value - output.value
        if amount <= 0:
            raise violation(
                "feed does not increase the balance",
                "continuation.value",
                expected=f"> {output.value}",
                observed_value=observed[0].value,
            )
        try:
            expected = feed(output, amount, record.payload)
        except TransitionRejected as exc:
            raise violation(str(exc), "feed") from exc
        count = len(expected.outputs)
        if len(observed) < count:
            raise violation("feed is missing outputs", "outputs", expected=count, observed_value=len(observed))
        _compare(expected, observed[:count], gen, txid)
        extra = observed[count:]
        if len(extra) > 1 or (extra and parse_p2pkh(extra[0].script) is None):
            raise violation("feed may carry only one pay-to-pubkey-hash change output", "change")

    else:
        raise violation(
            "annotated generation is neither a reproduce nor a feed",
            "annotation.generation",
            expected=(gen, gen + 1),
            observed_value=record.generation,
        )

    logger.debug(
        "transition_verified",
        consumed=str(output.outpoint),
        operation=expected.operation.value,
        generation=expected.generation,
        alive=expected.alive,
    )
    return expected
