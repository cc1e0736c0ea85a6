"""
UTXO Organism — Covenant Types

Data types for the covenant state machine, the transition builder and the
ledger read view. Every satoshi is an int; there are no fractional units.

Key design choices:
  - Frozen Pydantic models so expected and observed results compare
    structurally (byte-for-byte on scripts, exact on values)
  - Scripts and payloads carried as lowercase hex so persisted traces
    round-trip through JSON unchanged
  - Balance is never part of OrganismState; it is the value carried by
    the output that holds the state
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import Field, field_validator

from organism.primitives.common import (
    TXID_HEX_LEN,
    UINT8_MAX,
    UINT32_MAX,
    UINT64_MAX,
    FrozenModel,
    is_txid,
    normalise_hex,
)

PROTOCOL_TAG = b"ORG1"
ZERO_ORIGIN = "0" * TXID_HEX_LEN


# ─── Enums ────────────────────────────────────────────────────────


class CovenantOperation(enum.StrEnum):
    SPAWN = "spawn"
    REPRODUCE = "reproduce"
    FEED = "feed"


class OutputRole(enum.StrEnum):
    """Positional meaning of a resulting output."""

    CONTINUATION = "continuation"
    ANNOTATION = "annotation"
    REWARD = "reward"
    CHANGE = "change"


class InputRole(enum.StrEnum):
    ORGANISM = "organism"
    FUNDING = "funding"


# ─── Organism State ──────────────────────────────────────────────


class OrganismParams(FrozenModel):
    """Birth parameters. Fixed at spawn, immutable for the whole lineage."""

    species: int = 0
    reward: int = 1_000
    fee: int = 3_000
    dust_floor: int = 546

    @field_validator("species")
    @classmethod
    def _species_range(cls, v: int) -> int:
        if not 0 <= v <= UINT8_MAX:
            raise ValueError(f"species must fit in one byte, got {v}")
        return v

    @field_validator("reward", "fee", "dust_floor")
    @classmethod
    def _amount_range(cls, v: int) -> int:
        if not 0 <= v <= UINT64_MAX:
            raise ValueError(f"amount must be a uint64, got {v}")
        return v


class OrganismState(OrganismParams):
    """
    The covenant state carried by one unspent organism output.

    lineage_origin is the all-zero sentinel only at generation 0, before the
    spawn transition's own identifier is knowable.
    """

    lineage_origin: str = ZERO_ORIGIN
    generation: int = 0

    @field_validator("lineage_origin")
    @classmethod
    def _origin_hex(cls, v: str) -> str:
        v = v.lower()
        if not is_txid(v):
            raise ValueError(f"lineage_origin must be 32 bytes of hex, got {v!r}")
        return v

    @field_validator("generation")
    @classmethod
    def _generation_range(cls, v: int) -> int:
        if not 0 <= v <= UINT64_MAX:
            raise ValueError(f"generation must be a uint64, got {v}")
        return v

    @classmethod
    def genesis(cls, params: OrganismParams) -> OrganismState:
        return cls(**params.model_dump())

    @property
    def params(self) -> OrganismParams:
        return OrganismParams(
            species=self.species,
            reward=self.reward,
            fee=self.fee,
            dust_floor=self.dust_floor,
        )

    @property
    def has_origin(self) -> bool:
        return self.lineage_origin != ZERO_ORIGIN

    @property
    def cost_per_generation(self) -> int:
        return self.reward + self.fee

    def adopt_origin(self, txid: str) -> OrganismState:
        """Replace the zero sentinel with the spawn txid. No-op once set."""
        if self.has_origin:
            return self
        return self.model_copy(update={"lineage_origin": txid.lower()})

    def with_generation(self, generation: int) -> OrganismState:
        return self.model_copy(update={"generation": generation})

    def fixed_fields(self) -> tuple[int, int, int, int, str]:
        """The fields no transition may change."""
        return (self.species, self.reward, self.fee, self.dust_floor, self.lineage_origin)


# ─── Outputs / Inputs ────────────────────────────────────────────


class TxOutput(FrozenModel):
    """A resulting record: value plus locking script."""

    value: int
    script_hex: str

    @field_validator("script_hex")
    @classmethod
    def _script_hex(cls, v: str) -> str:
        return normalise_hex(v)

    @classmethod
    def from_script(cls, value: int, script: bytes) -> TxOutput:
        return cls(value=value, script_hex=script.hex())

    @property
    def script(self) -> bytes:
        return bytes.fromhex(self.script_hex)


class OutPoint(FrozenModel):
    txid: str
    vout: int = 0

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


class TransitionInput(FrozenModel):
    """A consumed output, with what the signer needs to authorize it."""

    outpoint: OutPoint
    value: int
    script_hex: str
    role: InputRole = InputRole.FUNDING


class OrganismOutput(FrozenModel):
    """An unspent covenant output: where it is, what it holds, what it is."""

    outpoint: OutPoint
    value: int
    code_hex: str
    state: OrganismState

    @property
    def txid(self) -> str:
        return self.outpoint.txid

    @property
    def balance(self) -> int:
        return self.value

    @property
    def code(self) -> bytes:
        return bytes.fromhex(self.code_hex)

    @property
    def is_alive(self) -> bool:
        return self.value >= self.state.dust_floor


# ─── Annotation ──────────────────────────────────────────────────


class AnnotationRecord(FrozenModel):
    """
    Decoded ORG1 annotation.

    payload_hex is opaque: its length and meaning belong to the species.
    """

    protocol_tag: str = PROTOCOL_TAG.decode("ascii")
    species: int
    generation: int
    lineage_origin: str = ZERO_ORIGIN
    payload_hex: str = ""

    @field_validator("protocol_tag")
    @classmethod
    def _known_tag(cls, v: str) -> str:
        if v != PROTOCOL_TAG.decode("ascii"):
            raise ValueError(f"protocol_tag must be {PROTOCOL_TAG.decode('ascii')!r}, got {v!r}")
        return v

    @field_validator("species")
    @classmethod
    def _species_range(cls, v: int) -> int:
        if not 0 <= v <= UINT8_MAX:
            raise ValueError(f"species must fit in one byte, got {v}")
        return v

    @field_validator("generation")
    @classmethod
    def _generation_range(cls, v: int) -> int:
        if not 0 <= v <= UINT32_MAX:
            raise ValueError(f"annotated generation must fit in four bytes, got {v}")
        return v

    @field_validator("lineage_origin")
    @classmethod
    def _origin_hex(cls, v: str) -> str:
        v = v.lower()
        if not is_txid(v):
            raise ValueError(f"lineage_origin must be 32 bytes of hex, got {v!r}")
        return v

    @field_validator("payload_hex")
    @classmethod
    def _payload_hex(cls, v: str) -> str:
        return normalise_hex(v)

    @property
    def payload(self) -> bytes:
        return bytes.fromhex(self.payload_hex)


# ─── Covenant Results ────────────────────────────────────────────


class ExpectedResult(FrozenModel):
    """
    The covenant's fully specified outcome for one operation.

    outputs and roles are positional and parallel. Position 0 is the
    continuation whenever one exists.
    """

    operation: CovenantOperation
    outputs: tuple[TxOutput, ...]
    roles: tuple[OutputRole, ...]
    annotation: AnnotationRecord
    next_state: OrganismState | None = None
    alive: bool = True
    consumed_value: int = 0
    reward: int = 0
    fee: int = 0
    generation: int = 0

    @property
    def continuation(self) -> TxOutput | None:
        if self.roles and self.roles[0] == OutputRole.CONTINUATION:
            return self.outputs[0]
        return None

    @property
    def next_balance(self) -> int:
        cont = self.continuation
        return cont.value if cont is not None else 0

    def output_for(self, role: OutputRole) -> TxOutput | None:
        for out, r in zip(self.outputs, self.roles):
            if r == role:
                return out
        return None


class UnsignedTransition(FrozenModel):
    """
    A fully specified, unsigned transition. Submission is delegated to the
    ledger write collaborator; the builder never submits.
    """

    operation: CovenantOperation
    inputs: tuple[TransitionInput, ...]
    outputs: tuple[TxOutput, ...]
    roles: tuple[OutputRole, ...]
    expected: ExpectedResult
    processing_fee: int = 0

    @property
    def total_in(self) -> int:
        return sum(i.value for i in self.inputs)

    @property
    def total_out(self) -> int:
        return sum(o.value for o in self.outputs)

    @property
    def implied_fee(self) -> int:
        return self.total_in - self.total_out


# ─── Ledger Read View ────────────────────────────────────────────


class LedgerOutput(FrozenModel):
    vout: int
    value: int
    script_hex: str
    address: str | None = None

    def as_tx_output(self) -> TxOutput:
        return TxOutput(value=self.value, script_hex=self.script_hex)


class TransitionRecord(FrozenModel):
    """A transition as the ledger reports it."""

    txid: str
    inputs: tuple[OutPoint, ...] = ()
    outputs: tuple[LedgerOutput, ...] = ()
    block_height: int | None = None
    block_time: datetime | None = None

    @property
    def confirmed(self) -> bool:
        return self.block_height is not None

    def tx_outputs(self) -> list[TxOutput]:
        return [o.as_tx_output() for o in sorted(self.outputs, key=lambda o: o.vout)]

    def output(self, vout: int) -> LedgerOutput | None:
        for o in self.outputs:
            if o.vout == vout:
                return o
        return None


class OutputSpend(FrozenModel):
    spending_txid: str
    input_index: int | None = None


class UnspentOutput(FrozenModel):
    txid: str
    vout: int
    value: int
    height: int | None = None


class SpawnRecord(FrozenModel):
    """Registry record written after a successful spawn."""

    spawn_txid: str
    params: OrganismParams
    budget: int
    current_txid: str = ""
    current_vout: int = 0
    spawned_at: datetime | None = None
    notes: dict[str, str] = Field(default_factory=dict)
