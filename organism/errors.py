"""
UTXO Organism -- Error Hierarchy

All exceptions raised by the covenant, builder, lineage and ledger layers.

Namespace: organism.errors

Every error carries the context a caller needs to decide whether to retry,
abort, or investigate (which generation, which field, which transaction).
Nothing raised here is retried by the core.

Severity guide:
  MalformedAnnotation   LOW      -- aborts decoding of one transition only
  TransitionRejected    LOW      -- builder precondition; nothing was submitted
  CovenantViolation     HIGH     -- observed spend is not a continuation
  UnresolvedReference   MEDIUM   -- ledger could not produce a transition
  SubmissionRejected    MEDIUM   -- ledger refused a fully built transition
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from organism.systems.lineage.types import LineageTrace


class OrganismError(RuntimeError):
    """Base for all organism protocol errors."""


# ─── Annotation ───────────────────────────────────────────────────


class MalformedAnnotation(OrganismError):
    """The protocol tag was found but the pushes after it do not parse."""

    def __init__(self, message: str, *, field: str, offset: int) -> None:
        super().__init__(f"{message} (field={field}, offset={offset})")
        self.field = field
        self.offset = offset


# ─── Covenant ─────────────────────────────────────────────────────


class CovenantViolation(OrganismError):
    """
    An observed transition does not reproduce the covenant's expected result.

    The transition is not a continuation of the lineage. Walkers stop at it.
    """

    def __init__(
        self,
        message: str,
        *,
        generation: int,
        field: str,
        expected: Any = None,
        observed: Any = None,
        txid: str | None = None,
    ) -> None:
        super().__init__(f"generation {generation}: {message} (field={field})")
        self.generation = generation
        self.field = field
        self.expected = expected
        self.observed = observed
        self.txid = txid
        self.trace: LineageTrace | None = None


class TransitionRejected(OrganismError):
    """Builder-side precondition failure. Reported before any submission."""


class InsufficientBalance(TransitionRejected):
    """Value available does not cover what the transition must pay out."""

    def __init__(self, message: str, *, required: int, available: int, generation: int | None = None) -> None:
        super().__init__(f"{message} (required={required}, available={available})")
        self.required = required
        self.available = available
        self.generation = generation


class InvalidAmount(TransitionRejected):
    """An amount or parameter is outside its legal range."""

    def __init__(self, message: str, *, field: str, value: int) -> None:
        super().__init__(f"{message} (field={field}, value={value})")
        self.field = field
        self.value = value


class FeeMismatch(TransitionRejected):
    """Consumed value minus resulting values does not equal the covenant fee."""

    def __init__(self, *, expected_fee: int, actual_fee: int, generation: int) -> None:
        super().__init__(
            f"generation {generation}: implied fee {actual_fee} != covenant fee {expected_fee}"
        )
        self.expected_fee = expected_fee
        self.actual_fee = actual_fee
        self.generation = generation


class DeadOrganism(TransitionRejected):
    """The organism is below its dust floor. No operation is legal."""

    def __init__(self, *, generation: int, balance: int, dust_floor: int) -> None:
        super().__init__(
            f"organism is dead at generation {generation} "
            f"(balance={balance}, dust_floor={dust_floor})"
        )
        self.generation = generation
        self.balance = balance
        self.dust_floor = dust_floor


class OutputAlreadySpent(TransitionRejected):
    """The organism output has already been consumed by another transition."""

    def __init__(self, *, txid: str, vout: int, spent_by: str) -> None:
        super().__init__(f"{txid}:{vout} already spent by {spent_by}")
        self.txid = txid
        self.vout = vout
        self.spent_by = spent_by


# ─── Lineage ──────────────────────────────────────────────────────


class TerminalLineage(OrganismError):
    """An entry was appended after the lineage died."""


class UnresolvedReference(OrganismError):
    """
    The ledger could not produce a referenced transition.

    Distinct from "not yet spent". The partial trace is attached and has
    already been persisted.
    """

    def __init__(self, *, txid: str, last_generation: int | None, trace: LineageTrace | None = None) -> None:
        resolved = "none" if last_generation is None else str(last_generation)
        super().__init__(f"could not fetch {txid} (last resolved generation: {resolved})")
        self.txid = txid
        self.last_generation = last_generation
        self.trace = trace


class NotAnOrganism(OrganismError):
    """The referenced output does not carry a covenant state script."""

    def __init__(self, *, txid: str, vout: int) -> None:
        super().__init__(f"{txid}:{vout} is not an organism output")
        self.txid = txid
        self.vout = vout


# ─── Ledger ───────────────────────────────────────────────────────


class LedgerError(OrganismError):
    """Transport failure or unexpected response from the ledger service."""


class SubmissionRejected(LedgerError):
    """The ledger refused a submitted transition. Surfaced unchanged."""

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(f"submission rejected: {reason}")
        self.reason = reason
        self.status_code = status_code
