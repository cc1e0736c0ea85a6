"""
UTXO Organism — Lineage Types

A LineageTrace is the walker's reconstruction of one lineage: one
GenerationEntry per observed transition, spawn first.

Entries are append-only. Only the tip may change, and only from "no known
successor" to "spent by X" once its continuation is seen consumed.
Once the tip is dead nothing more can be appended.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from organism.errors import TerminalLineage
from organism.primitives.common import OrganismBaseModel, utc_now
from organism.systems.covenant.types import (
    AnnotationRecord,
    CovenantOperation,
    OrganismOutput,
    OrganismState,
    OutPoint,
)


class GenerationEntry(OrganismBaseModel):
    """One observed transition of a lineage."""

    generation: int
    txid: str
    operation: CovenantOperation
    balance: int
    # Reward recipient for reproduce; None for spawn and feed.
    credited_party: str | None = None
    reward: int = 0
    fee: int = 0
    fed_amount: int = 0
    block_height: int | None = None
    block_time: datetime | None = None
    alive: bool = True
    spent_by: str | None = None
    annotation: AnnotationRecord | None = None
    state: OrganismState | None = None
    code_hex: str = ""

    @property
    def confirmed(self) -> bool:
        return self.block_height is not None

    @property
    def lineage_origin(self) -> str | None:
        return self.state.lineage_origin if self.state is not None else None

    def continuation(self) -> OrganismOutput | None:
        """The live organism output this entry produced, if any."""
        if not self.alive or self.state is None:
            return None
        return OrganismOutput(
            outpoint=OutPoint(txid=self.txid, vout=0),
            value=self.balance,
            code_hex=self.code_hex,
            state=self.state,
        )


class LineageTrace(OrganismBaseModel):
    """Ordered history of one lineage, owned and appended by the walker."""

    origin: str
    entries: list[GenerationEntry] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utc_now)

    # ── Mutation (walker only) ────────────────────────────────

    def append(self, entry: GenerationEntry) -> None:
        tip = self.tip
        if tip is not None and not tip.alive:
            raise TerminalLineage(
                f"lineage {self.origin[:16]} died at generation {tip.generation}; "
                f"cannot append generation {entry.generation}"
            )
        self.entries.append(entry)
        self.updated_at = utc_now()

    def mark_spent(self, spending_txid: str) -> None:
        tip = self.tip
        if tip is None:
            raise ValueError("empty trace has no tip to mark")
        tip.spent_by = spending_txid
        self.updated_at = utc_now()

    def drop_tip(self) -> GenerationEntry | None:
        if not self.entries:
            return None
        self.updated_at = utc_now()
        return self.entries.pop()

    # ── Views ─────────────────────────────────────────────────

    @property
    def tip(self) -> GenerationEntry | None:
        return self.entries[-1] if self.entries else None

    @property
    def is_alive(self) -> bool:
        tip = self.tip
        return tip is not None and tip.alive

    @property
    def generation(self) -> int | None:
        tip = self.tip
        return tip.generation if tip is not None else None

    @property
    def claims(self) -> int:
        return sum(1 for e in self.entries if e.operation == CovenantOperation.REPRODUCE)

    @property
    def unique_claimers(self) -> set[str]:
        return {e.credited_party for e in self.entries if e.credited_party}

    @property
    def total_rewards(self) -> int:
        return sum(e.reward for e in self.entries)

    @property
    def total_fees(self) -> int:
        return sum(e.fee for e in self.entries)

    def summary(self) -> dict[str, object]:
        tip = self.tip
        return {
            "origin": self.origin,
            "alive": self.is_alive,
            "generation": tip.generation if tip else None,
            "balance": tip.balance if tip else 0,
            "entries": len(self.entries),
            "claims": self.claims,
            "unique_claimers": len(self.unique_claimers),
            "total_rewards": self.total_rewards,
            "total_fees": self.total_fees,
        }
