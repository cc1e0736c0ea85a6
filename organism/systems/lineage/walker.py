"""
UTXO Organism — Lineage Walker

Reconstructs a lineage by walking output-0 spends forward from its spawn
transition, verifying every step against the covenant state machine.

Per step:
  1. fetch the transition at the current reference
  2. verify it against the prior entry (the spawn is taken as given)
  3. derive reward / fee from the prior entry's balance
  4. append the entry, persist (append-then-persist)
  5. if a continuation exists, ask whether it has been spent;
     spent -> advance to the spender, unspent -> stop at the live tip

Resume rules for a cached trace:
  - tip has a known successor       -> continue from the successor
  - tip alive with no successor     -> drop it and re-derive it (it may
                                       have been spent since); restored
                                       as-is if the re-derivation fails
  - tip dead                        -> nothing to do, terminal

Failure semantics:
  - the ledger cannot produce a transition -> UnresolvedReference
  - a spend that is not a covenant continuation -> CovenantViolation
  In both cases the partial trace is persisted first and attached to the
  exception. The walker never fabricates an entry and never retries.

Each lineage is a strictly sequential chain. Independent lineages share
nothing but the ledger reader and are traced concurrently by trace_many().
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from organism.errors import (
    CovenantViolation,
    MalformedAnnotation,
    NotAnOrganism,
    OrganismError,
    TerminalLineage,
    UnresolvedReference,
)
from organism.primitives.common import short_id
from organism.systems.covenant import state_machine
from organism.systems.covenant.annotation import find_annotation
from organism.systems.covenant.scripts import decode_state_script, parse_p2pkh
from organism.systems.covenant.types import (
    CovenantOperation,
    OutPoint,
    OutputRole,
    TransitionRecord,
)
from organism.systems.lineage.store import LineageStore
from organism.systems.lineage.types import GenerationEntry, LineageTrace

if TYPE_CHECKING:
    from organism.clients.ledger import LedgerReader
    from organism.config import LineageConfig
    from organism.systems.lineage.store import OrganismRegistry

logger = structlog.get_logger("organism.lineage.walker")

_CONTINUATION_VOUT = 0


class LineageWalker:
    """
    Walks and verifies lineages. Owns every trace it produces; callers
    only read them.
    """

    def __init__(
        self,
        reader: LedgerReader,
        store: LineageStore | None = None,
        *,
        max_concurrent: int = 4,
    ) -> None:
        self._reader = reader
        self._store = store
        self._max_concurrent = max(1, max_concurrent)
        self._logger = logger.bind(component="lineage_walker")

    @classmethod
    def from_config(cls, reader: LedgerReader, config: LineageConfig) -> LineageWalker:
        """Walker persisting under lineage.data_dir with the configured concurrency."""
        return cls(reader, LineageStore(config.data_dir), max_concurrent=config.max_concurrent_traces)

    # ── Public API ────────────────────────────────────────────

    async def trace(self, origin: str) -> LineageTrace:
        """Trace one lineage from its spawn txid (or its cached resume point)."""
        log = self._logger.bind(origin=short_id(origin))
        trace, current, recheck = self._resume(origin, log)

        while current is not None:
            record = await self._reader.fetch_transition(current)
            if record is None:
                if recheck is not None:
                    trace.append(recheck)
                self._persist(trace)
                log.error(
                    "lineage_reference_unresolved",
                    txid=current,
                    last_generation=trace.generation,
                )
                raise UnresolvedReference(txid=current, last_generation=trace.generation, trace=trace)

            try:
                entry = self._derive(record, trace.tip)
            except CovenantViolation as exc:
                if recheck is not None:
                    trace.append(recheck)
                exc.trace = trace
                self._persist(trace)
                log.error(
                    "lineage_covenant_violation",
                    txid=record.txid,
                    generation=exc.generation,
                    field=exc.field,
                    expected=exc.expected,
                    observed=exc.observed,
                )
                raise

            trace.append(entry)
            recheck = None
            self._persist(trace)
            log.info(
                "lineage_entry_appended",
                generation=entry.generation,
                txid=short_id(entry.txid),
                operation=entry.operation.value,
                balance=entry.balance,
                reward=entry.reward,
                fee=entry.fee,
                alive=entry.alive,
                confirmed=entry.confirmed,
            )

            if not entry.alive:
                break

            spend = await self._reader.fetch_output_spend(entry.txid, _CONTINUATION_VOUT)
            if spend is None:
                break
            trace.mark_spent(spend.spending_txid)
            self._persist(trace)
            current = spend.spending_txid

        log.info("lineage_traced", **trace.summary())
        return trace

    async def trace_many(self, origins: Iterable[str]) -> dict[str, LineageTrace | OrganismError]:
        """
        Trace independent lineages concurrently.

        Protocol failures are returned per origin (with their partial trace
        attached) so one broken lineage does not hide the others.
        """
        semaphore = asyncio.Semaphore(self._max_concurrent)
        unique = list(dict.fromkeys(origins))

        async def _one(origin: str) -> LineageTrace | OrganismError:
            async with semaphore:
                try:
                    return await self.trace(origin)
                except OrganismError as exc:
                    return exc

        results = await asyncio.gather(*(_one(o) for o in unique))
        return dict(zip(unique, results))

    async def trace_registered(self, registry: OrganismRegistry) -> dict[str, LineageTrace | OrganismError]:
        """Trace every organism recorded in the local registry."""
        spawns = registry.list_spawns()
        self._logger.info("lineage_scan_started", organisms=len(spawns))
        return await self.trace_many(s.spawn_txid for s in spawns)

    # ── Resume ────────────────────────────────────────────────

    def _resume(
        self, origin: str, log: structlog.stdlib.BoundLogger
    ) -> tuple[LineageTrace, str | None, GenerationEntry | None]:
        """
        Returns (trace, next reference, dropped live tip). The dropped tip
        goes back onto the trace if its re-derivation fails, so a failed
        re-check never loses an entry that was already on disk.
        """
        cached = self._store.load(origin) if self._store is not None else None
        if cached is None or not cached.entries:
            return LineageTrace(origin=origin), origin, None

        tip = cached.entries[-1]
        if tip.spent_by:
            log.info("lineage_resumed", from_generation=tip.generation, cached=len(cached.entries))
            return cached, tip.spent_by, None
        if not tip.alive:
            log.info("lineage_terminal_cached", generation=tip.generation)
            return cached, None, None

        recheck = cached.drop_tip()
        log.info("lineage_rechecking_tip", generation=tip.generation, txid=short_id(tip.txid))
        return cached, tip.txid, recheck

    def _persist(self, trace: LineageTrace) -> None:
        if self._store is not None:
            self._store.save(trace)

    # ── Entry derivation ──────────────────────────────────────

    def _derive(self, record: TransitionRecord, prior: GenerationEntry | None) -> GenerationEntry:
        if prior is None:
            return self._derive_first(record)
        return self._derive_next(record, prior)

    def _derive_first(self, record: TransitionRecord) -> GenerationEntry:
        """The spawn transition: taken as given, its output 0 defines the organism."""
        first = record.output(_CONTINUATION_VOUT)
        decoded = decode_state_script(bytes.fromhex(first.script_hex)) if first is not None else None
        if first is None or decoded is None:
            raise NotAnOrganism(txid=record.txid, vout=_CONTINUATION_VOUT)
        code, state = decoded
        state = state.adopt_origin(record.txid)

        annotation = None
        try:
            found = find_annotation(record.tx_outputs())
        except MalformedAnnotation as exc:
            self._logger.warning("spawn_annotation_malformed", txid=record.txid, field=exc.field)
            found = None
        if found is not None:
            annotation = found[1]

        if state.generation != 0:
            self._logger.warning("lineage_started_mid_lineage", txid=record.txid, generation=state.generation)

        return GenerationEntry(
            generation=state.generation,
            txid=record.txid,
            operation=CovenantOperation.SPAWN,
            balance=first.value,
            block_height=record.block_height,
            block_time=record.block_time,
            alive=first.value >= state.dust_floor,
            annotation=annotation,
            state=state,
            code_hex=code.hex(),
        )

    def _derive_next(self, record: TransitionRecord, prior: GenerationEntry) -> GenerationEntry:
        consumed = prior.continuation()
        if consumed is None:
            raise TerminalLineage(f"generation {prior.generation} has no continuation to spend")

        if record.inputs and OutPoint(txid=prior.txid, vout=_CONTINUATION_VOUT) not in record.inputs:
            raise CovenantViolation(
                "transition does not consume the organism output",
                generation=prior.generation,
                field="inputs",
                expected=f"{prior.txid}:{_CONTINUATION_VOUT}",
                observed=[str(i) for i in record.inputs],
                txid=record.txid,
            )

        try:
            expected = state_machine.verify(consumed, record.tx_outputs(), txid=record.txid)
        except MalformedAnnotation as exc:
            raise CovenantViolation(
                str(exc), generation=prior.generation, field="annotation", txid=record.txid
            ) from exc

        balance = expected.next_balance
        state = expected.next_state or consumed.state.adopt_origin(consumed.txid).with_generation(
            expected.generation
        )

        credited: str | None = None
        reward = fee = fed = 0
        if expected.operation == CovenantOperation.REPRODUCE:
            reward = expected.reward
            fee = prior.balance - balance - reward
            position = expected.roles.index(OutputRole.REWARD)
            credited = self._credited_party(record, position)
        else:
            fed = balance - prior.balance

        return GenerationEntry(
            generation=expected.generation,
            txid=record.txid,
            operation=expected.operation,
            balance=balance,
            credited_party=credited,
            reward=reward,
            fee=fee,
            fed_amount=fed,
            block_height=record.block_height,
            block_time=record.block_time,
            alive=expected.alive,
            annotation=expected.annotation,
            state=state,
            code_hex=consumed.code_hex,
        )

    @staticmethod
    def _credited_party(record: TransitionRecord, position: int) -> str | None:
        output = record.output(position)
        if output is None:
            return None
        if output.address:
            return output.address
        pkh = parse_p2pkh(bytes.fromhex(output.script_hex))
        return pkh.hex() if pkh is not None else None
