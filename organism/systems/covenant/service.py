"""
UTXO Organism — Organism Service

Drives the three organism operations end to end against the ledger
collaborators:

  load(txid)                 fetch an organism output, decode its state,
                             refuse it if it has already been spent
  spawn(budget)              fund and submit a genesis transition,
                             record it in the local registry
  reproduce(txid, claimer)   claim one generation's reward
  feed(txid, amount)         top up the balance from the signer's funds

The service owns no keys. Every input is authorized by the Signer
collaborator, which returns the unlocking script for one input position.
Submission failures are surfaced unchanged: nothing is retried, and a
rejected transition leaves no local record behind.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import structlog

from organism.config import load_covenant_code
from organism.errors import NotAnOrganism, OutputAlreadySpent, UnresolvedReference
from organism.primitives.common import short_id, utc_now
from organism.systems.covenant import transaction
from organism.systems.covenant.builder import TransitionBuilder, funding_inputs
from organism.systems.covenant.scripts import decode_state_script
from organism.systems.covenant.types import (
    OrganismOutput,
    OrganismParams,
    OutPoint,
    SpawnRecord,
    UnsignedTransition,
    UnspentOutput,
)

if TYPE_CHECKING:
    from organism.clients.ledger import Ledger
    from organism.config import OrganismConfig
    from organism.systems.lineage.store import OrganismRegistry

logger = structlog.get_logger("organism.covenant.service")


class Signer(Protocol):
    """Authorizes transition inputs. Key management lives behind this seam."""

    @property
    def owner(self) -> str:
        """Address whose unspent outputs fund spawn and feed."""
        ...

    @property
    def pubkey_hash(self) -> str:
        """Hex pubkey hash that receives change and, by default, rewards."""
        ...

    async def authorize(self, transition: UnsignedTransition, input_index: int) -> bytes: ...


def select_funding(utxos: Sequence[UnspentOutput], required: int) -> list[UnspentOutput]:
    """
    Largest-first selection of just enough outputs to cover required.

    Returns every output when they cannot cover it; the builder then
    reports the shortfall.
    """
    chosen: list[UnspentOutput] = []
    total = 0
    for utxo in sorted(utxos, key=lambda u: (-u.value, u.txid, u.vout)):
        if total >= required:
            break
        chosen.append(utxo)
        total += utxo.value
    return chosen


class OrganismService:
    """
    Spawn, reproduce and feed organisms through one ledger and one signer.

    Lifecycle: construct with the collaborators, call operations. The
    ledger client's own lifecycle (close) stays with the caller.
    """

    def __init__(
        self,
        config: OrganismConfig,
        ledger: Ledger,
        signer: Signer,
        registry: OrganismRegistry | None = None,
        *,
        builder: TransitionBuilder | None = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._signer = signer
        self._registry = registry
        self._builder = builder or TransitionBuilder(load_covenant_code(config.covenant), config.covenant)
        self._logger = logger.bind(component="organism_service")

    @property
    def builder(self) -> TransitionBuilder:
        return self._builder

    def default_params(self, species: int = 0) -> OrganismParams:
        cfg = self._config.covenant
        return OrganismParams(
            species=species,
            reward=cfg.default_reward,
            fee=cfg.default_fee,
            dust_floor=cfg.dust_floor,
        )

    # ── Load ──────────────────────────────────────────────────

    async def load(self, txid: str, vout: int = 0) -> OrganismOutput:
        """Fetch and decode a live organism output."""
        record = await self._ledger.fetch_transition(txid)
        if record is None:
            raise UnresolvedReference(txid=txid, last_generation=None)

        out = record.output(vout)
        decoded = decode_state_script(bytes.fromhex(out.script_hex)) if out is not None else None
        if out is None or decoded is None:
            raise NotAnOrganism(txid=txid, vout=vout)

        spend = await self._ledger.fetch_output_spend(txid, vout)
        if spend is not None:
            raise OutputAlreadySpent(txid=txid, vout=vout, spent_by=spend.spending_txid)

        code, state = decoded
        return OrganismOutput(
            outpoint=OutPoint(txid=txid, vout=vout),
            value=out.value,
            code_hex=code.hex(),
            state=state,
        )

    # ── Operations ────────────────────────────────────────────

    async def spawn(
        self,
        budget: int,
        params: OrganismParams | None = None,
        *,
        payload: bytes = b"",
        notes: dict[str, str] | None = None,
    ) -> SpawnRecord:
        params = params or self.default_params()
        utxos = await self._ledger.fetch_unspent_outputs(self._signer.owner)
        chosen = select_funding(utxos, budget + self._config.covenant.spawn_fee)
        transition = self._builder.build_spawn(
            params,
            budget,
            funding_inputs(chosen, self._signer.pubkey_hash),
            self._signer.pubkey_hash,
            payload=payload,
        )
        txid = await self._submit(transition)

        spawn = SpawnRecord(
            spawn_txid=txid,
            params=params,
            budget=budget,
            current_txid=txid,
            current_vout=0,
            spawned_at=utc_now(),
            notes=notes or {},
        )
        if self._registry is not None:
            self._registry.record(spawn)
        self._logger.info("organism_spawned", spawn_txid=txid, species=params.species, budget=budget)
        return spawn

    async def reproduce(
        self,
        txid: str,
        claimer: str | bytes | None = None,
        *,
        vout: int = 0,
        payload: bytes = b"",
    ) -> str:
        """Claim the next generation. The reward goes to the signer unless claimer is given."""
        output = await self.load(txid, vout)
        transition = self._builder.build_reproduce(
            output,
            claimer if claimer is not None else self._signer.pubkey_hash,
            payload=payload,
        )
        new_txid = await self._submit(transition)
        self._logger.info(
            "organism_reproduced",
            organism=short_id(txid),
            txid=new_txid,
            generation=transition.expected.generation,
            alive=transition.expected.alive,
        )
        return new_txid

    async def feed(self, txid: str, amount: int, *, vout: int = 0, payload: bytes = b"") -> str:
        output = await self.load(txid, vout)
        utxos = await self._ledger.fetch_unspent_outputs(self._signer.owner)
        chosen = select_funding(utxos, amount + self._config.covenant.feed_fee)
        transition = self._builder.build_feed(
            output,
            amount,
            funding_inputs(chosen, self._signer.pubkey_hash),
            self._signer.pubkey_hash,
            payload=payload,
        )
        new_txid = await self._submit(transition)
        self._logger.info(
            "organism_fed",
            organism=short_id(txid),
            txid=new_txid,
            amount=amount,
            new_balance=transition.expected.next_balance,
        )
        return new_txid

    # ── Submission ────────────────────────────────────────────

    async def _submit(self, transition: UnsignedTransition) -> str:
        unlocking = [
            await self._signer.authorize(transition, index) for index in range(len(transition.inputs))
        ]
        raw = transaction.serialize(transition, unlocking)
        local_txid = transaction.txid(raw)

        accepted = await self._ledger.submit(raw)
        if accepted and accepted != local_txid:
            self._logger.warning("ledger_txid_differs", local=local_txid, ledger=accepted)

        self._logger.info(
            "transition_submitted",
            operation=transition.operation.value,
            txid=accepted or local_txid,
            inputs=len(transition.inputs),
            outputs=len(transition.outputs),
            fee=transition.implied_fee,
            size=len(raw),
        )
        return accepted or local_txid
