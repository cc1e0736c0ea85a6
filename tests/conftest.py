"""
Shared fixtures: an in-memory ledger and a helper that writes covenant
transitions into it exactly as a conforming wallet would.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

import pytest

from organism.errors import SubmissionRejected
from organism.systems.covenant import state_machine, transaction
from organism.systems.covenant.types import (
    LedgerOutput,
    OrganismOutput,
    OrganismParams,
    OutPoint,
    OutputSpend,
    TransitionRecord,
    TxOutput,
    UnspentOutput,
)

COVENANT_CODE = bytes.fromhex("0063c0de")
CLAIMER_A = "11" * 20
CLAIMER_B = "22" * 20


def make_txid(label: str) -> str:
    return hashlib.sha256(label.encode()).hexdigest()


# ─── In-memory ledger ────────────────────────────────────────────


class FakeLedger:
    """LedgerReader + LedgerWriter backed by dicts. Records every call."""

    def __init__(self) -> None:
        self.transitions: dict[str, TransitionRecord] = {}
        self.spends: dict[tuple[str, int], OutputSpend] = {}
        self.unspent: dict[str, list[UnspentOutput]] = {}
        self.missing: set[str] = set()
        self.submitted: list[bytes] = []
        self.reject_reason: str | None = None
        self.calls: list[tuple[str, str]] = []

    def add(
        self,
        txid: str,
        outputs: Sequence[TxOutput],
        inputs: Sequence[OutPoint] = (),
        *,
        block_height: int | None = 800_000,
    ) -> TransitionRecord:
        record = TransitionRecord(
            txid=txid,
            inputs=tuple(inputs),
            outputs=tuple(
                LedgerOutput(vout=i, value=o.value, script_hex=o.script_hex) for i, o in enumerate(outputs)
            ),
            block_height=block_height,
        )
        self.transitions[txid] = record
        for index, outpoint in enumerate(inputs):
            self.spends[(outpoint.txid, outpoint.vout)] = OutputSpend(spending_txid=txid, input_index=index)
        return record

    async def fetch_transition(self, txid: str) -> TransitionRecord | None:
        self.calls.append(("fetch_transition", txid))
        if txid in self.missing:
            return None
        return self.transitions.get(txid)

    async def fetch_output_spend(self, txid: str, vout: int) -> OutputSpend | None:
        self.calls.append(("fetch_output_spend", txid))
        return self.spends.get((txid, vout))

    async def fetch_unspent_outputs(self, owner: str) -> list[UnspentOutput]:
        self.calls.append(("fetch_unspent_outputs", owner))
        return list(self.unspent.get(owner, []))

    async def submit(self, raw: bytes) -> str:
        if self.reject_reason is not None:
            raise SubmissionRejected(self.reject_reason, status_code=400)
        self.submitted.append(raw)
        return transaction.txid(raw)

    def fetched(self, txid: str) -> int:
        return sum(1 for name, ref in self.calls if name == "fetch_transition" and ref == txid)


# ─── Chain writer ────────────────────────────────────────────────


class ChainWriter:
    """Writes conforming spawn / reproduce / feed transitions into a FakeLedger."""

    def __init__(self, ledger: FakeLedger, code: bytes = COVENANT_CODE) -> None:
        self.ledger = ledger
        self.code = code
        self._counter = 0

    def next_txid(self) -> str:
        self._counter += 1
        return make_txid(f"tx-{self._counter}")

    def spawn(self, params: OrganismParams, balance: int, *, payload: bytes = b"") -> OrganismOutput:
        expected = state_machine.spawn(params, self.code, balance, payload)
        txid = self.next_txid()
        self.ledger.add(txid, expected.outputs)
        assert expected.next_state is not None
        return OrganismOutput(
            outpoint=OutPoint(txid=txid, vout=0),
            value=balance,
            code_hex=self.code.hex(),
            state=expected.next_state,
        )

    def reproduce(self, output: OrganismOutput, claimer: str = CLAIMER_A) -> OrganismOutput | None:
        expected = state_machine.reproduce(output, claimer)
        txid = self.next_txid()
        self.ledger.add(txid, expected.outputs, [output.outpoint])
        if expected.next_state is None:
            return None
        return OrganismOutput(
            outpoint=OutPoint(txid=txid, vout=0),
            value=expected.next_balance,
            code_hex=self.code.hex(),
            state=expected.next_state,
        )

    def feed(self, output: OrganismOutput, amount: int) -> OrganismOutput:
        expected = state_machine.feed(output, amount)
        txid = self.next_txid()
        self.ledger.add(txid, expected.outputs, [output.outpoint])
        assert expected.next_state is not None
        return OrganismOutput(
            outpoint=OutPoint(txid=txid, vout=0),
            value=expected.next_balance,
            code_hex=self.code.hex(),
            state=expected.next_state,
        )

    def spend_with(self, output: OrganismOutput, outputs: Sequence[TxOutput]) -> str:
        """Spend output 0 with arbitrary, possibly non-conforming outputs."""
        txid = self.next_txid()
        self.ledger.add(txid, outputs, [output.outpoint])
        return txid


# ─── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def params() -> OrganismParams:
    return OrganismParams(species=0, reward=1_000, fee=3_000, dust_floor=546)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def chain(ledger: FakeLedger) -> ChainWriter:
    return ChainWriter(ledger)
