"""
UTXO Organism — Ledger Collaborators

The core never talks to a ledger directly. It consumes two narrow
interfaces:

  LedgerReader
    fetch_transition(txid)            -> TransitionRecord | None
    fetch_output_spend(txid, vout)    -> OutputSpend | None   (None = not spent)
    fetch_unspent_outputs(owner)      -> list[UnspentOutput]
  LedgerWriter
    submit(raw)                       -> txid    (raises SubmissionRejected)
  Ledger
    both of the above, as one collaborator

WhatsOnChainClient implements both over the public WhatsOnChain REST API
with async httpx. Requests are serialized with a fixed inter-request delay
to respect the public rate limit. That is a caller-side policy; a reader
with higher limits can drop the delay to zero.

Nothing here retries. A rejected submission is surfaced unchanged.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from organism.errors import LedgerError, SubmissionRejected
from organism.systems.covenant.types import (
    LedgerOutput,
    OutPoint,
    OutputSpend,
    TransitionRecord,
    UnspentOutput,
)

if TYPE_CHECKING:
    from organism.config import LedgerConfig

logger = structlog.get_logger("organism.clients.ledger")

_SATS_PER_COIN = Decimal("100000000")


# ─── Interfaces ──────────────────────────────────────────────────


class LedgerReader(Protocol):
    """Read side of the ledger. Must tolerate concurrent outstanding calls."""

    async def fetch_transition(self, txid: str) -> TransitionRecord | None: ...

    async def fetch_output_spend(self, txid: str, vout: int) -> OutputSpend | None: ...

    async def fetch_unspent_outputs(self, owner: str) -> list[UnspentOutput]: ...


class LedgerWriter(Protocol):
    async def submit(self, raw: bytes) -> str: ...


class Ledger(LedgerReader, LedgerWriter, Protocol):
    """Both sides, as a single collaborator (what WhatsOnChainClient provides)."""


# ─── Parsing ─────────────────────────────────────────────────────


def coins_to_sats(value: Any) -> int:
    """Convert a JSON coin amount (e.g. 0.00096) to an exact satoshi int."""
    return int((Decimal(str(value)) * _SATS_PER_COIN).to_integral_value())


def parse_transition(data: dict[str, Any]) -> TransitionRecord:
    outputs = []
    for vout in data.get("vout", []):
        spk = vout.get("scriptPubKey") or {}
        addresses = spk.get("addresses") or []
        outputs.append(
            LedgerOutput(
                vout=int(vout["n"]),
                value=coins_to_sats(vout.get("value", 0)),
                script_hex=spk.get("hex", ""),
                address=addresses[0] if addresses else None,
            )
        )

    inputs = tuple(
        OutPoint(txid=vin["txid"], vout=int(vin.get("vout", 0)))
        for vin in data.get("vin", [])
        if vin.get("txid")
    )

    block_time = data.get("blocktime") or data.get("time")
    return TransitionRecord(
        txid=data["txid"],
        inputs=inputs,
        outputs=tuple(outputs),
        block_height=data.get("blockheight") or None,
        block_time=datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time else None,
    )


# ─── WhatsOnChain ────────────────────────────────────────────────


class WhatsOnChainClient:
    """
    Async WhatsOnChain client implementing LedgerReader and LedgerWriter.

    Lifecycle: construct → use → close(). Also usable as an async
    context manager.

    Usage::

        async with WhatsOnChainClient(config.ledger) as ledger:
            record = await ledger.fetch_transition(txid)
    """

    def __init__(
        self,
        config: LedgerConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.root_url,
            timeout=httpx.Timeout(config.timeout_s, connect=5.0),
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._lock = asyncio.Lock()
        self._log = logger.bind(ledger_url=config.root_url)

    async def __aenter__(self) -> WhatsOnChainClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ── Transport ─────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with self._lock:
            if self._config.request_delay_s > 0:
                await asyncio.sleep(self._config.request_delay_s)
            try:
                return await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                self._log.warning("ledger_request_failed", method=method, path=path, error=str(exc))
                raise LedgerError(f"{method} {path} failed: {exc}") from exc

    async def _get_json(self, path: str) -> Any | None:
        resp = await self._request("GET", path)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise LedgerError(f"GET {path} returned {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as exc:
            raise LedgerError(f"GET {path} returned bad JSON: {resp.text[:200]}") from exc

    # ── LedgerReader ──────────────────────────────────────────

    async def fetch_transition(self, txid: str) -> TransitionRecord | None:
        data = await self._get_json(f"/tx/{txid}")
        if not data:
            return None
        return parse_transition(data)

    async def fetch_output_spend(self, txid: str, vout: int) -> OutputSpend | None:
        data = await self._get_json(f"/tx/{txid}/{vout}/spent")
        if not data or not data.get("txid"):
            return None
        return OutputSpend(spending_txid=data["txid"], input_index=data.get("vin"))

    async def fetch_unspent_outputs(self, owner: str) -> list[UnspentOutput]:
        data = await self._get_json(f"/address/{owner}/unspent")
        if not data:
            return []
        return [
            UnspentOutput(
                txid=u["tx_hash"],
                vout=int(u["tx_pos"]),
                value=int(u["value"]),
                height=u.get("height") or None,
            )
            for u in data
        ]

    # ── LedgerWriter ──────────────────────────────────────────

    async def submit(self, raw: bytes) -> str:
        resp = await self._request("POST", "/tx/raw", json={"txhex": raw.hex()})
        if resp.status_code != 200:
            self._log.warning("ledger_submission_rejected", status=resp.status_code, reason=resp.text[:200])
            raise SubmissionRejected(resp.text.strip() or "unknown", status_code=resp.status_code)
        txid = resp.text.replace('"', "").strip()
        self._log.info("ledger_submission_accepted", txid=txid, size=len(raw))
        return txid
