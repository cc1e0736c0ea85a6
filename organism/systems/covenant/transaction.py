"""
UTXO Organism — Raw Transaction Encoding

Serializes a signed transition into the ledger's raw wire format so it can
be handed to the write collaborator, and derives its identifier locally.

  version:4 LE
  varint(n_in)  [prev_txid:32 (reversed) | vout:4 LE | varint(len) script | sequence:4 LE]...
  varint(n_out) [value:8 LE | varint(len) script]...
  locktime:4 LE
"""

from __future__ import annotations

from collections.abc import Sequence

from organism.primitives.common import sha256d
from organism.systems.covenant.types import UnsignedTransition

TX_VERSION = 1
FINAL_SEQUENCE = 0xFFFF_FFFF


def varint(n: int) -> bytes:
    if n < 0:
        raise ValueError(f"varint cannot encode {n}")
    if n < 0xFD:
        return n.to_bytes(1, "little")
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFF_FFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def serialize(
    transition: UnsignedTransition,
    unlocking_scripts: Sequence[bytes],
    *,
    version: int = TX_VERSION,
    locktime: int = 0,
) -> bytes:
    """Raw transaction bytes. unlocking_scripts are positional, one per input."""
    if len(unlocking_scripts) != len(transition.inputs):
        raise ValueError(
            f"{len(transition.inputs)} inputs but {len(unlocking_scripts)} unlocking scripts"
        )

    parts: list[bytes] = [version.to_bytes(4, "little"), varint(len(transition.inputs))]
    for tx_in, unlocking in zip(transition.inputs, unlocking_scripts):
        parts.append(bytes.fromhex(tx_in.outpoint.txid)[::-1])
        parts.append(tx_in.outpoint.vout.to_bytes(4, "little"))
        parts.append(varint(len(unlocking)) + unlocking)
        parts.append(FINAL_SEQUENCE.to_bytes(4, "little"))

    parts.append(varint(len(transition.outputs)))
    for tx_out in transition.outputs:
        script = tx_out.script
        parts.append(tx_out.value.to_bytes(8, "little"))
        parts.append(varint(len(script)) + script)

    parts.append(locktime.to_bytes(4, "little"))
    return b"".join(parts)


def txid(raw: bytes) -> str:
    """Display-order transaction identifier."""
    return sha256d(raw)[::-1].hex()
