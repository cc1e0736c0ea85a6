"""
UTXO Organism — Locking Scripts

Builders and parsers for the three script shapes an organism transition
produces: the covenant continuation, pay-to-pubkey-hash reward / change
outputs, and (in annotation.py) the ORG1 data output.

Continuation layout:
  <covenant code> OP_RETURN <state:65> <version:1>

State layout (little-endian):
  species:1 reward:8 fee:8 dust_floor:8 lineage_origin:32 generation:8

The state is parsed from the end of the script, so the code may be any
byte string.
"""

from __future__ import annotations

from organism.primitives.common import PUBKEY_HASH_LEN, normalise_hex
from organism.systems.covenant.types import OrganismState

OP_DUP = 0x76
OP_HASH160 = 0xA9
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xAC
OP_RETURN = 0x6A

STATE_VERSION = 0x01
STATE_LEN = 1 + 8 + 8 + 8 + 32 + 8
_TRAILER_LEN = 1 + STATE_LEN + 1  # OP_RETURN + state + version


# ─── Pay-to-pubkey-hash ──────────────────────────────────────────


def pubkey_hash_bytes(identity: str | bytes) -> bytes:
    """Accept a 20-byte pubkey hash as bytes or hex."""
    raw = identity if isinstance(identity, bytes) else bytes.fromhex(normalise_hex(identity))
    if len(raw) != PUBKEY_HASH_LEN:
        raise ValueError(f"pubkey hash must be {PUBKEY_HASH_LEN} bytes, got {len(raw)}")
    return raw


def p2pkh_script(identity: str | bytes) -> bytes:
    pkh = pubkey_hash_bytes(identity)
    return bytes([OP_DUP, OP_HASH160, PUBKEY_HASH_LEN]) + pkh + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def parse_p2pkh(script: bytes) -> bytes | None:
    """Return the pubkey hash of a P2PKH script, or None for any other shape."""
    if (
        len(script) == 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == PUBKEY_HASH_LEN
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    ):
        return script[3:23]
    return None


# ─── Covenant continuation ───────────────────────────────────────


def encode_state(state: OrganismState) -> bytes:
    return b"".join(
        (
            state.species.to_bytes(1, "little"),
            state.reward.to_bytes(8, "little"),
            state.fee.to_bytes(8, "little"),
            state.dust_floor.to_bytes(8, "little"),
            bytes.fromhex(state.lineage_origin),
            state.generation.to_bytes(8, "little"),
        )
    )


def decode_state(blob: bytes) -> OrganismState:
    if len(blob) != STATE_LEN:
        raise ValueError(f"state blob must be {STATE_LEN} bytes, got {len(blob)}")
    return OrganismState(
        species=blob[0],
        reward=int.from_bytes(blob[1:9], "little"),
        fee=int.from_bytes(blob[9:17], "little"),
        dust_floor=int.from_bytes(blob[17:25], "little"),
        lineage_origin=blob[25:57].hex(),
        generation=int.from_bytes(blob[57:65], "little"),
    )


def encode_state_script(code: bytes, state: OrganismState) -> bytes:
    """The continuation locking script: same code, updated state."""
    if not code:
        raise ValueError("covenant code is empty")
    return code + bytes([OP_RETURN]) + encode_state(state) + bytes([STATE_VERSION])


def decode_state_script(script: bytes) -> tuple[bytes, OrganismState] | None:
    """Split a continuation script into (code, state). None if it is not one."""
    if len(script) <= _TRAILER_LEN:
        return None
    if script[-1] != STATE_VERSION or script[-_TRAILER_LEN] != OP_RETURN:
        return None
    code = script[:-_TRAILER_LEN]
    try:
        state = decode_state(script[-_TRAILER_LEN + 1 : -1])
    except ValueError:
        return None
    return code, state
