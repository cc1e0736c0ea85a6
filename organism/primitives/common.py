"""
UTXO Organism — Common Primitives

Shared base model, identifiers, and hashing utilities used across all systems.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

from pydantic import BaseModel

# ─── Constants ────────────────────────────────────────────────────

TXID_HEX_LEN = 64
PUBKEY_HASH_LEN = 20
UINT8_MAX = 0xFF
UINT32_MAX = 0xFFFF_FFFF
UINT64_MAX = 0xFFFF_FFFF_FFFF_FFFF

_HEX_RE = re.compile(r"^[0-9a-f]*$")


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def sha256d(data: bytes) -> bytes:
    """Double SHA-256, the ledger's transaction hash."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def is_txid(value: str) -> bool:
    """True for a lowercase 32-byte hex identifier."""
    return len(value) == TXID_HEX_LEN and bool(_HEX_RE.match(value))


def normalise_hex(value: str) -> str:
    """Lowercase a hex string and reject anything that is not even-length hex."""
    lowered = value.strip().lower()
    if len(lowered) % 2 or not _HEX_RE.match(lowered):
        raise ValueError(f"not a hex string: {value!r}")
    return lowered


def short_id(txid: str) -> str:
    """Abbreviated identifier for logs and file names."""
    return txid[:16]


# ─── Base Models ──────────────────────────────────────────────────


class OrganismBaseModel(BaseModel):
    """Base model for all organism primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}


class FrozenModel(OrganismBaseModel):
    """Immutable value object. Equality is structural."""

    model_config = {"populate_by_name": True, "from_attributes": True, "frozen": True}
