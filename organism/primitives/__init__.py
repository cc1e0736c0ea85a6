"""
UTXO Organism — Shared Primitives
"""

from organism.primitives.common import (
    PUBKEY_HASH_LEN,
    TXID_HEX_LEN,
    UINT8_MAX,
    UINT32_MAX,
    UINT64_MAX,
    FrozenModel,
    OrganismBaseModel,
    is_txid,
    normalise_hex,
    sha256d,
    short_id,
    utc_now,
)

__all__ = [
    "PUBKEY_HASH_LEN",
    "TXID_HEX_LEN",
    "UINT8_MAX",
    "UINT32_MAX",
    "UINT64_MAX",
    "FrozenModel",
    "OrganismBaseModel",
    "is_txid",
    "normalise_hex",
    "sha256d",
    "short_id",
    "utc_now",
]
