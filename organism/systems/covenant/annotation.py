"""
UTXO Organism — ORG1 Annotation Codec

The discoverable binary record attached to every organism transition.
Independent observers find lineages by scanning for it, so it is produced
and parsed byte-exactly.

Wire format:
  <"ORG1":4>
  <len:1><species:1>
  <len:1><generation:4 LE>
  <len:1><lineage_origin:32>
  [<len:1><payload segment>]...

On the ledger the record sits in a data output:
  OP_FALSE OP_RETURN <push 4> <wire format...>

Payload bytes are species-specific and opaque here. decode() captures
everything after the three fixed pushes verbatim, and encode() appends the
payload verbatim, so decode(encode(r)) == r for every valid record.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

import structlog

from organism.errors import MalformedAnnotation
from organism.systems.covenant.types import PROTOCOL_TAG, AnnotationRecord, TxOutput

logger = structlog.get_logger("organism.covenant.annotation")

OP_FALSE = 0x00
OP_RETURN = 0x6A
MAX_PUSH = 0xFC  # larger pushes need OP_PUSHDATA opcodes; not used by ORG1

_SPECIES_LEN = 1
_GENERATION_LEN = 4
_ORIGIN_LEN = 32

_FIXED_FIELDS: tuple[tuple[str, int], ...] = (
    ("species", _SPECIES_LEN),
    ("generation", _GENERATION_LEN),
    ("lineage_origin", _ORIGIN_LEN),
)


# ─── Species Registry ────────────────────────────────────────────
# Extension point for per-species payload handling. The core only names
# species; it never interprets their payloads.

_SPECIES: dict[int, str] = {0: "heartbeat", 1: "task"}


def register_species(species: int, name: str) -> None:
    if not 0 <= species <= 0xFF:
        raise ValueError(f"species must fit in one byte, got {species}")
    existing = _SPECIES.get(species)
    if existing is not None and existing != name:
        raise ValueError(f"species {species} already registered as {existing!r}")
    _SPECIES[species] = name


def species_name(species: int) -> str:
    return _SPECIES.get(species, f"species-{species}")


# ─── Push helpers ────────────────────────────────────────────────


def push(data: bytes) -> bytes:
    """Single-byte length-prefixed push."""
    if len(data) > MAX_PUSH:
        raise ValueError(f"push of {len(data)} bytes exceeds {MAX_PUSH}")
    return bytes([len(data)]) + data


def pack_payload(segments: Iterable[bytes]) -> bytes:
    """Build an opaque payload from species-defined segments."""
    return b"".join(push(s) for s in segments)


def iter_payload(payload: bytes) -> Iterator[bytes]:
    """Split a payload back into its segments."""
    pos = 0
    while pos < len(payload):
        length = payload[pos]
        pos += 1
        if pos + length > len(payload):
            raise MalformedAnnotation(
                f"payload segment of {length} bytes overruns buffer",
                field="payload",
                offset=pos - 1,
            )
        yield payload[pos : pos + length]
        pos += length


# ─── Codec ───────────────────────────────────────────────────────


def encode(record: AnnotationRecord) -> bytes:
    """Encode a record. Total for any record that passed model validation."""
    return b"".join(
        (
            record.protocol_tag.encode("ascii"),
            push(record.species.to_bytes(_SPECIES_LEN, "little")),
            push(record.generation.to_bytes(_GENERATION_LEN, "little")),
            push(bytes.fromhex(record.lineage_origin)),
            record.payload,
        )
    )


def decode(data: bytes) -> AnnotationRecord | None:
    """
    Decode the first ORG1 record found in data.

    Returns None when the tag is absent: the transition simply is not an
    organism transition. Raises MalformedAnnotation when the tag is present
    but the fixed pushes after it do not parse.
    """
    start = data.find(PROTOCOL_TAG)
    if start < 0:
        return None

    pos = start + len(PROTOCOL_TAG)
    fields: dict[str, bytes] = {}
    for name, expected_len in _FIXED_FIELDS:
        if pos >= len(data):
            raise MalformedAnnotation(
                f"only {len(fields)} of {len(_FIXED_FIELDS)} fixed pushes follow the tag",
                field=name,
                offset=pos,
            )
        length = data[pos]
        if pos + 1 + length > len(data):
            raise MalformedAnnotation(
                f"push of {length} bytes reads past end of buffer",
                field=name,
                offset=pos,
            )
        if length != expected_len:
            raise MalformedAnnotation(
                f"expected a {expected_len}-byte push, found {length}",
                field=name,
                offset=pos,
            )
        fields[name] = data[pos + 1 : pos + 1 + length]
        pos += 1 + length

    return AnnotationRecord(
        protocol_tag=PROTOCOL_TAG.decode("ascii"),
        species=fields["species"][0],
        generation=int.from_bytes(fields["generation"], "little"),
        lineage_origin=fields["lineage_origin"].hex(),
        payload_hex=data[pos:].hex(),
    )


# ─── Ledger placement ────────────────────────────────────────────


def annotation_script(record: AnnotationRecord) -> bytes:
    """Locking script of the zero-value data output carrying the record."""
    body = encode(record)
    # The tag itself is the first push; the remaining pushes follow as-is.
    return bytes([OP_FALSE, OP_RETURN, len(PROTOCOL_TAG)]) + body


def is_data_script(script: bytes) -> bool:
    """True for provably unspendable OP_RETURN outputs."""
    return script[:1] == bytes([OP_RETURN]) or script[:2] == bytes([OP_FALSE, OP_RETURN])


def find_annotation(outputs: Sequence[TxOutput]) -> tuple[int, AnnotationRecord] | None:
    """
    Scan a transition's outputs for its ORG1 record.

    Only data outputs are scanned so that hashes inside spendable scripts can
    never be mistaken for the tag. Returns (position, record) or None.
    """
    for index, output in enumerate(outputs):
        script = output.script
        if not is_data_script(script):
            continue
        record = decode(script)
        if record is not None:
            return index, record
    return None
