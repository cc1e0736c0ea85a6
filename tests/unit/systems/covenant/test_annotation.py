"""
Unit tests for the ORG1 annotation codec.

Tests the wire layout, tolerant scanning, malformed-push detection and the
payload segment helpers.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from organism.errors import MalformedAnnotation
from organism.systems.covenant.annotation import (
    annotation_script,
    decode,
    encode,
    find_annotation,
    is_data_script,
    iter_payload,
    pack_payload,
    register_species,
    species_name,
)
from organism.systems.covenant.scripts import p2pkh_script
from organism.systems.covenant.types import AnnotationRecord, TxOutput

ORIGIN = "ab" * 32


# ─── Fixtures ────────────────────────────────────────────────────


def make_record(**kwargs) -> AnnotationRecord:
    defaults = {
        "species": 1,
        "generation": 5,
        "lineage_origin": ORIGIN,
        "payload_hex": "",
    }
    return AnnotationRecord(**{**defaults, **kwargs})


# ─── Encoding ────────────────────────────────────────────────────


class TestEncode:
    def test_wire_layout(self):
        record = make_record(payload_hex="026869")
        encoded = encode(record)

        assert encoded == (
            b"ORG1"
            + b"\x01\x01"
            + b"\x04" + (5).to_bytes(4, "little")
            + b"\x20" + bytes.fromhex(ORIGIN)
            + b"\x02hi"
        )

    def test_generation_is_little_endian(self):
        encoded = encode(make_record(generation=0x01020304))
        assert encoded[7:11] == b"\x04\x03\x02\x01"

    def test_generation_beyond_four_bytes_is_rejected(self):
        with pytest.raises(ValidationError):
            make_record(generation=2**32)

    @pytest.mark.parametrize("tag", ["XYZW", "ORGé", "ORG", ""])
    def test_foreign_protocol_tag_is_rejected(self, tag: str):
        with pytest.raises(ValidationError):
            make_record(protocol_tag=tag)

    def test_default_tag_is_written(self):
        assert encode(make_record()).startswith(b"ORG1")

    def test_script_placement(self):
        record = make_record()
        script = annotation_script(record)
        assert script[:3] == b"\x00\x6a\x04"
        assert script[3:] == encode(record)
        assert is_data_script(script)


# ─── Decoding ────────────────────────────────────────────────────


class TestDecode:
    def test_round_trip_without_payload(self):
        record = make_record(payload_hex="")
        assert decode(encode(record)) == record

    def test_round_trip_with_payload(self):
        record = make_record(species=0, generation=0, payload_hex=pack_payload([b"task", b"\x00\x01"]).hex())
        assert decode(encode(record)) == record

    def test_round_trip_through_script(self):
        record = make_record(payload_hex="deadbeef")
        assert decode(annotation_script(record)) == record

    def test_absent_tag_returns_none(self):
        assert decode(b"\x00\x6a\x05hello") is None
        assert decode(b"") is None

    def test_tag_found_after_leading_bytes(self):
        record = make_record()
        assert decode(b"\xff\xfe\xfd" + encode(record)) == record

    def test_truncated_after_species_push(self):
        data = b"ORG1" + b"\x01\x01"
        with pytest.raises(MalformedAnnotation) as exc_info:
            decode(data)
        assert exc_info.value.field == "generation"
        assert exc_info.value.offset == 6

    def test_push_overruns_buffer(self):
        data = b"ORG1" + b"\x01\x01" + b"\x04\x01\x00"
        with pytest.raises(MalformedAnnotation) as exc_info:
            decode(data)
        assert exc_info.value.field == "generation"

    def test_wrong_length_push(self):
        data = b"ORG1" + b"\x02\x01\x00" + b"\x04" + b"\x00" * 4 + b"\x20" + b"\x00" * 32
        with pytest.raises(MalformedAnnotation) as exc_info:
            decode(data)
        assert exc_info.value.field == "species"

    def test_truncated_origin(self):
        data = b"ORG1" + b"\x01\x01" + b"\x04" + b"\x00" * 4 + b"\x20" + b"\x00" * 10
        with pytest.raises(MalformedAnnotation) as exc_info:
            decode(data)
        assert exc_info.value.field == "lineage_origin"


# ─── Output scanning ─────────────────────────────────────────────


class TestFindAnnotation:
    def test_finds_record_and_position(self):
        record = make_record()
        outputs = [
            TxOutput.from_script(1_000, p2pkh_script("11" * 20)),
            TxOutput.from_script(0, annotation_script(record)),
        ]
        assert find_annotation(outputs) == (1, record)

    def test_tag_inside_spendable_script_is_ignored(self):
        tagged_hash = b"ORG1" + b"\x00" * 16
        record = make_record()
        outputs = [
            TxOutput.from_script(1_000, p2pkh_script(tagged_hash)),
            TxOutput.from_script(0, annotation_script(record)),
        ]
        assert find_annotation(outputs) == (1, record)

    def test_no_annotation(self):
        outputs = [TxOutput.from_script(1_000, p2pkh_script("11" * 20))]
        assert find_annotation(outputs) is None

    def test_foreign_data_output_is_skipped(self):
        record = make_record()
        outputs = [
            TxOutput.from_script(0, b"\x00\x6a\x05hello"),
            TxOutput.from_script(0, annotation_script(record)),
        ]
        assert find_annotation(outputs) == (1, record)


# ─── Payload segments ────────────────────────────────────────────


class TestPayload:
    def test_segments_round_trip(self):
        segments = [b"a", b"", b"bc" * 10]
        assert list(iter_payload(pack_payload(segments))) == segments

    def test_overrun_segment(self):
        with pytest.raises(MalformedAnnotation) as exc_info:
            list(iter_payload(b"\x05ab"))
        assert exc_info.value.field == "payload"

    def test_oversized_segment(self):
        with pytest.raises(ValueError):
            pack_payload([b"x" * 300])


class TestSpeciesRegistry:
    def test_known_species(self):
        assert species_name(0) == "heartbeat"
        assert species_name(1) == "task"

    def test_unknown_species_has_fallback_name(self):
        assert species_name(254) == "species-254"

    def test_register_and_conflict(self):
        register_species(200, "oracle")
        register_species(200, "oracle")
        assert species_name(200) == "oracle"
        with pytest.raises(ValueError):
            register_species(200, "beacon")

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            register_species(256, "too-big")
