"""
UTXO Organism -- Covenant

The rule every organism output enforces on the transition that spends it,
expressed as pure functions, plus everything needed to produce conforming
transitions: the ORG1 annotation codec, locking scripts, the transition
builder, raw transaction encoding, and the service that submits them.
"""

from organism.systems.covenant.annotation import (
    annotation_script,
    decode,
    encode,
    find_annotation,
    iter_payload,
    pack_payload,
    register_species,
    species_name,
)
from organism.systems.covenant.builder import TransitionBuilder, funding_inputs, organism_input
from organism.systems.covenant.scripts import (
    decode_state_script,
    encode_state_script,
    p2pkh_script,
    parse_p2pkh,
)
from organism.systems.covenant.service import OrganismService, Signer, select_funding
from organism.systems.covenant.state_machine import (
    feed,
    remaining_generations,
    reproduce,
    spawn,
    verify,
)
from organism.systems.covenant.types import (
    PROTOCOL_TAG,
    ZERO_ORIGIN,
    AnnotationRecord,
    CovenantOperation,
    ExpectedResult,
    InputRole,
    OrganismOutput,
    OrganismParams,
    OrganismState,
    OutPoint,
    OutputRole,
    SpawnRecord,
    TransitionInput,
    TransitionRecord,
    TxOutput,
    UnsignedTransition,
)

__all__ = [
    # Annotation
    "annotation_script",
    "decode",
    "encode",
    "find_annotation",
    "iter_payload",
    "pack_payload",
    "register_species",
    "species_name",
    # Scripts
    "decode_state_script",
    "encode_state_script",
    "p2pkh_script",
    "parse_p2pkh",
    # State machine
    "feed",
    "remaining_generations",
    "reproduce",
    "spawn",
    "verify",
    # Builder / service
    "TransitionBuilder",
    "funding_inputs",
    "organism_input",
    "OrganismService",
    "Signer",
    "select_funding",
    # Types
    "PROTOCOL_TAG",
    "ZERO_ORIGIN",
    "AnnotationRecord",
    "CovenantOperation",
    "ExpectedResult",
    "InputRole",
    "OrganismOutput",
    "OrganismParams",
    "OrganismState",
    "OutPoint",
    "OutputRole",
    "SpawnRecord",
    "TransitionInput",
    "TransitionRecord",
    "TxOutput",
    "UnsignedTransition",
]
