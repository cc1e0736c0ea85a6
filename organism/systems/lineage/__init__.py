"""
UTXO Organism -- Lineage

Forward reconstruction of an organism's history from its spawn
transition, verified step by step against the covenant, with file-backed
persistence so interrupted traces resume where they stopped.
"""

from organism.systems.lineage.store import LineageStore, OrganismRegistry
from organism.systems.lineage.types import GenerationEntry, LineageTrace
from organism.systems.lineage.walker import LineageWalker

__all__ = [
    "GenerationEntry",
    "LineageStore",
    "LineageTrace",
    "LineageWalker",
    "OrganismRegistry",
]
