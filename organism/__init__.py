"""
UTXO Organism

Self-perpetuating covenant outputs ("organisms") on a UTXO ledger: the
ORG1 annotation codec, the covenant state machine and transition builder,
and the lineage walker that reconstructs and verifies their history.
"""

__version__ = "0.1.0"
