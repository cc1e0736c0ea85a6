"""
UTXO Organism — Protocol Systems

  covenant  annotation codec, state machine, transition builder, service
  lineage   lineage walker and trace persistence
"""
