"""
UTXO Organism — Telemetry
"""
