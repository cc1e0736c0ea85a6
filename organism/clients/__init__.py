"""
UTXO Organism — External Collaborator Clients
"""
