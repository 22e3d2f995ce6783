"""
Vault core - stores, reconciliation, sync rules and dependency propagation.
"""
