"""
Keeper services: chain queries, charge submission and due-charge scanning.
"""
