"""
Sentinel Trader
Live price feed ingestion, guarded multi-strategy evaluation, simulated
position management and reconciled persistence.
"""

__version__ = "1.0.0"
