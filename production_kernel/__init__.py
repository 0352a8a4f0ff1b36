"""
Production Kernel

Tracks garment-factory production against planned targets with:
- A per-style balance ledger reconciled from target events
- Idempotent, per-style serialized delta application
- Calendar-day fidelity from target creation through deletion
- Stateless daily rollups recomputed from production entries
"""

__version__ = "0.1.0"
