"""
Validation Package

The normalization boundary between the remote store's loosely-typed JSON
and the engine's typed entities.
"""

from finledger.models.ledger import parse_amount, parse_day
from finledger.validation.normalizer import NormalizationResult, SnapshotNormalizer

__all__ = [
    "NormalizationResult",
    "SnapshotNormalizer",
    "parse_amount",
    "parse_day",
]
