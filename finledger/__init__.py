"""
FinLedger - Source Package

The ledger and envelope reconciliation engine behind a personal-finance
tracker whose data of record lives in a spreadsheet-backed remote store.

DESIGN PRINCIPLES:
1. The transaction ledger is the single source of truth
2. Every balance is a projection, never a stored number
3. Local state leads, remote state follows
4. Divergence is reported, never silently discarded
5. The remote store is swappable
"""

__version__ = "1.0.0"
__author__ = "FinLedger Team"
