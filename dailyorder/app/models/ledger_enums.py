"""
Ledger enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    DEBIT = "debit"  # Distributor owes more
    CREDIT = "credit"  # Distributor owes less


class LedgerReferenceType(str, enum.Enum):
    """Business event an entry was recorded for."""
    ORDER = "order"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    OPENING = "opening"
