"""
Ledger Entry database model.

Append-only record of money owed/paid per (tenant, distributor).
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Date, Enum, String, Index
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base
from dailyorder.app.models.ledger_enums import LedgerEntryType, LedgerReferenceType


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Immutable record of financial movement for one distributor.
    running_balance is the distributor's outstanding amount after this entry:
    previous balance + amount for DEBIT, - amount for CREDIT.
    NO updates or deletions allowed; corrections are new offsetting entries.
    reference_id is a weak reference (no FK) so history survives its source.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Stream key
    tenant_id = Column(Integer, nullable=True)
    distributor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Entry details
    entry_type = Column(Enum(LedgerEntryType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)  # always >= 0
    running_balance = Column(Numeric(12, 2), nullable=False)

    reference_type = Column(Enum(LedgerReferenceType), nullable=False)
    reference_id = Column(Integer, nullable=True)
    narration = Column(String(500), nullable=False)

    entry_date = Column(Date, nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_ledger_entries_stream", "distributor_id", "tenant_id", "id"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', "
            f"amount={self.amount}, balance={self.running_balance})>"
        )
