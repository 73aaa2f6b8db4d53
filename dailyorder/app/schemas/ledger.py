"""
Ledger Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from dailyorder.app.models.ledger_enums import LedgerEntryType, LedgerReferenceType


class RecordPaymentRequest(BaseModel):
    """Manual payment received from a distributor."""
    distributor_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_mode: Optional[str] = Field(None, max_length=50, description="cash, upi, bank, cheque")
    reference_no: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=300)
    payment_date: Optional[date] = None


class AdjustmentRequest(BaseModel):
    """Manual correction entry."""
    distributor_id: int = Field(..., gt=0)
    entry_type: LedgerEntryType
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    narration: str = Field(..., min_length=1, max_length=500)
    entry_date: Optional[date] = None


class LedgerEntryResponse(BaseModel):
    id: int
    tenant_id: Optional[int]
    distributor_id: int
    entry_type: LedgerEntryType
    amount: Decimal
    running_balance: Decimal
    reference_type: LedgerReferenceType
    reference_id: Optional[int]
    narration: str
    entry_date: date
    created_by: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    distributor_id: int
    balance: Decimal


class StatementDistributor(BaseModel):
    id: int
    name: str
    business_name: Optional[str]
    phone: str


class StatementResponse(BaseModel):
    distributor: StatementDistributor
    opening_balance: Decimal
    entries: List[LedgerEntryResponse]
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal


class OutstandingRow(BaseModel):
    distributor_id: int
    name: str
    business_name: Optional[str]
    phone: str
    outstanding_balance: Decimal
    last_transaction_date: Optional[date]


class OutstandingReportResponse(BaseModel):
    distributors: List[OutstandingRow]
    total_outstanding: Decimal
    total_distributors: int
    distributors_with_balance: int


class LedgerSummaryResponse(BaseModel):
    total_outstanding: Decimal
    total_distributors: int
    distributors_with_balance: int
    today_collection: Decimal
