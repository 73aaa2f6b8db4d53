"""
Ledger API Endpoints.

Tenant administrators read balances and statements and record manual
payments and adjustments.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from dailyorder.app.db.session import get_db
from dailyorder.app.core.clock import Clock, get_clock
from dailyorder.app.core.config import OrderingWindowConfig, get_ordering_window
from dailyorder.app.core.guards import require_role, tenant_scope
from dailyorder.app.domain.ledger.ledger_service import LedgerService
from dailyorder.app.models.enums import UserRole
from dailyorder.app.schemas.ledger import (
    RecordPaymentRequest,
    AdjustmentRequest,
    LedgerEntryResponse,
    BalanceResponse,
    StatementResponse,
    OutstandingReportResponse,
    LedgerSummaryResponse,
)
from dailyorder.app.services.window_resolver import WindowResolver

router = APIRouter(prefix="/ledger", tags=["Ledger"])

LEDGER_ROLES = [UserRole.SUPER_ADMIN]


@router.get("/summary", response_model=LedgerSummaryResponse)
async def get_summary(
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    window_config: OrderingWindowConfig = Depends(get_ordering_window),
):
    """Outstanding totals and today's collection."""
    day_start, day_end = WindowResolver(window_config).utc_day_bounds(clock.now())
    summary = await LedgerService.get_summary(db, tenant_scope(current_user), day_start, day_end)
    return LedgerSummaryResponse(**summary)


@router.get("/outstanding", response_model=OutstandingReportResponse)
async def get_outstanding(
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Every distributor with their outstanding balance, highest first."""
    report = await LedgerService.get_outstanding_report(db, tenant_scope(current_user))
    return OutstandingReportResponse(**report)


@router.get("/statement", response_model=StatementResponse)
async def get_statement(
    distributor_id: int = Query(..., gt=0),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    statement = await LedgerService.get_statement(
        db, distributor_id, tenant_scope(current_user), start_date, end_date
    )
    return StatementResponse(
        distributor=statement["distributor"],
        opening_balance=statement["opening_balance"],
        entries=[LedgerEntryResponse.model_validate(e) for e in statement["entries"]],
        total_debit=statement["total_debit"],
        total_credit=statement["total_credit"],
        closing_balance=statement["closing_balance"],
    )


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    distributor_id: int = Query(..., gt=0),
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    tenant_id = tenant_scope(current_user)
    await LedgerService.get_distributor(db, distributor_id, tenant_id)
    balance = await LedgerService.get_balance(db, distributor_id, tenant_id)
    return BalanceResponse(distributor_id=distributor_id, balance=balance)


@router.post("/payment", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    payment: RecordPaymentRequest,
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    window_config: OrderingWindowConfig = Depends(get_ordering_window),
):
    """Record a payment received outside the order flow (credit)."""
    now = clock.now()
    entry = await LedgerService.record_payment(
        db,
        distributor_id=payment.distributor_id,
        tenant_id=tenant_scope(current_user),
        amount=payment.amount,
        actor=current_user,
        now=now,
        today=WindowResolver(window_config).business_date(now),
        payment_mode=payment.payment_mode,
        reference_no=payment.reference_no,
        notes=payment.notes,
        payment_date=payment.payment_date,
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/adjustment", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    adjustment: AdjustmentRequest,
    current_user: dict = Depends(require_role(LEDGER_ROLES)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    window_config: OrderingWindowConfig = Depends(get_ordering_window),
):
    """Record a manual debit or credit with a caller-supplied narration."""
    now = clock.now()
    entry = await LedgerService.create_adjustment(
        db,
        distributor_id=adjustment.distributor_id,
        tenant_id=tenant_scope(current_user),
        entry_type=adjustment.entry_type,
        amount=adjustment.amount,
        narration=adjustment.narration,
        actor=current_user,
        now=now,
        today=WindowResolver(window_config).business_date(now),
        entry_date=adjustment.entry_date,
    )
    return LedgerEntryResponse.model_validate(entry)
