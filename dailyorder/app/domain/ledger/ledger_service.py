"""
Ledger Service (Domain Logic).

Append-only running-balance ledger per (tenant, distributor).

Every append reads the stream's latest entry, adds (DEBIT) or subtracts
(CREDIT) the amount and inserts a new immutable row. Callers must hold the
distributor's lock from ``distributor_locks`` across that read, the append
and the commit; the public write operations here take it themselves, order
transitions take it in OrderService.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.core.exceptions import ResourceNotFoundError, ValidationFailedError
from dailyorder.app.domain.money import ZERO, money_sum, to_money
from dailyorder.app.models.enums import UserRole
from dailyorder.app.models.ledger_entry import LedgerEntry
from dailyorder.app.models.ledger_enums import LedgerEntryType, LedgerReferenceType
from dailyorder.app.models.user import User
from dailyorder.app.services.audit import AuditAction, log_event
from dailyorder.app.services.distributor_locks import distributor_locks, lock_distributor_rows, lock_key

logger = logging.getLogger("dailyorder.ledger")


def tenant_matches(column, tenant_id: Optional[int]):
    # Platform-scope streams are stored with a NULL tenant
    if tenant_id is None:
        return column.is_(None)
    return column == tenant_id


def signed_amount(entry_type: LedgerEntryType, amount: Decimal) -> Decimal:
    return amount if entry_type == LedgerEntryType.DEBIT else -amount


def payment_narration(mode: Optional[str], notes: Optional[str], reference_no: Optional[str]) -> str:
    mode = mode or "Cash"
    if notes:
        return f"Payment received - {mode} - {notes}"
    narration = f"Payment received - {mode}"
    if reference_no:
        narration += f" (Ref: {reference_no})"
    return narration


class LedgerService:

    @staticmethod
    async def latest_entry(db: AsyncSession, distributor_id: int, tenant_id: Optional[int]) -> Optional[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.distributor_id == distributor_id,
                tenant_matches(LedgerEntry.tenant_id, tenant_id),
            )
            .order_by(LedgerEntry.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_balance(db: AsyncSession, distributor_id: int, tenant_id: Optional[int]) -> Decimal:
        """Outstanding amount after the latest entry, 0 for an empty stream."""
        latest = await LedgerService.latest_entry(db, distributor_id, tenant_id)
        return to_money(latest.running_balance) if latest else ZERO

    @staticmethod
    async def append_entry(
        db: AsyncSession,
        distributor_id: int,
        tenant_id: Optional[int],
        entry_type: LedgerEntryType,
        amount,
        reference_type: LedgerReferenceType,
        reference_id: Optional[int],
        narration: str,
        entry_date: date,
        created_by: Optional[int],
        now: datetime,
    ) -> LedgerEntry:
        """
        Append one entry to the stream. Flushes but does not commit.

        Raises:
            ValidationFailedError: negative amount
        """
        amount = to_money(amount)
        if amount < ZERO:
            raise ValidationFailedError("Ledger amount must not be negative", details={"amount": str(amount)})

        prior = await LedgerService.get_balance(db, distributor_id, tenant_id)
        balance = to_money(prior + signed_amount(entry_type, amount))

        entry = LedgerEntry(
            tenant_id=tenant_id,
            distributor_id=distributor_id,
            entry_type=entry_type,
            amount=amount,
            running_balance=balance,
            reference_type=reference_type,
            reference_id=reference_id,
            narration=narration,
            entry_date=entry_date,
            created_by=created_by,
            created_at=now,
        )
        db.add(entry)
        await db.flush()

        logger.info(
            "Ledger entry appended",
            extra={
                "entry_id": entry.id,
                "tenant_id": tenant_id,
                "distributor_id": distributor_id,
                "entry_type": entry_type.value,
                "amount": str(amount),
                "running_balance": str(balance),
                "reference": f"{reference_type.value}:{reference_id}",
            },
        )
        return entry

    @staticmethod
    async def debit(db: AsyncSession, **kwargs) -> LedgerEntry:
        return await LedgerService.append_entry(db, entry_type=LedgerEntryType.DEBIT, **kwargs)

    @staticmethod
    async def credit(db: AsyncSession, **kwargs) -> LedgerEntry:
        return await LedgerService.append_entry(db, entry_type=LedgerEntryType.CREDIT, **kwargs)

    @staticmethod
    async def get_distributor(db: AsyncSession, distributor_id: int, tenant_id: Optional[int]) -> User:
        query = select(User).where(User.id == distributor_id, User.role == UserRole.DISTRIBUTOR)
        if tenant_id is not None:
            query = query.where(User.tenant_id == tenant_id)
        result = await db.execute(query)
        distributor = result.scalar_one_or_none()
        if distributor is None:
            raise ResourceNotFoundError("Distributor", distributor_id)
        return distributor

    @staticmethod
    async def _append_manual(
        db: AsyncSession,
        distributor_id: int,
        tenant_id: Optional[int],
        entry_type: LedgerEntryType,
        reference_type: LedgerReferenceType,
        amount,
        narration: str,
        entry_date: date,
        actor: dict,
        now: datetime,
        action: str,
    ) -> LedgerEntry:
        await LedgerService.get_distributor(db, distributor_id, tenant_id)

        try:
            async with distributor_locks.hold([lock_key(tenant_id, distributor_id)]):
                await lock_distributor_rows(db, [distributor_id])
                entry = await LedgerService.append_entry(
                    db,
                    distributor_id=distributor_id,
                    tenant_id=tenant_id,
                    entry_type=entry_type,
                    amount=amount,
                    reference_type=reference_type,
                    reference_id=None,
                    narration=narration,
                    entry_date=entry_date,
                    created_by=actor.get("user_id"),
                    now=now,
                )
                await log_event(
                    db,
                    action=action,
                    actor=actor,
                    entity_type="ledger_entry",
                    entity_id=entry.id,
                    tenant_id=tenant_id,
                    metadata={
                        "distributor_id": distributor_id,
                        "entry_type": entry_type.value,
                        "amount": str(entry.amount),
                        "running_balance": str(entry.running_balance),
                    },
                )
                await db.commit()
        except Exception:
            await db.rollback()
            raise
        return entry

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        distributor_id: int,
        tenant_id: Optional[int],
        amount,
        actor: dict,
        now: datetime,
        today: date,
        payment_mode: Optional[str] = None,
        reference_no: Optional[str] = None,
        notes: Optional[str] = None,
        payment_date: Optional[date] = None,
    ) -> LedgerEntry:
        """Manual payment received outside the order flow (CREDIT)."""
        return await LedgerService._append_manual(
            db,
            distributor_id=distributor_id,
            tenant_id=tenant_id,
            entry_type=LedgerEntryType.CREDIT,
            reference_type=LedgerReferenceType.PAYMENT,
            amount=amount,
            narration=payment_narration(payment_mode, notes, reference_no),
            entry_date=payment_date or today,
            actor=actor,
            now=now,
            action=AuditAction.PAYMENT_RECORDED,
        )

    @staticmethod
    async def create_adjustment(
        db: AsyncSession,
        distributor_id: int,
        tenant_id: Optional[int],
        entry_type: LedgerEntryType,
        amount,
        narration: str,
        actor: dict,
        now: datetime,
        today: date,
        entry_date: Optional[date] = None,
    ) -> LedgerEntry:
        """Manual correction in either direction with caller narration."""
        return await LedgerService._append_manual(
            db,
            distributor_id=distributor_id,
            tenant_id=tenant_id,
            entry_type=entry_type,
            reference_type=LedgerReferenceType.ADJUSTMENT,
            amount=amount,
            narration=narration,
            entry_date=entry_date or today,
            actor=actor,
            now=now,
            action=AuditAction.LEDGER_ADJUSTED,
        )

    @staticmethod
    async def get_statement(
        db: AsyncSession,
        distributor_id: int,
        tenant_id: Optional[int],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Statement for one distributor over an optional entry-date range.

        Opening balance is the running balance of the latest entry dated on
        or before ``start_date`` (0 without a start date); closing balance
        is the last entry in range, or the opening balance when the range is
        empty.
        """
        if start_date and end_date and start_date > end_date:
            raise ValidationFailedError("start_date must not be after end_date")

        distributor = await LedgerService.get_distributor(db, distributor_id, tenant_id)

        stream = and_(
            LedgerEntry.distributor_id == distributor_id,
            tenant_matches(LedgerEntry.tenant_id, tenant_id),
        )

        query = select(LedgerEntry).where(stream)
        if start_date:
            query = query.where(LedgerEntry.entry_date >= start_date)
        if end_date:
            query = query.where(LedgerEntry.entry_date <= end_date)
        result = await db.execute(query.order_by(LedgerEntry.id.asc()))
        entries = list(result.scalars().all())

        opening_balance = ZERO
        if start_date:
            previous = await db.execute(
                select(LedgerEntry.running_balance)
                .where(stream, LedgerEntry.entry_date <= start_date)
                .order_by(LedgerEntry.id.desc())
                .limit(1)
            )
            opening = previous.scalar_one_or_none()
            opening_balance = to_money(opening) if opening is not None else ZERO

        total_debit = money_sum(e.amount for e in entries if e.entry_type == LedgerEntryType.DEBIT)
        total_credit = money_sum(e.amount for e in entries if e.entry_type == LedgerEntryType.CREDIT)
        closing_balance = to_money(entries[-1].running_balance) if entries else opening_balance

        return {
            "distributor": {
                "id": distributor.id,
                "name": distributor.full_name,
                "business_name": distributor.business_name,
                "phone": distributor.phone_no,
            },
            "opening_balance": opening_balance,
            "entries": entries,
            "total_debit": total_debit,
            "total_credit": total_credit,
            "closing_balance": closing_balance,
        }

    @staticmethod
    async def get_outstanding_report(db: AsyncSession, tenant_id: Optional[int]) -> Dict[str, Any]:
        """Every distributor of the tenant with its balance, highest first."""
        latest_ids = (
            select(
                LedgerEntry.distributor_id.label("distributor_id"),
                func.max(LedgerEntry.id).label("entry_id"),
            )
            .where(tenant_matches(LedgerEntry.tenant_id, tenant_id))
            .group_by(LedgerEntry.distributor_id)
            .subquery()
        )

        query = (
            select(User, LedgerEntry.running_balance, LedgerEntry.entry_date)
            .outerjoin(latest_ids, latest_ids.c.distributor_id == User.id)
            .outerjoin(LedgerEntry, LedgerEntry.id == latest_ids.c.entry_id)
            .where(User.role == UserRole.DISTRIBUTOR, tenant_matches(User.tenant_id, tenant_id))
            .order_by(User.id.asc())
        )
        result = await db.execute(query)

        rows: List[Dict[str, Any]] = []
        for user, balance, last_date in result.all():
            rows.append({
                "distributor_id": user.id,
                "name": user.full_name,
                "business_name": user.business_name,
                "phone": user.phone_no,
                "outstanding_balance": to_money(balance) if balance is not None else ZERO,
                "last_transaction_date": last_date,
            })

        rows.sort(key=lambda row: row["outstanding_balance"], reverse=True)

        return {
            "distributors": rows,
            "total_outstanding": money_sum(row["outstanding_balance"] for row in rows),
            "total_distributors": len(rows),
            "distributors_with_balance": sum(1 for row in rows if row["outstanding_balance"] > ZERO),
        }

    @staticmethod
    async def get_summary(
        db: AsyncSession,
        tenant_id: Optional[int],
        day_start: datetime,
        day_end: datetime,
    ) -> Dict[str, Any]:
        """Outstanding totals plus payments collected in [day_start, day_end)."""
        outstanding = await LedgerService.get_outstanding_report(db, tenant_id)

        result = await db.execute(
            select(LedgerEntry.amount).where(
                tenant_matches(LedgerEntry.tenant_id, tenant_id),
                LedgerEntry.entry_type == LedgerEntryType.CREDIT,
                LedgerEntry.reference_type == LedgerReferenceType.PAYMENT,
                LedgerEntry.created_at >= day_start,
                LedgerEntry.created_at < day_end,
            )
        )

        return {
            "total_outstanding": outstanding["total_outstanding"],
            "total_distributors": outstanding["total_distributors"],
            "distributors_with_balance": outstanding["distributors_with_balance"],
            "today_collection": money_sum(result.scalars().all()),
        }
