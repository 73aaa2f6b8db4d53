"""
Order Aggregator (Domain Logic).

Decides whether an incoming item list starts a new order or is merged into
the distributor's open order for the same delivery window and business day,
and computes the resulting item set.

Merge rules:
1. Quantities for the same catalog item are summed, never overwritten
2. Items present in the request are re-priced at the current catalog rate
3. Items only on the existing order keep their snapshot rate
4. Existing lines keep their position, new items are appended
"""

import enum
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.core.exceptions import OutsideOrderingWindowError
from dailyorder.app.domain.money import ZERO, line_amount, money_sum, to_money
from dailyorder.app.models.enums import DeliveryWindow, OrderStatus
from dailyorder.app.models.order import Order
from dailyorder.app.services.catalog import RateQuote


@dataclass(frozen=True)
class RequestedLine:
    catalog_item_id: int
    qty: int
    ordered_by_box: bool = False
    box_count: int = 0


@dataclass(frozen=True)
class ComputedLine:
    line_no: int
    catalog_item_id: int
    qty: int
    rate: Decimal
    amount: Decimal
    ordered_by_box: bool = False
    box_count: int = 0
    box_rate: Decimal = ZERO


class ResolutionMode(str, enum.Enum):
    CREATE = "create"
    MERGE = "merge"


@dataclass
class OrderResolution:
    mode: ResolutionMode
    target_window: Optional[DeliveryWindow]
    order: Optional[Order] = None

    @property
    def merge_into_order_id(self) -> Optional[int]:
        return self.order.id if self.order is not None else None


def collapse_lines(lines: Iterable[RequestedLine]) -> "OrderedDict[int, RequestedLine]":
    """Fold repeated catalog ids in one request into a single line."""
    folded: "OrderedDict[int, RequestedLine]" = OrderedDict()
    for line in lines:
        seen = folded.get(line.catalog_item_id)
        if seen is None:
            folded[line.catalog_item_id] = line
            continue
        folded[line.catalog_item_id] = replace(
            seen,
            qty=seen.qty + line.qty,
            box_count=seen.box_count + line.box_count,
            ordered_by_box=seen.ordered_by_box or line.ordered_by_box,
        )
    return folded


def order_total(lines: Iterable[ComputedLine]) -> Decimal:
    return money_sum(line.amount for line in lines)


class OrderAggregator:

    @staticmethod
    def price_lines(requested: Iterable[RequestedLine], quotes: Dict[int, RateQuote]) -> List[ComputedLine]:
        """Price a fresh item set at the quoted rates."""
        computed = []
        for line_no, line in enumerate(collapse_lines(requested).values(), start=1):
            quote = quotes[line.catalog_item_id]
            computed.append(ComputedLine(
                line_no=line_no,
                catalog_item_id=line.catalog_item_id,
                qty=line.qty,
                rate=to_money(quote.rate),
                amount=line_amount(line.qty, quote.rate),
                ordered_by_box=line.ordered_by_box,
                box_count=line.box_count,
                box_rate=to_money(quote.box_rate),
            ))
        return computed

    @staticmethod
    def merge_lines(existing, incoming: Iterable[RequestedLine], quotes: Dict[int, RateQuote]) -> List[ComputedLine]:
        """
        Merge ``incoming`` into the ``existing`` lines of an open order.

        ``existing`` is any sequence of objects exposing catalog_item_id, qty,
        rate, ordered_by_box, box_count and box_rate (ORM rows or
        ComputedLine).
        """
        merged: "OrderedDict[int, dict]" = OrderedDict()
        for line in existing:
            merged[line.catalog_item_id] = {
                "qty": line.qty,
                "rate": to_money(line.rate),
                "ordered_by_box": bool(line.ordered_by_box),
                "box_count": line.box_count or 0,
                "box_rate": to_money(line.box_rate),
            }

        for item_id, line in collapse_lines(incoming).items():
            quote = quotes[item_id]
            previous = merged.get(item_id)
            if previous is None:
                merged[item_id] = {
                    "qty": line.qty,
                    "rate": to_money(quote.rate),
                    "ordered_by_box": line.ordered_by_box,
                    "box_count": line.box_count,
                    "box_rate": to_money(quote.box_rate),
                }
                continue
            previous["qty"] += line.qty
            previous["rate"] = to_money(quote.rate)
            previous["box_count"] += line.box_count
            previous["ordered_by_box"] = previous["ordered_by_box"] or line.ordered_by_box
            previous["box_rate"] = to_money(quote.box_rate)

        return [
            ComputedLine(
                line_no=line_no,
                catalog_item_id=item_id,
                qty=values["qty"],
                rate=values["rate"],
                amount=line_amount(values["qty"], values["rate"]),
                ordered_by_box=values["ordered_by_box"],
                box_count=values["box_count"],
                box_rate=values["box_rate"],
            )
            for line_no, (item_id, values) in enumerate(merged.items(), start=1)
        ]

    @staticmethod
    async def find_open_order(
        db: AsyncSession,
        distributor_id: int,
        target_window: DeliveryWindow,
        day_start: datetime,
        day_end: datetime,
    ) -> Optional[Order]:
        """Pending order for the same distributor, window and business day."""
        result = await db.execute(
            select(Order)
            .where(
                Order.distributor_id == distributor_id,
                Order.delivery_window == target_window,
                Order.status == OrderStatus.PENDING,
                Order.created_at >= day_start,
                Order.created_at < day_end,
            )
            .order_by(Order.id.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    @staticmethod
    async def resolve_order(
        db: AsyncSession,
        distributor_id: int,
        target_window: DeliveryWindow,
        day_start: datetime,
        day_end: datetime,
        feature_enabled: bool,
    ) -> OrderResolution:
        """
        Merge-or-create decision.

        With the window feature off every request creates a new order and no
        window is stamped. With it on, NONE is rejected and an open order in
        the same window today is merged into.
        """
        if not feature_enabled:
            return OrderResolution(mode=ResolutionMode.CREATE, target_window=None)

        if target_window == DeliveryWindow.NONE:
            raise OutsideOrderingWindowError()

        existing = await OrderAggregator.find_open_order(
            db, distributor_id, target_window, day_start, day_end
        )
        if existing is None:
            return OrderResolution(mode=ResolutionMode.CREATE, target_window=target_window)
        return OrderResolution(mode=ResolutionMode.MERGE, target_window=target_window, order=existing)
