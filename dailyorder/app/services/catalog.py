"""
Catalog price lookup.

The catalog is owned elsewhere; the order engine only asks it for the current
rate of a set of item ids. One SELECT per call so an order computation always
works from a single consistent snapshot of rates.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.core.exceptions import DependencyUnavailableError, ResourceNotFoundError
from dailyorder.app.domain.money import to_money
from dailyorder.app.models.catalog_item import CatalogItem

logger = logging.getLogger("dailyorder.orders")


@dataclass(frozen=True)
class RateQuote:
    item_id: int
    exists: bool
    rate: Decimal = Decimal("0.00")
    box_rate: Decimal = Decimal("0.00")
    name: Optional[str] = None
    unit: Optional[str] = None


class CatalogPriceLookup:

    @staticmethod
    async def get_rates(
        db: AsyncSession,
        item_ids: Iterable[int],
        tenant_id: Optional[int] = None,
    ) -> Dict[int, RateQuote]:
        """
        Resolve current rates for ``item_ids``.

        Every requested id gets an entry; ids that are unknown, inactive or
        belong to another tenant come back with ``exists=False``. Platform
        items (tenant_id NULL) are visible to every tenant.
        """
        wanted = sorted(set(item_ids))
        if not wanted:
            return {}

        query = select(CatalogItem).where(
            CatalogItem.id.in_(wanted),
            CatalogItem.is_active == True,
        )
        if tenant_id is not None:
            query = query.where(
                or_(CatalogItem.tenant_id == tenant_id, CatalogItem.tenant_id.is_(None))
            )

        try:
            result = await db.execute(query)
        except SQLAlchemyError as e:
            logger.error("Catalog lookup failed", extra={"item_ids": wanted, "error": str(e)})
            raise DependencyUnavailableError("Catalog") from e

        found = {item.id: item for item in result.scalars().all()}

        quotes = {}
        for item_id in wanted:
            item = found.get(item_id)
            if item is None:
                quotes[item_id] = RateQuote(item_id=item_id, exists=False)
                continue
            quotes[item_id] = RateQuote(
                item_id=item_id,
                exists=True,
                rate=to_money(item.rate),
                box_rate=to_money(item.box_rate),
                name=item.name,
                unit=item.unit,
            )
        return quotes

    @staticmethod
    def require_all(quotes: Dict[int, RateQuote]) -> None:
        """Raise with every unresolved id; never drop lines silently."""
        missing = [item_id for item_id, quote in quotes.items() if not quote.exists]
        if missing:
            raise ResourceNotFoundError("Catalog item", missing_ids=missing)
