"""
Per-distributor serialization.

Every ledger append and every order write for a (tenant, distributor) pair
runs under that pair's lock, held from the read of the prior state until the
commit. Different distributors never contend.
"""

import asyncio
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.models.user import User

LockKey = Tuple[int, int]


def lock_key(tenant_id: Optional[int], distributor_id: int) -> LockKey:
    # Platform scope sorts as tenant 0
    return (tenant_id or 0, distributor_id)


class _Slot:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        # Tasks holding or waiting on the lock
        self.holders = 0


class DistributorLockRegistry:
    """
    In-process asyncio locks keyed by (tenant, distributor).

    Locks are bound to the running event loop, so the registry keeps one
    table per loop. A key is dropped from the table once nobody holds or
    waits on it.
    """

    def __init__(self):
        self._tables: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[LockKey, _Slot]]" = (
            weakref.WeakKeyDictionary()
        )

    def _table(self) -> Dict[LockKey, _Slot]:
        loop = asyncio.get_running_loop()
        table = self._tables.get(loop)
        if table is None:
            table = {}
            self._tables[loop] = table
        return table

    def lock_for(self, key: LockKey) -> asyncio.Lock:
        table = self._table()
        slot = table.get(key)
        if slot is None:
            slot = _Slot()
            table[key] = slot
        return slot.lock

    def active_keys(self) -> List[LockKey]:
        return sorted(self._table())

    def is_held(self, key: LockKey) -> bool:
        slot = self._table().get(key)
        return slot is not None and slot.lock.locked()

    @asynccontextmanager
    async def hold(self, keys: Iterable[LockKey]):
        """Acquire the locks for ``keys`` in sorted order."""
        table = self._table()
        slots = []
        for key in sorted(set(keys)):
            self.lock_for(key)
            slot = table[key]
            slot.holders += 1
            slots.append((key, slot))
        try:
            async with AsyncExitStack() as stack:
                for _, slot in slots:
                    await stack.enter_async_context(slot.lock)
                yield
        finally:
            for key, slot in slots:
                slot.holders -= 1
                if slot.holders == 0 and table.get(key) is slot:
                    del table[key]


distributor_locks = DistributorLockRegistry()


async def lock_distributor_rows(db: AsyncSession, distributor_ids: Iterable[int]) -> None:
    """
    Row-lock the distributors' user rows for the current transaction.

    Serializes writers across worker processes on PostgreSQL; SQLite ignores
    FOR UPDATE.
    """
    ids = sorted(set(distributor_ids))
    if not ids:
        return
    await db.execute(
        select(User.id).where(User.id.in_(ids)).order_by(User.id).with_for_update()
    )
