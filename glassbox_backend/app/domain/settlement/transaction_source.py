"""
Transaction feed access for settlement runs.

The feed is owned by the display pipeline; settlement only reads it, one
page at a time, so a period of any size runs in bounded memory.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.domain.settlement.values import Period, TransactionRecord
from glassbox_backend.app.models.ad_view_transaction import AdViewTransaction


class TransactionSource(ABC):
    """Read-only paginated access to the transactions of a period."""

    @abstractmethod
    async def count(self, db: AsyncSession, period: Period) -> int:
        ...

    @abstractmethod
    def iter_pages(self, db: AsyncSession, period: Period, page_size: int) -> AsyncIterator[List[TransactionRecord]]:
        ...


class SqlTransactionSource(TransactionSource):
    """Reads `ad_view_transactions` with keyset pagination on id."""

    @staticmethod
    def _in_period(period: Period):
        return (
            AdViewTransaction.displayed_at >= period.start,
            AdViewTransaction.displayed_at < period.end,
        )

    async def count(self, db: AsyncSession, period: Period) -> int:
        result = await db.execute(
            select(func.count(AdViewTransaction.id)).where(*self._in_period(period))
        )
        return result.scalar() or 0

    async def iter_pages(self, db: AsyncSession, period: Period, page_size: int) -> AsyncIterator[List[TransactionRecord]]:
        last_id = 0
        while True:
            result = await db.execute(
                select(AdViewTransaction)
                .where(*self._in_period(period), AdViewTransaction.id > last_id)
                .order_by(AdViewTransaction.id)
                .limit(page_size)
            )
            rows = result.scalars().all()
            if not rows:
                break

            yield [
                TransactionRecord(
                    id=str(row.id),
                    merchant_id=row.merchant_id,
                    partner_id=row.partner_id,
                    advertisement_id=row.advertisement_id,
                    device_id=row.device_id,
                    category=row.category,
                    amount=row.amount,
                    currency=row.currency,
                    displayed_at=row.displayed_at
                )
                for row in rows
            ]

            last_id = rows[-1].id
            if len(rows) < page_size:
                break
