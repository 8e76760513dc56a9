"""
Fee Schema Resolver.

Responsible for determining the fee schema set a settlement period is
allocated against. Reads the revision history, not the live table, so a
period settles the same way no matter when it is (re)generated.
"""

from collections import defaultdict
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.domain.settlement.values import FeeShare, Period
from glassbox_backend.app.models.fee_schema import FeeSchemaRevision


class FeeSchemaResolver:

    @staticmethod
    async def snapshot_for_period(db: AsyncSession, period: Period) -> Dict[str, List[FeeShare]]:
        """
        Active fee shares in effect at the end of `period`, keyed by merchant.

        A revision is in effect when it started before the period ended and
        had not been closed by then.
        """
        cutoff = period.end

        query = select(FeeSchemaRevision).where(
            FeeSchemaRevision.valid_from < cutoff,
            (FeeSchemaRevision.valid_to.is_(None) | (FeeSchemaRevision.valid_to >= cutoff)),
            FeeSchemaRevision.is_active == True
        ).order_by(FeeSchemaRevision.merchant_id, FeeSchemaRevision.fee_schema_id)

        result = await db.execute(query)

        snapshot: Dict[str, List[FeeShare]] = defaultdict(list)
        for revision in result.scalars().all():
            snapshot[revision.merchant_id].append(FeeShare(
                id=revision.fee_schema_id,
                merchant_id=revision.merchant_id,
                entity=revision.entity,
                amount=revision.amount,
                is_active=True
            ))
        return dict(snapshot)
