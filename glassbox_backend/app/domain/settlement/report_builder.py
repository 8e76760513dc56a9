"""
Settlement Report Builder.

Read path only: turns a completed batch and its stored aggregates into the
detailed revenue report. Never recomputes allocations.
"""

from collections import defaultdict
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, Iterable, List

from glassbox_backend.app.core.exceptions import BatchNotFinalError
from glassbox_backend.app.domain.settlement.aggregation import dimension_label
from glassbox_backend.app.models.fee_enums import BatchStatus, Dimension, FeeEntity
from glassbox_backend.app.schemas.revenue import (
    CategoryRevenue, CurrencyReportSection, EntityRevenue, MerchantSummary,
    PartnerFeeLine, SettlementReport
)

UNASSIGNED = "UNASSIGNED"
UNCATEGORIZED = "UNCATEGORIZED"
PERCENT = Decimal("0.01")

TOTAL = dimension_label(())
BY_ENTITY = dimension_label((Dimension.ENTITY,))
BY_MERCHANT = dimension_label((Dimension.MERCHANT,))
BY_MERCHANT_ENTITY = dimension_label((Dimension.MERCHANT, Dimension.ENTITY))
BY_CATEGORY = dimension_label((Dimension.CATEGORY,))

# Shares that reduce what a merchant keeps
FEE_ENTITIES = [e for e in FeeEntity if e != FeeEntity.MERCHANT]


def _share(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (part * 100 / whole).quantize(PERCENT, rounding=ROUND_HALF_EVEN)


def _entity_name(entity: Any) -> str:
    if entity is None:
        return UNASSIGNED
    return getattr(entity, "value", entity)


def _build_section(currency: str, rows: List[Any], partner_fees: List[Any]) -> CurrencyReportSection:
    by_dimension: Dict[str, List[Any]] = defaultdict(list)
    for row in rows:
        by_dimension[row.dimension].append(row)

    entity_rows = by_dimension[BY_ENTITY]
    totals = by_dimension[TOTAL]
    if totals:
        total_revenue = sum((Decimal(r.total_amount) for r in totals), Decimal(0))
        transaction_count = sum(r.record_count for r in totals)
    else:
        total_revenue = sum((Decimal(r.total_amount) for r in entity_rows), Decimal(0))
        transaction_count = 0

    entity_breakdown = [
        EntityRevenue(
            entity=_entity_name(r.entity),
            amount=Decimal(r.total_amount),
            percentage=_share(Decimal(r.total_amount), total_revenue)
        )
        for r in entity_rows
    ]

    merchants: Dict[str, Dict[str, Any]] = {}
    for r in by_dimension[BY_MERCHANT]:
        merchants[r.merchant_id] = {"total": Decimal(r.total_amount), "fees": {}, "count": r.record_count}
    for r in by_dimension[BY_MERCHANT_ENTITY]:
        merchant = merchants.setdefault(r.merchant_id, {"total": Decimal(0), "fees": {}, "count": 0})
        amount = Decimal(r.total_amount)
        if r.entity is not None and r.entity in FEE_ENTITIES:
            name = _entity_name(r.entity)
            merchant["fees"][name] = merchant["fees"].get(name, Decimal(0)) + amount

    merchant_summary = []
    for merchant_id in sorted(merchants):
        data = merchants[merchant_id]
        total_fees = sum(data["fees"].values(), Decimal(0))
        merchant_summary.append(MerchantSummary(
            merchant_id=merchant_id,
            total_revenue=data["total"],
            fees=data["fees"],
            total_fees=total_fees,
            net_revenue=data["total"] - total_fees,
            transaction_count=data["count"]
        ))

    category_breakdown = [
        CategoryRevenue(
            category=r.category if r.category is not None else UNCATEGORIZED,
            revenue=Decimal(r.total_amount),
            transaction_count=r.record_count,
            percentage=_share(Decimal(r.total_amount), total_revenue)
        )
        for r in by_dimension[BY_CATEGORY]
    ]

    fee_lines = [
        PartnerFeeLine(partner_id=fee.partner_id, amount=Decimal(fee.amount), currency=fee.currency)
        for fee in partner_fees
        if fee.currency == currency
    ]

    return CurrencyReportSection(
        currency=currency,
        total_revenue=total_revenue,
        transaction_count=transaction_count,
        entity_breakdown=entity_breakdown,
        merchant_summary=merchant_summary,
        category_breakdown=category_breakdown,
        partner_fees=fee_lines,
        total_partner_fees=sum((line.amount for line in fee_lines), Decimal(0))
    )


def build_report(batch: Any, aggregates: Iterable[Any], partner_fees: Iterable[Any] = ()) -> SettlementReport:
    """
    Build the detailed revenue report of a settlement batch.

    Args:
        batch: A COMPLETED settlement batch
        aggregates: Aggregates stored by that batch (ORM rows or AggregateRow)
        partner_fees: Partner monthly fees recorded with the batch, listed per currency

    Raises:
        BatchNotFinalError: If the batch has not reached COMPLETED
    """
    if batch.status != BatchStatus.COMPLETED:
        raise BatchNotFinalError(batch.id, getattr(batch.status, "value", batch.status))

    by_currency: Dict[str, List[Any]] = defaultdict(list)
    for row in aggregates:
        if row.year == batch.year and row.month == batch.month:
            by_currency[row.currency].append(row)

    fees = list(partner_fees)
    sections = [_build_section(currency, by_currency[currency], fees) for currency in sorted(by_currency)]

    return SettlementReport(
        batch_id=batch.id,
        period=f"{batch.year}-{batch.month:02d}",
        status=batch.status,
        outcome=batch.outcome,
        total_records=batch.total_records,
        processed_records=batch.processed_records,
        failed_records=batch.failed_records,
        generated_at=batch.completed_at,
        sections=sections
    )
