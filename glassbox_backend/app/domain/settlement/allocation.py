"""
Allocation Calculator.

Splits an amount across the active fee schemas of its merchant.

Rounding: every share is rounded half-to-even at the currency's minor unit.
The rounding difference is then moved onto one entity so that the shares
add up to exactly round(amount * total_pct / 100). Shares therefore never
exceed the amount, and a merchant allocated at 100% gets every minor unit
distributed.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, Iterable, List, Optional

from glassbox_backend.app.core.config import settings
from glassbox_backend.app.core.exceptions import SchemaNotFoundError, ValidationError
from glassbox_backend.app.domain.settlement.fee_validator import MAX_PERCENTAGE, as_decimal
from glassbox_backend.app.domain.settlement.values import (
    AllocationResult, AllocationShare, TransactionRecord
)
from glassbox_backend.app.models.fee_enums import FeeEntity, RemainderPolicy

HUNDRED = Decimal("100")
ENTITY_ORDER = {entity: index for index, entity in enumerate(FeeEntity)}


def minor_unit(currency: str) -> Decimal:
    """Smallest representable amount of a currency, e.g. Decimal('0.01')."""
    places = settings.currency_minor_units.get(currency.upper(), 2)
    return Decimal(1).scaleb(-places)


def quantize_money(amount: Any, currency: str) -> Decimal:
    return as_decimal(amount).quantize(minor_unit(currency), rounding=ROUND_HALF_EVEN)


def _reconcile(
    amounts: Dict[FeeEntity, Decimal],
    difference: Decimal,
    preferred: Optional[FeeEntity]
) -> None:
    """Absorb `difference` into the shares, preferred entity first, never below zero."""
    ordered = sorted(
        amounts,
        key=lambda entity: (entity != preferred, -amounts[entity], ENTITY_ORDER[entity])
    )
    for entity in ordered:
        if difference == 0:
            break
        adjusted = max(amounts[entity] + difference, Decimal(0))
        difference -= adjusted - amounts[entity]
        amounts[entity] = adjusted


def allocate(
    amount: Any,
    schemas: Iterable[Any],
    merchant_id: str,
    currency: str,
    reconciliation_entity: Optional[FeeEntity] = None
) -> List[AllocationShare]:
    """
    Compute each active entity's share of `amount` for a merchant.

    Args:
        amount: Amount to split (quantized to the currency's minor unit first)
        schemas: Candidate fee schemas; only active ones of `merchant_id` are used
        merchant_id: Merchant the amount was earned on
        currency: ISO currency code, decides rounding precision
        reconciliation_entity: Entity absorbing rounding differences

    Returns:
        Shares ordered by entity

    Raises:
        SchemaNotFoundError: If the merchant has no active schema
        ValidationError: If the schemas repeat an entity or exceed 100% in total
    """
    matched = sorted(
        (s for s in schemas if s.merchant_id == merchant_id and s.is_active),
        key=lambda s: ENTITY_ORDER[FeeEntity(s.entity)]
    )
    if not matched:
        raise SchemaNotFoundError(merchant_id)

    if reconciliation_entity is None:
        reconciliation_entity = FeeEntity(settings.reconciliation_entity)

    base = quantize_money(amount, currency)
    unit = minor_unit(currency)

    percentages: Dict[FeeEntity, Decimal] = {}
    schema_ids: Dict[FeeEntity, Optional[int]] = {}
    amounts: Dict[FeeEntity, Decimal] = {}
    for schema in matched:
        entity = FeeEntity(schema.entity)
        if entity in percentages:
            raise ValidationError(
                message=f"{entity.value} has more than one active fee for merchant {merchant_id}",
                violation=ValidationError.DUPLICATE_ACTIVE_ENTITY,
                details={"merchant_id": merchant_id, "entity": entity.value}
            )
        pct = as_decimal(schema.amount)
        percentages[entity] = pct
        schema_ids[entity] = schema.id
        amounts[entity] = (base * pct / HUNDRED).quantize(unit, rounding=ROUND_HALF_EVEN)

    total_pct = sum(percentages.values(), Decimal(0))
    if total_pct > MAX_PERCENTAGE:
        raise ValidationError(
            message=f"Active fees of merchant {merchant_id} total {total_pct}%",
            violation=ValidationError.TOTAL_EXCEEDS_LIMIT,
            details={"merchant_id": merchant_id, "resulting_total": str(total_pct)}
        )
    expected = (base * total_pct / HUNDRED).quantize(unit, rounding=ROUND_HALF_EVEN)
    difference = expected - sum(amounts.values(), Decimal(0))
    if difference:
        _reconcile(amounts, difference, reconciliation_entity)

    return [
        AllocationShare(
            entity=entity,
            percentage=percentages[entity],
            amount_allocated=amounts[entity],
            schema_id=schema_ids[entity]
        )
        for entity in amounts
    ]


def allocate_transaction(
    transaction: TransactionRecord,
    schemas: Iterable[Any],
    remainder_policy: Optional[RemainderPolicy] = None
) -> List[AllocationResult]:
    """
    Allocate one transaction and attach its period and dimensions.

    The part of the amount not covered by schemas becomes an explicit
    remainder line (entity None) or is added to GLASSBOX, depending on
    `remainder_policy`. Either way the lines add up to the quantized amount.
    """
    if remainder_policy is None:
        remainder_policy = RemainderPolicy(settings.remainder_policy)

    shares = allocate(transaction.amount, schemas, transaction.merchant_id, transaction.currency)
    base = quantize_money(transaction.amount, transaction.currency)

    amounts = {share.entity: share.amount_allocated for share in shares}
    percentages = {share.entity: share.percentage for share in shares}
    remainder = base - sum(amounts.values(), Decimal(0))
    remainder_pct = HUNDRED - sum(percentages.values(), Decimal(0))

    if remainder and remainder_policy == RemainderPolicy.PLATFORM:
        amounts[FeeEntity.GLASSBOX] = amounts.get(FeeEntity.GLASSBOX, Decimal(0)) + remainder
        percentages[FeeEntity.GLASSBOX] = percentages.get(FeeEntity.GLASSBOX, Decimal(0)) + remainder_pct
        remainder = Decimal(0)

    period = transaction.period
    context = dict(
        transaction_id=transaction.id,
        currency=transaction.currency,
        year=period.year,
        month=period.month,
        merchant_id=transaction.merchant_id,
        partner_id=transaction.partner_id,
        category=transaction.category,
        device_id=transaction.device_id,
    )

    lines = [
        AllocationResult(entity=entity, amount_allocated=amounts[entity], percentage=percentages[entity], **context)
        for entity in sorted(amounts, key=ENTITY_ORDER.get)
    ]
    if remainder:
        lines.append(AllocationResult(entity=None, amount_allocated=remainder, percentage=remainder_pct, **context))
    return lines
