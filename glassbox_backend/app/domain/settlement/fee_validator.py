"""
Fee Schema Validator.

Gates every write to the business schema fee set. For each merchant:
- at most one ACTIVE schema per entity
- active percentages sum to at most 100.00

The validator is pure: callers pass the sibling schemas they read under the
merchant lock and persist only when no ValidationError is raised.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from glassbox_backend.app.core.exceptions import ValidationError
from glassbox_backend.app.domain.settlement.values import ValidationResult

MIN_PERCENTAGE = Decimal("0.00")
MAX_PERCENTAGE = Decimal("100.00")


def as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def active_total(schemas: Iterable[Any], merchant_id: str, exclude_id: Optional[int] = None) -> Decimal:
    """Sum of active percentages for a merchant, ignoring `exclude_id`."""
    total = Decimal("0.00")
    for schema in schemas:
        if schema.merchant_id != merchant_id or not schema.is_active:
            continue
        if exclude_id is not None and schema.id == exclude_id:
            continue
        total += as_decimal(schema.amount)
    return total


def validate_fee_schema(
    candidate: Any,
    existing_schemas: Iterable[Any],
    exclude_id: Optional[int] = None
) -> ValidationResult:
    """
    Validate a proposed fee schema against its merchant's existing schemas.

    Args:
        candidate: Proposed state (merchant_id, entity, amount, is_active)
        existing_schemas: Schemas currently stored (any merchant, any state)
        exclude_id: ID of the schema being edited, so it never conflicts with itself

    Returns:
        ValidationResult with the merchant's resulting allocated total

    Raises:
        ValidationError: With the violated rule in `violation`
    """
    amount = as_decimal(candidate.amount)
    merchant_id = candidate.merchant_id
    existing = list(existing_schemas)

    if amount < MIN_PERCENTAGE or amount > MAX_PERCENTAGE:
        raise ValidationError(
            message="Percentage must be between 0 and 100",
            violation=ValidationError.AMOUNT_OUT_OF_RANGE,
            details={"amount": str(amount)}
        )

    siblings_total = active_total(existing, merchant_id, exclude_id)

    # Inactive schemas do not take part in allocation
    if not candidate.is_active:
        return ValidationResult(
            merchant_id=merchant_id,
            total_allocated=siblings_total,
            remaining=MAX_PERCENTAGE - siblings_total
        )

    for schema in existing:
        if exclude_id is not None and schema.id == exclude_id:
            continue
        if schema.merchant_id == merchant_id and schema.is_active and schema.entity == candidate.entity:
            entity = getattr(candidate.entity, "value", candidate.entity)
            raise ValidationError(
                message=f"{entity} already has an active fee for merchant {merchant_id}",
                violation=ValidationError.DUPLICATE_ACTIVE_ENTITY,
                details={"merchant_id": merchant_id, "entity": entity, "existing_id": schema.id}
            )

    total = siblings_total + amount
    if total > MAX_PERCENTAGE:
        raise ValidationError(
            message=(
                f"Total percentage for merchant {merchant_id} would exceed 100% "
                f"(currently {siblings_total}%)"
            ),
            violation=ValidationError.TOTAL_EXCEEDS_LIMIT,
            details={
                "merchant_id": merchant_id,
                "current_total": str(siblings_total),
                "requested": str(amount),
                "resulting_total": str(total)
            }
        )

    return ValidationResult(
        merchant_id=merchant_id,
        total_allocated=total,
        remaining=MAX_PERCENTAGE - total
    )
