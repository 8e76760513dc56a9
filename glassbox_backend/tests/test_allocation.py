"""
Allocation calculator tests.

Covers rounding, reconciliation and remainder handling.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from glassbox_backend.app.core.exceptions import SchemaNotFoundError, ValidationError
from glassbox_backend.app.domain.settlement.allocation import allocate, allocate_transaction
from glassbox_backend.app.domain.settlement.values import FeeShare, TransactionRecord
from glassbox_backend.app.models.fee_enums import FeeEntity, RemainderPolicy


def schemas_for(merchant_id="M-001", **amounts):
    return [
        FeeShare(id=index, merchant_id=merchant_id, entity=FeeEntity(entity), amount=Decimal(amount))
        for index, (entity, amount) in enumerate(amounts.items(), start=1)
    ]


def by_entity(shares):
    return {share.entity: share.amount_allocated for share in shares}


def test_split_of_one_hundred():
    """10 / 5 / 80 of 100.00, the remaining 5.00 stays unallocated."""
    schemas = schemas_for(GLASSBOX="10", SALES="5", BROKER="80")

    shares = allocate(Decimal("100.00"), schemas, "M-001", "IDR")

    assert by_entity(shares) == {
        FeeEntity.GLASSBOX: Decimal("10.00"),
        FeeEntity.SALES: Decimal("5.00"),
        FeeEntity.BROKER: Decimal("80.00"),
    }
    assert sum(by_entity(shares).values()) == Decimal("95.00")


def test_only_active_schemas_of_the_merchant_are_used():
    schemas = schemas_for(GLASSBOX="10") + [
        FeeShare(id=10, merchant_id="M-001", entity=FeeEntity.SALES, amount=Decimal("50"), is_active=False),
        FeeShare(id=11, merchant_id="M-002", entity=FeeEntity.BROKER, amount=Decimal("50")),
    ]

    shares = allocate(Decimal("200"), schemas, "M-001", "IDR")

    assert by_entity(shares) == {FeeEntity.GLASSBOX: Decimal("20.00")}


def test_no_active_schema_raises():
    inactive = [FeeShare(id=1, merchant_id="M-001", entity=FeeEntity.GLASSBOX, amount=Decimal("10"), is_active=False)]

    with pytest.raises(SchemaNotFoundError) as exc_info:
        allocate(Decimal("10"), inactive, "M-001", "IDR")

    assert exc_info.value.details["merchant_id"] == "M-001"


def test_repeated_entity_is_rejected():
    schemas = schemas_for(GLASSBOX="50", SALES="20") + [
        FeeShare(id=9, merchant_id="M-001", entity=FeeEntity.GLASSBOX, amount=Decimal("30")),
    ]

    with pytest.raises(ValidationError) as exc_info:
        allocate(Decimal("100"), schemas, "M-001", "IDR")

    assert exc_info.value.violation == ValidationError.DUPLICATE_ACTIVE_ENTITY


def test_total_over_one_hundred_is_rejected():
    schemas = schemas_for(GLASSBOX="60", SALES="90")

    with pytest.raises(ValidationError) as exc_info:
        allocate(Decimal("100"), schemas, "M-001", "IDR")

    assert exc_info.value.violation == ValidationError.TOTAL_EXCEEDS_LIMIT
    assert exc_info.value.details["resulting_total"] == "150"


def test_half_even_rounding():
    """12.5% of 0.20 is 0.025, which rounds to the even 0.02."""
    shares = allocate(Decimal("0.20"), schemas_for(SALES="12.5"), "M-001", "IDR")
    assert by_entity(shares)[FeeEntity.SALES] == Decimal("0.02")


def test_full_allocation_distributes_every_minor_unit():
    """Three thirds of 0.10 round to 0.03 each; the missing cent goes to GLASSBOX."""
    schemas = schemas_for(GLASSBOX="33.34", SALES="33.33", BROKER="33.33")

    shares = by_entity(allocate(Decimal("0.10"), schemas, "M-001", "IDR"))

    assert sum(shares.values()) == Decimal("0.10")
    assert shares[FeeEntity.GLASSBOX] == Decimal("0.04")
    assert shares[FeeEntity.SALES] == Decimal("0.03")
    assert shares[FeeEntity.BROKER] == Decimal("0.03")


def test_reconciliation_falls_back_to_largest_share():
    """Without a GLASSBOX share the rounding difference lands on the largest share."""
    schemas = schemas_for(SALES="25", BROKER="50", PARTNER="25")

    # 0.005 rounds to 0.00 twice, so one cent is missing
    shares = by_entity(allocate(Decimal("0.02"), schemas, "M-001", "IDR"))

    assert sum(shares.values()) == Decimal("0.02")
    assert shares[FeeEntity.BROKER] == Decimal("0.02")
    assert shares[FeeEntity.SALES] == Decimal("0.00")


def test_overshoot_is_taken_back():
    """Both halves of 0.03 (0.015) round up to 0.02; one cent is taken back."""
    schemas = schemas_for(GLASSBOX="50", SALES="50")

    shares = by_entity(allocate(Decimal("0.03"), schemas, "M-001", "IDR"))

    assert sum(shares.values()) == Decimal("0.03")
    assert all(amount >= 0 for amount in shares.values())


def test_zero_decimal_currency():
    shares = by_entity(allocate(Decimal("1001"), schemas_for(GLASSBOX="10", SALES="5"), "M-001", "JPY"))

    assert shares[FeeEntity.GLASSBOX] == Decimal("100")
    assert shares[FeeEntity.SALES] == Decimal("50")


@pytest.mark.parametrize("amount", ["0.01", "0.07", "1.23", "99.99", "100.00", "12345.67"])
def test_conservation(amount):
    schemas = schemas_for(GLASSBOX="17.5", SALES="2.25", BROKER="41", MERCHANT="30.1")
    amount = Decimal(amount)

    shares = by_entity(allocate(amount, schemas, "M-001", "USD"))

    assert sum(shares.values()) <= amount
    assert all(value >= 0 for value in shares.values())


def transaction(amount="100.00", **overrides):
    values = dict(
        id="tx-1",
        merchant_id="M-001",
        partner_id="P-001",
        device_id="DEV-1",
        category=None,
        amount=Decimal(amount),
        currency="idr",
        displayed_at=datetime(2024, 3, 31, 23, 59, 59)
    )
    values.update(overrides)
    return TransactionRecord(**values)


def test_transaction_gets_explicit_remainder_line():
    schemas = schemas_for(GLASSBOX="10", SALES="5", BROKER="80")

    lines = allocate_transaction(transaction(), schemas, RemainderPolicy.UNASSIGNED)

    assert [line.entity for line in lines] == [FeeEntity.GLASSBOX, FeeEntity.SALES, FeeEntity.BROKER, None]
    remainder = lines[-1]
    assert remainder.amount_allocated == Decimal("5.00")
    assert remainder.percentage == Decimal("5")
    assert sum(line.amount_allocated for line in lines) == Decimal("100.00")

    first = lines[0]
    assert (first.year, first.month) == (2024, 3)
    assert first.currency == "IDR"
    assert first.category is None
    assert first.transaction_id == "tx-1"


def test_platform_policy_adds_remainder_to_glassbox():
    schemas = schemas_for(GLASSBOX="10", SALES="5", BROKER="80")

    lines = allocate_transaction(transaction(), schemas, RemainderPolicy.PLATFORM)

    assert {line.entity: line.amount_allocated for line in lines} == {
        FeeEntity.GLASSBOX: Decimal("15.00"),
        FeeEntity.SALES: Decimal("5.00"),
        FeeEntity.BROKER: Decimal("80.00"),
    }


def test_fully_allocated_transaction_has_no_remainder_line():
    lines = allocate_transaction(transaction(), schemas_for(GLASSBOX="20", MERCHANT="80"), RemainderPolicy.UNASSIGNED)
    assert None not in [line.entity for line in lines]


def test_period_follows_utc_for_aware_timestamps():
    """00:30 on April 1st in Jakarta is still March 31st in UTC."""
    jakarta = timezone(timedelta(hours=7))
    record = transaction(displayed_at=datetime(2024, 4, 1, 0, 30, tzinfo=jakarta))

    assert (record.period.year, record.period.month) == (2024, 3)
