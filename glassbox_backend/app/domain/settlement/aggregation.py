"""
Revenue Aggregator.

Rolls allocation lines up into period aggregates grouped by any combination
of partner, merchant, category, device and entity. Currencies are never
summed together. Aggregates of disjoint transaction sets merge by plain
summation, so partial results can be built incrementally and combined.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from glassbox_backend.app.core.exceptions import CurrencyMismatchError
from glassbox_backend.app.domain.settlement.values import AggregateRow, AllocationResult
from glassbox_backend.app.models.fee_enums import Dimension

DimensionSpec = Tuple[Dimension, ...]

DIMENSION_FIELDS = [d.value for d in Dimension]


def dimension_label(dimension: Sequence[Dimension]) -> str:
    """Stable text form of a dimension; "" is the period total."""
    return ",".join(Dimension(d).value for d in dimension)


def parse_dimension(label: str) -> DimensionSpec:
    if not label:
        return ()
    return tuple(Dimension(part.strip()) for part in label.split(","))


def _sort_key(row: AggregateRow):
    values = []
    for name in DIMENSION_FIELDS:
        value = getattr(row, name)
        # NULL keys (uncategorized, unassigned) sort last
        values.append((value is None, str(getattr(value, "value", value) or "")))
    return (row.year, row.month, row.currency, row.dimension) + tuple(values)


def aggregate(
    allocations: Iterable[AllocationResult],
    dimension: Sequence[Dimension] = (),
    currency: Optional[str] = None
) -> List[AggregateRow]:
    """
    Group allocation lines by period, currency and the requested dimension.

    Args:
        allocations: Allocation lines (any periods, any currencies)
        dimension: Dimensions to group by; empty for period totals
        currency: Request a single-currency rollup

    Returns:
        Aggregates sorted by key. record_count counts distinct transactions.

    Raises:
        CurrencyMismatchError: If `currency` is given and other currencies are present
    """
    label = dimension_label(dimension)
    fields = [Dimension(d).value for d in dimension]

    totals: Dict[tuple, Decimal] = defaultdict(Decimal)
    transactions: Dict[tuple, Set[str]] = defaultdict(set)
    currencies: Set[str] = set()

    for line in allocations:
        currencies.add(line.currency)
        key = (line.year, line.month, line.currency) + tuple(getattr(line, f) for f in fields)
        totals[key] += line.amount_allocated
        transactions[key].add(line.transaction_id)

    if currency is not None:
        foreign = sorted(c for c in currencies if c != currency.upper())
        if foreign:
            raise CurrencyMismatchError(currency.upper(), sorted(currencies))

    rows = []
    for key, total in totals.items():
        year, month, row_currency = key[:3]
        rows.append(AggregateRow(
            year=year,
            month=month,
            currency=row_currency,
            dimension=label,
            total_amount=total,
            record_count=len(transactions[key]),
            **dict(zip(fields, key[3:]))
        ))
    return sorted(rows, key=_sort_key)


def merge_aggregates(*groups: Iterable[AggregateRow]) -> List[AggregateRow]:
    """
    Merge aggregates computed over disjoint sets of transactions.

    Rows with the same period, currency, dimension and key are summed.
    """
    totals: Dict[tuple, Decimal] = defaultdict(Decimal)
    counts: Dict[tuple, int] = defaultdict(int)
    for group in groups:
        for row in group:
            key = (row.year, row.month, row.currency, row.dimension) + tuple(
                getattr(row, name) for name in DIMENSION_FIELDS
            )
            totals[key] += row.total_amount
            counts[key] += row.record_count

    rows = [
        AggregateRow(
            year=key[0],
            month=key[1],
            currency=key[2],
            dimension=key[3],
            total_amount=total,
            record_count=counts[key],
            **dict(zip(DIMENSION_FIELDS, key[4:]))
        )
        for key, total in totals.items()
    ]
    return sorted(rows, key=_sort_key)
