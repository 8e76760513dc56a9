"""
Fee allocation and settlement enumerations.
"""

import enum


class FeeEntity(str, enum.Enum):
    """Business entity receiving a share of advertising revenue."""
    GLASSBOX = "GLASSBOX"  # Platform commission
    SALES = "SALES"  # Sales team
    BROKER = "BROKER"  # Broker / agency
    MERCHANT = "MERCHANT"  # Merchant hosting the display
    PARTNER = "PARTNER"  # Advertising partner


class PriceType(str, enum.Enum):
    """Billing cadence of a partner schema fee."""
    MONTHLY = "MONTHLY"


class BatchStatus(str, enum.Enum):
    """Settlement batch lifecycle."""
    PENDING = "PENDING"  # Created, waiting for a worker
    RUNNING = "RUNNING"  # Records being processed
    COMPLETED = "COMPLETED"  # Run finished, aggregates are authoritative
    FAILED = "FAILED"  # Run aborted, nothing from it is authoritative


class BatchOutcome(str, enum.Enum):
    """Qualifies a terminal batch status."""
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"  # COMPLETED with failed_records > 0
    ABORTED = "ABORTED"


class Dimension(str, enum.Enum):
    """Columns a revenue aggregate can be grouped by."""
    PARTNER = "partner_id"
    MERCHANT = "merchant_id"
    CATEGORY = "category"
    DEVICE = "device_id"
    ENTITY = "entity"


class RemainderPolicy(str, enum.Enum):
    """Where the unallocated share of a transaction goes."""
    UNASSIGNED = "UNASSIGNED"  # Explicit remainder line with no entity
    PLATFORM = "PLATFORM"  # Added to the GLASSBOX share


class MissingSchemaPolicy(str, enum.Enum):
    """What a settlement run does with a merchant that has no active schema."""
    FAIL_RECORD = "FAIL_RECORD"
    PLATFORM = "PLATFORM"  # 100% to GLASSBOX
    SKIP = "SKIP"
