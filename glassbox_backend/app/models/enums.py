"""
User roles enumeration.

Defines the role types carried in access tokens issued by the identity service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform operator, manages fee schemas and settlements
        PARTNER: Advertising partner, reads its own revenue
        MERCHANT: Merchant hosting displays, reads its own revenue
    """
    ADMIN = "ADMIN"
    PARTNER = "PARTNER"
    MERCHANT = "MERCHANT"
