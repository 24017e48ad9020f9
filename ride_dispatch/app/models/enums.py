"""
User roles enumeration.

Defines the role types known to the transport platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operations staff; receives dispatch escalations
        CUSTOMER: Books transport trips (default role)
        DRIVER: Eligible for trip assignment
    """
    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"
    DRIVER = "DRIVER"
