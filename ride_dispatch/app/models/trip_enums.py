"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Transport trip status enumeration."""
    PENDING_ASSIGNMENT = "PENDING_ASSIGNMENT"  # Booked and waiting for a driver
    CONFIRMED = "CONFIRMED"  # Driver assigned
    PENDING_ADMIN_ASSIGNMENT = "PENDING_ADMIN_ASSIGNMENT"  # Auto-dispatch gave up, admins take over
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
