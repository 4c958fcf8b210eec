"""SQLAlchemy ORM models for the checkout payment service."""
# Import all models here to ensure they are registered with Alembic

from checkout.models.base import Base
from checkout.models.payment import (
    AttachedOrder,
    NoOrder,
    OrderLink,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PendingOrder,
    VerificationStatus,
)

__all__ = [
    "Base",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "VerificationStatus",
    "OrderLink",
    "AttachedOrder",
    "PendingOrder",
    "NoOrder",
]
