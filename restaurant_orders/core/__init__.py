"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from restaurant_orders.core.config import get_settings, Settings, EnvironmentMode
from restaurant_orders.core.exceptions import (
    OrderServiceError,
    ValidationError,
    BadRequestError,
    NotFoundError,
    SessionNotFoundError,
    GatewayError,
    PersistenceError,
    SnapshotDecodeError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderServiceError",
    "ValidationError",
    "BadRequestError",
    "NotFoundError",
    "SessionNotFoundError",
    "GatewayError",
    "PersistenceError",
    "SnapshotDecodeError",
]
