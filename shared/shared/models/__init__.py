"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.reminder import ReminderRow, StoreState

__all__ = [
    "Base",
    "ReminderRow",
    "StoreState",
]
