"""
Services package

Business logic for recurring transactions: scheduling, materialization,
conflict resolution and the lifecycle that ties them together.
"""

from .conflict_resolver import ConflictResolver
from .materializer import TransactionMaterializer
from .recurrence_schedule import Schedule
from .recurrence_service import RecurrenceService

__all__ = [
    "ConflictResolver",
    "TransactionMaterializer",
    "Schedule",
    "RecurrenceService",
]
