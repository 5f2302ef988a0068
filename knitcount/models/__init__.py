"""SQLAlchemy ORM models used by the counter engine."""

from .project import ProjectModel
from .counter import CounterModel
from .counter_link import CounterLinkModel
from .counter_history import CounterHistoryModel

__all__ = [
    "ProjectModel",
    "CounterModel",
    "CounterLinkModel",
    "CounterHistoryModel",
]
