"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .project import ProjectRecord
from .subscription import SubscriptionRecord
from .usage import AnalysisRecord, ComparisonRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "SubscriptionRecord",
    "AnalysisRecord",
    "ComparisonRecord",
    "ProjectRecord",
]
