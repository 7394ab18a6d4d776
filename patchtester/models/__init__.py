"""SQLAlchemy ORM models for PatchTester."""

from patchtester.models.applied_test import AppliedTest
from patchtester.models.base import Base
from patchtester.models.pull import Pull

__all__ = [
    "AppliedTest",
    "Base",
    "Pull",
]
