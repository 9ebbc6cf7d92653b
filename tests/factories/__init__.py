"""Factory Boy model factories for test data generation.

Available factories
-------------------
StudentFactory             : unpaired student dict
SupervisorFactory          : active supervisor dict with spare capacity
ApplicationFactory         : pending solo application dict
ProjectFactory             : approved project dict without a co-supervisor
"""

from __future__ import annotations

from tests.factories.users import StudentFactory, SupervisorFactory
from tests.factories.workflow import ApplicationFactory, ProjectFactory

__all__ = [
    "ApplicationFactory",
    "ProjectFactory",
    "StudentFactory",
    "SupervisorFactory",
]
