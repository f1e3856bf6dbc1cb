from .automation_engine import AutomationEngine, CycleReport
from .scheduler import PeriodicTask

__all__ = ["AutomationEngine", "CycleReport", "PeriodicTask"]
