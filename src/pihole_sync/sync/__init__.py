"""Sync orchestration: triggers, transports and the cycle orchestrator."""

from .models import CycleResult, SecondaryResult, TriggerEvent, TriggerKind
from .orchestrator import CycleRunner, SyncOrchestrator
from .triggers import TriggerScheduler, TriggerSettings

__all__ = [
    "CycleResult",
    "CycleRunner",
    "SecondaryResult",
    "SyncOrchestrator",
    "TriggerEvent",
    "TriggerKind",
    "TriggerScheduler",
    "TriggerSettings",
]
