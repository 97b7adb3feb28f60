"""Heartbeat: one sequenced run of backup, sync, classify and indexing."""

from .orchestrator import (
    HeartbeatContext,
    HeartbeatOrchestrator,
    HeartbeatResult,
    ProgressEvent,
    Step,
    StepOutcome,
    StepResult,
    StepStatus,
)
from .steps import backup_step, callable_step, classify_step, default_steps, sync_step, write_backup

__all__ = [
    "HeartbeatContext",
    "HeartbeatOrchestrator",
    "HeartbeatResult",
    "ProgressEvent",
    "Step",
    "StepOutcome",
    "StepResult",
    "StepStatus",
    "backup_step",
    "callable_step",
    "classify_step",
    "default_steps",
    "sync_step",
    "write_backup",
]
