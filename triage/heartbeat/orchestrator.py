"""
Heartbeat Orchestrator

Runs named steps in sequence and reports progress for each one. Steps are
isolated: a failure is recorded with its error and duration and the run
moves on. A step whose dependency failed, was skipped, or produced nothing
is skipped without being attempted. The run summary is written to the
activity log no matter how the run ends.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..common.activity import ActivityLog
from ..common.config import HeartbeatConfig
from ..common.errors import TransientConnectorError
from ..common.schemas import Actor, EventType, utc_now

if TYPE_CHECKING:
    from ..intake.gate import SyncResult

logger = logging.getLogger("triage.heartbeat.orchestrator")


class StepStatus(str, Enum):
    START = "start"
    DONE = "done"
    SKIP = "skip"
    ERROR = "error"


@dataclass
class ProgressEvent:
    step: str
    status: StepStatus
    detail: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], Any]


@dataclass
class StepOutcome:
    """What a step reports back when it finishes"""
    detail: Optional[str] = None
    produced: bool = True  # False tells dependent steps there is nothing to do
    data: Any = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class HeartbeatContext:
    """Shared state passed to every step in one run"""
    sync_results: Dict[str, "SyncResult"] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)


StepFn = Callable[[HeartbeatContext], Awaitable[Optional[StepOutcome]]]


@dataclass
class Step:
    name: str
    run: Optional[StepFn]
    depends_on: Tuple[str, ...] = ()
    skip_reason: str = ""

    @property
    def enabled(self) -> bool:
        return self.run is not None


@dataclass
class StepResult:
    name: str
    success: bool
    skipped: bool = False
    duration_ms: int = 0
    error: Optional[str] = None
    detail: Optional[str] = None
    produced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "detail": self.detail,
        }


@dataclass
class HeartbeatResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    steps: Dict[str, StepResult] = field(default_factory=dict)
    sync_results: Dict[str, "SyncResult"] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def all_steps_succeeded(self) -> bool:
        return all(step.success for step in self.steps.values() if not step.skipped)

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "all_steps_succeeded": self.all_steps_succeeded,
            "steps": {name: step.to_dict() for name, step in self.steps.items()},
            "connectors": {name: sync.to_dict() for name, sync in self.sync_results.items()},
            "warnings": list(self.warnings),
        }


class HeartbeatOrchestrator:
    def __init__(
        self,
        steps: Sequence[Step],
        activity: Optional[ActivityLog] = None,
        config: Optional[HeartbeatConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        names = [step.name for step in steps]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate heartbeat steps: {sorted(duplicates)}")

        self._steps = list(steps)
        self._activity = activity
        self._config = config or HeartbeatConfig()
        self._clock = clock

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def _emit(self, callback: Optional[ProgressCallback], step: str, status: StepStatus, detail: Optional[str] = None):
        if callback is None:
            return
        try:
            callback(ProgressEvent(step=step, status=status, detail=detail))
        except Exception as e:
            logger.warning("Progress callback failed on %s/%s: %s", step, status.value, e)

    def _blocked_by(self, step: Step, result: HeartbeatResult) -> Optional[str]:
        for dependency in step.depends_on:
            previous = result.steps.get(dependency)
            if previous is None:
                return f"{dependency} did not run"
            if previous.skipped:
                return f"{dependency} was skipped"
            if not previous.success:
                return f"{dependency} failed"
            if not previous.produced:
                return f"{dependency} produced no output"
        return None

    async def _run_step(
        self,
        step: Step,
        context: HeartbeatContext,
        result: HeartbeatResult,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        if not step.enabled:
            reason = step.skip_reason or "not configured"
            result.steps[step.name] = StepResult(step.name, success=True, skipped=True, detail=reason)
            self._emit(on_progress, step.name, StepStatus.SKIP, reason)
            return

        blocked = self._blocked_by(step, result)
        if blocked:
            result.steps[step.name] = StepResult(step.name, success=True, skipped=True, detail=blocked)
            self._emit(on_progress, step.name, StepStatus.SKIP, blocked)
            logger.info("[Heartbeat] Skipping %s: %s", step.name, blocked)
            return

        self._emit(on_progress, step.name, StepStatus.START)
        started = time.monotonic()
        timeout = self._config.step_timeout_seconds

        try:
            outcome = await asyncio.wait_for(step.run(context), timeout=timeout)
        except TransientConnectorError as e:
            error = f"{e} (will retry next heartbeat)"
            result.warnings.append(error)
            self._record_failure(step, result, error, started, on_progress)
            return
        except asyncio.TimeoutError:
            self._record_failure(step, result, f"timed out after {timeout:g}s", started, on_progress)
            return
        except Exception as e:
            logger.exception("[Heartbeat] Step %s failed", step.name)
            self._record_failure(step, result, str(e) or type(e).__name__, started, on_progress)
            return

        outcome = outcome or StepOutcome()
        duration_ms = int((time.monotonic() - started) * 1000)
        result.steps[step.name] = StepResult(
            step.name,
            success=True,
            duration_ms=duration_ms,
            detail=outcome.detail,
            produced=outcome.produced,
        )
        context.outputs[step.name] = outcome.data
        result.warnings.extend(outcome.warnings)
        self._emit(on_progress, step.name, StepStatus.DONE, outcome.detail)
        logger.info("[Heartbeat] %s done in %dms%s", step.name, duration_ms, f": {outcome.detail}" if outcome.detail else "")

    def _record_failure(
        self,
        step: Step,
        result: HeartbeatResult,
        error: str,
        started: float,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        duration_ms = int((time.monotonic() - started) * 1000)
        result.steps[step.name] = StepResult(step.name, success=False, duration_ms=duration_ms, error=error)
        self._emit(on_progress, step.name, StepStatus.ERROR, error)
        logger.error("[Heartbeat] %s failed after %dms: %s", step.name, duration_ms, error)

    def _persist(self, result: HeartbeatResult) -> None:
        if self._activity is None:
            return
        failed = [name for name, step in result.steps.items() if not step.success]
        description = "Heartbeat completed" if not failed else f"Heartbeat completed with failures: {', '.join(failed)}"
        if result.warnings:
            description += f" ({len(result.warnings)} warnings)"
        try:
            self._activity.record(EventType.HEARTBEAT_RUN, description, result.to_dict(), actor=Actor.SYSTEM)
        except Exception as e:
            logger.error("[Heartbeat] Failed to persist run summary: %s", e)

    async def run(self, on_progress: Optional[ProgressCallback] = None) -> HeartbeatResult:
        """
        Run every step once.

        Args:
            on_progress: Called with a ProgressEvent for each step transition
        """
        result = HeartbeatResult(started_at=self._clock())
        context = HeartbeatContext(sync_results=result.sync_results)
        logger.info("[Heartbeat] Starting run with %d steps", len(self._steps))

        try:
            for step in self._steps:
                await self._run_step(step, context, result, on_progress)
        finally:
            result.finished_at = self._clock()
            self._persist(result)

        logger.info(
            "[Heartbeat] Finished in %dms%s",
            result.duration_ms,
            f" ({len(result.warnings)} warnings)" if result.warnings else "",
        )
        return result
