"""
Default heartbeat steps.

    backup -> extraction -> sync:<connector>... -> classify -> index -> embeddings

extraction, index and embeddings delegate to injected callables and are
skipped when none is configured; embeddings depends on index.
"""

import asyncio
import inspect
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from ..common.config import HeartbeatConfig, TriageConfig
from ..common.store import TriageStore
from ..common.schemas import utc_now
from .orchestrator import HeartbeatContext, Step, StepOutcome

if TYPE_CHECKING:
    from ..connectors.base import BaseConnector
    from ..intake.gate import IngestionGate

logger = logging.getLogger("triage.heartbeat.steps")

BACKUP_PREFIX = "triage-"


# ============================================================================
# Backup
# ============================================================================

def write_backup(store: TriageStore, backup_dir: Path, retention: int, now: Optional[datetime] = None) -> Optional[Path]:
    """
    Write today's JSON snapshot of the store and prune old ones.

    Returns:
        Path written, or None if today's backup already existed
    """
    now = now or utc_now()
    backup_dir.mkdir(parents=True, exist_ok=True)
    path = backup_dir / f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%d')}.json"

    written = None
    if not path.exists():
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(store.snapshot(), f, indent=2, default=str)
        tmp_path.replace(path)
        written = path

    backups = sorted(backup_dir.glob(f"{BACKUP_PREFIX}*.json"))
    for stale in (backups[:-retention] if retention > 0 else []):
        stale.unlink()
        logger.info("Removed old backup %s", stale.name)

    return written


def backup_step(store: TriageStore, config: HeartbeatConfig, clock: Callable[[], datetime] = utc_now) -> Step:
    if not config.backup_enabled:
        return Step("backup", None, skip_reason="backups disabled")

    async def run(context: HeartbeatContext) -> StepOutcome:
        path = await asyncio.to_thread(
            write_backup, store, Path(config.backup_dir), config.backup_retention, clock()
        )
        if path is None:
            return StepOutcome(detail="already backed up today")
        return StepOutcome(detail=path.name, data=str(path))

    return Step("backup", run)


# ============================================================================
# Injected work (extraction, index, embeddings)
# ============================================================================

async def _call(fn: Callable[[], Any]) -> Any:
    value = fn()
    if inspect.isawaitable(value):
        value = await value
    return value


def callable_step(
    name: str,
    fn: Optional[Callable[[], Any]],
    depends_on: tuple = (),
) -> Step:
    """
    Wrap a plain or async callable as a step.

    The callable's return value becomes the step output; a falsy value
    (None, 0, empty list) means it produced nothing.
    """
    if fn is None:
        return Step(name, None, depends_on=depends_on, skip_reason="not configured")

    async def run(context: HeartbeatContext) -> StepOutcome:
        value = await _call(fn)
        detail = None
        if isinstance(value, int) and not isinstance(value, bool):
            detail = f"{value} updated"
        elif isinstance(value, (list, tuple, set, dict)):
            detail = f"{len(value)} updated"
        return StepOutcome(detail=detail, produced=bool(value), data=value)

    return Step(name, run, depends_on=depends_on)


# ============================================================================
# Connector sync
# ============================================================================

def sync_step(connector: "BaseConnector", config: TriageConfig, gate: "IngestionGate") -> Step:
    name = f"sync:{connector.name.value}"
    if connector.name.value in config.heartbeat.skip_connectors:
        return Step(name, None, skip_reason="disabled in config")
    if not connector.is_configured:
        return Step(name, None, skip_reason=f"{connector.name.value} not configured")

    async def run(context: HeartbeatContext) -> StepOutcome:
        result = await connector.sync(config, gate)
        context.sync_results[connector.name.value] = result
        if result.error:
            raise RuntimeError(result.error)

        warnings = []
        if result.errors:
            warnings.append(
                f"{connector.name.value}: {result.errors} items failed"
                + (f" ({'; '.join(result.error_messages)})" if result.error_messages else "")
            )
        detail = f"{result.synced} new, {result.skipped} skipped"
        if result.errors:
            detail += f", {result.errors} errors"
        return StepOutcome(detail=detail, produced=result.synced > 0, data=result, warnings=warnings)

    return Step(name, run)


# ============================================================================
# Classification
# ============================================================================

def classify_step(classify_pending: Callable[[], Awaitable[Dict[str, int]]]) -> Step:
    """``classify_pending`` returns counts: classified, rematched, grouped."""

    async def run(context: HeartbeatContext) -> StepOutcome:
        counts = await classify_pending()
        classified = counts.get("classified", 0)
        rematched = counts.get("rematched", 0)
        grouped = counts.get("grouped", 0)
        if not classified and not rematched:
            return StepOutcome(detail="nothing to classify", produced=False, data=counts)
        detail = f"{classified} classified, {grouped} grouped"
        if rematched:
            detail += f", {rematched} rematched by rules"
        return StepOutcome(detail=detail, data=counts)

    return Step("classify", run)


def default_steps(
    store: TriageStore,
    config: TriageConfig,
    gate: "IngestionGate",
    connectors: List["BaseConnector"],
    classify_pending: Callable[[], Awaitable[Dict[str, int]]],
    extraction: Optional[Callable[[], Any]] = None,
    index: Optional[Callable[[], Any]] = None,
    embeddings: Optional[Callable[[], Any]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> List[Step]:
    steps = [
        backup_step(store, config.heartbeat, clock),
        callable_step("extraction", extraction),
    ]
    steps.extend(sync_step(connector, config, gate) for connector in connectors)
    steps.extend([
        classify_step(classify_pending),
        callable_step("index", index),
        callable_step("embeddings", embeddings, depends_on=("index",)),
    ])
    return steps
