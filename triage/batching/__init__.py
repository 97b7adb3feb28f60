"""Batch cards: bulk handling of similar items."""

from .cards import (
    BATCH_CONFIGS,
    BatchConfig,
    BatchGrouper,
    BatchResolution,
    ReclassifyResult,
    batch_config,
)

__all__ = [
    "BATCH_CONFIGS",
    "BatchConfig",
    "BatchGrouper",
    "BatchResolution",
    "ReclassifyResult",
    "batch_config",
]
