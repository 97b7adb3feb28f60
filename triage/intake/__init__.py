"""Ingestion gate: dedup and insert for connector events."""

from .gate import IngestionGate, SyncResult

__all__ = ["IngestionGate", "SyncResult"]
