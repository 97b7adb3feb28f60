"""
Error taxonomy for the triage core.

Connector and item errors are caught where they happen and aggregated into
sync counters. Lifecycle errors are turned into no-op results by the state
machine. Nothing in here is meant to abort a whole heartbeat run.
"""

from typing import Optional


class TriageError(Exception):
    """Base class for triage core errors."""
    pass


class TransientConnectorError(TriageError):
    """A source was unreachable or rate limited. Retried on the next heartbeat."""

    def __init__(self, connector: str, message: str):
        super().__init__(f"{connector}: {message}")
        self.connector = connector


class MalformedItemError(TriageError):
    """A raw event could not be normalized into an ItemDraft."""

    def __init__(self, message: str, external_id: Optional[str] = None):
        super().__init__(message)
        self.external_id = external_id


class ClassificationUnavailable(TriageError):
    """An oracle timed out or could not be reached.

    Distinct from an oracle answering with no usable result: the pipeline
    falls through to the next tier instead of treating the item as classified.
    """

    def __init__(self, oracle: str, reason: str):
        super().__init__(f"{oracle} unavailable: {reason}")
        self.oracle = oracle
        self.reason = reason


class DuplicateItem(TriageError):
    """(connector, external_id) already exists. Skipped silently by ingestion."""

    def __init__(self, connector: str, external_id: str):
        super().__init__(f"Duplicate item {connector}/{external_id}")
        self.connector = connector
        self.external_id = external_id


class InvalidTransition(TriageError):
    """A lifecycle action is not allowed from the item's current state."""

    def __init__(self, item_id: str, current: str, action: str, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot {action} item {item_id} from {current}{detail}")
        self.item_id = item_id
        self.current = current
        self.action = action


class UnknownAction(TriageError, ValueError):
    """An action name outside the closed set of lifecycle actions."""

    def __init__(self, name: str):
        super().__init__(f"Unknown action: {name!r}")
        self.name = name


class ItemNotFound(TriageError, KeyError):
    """No item with the given id."""

    def __init__(self, item_id: str):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"Item not found: {self.item_id}"


class CardNotFound(TriageError, KeyError):
    """No batch card with the given id."""

    def __init__(self, card_id: str):
        super().__init__(card_id)
        self.card_id = card_id

    def __str__(self) -> str:
        return f"Batch card not found: {self.card_id}"
