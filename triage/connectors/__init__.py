"""
Source connectors.

Each connector turns raw events from one source into ItemDrafts.
"""

from typing import Dict, Iterable, Optional

from .base import BaseConnector, parse_timestamp
from .gmail import GmailConnector
from .slack import SlackConnector
from .linear import LinearConnector
from .granola import GranolaConnector
from .manual import ManualConnector


def build_registry(connectors: Iterable[BaseConnector]) -> Dict[str, BaseConnector]:
    """Index connectors by name; later entries replace earlier ones."""
    return {connector.name.value: connector for connector in connectors}


def get_connector(registry: Dict[str, BaseConnector], name: str) -> Optional[BaseConnector]:
    return registry.get(name)


__all__ = [
    "BaseConnector",
    "parse_timestamp",
    "GmailConnector",
    "SlackConnector",
    "LinearConnector",
    "GranolaConnector",
    "ManualConnector",
    "build_registry",
    "get_connector",
]
