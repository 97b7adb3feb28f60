"""
Triage Common Module

Shared infrastructure: configuration, schemas, storage, errors and the LLM
client used by the classifier.
"""

from .config import TriageConfig, load_config
from .store import TriageStore
from .activity import ActivityLog
from .ttl_cache import TTLCache
from .llm_client import LLMClient

__all__ = [
    "TriageConfig",
    "load_config",
    "TriageStore",
    "ActivityLog",
    "TTLCache",
    "LLMClient",
]
