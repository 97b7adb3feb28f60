"""
Classifier - tiered item classification

Key Components:
- ClassifierPipeline: rule -> cheap model -> expensive model ladder
- OllamaOracle: local model over the Ollama HTTP API
- LLMOracle: hosted model through LLMClient
"""

from .oracle import ClassificationOracle, OracleResult, BATCH_TYPES
from .cheap_oracle import OllamaOracle
from .deep_oracle import LLMOracle
from .pipeline import ClassifierPipeline, ClassificationResult, default_priority

__all__ = [
    "ClassificationOracle",
    "OracleResult",
    "BATCH_TYPES",
    "OllamaOracle",
    "LLMOracle",
    "ClassifierPipeline",
    "ClassificationResult",
    "default_priority",
]
