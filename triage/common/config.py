"""
Configuration Management for the triage core

Loads configuration from ~/.triage/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("triage.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".triage"
CONFIG_PATH = CONFIG_DIR / "config.json"
STORE_PATH = CONFIG_DIR / "store.json"
BACKUPS_DIR = CONFIG_DIR / "backups"


@dataclass
class LLMConfig:
    """Hosted LLM provider used by the expensive classification tier"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"


@dataclass
class CheapModelConfig:
    """Local Ollama model used by the cheap classification tier"""
    enabled: bool = True
    base_url: str = "http://localhost:11434"
    model: str = "llama3.2"
    timeout_seconds: float = 10.0
    availability_ttl_seconds: float = 60.0


@dataclass
class ClassifierConfig:
    """Classifier pipeline configuration"""
    cheap_confidence_threshold: float = 0.85
    deep_enabled: bool = True
    deep_timeout_seconds: float = 30.0
    batch_size: int = 5
    batch_delay_seconds: float = 1.0
    individual_connectors: List[str] = field(default_factory=lambda: ["granola"])
    rule_cache_ttl_seconds: float = 300.0


@dataclass
class IngestConfig:
    """Ingestion gate configuration"""
    max_logged_errors: int = 5


@dataclass
class LifecycleConfig:
    """Lifecycle state machine configuration"""
    action_needed_days: int = 3
    action_needed_label: str = "Action Needed"


@dataclass
class HeartbeatConfig:
    """Heartbeat orchestration configuration"""
    step_timeout_seconds: float = 300.0
    backup_enabled: bool = True
    backup_dir: str = str(BACKUPS_DIR)
    backup_retention: int = 7
    skip_connectors: List[str] = field(default_factory=list)


@dataclass
class StoreConfig:
    """Persistence configuration"""
    path: str = str(STORE_PATH)


@dataclass
class TriageConfig:
    """Main triage configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    cheap_model: CheapModelConfig = field(default_factory=CheapModelConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", defaults.anthropic_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", defaults.google_model),
    )


def _parse_cheap_model_config(data: dict) -> CheapModelConfig:
    """Parse cheap_model section from config dict"""
    cheap_data = data.get("cheap_model", {})
    defaults = CheapModelConfig()
    return CheapModelConfig(
        enabled=cheap_data.get("enabled", defaults.enabled),
        base_url=cheap_data.get("base_url", defaults.base_url),
        model=cheap_data.get("model", defaults.model),
        timeout_seconds=cheap_data.get("timeout_seconds", defaults.timeout_seconds),
        availability_ttl_seconds=cheap_data.get(
            "availability_ttl_seconds", defaults.availability_ttl_seconds
        ),
    )


def _parse_classifier_config(data: dict) -> ClassifierConfig:
    """Parse classifier section from config dict"""
    classifier_data = data.get("classifier", {})
    defaults = ClassifierConfig()
    return ClassifierConfig(
        cheap_confidence_threshold=classifier_data.get(
            "cheap_confidence_threshold", defaults.cheap_confidence_threshold
        ),
        deep_enabled=classifier_data.get("deep_enabled", defaults.deep_enabled),
        deep_timeout_seconds=classifier_data.get("deep_timeout_seconds", defaults.deep_timeout_seconds),
        batch_size=classifier_data.get("batch_size", defaults.batch_size),
        batch_delay_seconds=classifier_data.get("batch_delay_seconds", defaults.batch_delay_seconds),
        individual_connectors=list(
            classifier_data.get("individual_connectors", defaults.individual_connectors)
        ),
        rule_cache_ttl_seconds=classifier_data.get(
            "rule_cache_ttl_seconds", defaults.rule_cache_ttl_seconds
        ),
    )


def _parse_heartbeat_config(data: dict) -> HeartbeatConfig:
    """Parse heartbeat section from config dict"""
    heartbeat_data = data.get("heartbeat", {})
    defaults = HeartbeatConfig()
    return HeartbeatConfig(
        step_timeout_seconds=heartbeat_data.get("step_timeout_seconds", defaults.step_timeout_seconds),
        backup_enabled=heartbeat_data.get("backup_enabled", defaults.backup_enabled),
        backup_dir=heartbeat_data.get("backup_dir", defaults.backup_dir),
        backup_retention=heartbeat_data.get("backup_retention", defaults.backup_retention),
        skip_connectors=list(heartbeat_data.get("skip_connectors", [])),
    )


def load_config() -> TriageConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.triage/config.json)
    3. Default values
    """
    config = TriageConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.cheap_model = _parse_cheap_model_config(data)
            config.classifier = _parse_classifier_config(data)
            config.heartbeat = _parse_heartbeat_config(data)
            config.ingest = IngestConfig(
                max_logged_errors=data.get("ingest", {}).get("max_logged_errors", 5),
            )
            lifecycle_data = data.get("lifecycle", {})
            config.lifecycle = LifecycleConfig(
                action_needed_days=lifecycle_data.get("action_needed_days", 3),
                action_needed_label=lifecycle_data.get("action_needed_label", "Action Needed"),
            )
            config.store = StoreConfig(
                path=data.get("store", {}).get("path", str(STORE_PATH)),
            )
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "TRIAGE_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("OLLAMA_URL"):
        config.cheap_model.base_url = os.getenv("OLLAMA_URL")
    if os.getenv("OLLAMA_MODEL"):
        config.cheap_model.model = os.getenv("OLLAMA_MODEL")
    if os.getenv("TRIAGE_CHEAP_THRESHOLD"):
        config.classifier.cheap_confidence_threshold = float(os.getenv("TRIAGE_CHEAP_THRESHOLD"))
    if os.getenv("TRIAGE_STORE_PATH"):
        config.store.path = os.getenv("TRIAGE_STORE_PATH")
    if os.getenv("TRIAGE_BACKUP_DIR"):
        config.heartbeat.backup_dir = os.getenv("TRIAGE_BACKUP_DIR")

    return config


def save_config(config: TriageConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "llm": llm_section,
        "cheap_model": {
            "enabled": config.cheap_model.enabled,
            "base_url": config.cheap_model.base_url,
            "model": config.cheap_model.model,
            "timeout_seconds": config.cheap_model.timeout_seconds,
            "availability_ttl_seconds": config.cheap_model.availability_ttl_seconds,
        },
        "classifier": {
            "cheap_confidence_threshold": config.classifier.cheap_confidence_threshold,
            "deep_enabled": config.classifier.deep_enabled,
            "deep_timeout_seconds": config.classifier.deep_timeout_seconds,
            "batch_size": config.classifier.batch_size,
            "batch_delay_seconds": config.classifier.batch_delay_seconds,
            "individual_connectors": config.classifier.individual_connectors,
            "rule_cache_ttl_seconds": config.classifier.rule_cache_ttl_seconds,
        },
        "ingest": {"max_logged_errors": config.ingest.max_logged_errors},
        "lifecycle": {
            "action_needed_days": config.lifecycle.action_needed_days,
            "action_needed_label": config.lifecycle.action_needed_label,
        },
        "heartbeat": {
            "step_timeout_seconds": config.heartbeat.step_timeout_seconds,
            "backup_enabled": config.heartbeat.backup_enabled,
            "backup_dir": config.heartbeat.backup_dir,
            "backup_retention": config.heartbeat.backup_retention,
            "skip_connectors": config.heartbeat.skip_connectors,
        },
        "store": {"path": config.store.path},
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories(config: TriageConfig) -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    Path(config.store.path).parent.mkdir(parents=True, exist_ok=True)
    Path(config.heartbeat.backup_dir).mkdir(parents=True, exist_ok=True)
