"""Configuration loading and validation."""

import json
import hashlib
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from core.errors import ConfigError


class RecognitionConfig(BaseModel):
    """Confidence scoring and sweep scheduling."""
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    saturation_occurrences: int = Field(default=5, ge=1)
    notify_min_occurrences: int = Field(default=2, ge=1)
    notify_min_confidence: float = Field(default=50.0, ge=0.0, le=100.0)
    summary_min_confidence: float = Field(default=70.0, ge=0.0, le=100.0)
    sweep_interval_seconds: float = Field(default=300.0, ge=0.0)
    slow_sweep_seconds: float = Field(default=2.0, ge=0.0)


class SummaryConfig(BaseModel):
    """Intent summary caching and retry policy."""
    cache_ttl_seconds: float = Field(default=3600.0, ge=0.0)
    retry_delays_seconds: list[float] = Field(default=[2.0, 4.0, 8.0])

    @field_validator("retry_delays_seconds")
    @classmethod
    def non_negative_delays(cls, v: list[float]) -> list[float]:
        if any(d < 0 for d in v):
            raise ValueError("retry delays must be non-negative")
        return v


class DetectorConfig(BaseModel):
    """Mid-workflow detection."""
    buffer_size: int = Field(default=50, ge=1, le=1000)
    cooldown_seconds: float = Field(default=10.0, ge=0.0)
    min_matches: int = Field(default=2, ge=1)
    candidate_limit: int = Field(default=50, ge=1)
    navigation_window: int = Field(default=20, ge=1)
    form_window: int = Field(default=10, ge=1)
    copy_paste_window: int = Field(default=10, ge=1)
    estimated_items: dict[str, int] = Field(
        default_factory=lambda: {"navigation": 5, "form": 3, "copy-paste": 5}
    )


class ReplayConfig(BaseModel):
    """Deterministic replay timing."""
    navigation_settle_seconds: float = Field(default=1.0, ge=0.0)
    form_load_seconds: float = Field(default=2.0, ge=0.0)
    field_fill_seconds: float = Field(default=0.5, ge=0.0)
    submit_wait_seconds: float = Field(default=2.0, ge=0.0)
    iteration_gap_seconds: float = Field(default=0.5, ge=0.0)
    max_item_count: int = Field(default=100, ge=1)


class AdaptiveConfig(BaseModel):
    """Adaptive (oracle-guided) replay."""
    max_steps: int = Field(default=50, ge=1, le=500)
    max_consecutive_errors: int = Field(default=3, ge=1)
    oracle_timeout_seconds: float = Field(default=30.0, ge=0.0)
    oracle_retry_delay_seconds: float = Field(default=2.0, ge=0.0)
    loop_check_after_steps: int = Field(default=10, ge=0)
    loop_window: int = Field(default=6, ge=2)
    history_window: int = Field(default=5, ge=1)
    max_elements: int = Field(default=18, ge=1)
    settle_timeout_seconds: float = Field(default=10.0, ge=0.0)
    settle_poll_seconds: float = Field(default=0.1, ge=0.0)
    settle_grace_seconds: float = Field(default=0.5, ge=0.0)

    @field_validator("loop_window")
    @classmethod
    def even_window(cls, v: int) -> int:
        if v % 2:
            raise ValueError("loop_window must be even")
        return v


class RecordingConfig(BaseModel):
    """Manual recording caps."""
    max_duration_seconds: float = Field(default=300.0, ge=1.0)
    max_actions: int = Field(default=100, ge=1)


class OracleConfig(BaseModel):
    """External decision oracle (local LLM endpoint)."""
    provider: str = Field(default="ollama")
    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(default="llama3.2:3b")
    timeout_seconds: float = Field(default=10.0, ge=1.0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0)


class StoreConfig(BaseModel):
    """Pattern store location and caps."""
    db_path: str = Field(default="./data/patterns.db")
    retention_days: int = Field(default=30, ge=1)
    max_patterns: int = Field(default=100, ge=1)
    session_gap_seconds: float = Field(default=1800.0, ge=1.0)


class BrowserConfig(BaseModel):
    """Playwright tab host settings."""
    headless: bool = Field(default=True)
    user_data_dir: str = Field(default="./data/browser")
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)
    navigation_timeout_ms: int = Field(default=30000, ge=1000)


class PilotConfig(BaseModel):
    """Top-level configuration."""
    name: str = Field(default="pattern-pilot")
    version: str = Field(default="0.1.0")

    recognition: RecognitionConfig = Field(default_factory=RecognitionConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


class ConfigLoader:
    """Loads and validates YAML/JSON configuration."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self._hashes: dict[str, str] = {}

    def load(self, path: Optional[str] = None) -> PilotConfig:
        """
        Load the top-level configuration.

        Args:
            path: Explicit file path. Defaults to ``<config_dir>/pilot.yaml``;
                a missing default file yields the built-in defaults.

        Returns:
            Validated PilotConfig
        """
        if path is None:
            file_path = self.config_dir / "pilot.yaml"
            if not file_path.exists():
                return PilotConfig()
        else:
            file_path = Path(path)

        data = self._load_file(file_path)
        try:
            return PilotConfig(**data)
        except Exception as e:
            raise ConfigError(f"Invalid config: {e}", config_path=str(file_path))

    def has_config_changed(self, path: str) -> bool:
        """Check if a config file has changed since last load."""
        file_path = Path(path)
        if not file_path.exists():
            return str(file_path) in self._hashes
        current = hashlib.sha256(file_path.read_bytes()).hexdigest()[:16]
        return current != self._hashes.get(str(file_path))

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        content = path.read_text()
        self._hashes[str(path)] = hashlib.sha256(content.encode()).hexdigest()[:16]

        try:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(path))
        return data
