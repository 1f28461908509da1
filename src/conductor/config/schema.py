"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from conductor.config import defaults


class CoordinatorConfig(BaseModel):
    """Retry, timeout and approval policy for one execution."""

    max_worker_retries: int = defaults.DEFAULT_MAX_WORKER_RETRIES
    retry_delay_ms: int = defaults.DEFAULT_RETRY_DELAY_MS
    approval_confidence_threshold: float = defaults.DEFAULT_APPROVAL_CONFIDENCE
    tool_call_timeout_s: float = defaults.DEFAULT_TOOL_CALL_TIMEOUT_S
    execution_timeout_s: float = defaults.DEFAULT_EXECUTION_TIMEOUT_S
    max_stuck_escalations: int = defaults.DEFAULT_MAX_STUCK_ESCALATIONS

    @field_validator("approval_confidence_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("approval_confidence_threshold must be within [0, 1]")
        return value


class StuckConfig(BaseModel):
    """Thresholds for the structural stuck detector."""

    same_action_observation: int = Field(default=defaults.SAME_ACTION_OBS_THRESHOLD, ge=1)
    same_action_error: int = Field(default=defaults.SAME_ACTION_ERROR_THRESHOLD, ge=1)
    monologue: int = Field(default=defaults.MONOLOGUE_THRESHOLD, ge=1)
    alternating_window: int = Field(default=defaults.ALTERNATING_WINDOW, ge=1)
    compaction_loop: int = Field(default=defaults.COMPACTION_LOOP_THRESHOLD, ge=1)
    history_limit: int = defaults.DEFAULT_HISTORY_LIMIT

    @field_validator("history_limit")
    @classmethod
    def _check_history_limit(cls, value: int) -> int:
        # The widest detector window must always fit.
        return max(value, defaults.ALTERNATING_WINDOW)


class ReviewConfig(BaseModel):
    """Review step configuration."""

    enabled: bool = True


class LLMConfig(BaseModel):
    """LLM-backed worker configuration."""

    provider: str | None = None  # "anthropic" | "openai", inferred from model when unset
    model: str = "claude-3-5-sonnet-latest"
    max_tokens: int = 4096
    temperature: float = 0.0


class GlobalConfig(BaseModel):
    """Global conductor configuration."""

    color: bool = True
    verbose: bool = False


class ConductorConfig(BaseModel):
    """Root configuration model for conductor."""

    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    stuck: StuckConfig = Field(default_factory=StuckConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @classmethod
    def default(cls) -> "ConductorConfig":
        """Create default configuration."""
        return cls()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = Path.home() / ".config" / "conductor"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"
