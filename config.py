"""Configuration and settings for the workflow finalization pipeline."""

import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_MODEL = "gpt-5.1"

SEGMENTER_HEURISTIC = "heuristic"
SEGMENTER_GOAL = "goal"
SEGMENTER_CHOICES = (SEGMENTER_HEURISTIC, SEGMENTER_GOAL)


@dataclass
class ModelConfig:
    """Model configuration for the stages of the finalization pipeline.

    Allows using different models (potentially from different providers)
    for different stages to optimize cost vs quality tradeoffs.
    """

    canonicalization: str = DEFAULT_MODEL  # One call per session: label URL groups
    segmentation: str = DEFAULT_MODEL  # Goal-based segmentation (one call per session)
    synthesis: str = DEFAULT_MODEL  # One call per detected instance

    @classmethod
    def all_same(cls, model: str) -> "ModelConfig":
        """Create a config using the same model for all stages."""
        return cls(
            canonicalization=model,
            segmentation=model,
            synthesis=model,
        )

    @classmethod
    def cost_optimized(cls) -> "ModelConfig":
        """Use a small model for labelling and a stronger one for synthesis."""
        return cls(
            canonicalization="gpt-5-mini",
            segmentation="gpt-5-mini",
            synthesis=DEFAULT_MODEL,
        )

    @classmethod
    def from_env(cls) -> "ModelConfig":
        """Use OPENAI_MODEL for every stage when it is set."""
        return cls.all_same(os.getenv("OPENAI_MODEL", DEFAULT_MODEL))


@dataclass
class Config:
    """Application configuration."""

    # API Keys (loaded from .env file)
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    google_api_key: str = ""

    # Storage paths
    db_path: Path = Path("./storage/workflows.db")
    logs_dir: Path = Path("./logs")

    # Pipeline settings
    segmenter: str = SEGMENTER_GOAL
    models: ModelConfig = field(default_factory=ModelConfig.from_env)
    max_tokens: int = 4096

    def __post_init__(self):
        """Load API keys and overrides from environment after initialization."""
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", self.anthropic_api_key)
        self.openai_api_key = os.getenv("OPENAI_API_KEY", self.openai_api_key)
        self.google_api_key = os.getenv("GOOGLE_API_KEY", self.google_api_key)

        self.db_path = Path(os.getenv("WORKFLOW_DB_PATH", str(self.db_path)))
        self.segmenter = os.getenv("WORKFLOW_SEGMENTER", self.segmenter)

        if self.segmenter not in SEGMENTER_CHOICES:
            raise ValueError(
                f"Unknown segmenter '{self.segmenter}'. "
                f"Choose one of: {', '.join(SEGMENTER_CHOICES)}"
            )


# Global config instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config


def update_config(**kwargs) -> Config:
    """Update configuration with new values."""
    global config
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
    return config
