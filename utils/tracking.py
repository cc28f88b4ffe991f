"""Cost and time tracking for collaborator calls."""

import time
from dataclasses import dataclass, field
from typing import Any


# Pipeline phases, used as cost-tracking keys
PHASE_CANONICALIZE = "canonicalize"
PHASE_SEGMENT = "segment"
PHASE_SYNTHESIZE = "synthesize"

# Model pricing per million tokens (input, output)
ANTHROPIC_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-5": (5.0, 25.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-haiku-4-5": (1.0, 5.0),
}

OPENAI_PRICING: dict[str, tuple[float, float]] = {
    "gpt-5.1": (1.25, 10.0),
    "gpt-5": (1.25, 10.0),
    "gpt-5-mini": (0.25, 2.0),
    "gpt-4o": (2.50, 10.0),
    "gpt-4o-mini": (0.15, 0.60),
}

GEMINI_PRICING: dict[str, tuple[float, float]] = {
    "gemini-3-flash-preview": (0.5, 3.0),
    "gemini-2.0-flash": (0.10, 0.40),
}

# Used when a model is missing from the tables above
DEFAULT_PRICING = (1.25, 10.0)


def get_model_pricing(model: str) -> tuple[float, float]:
    """Get pricing for a model. Returns (input_price_per_mtok, output_price_per_mtok)."""
    for table in (ANTHROPIC_PRICING, OPENAI_PRICING, GEMINI_PRICING):
        if model in table:
            return table[model]
    return DEFAULT_PRICING


def detect_provider(model: str) -> str:
    """Detect the provider based on model name.

    Returns: "anthropic", "openai", or "gemini"
    """
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gemini"):
        return "gemini"
    # Default to openai (gpt-*, o1, o3 and custom deployments)
    return "openai"


@dataclass
class CostTracker:
    """Tracks token usage and cost per model and per pipeline phase."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    api_calls: int = 0
    total_cost_dollars: float = 0.0

    phase_stats: dict[str, dict[str, Any]] = field(default_factory=dict)
    model_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        phase: str | None = None,
    ) -> float:
        """Record token usage from an API call.

        Args:
            input_tokens: Number of input tokens.
            output_tokens: Number of output tokens.
            model: The model used for this API call.
            phase: Optional phase name (canonicalize, segment, synthesize).

        Returns:
            The cost of this API call in dollars.
        """
        input_price, output_price = get_model_pricing(model)
        call_cost = (
            (input_tokens / 1_000_000) * input_price +
            (output_tokens / 1_000_000) * output_price
        )

        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.api_calls += 1
        self.total_cost_dollars += call_cost

        self._accumulate(self.model_stats, model, input_tokens, output_tokens, call_cost)
        if phase:
            stats = self._accumulate(self.phase_stats, phase, input_tokens, output_tokens, call_cost)
            stats["model"] = model

        return call_cost

    @staticmethod
    def _accumulate(
        table: dict[str, dict[str, Any]],
        key: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
    ) -> dict[str, Any]:
        stats = table.setdefault(key, {"input": 0, "output": 0, "calls": 0, "cost": 0.0})
        stats["input"] += input_tokens
        stats["output"] += output_tokens
        stats["calls"] += 1
        stats["cost"] += cost
        return stats

    @property
    def total_cost(self) -> float:
        """Get total cost in dollars."""
        return self.total_cost_dollars

    def calls_for_phase(self, phase: str) -> int:
        """Number of collaborator calls made in a phase."""
        return self.phase_stats.get(phase, {}).get("calls", 0)

    def get_summary(self) -> dict[str, str]:
        """Get a summary dictionary for display."""
        models_str = ", ".join(self.model_stats) or "None"
        return {
            "Models Used": models_str,
            "API Calls": str(self.api_calls),
            "Input Tokens": f"{self.total_input_tokens:,}",
            "Output Tokens": f"{self.total_output_tokens:,}",
            "Total Cost": f"${self.total_cost:.4f}",
        }

    def get_phase_summary(self) -> list[list[str]]:
        """Get per-phase breakdown for table display."""
        return [
            [
                phase,
                stats.get("model", "unknown"),
                str(stats["calls"]),
                f"{stats['input']:,}",
                f"{stats['output']:,}",
                f"${stats['cost']:.4f}",
            ]
            for phase, stats in self.phase_stats.items()
        ]


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: float | None = None
        self.end_time: float | None = None

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def elapsed_str(self) -> str:
        """Get elapsed time as a formatted string."""
        seconds = self.elapsed
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds % 60:.0f}s"

    def start(self) -> None:
        """Manually start the timer."""
        self.start_time = time.time()
        self.end_time = None

    def stop(self) -> float:
        """Manually stop the timer and return elapsed time."""
        self.end_time = time.time()
        return self.elapsed
