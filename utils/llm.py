"""Unified LLM client with provider abstraction and cost tracking."""

import os
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from .tracking import CostTracker, detect_provider

if TYPE_CHECKING:
    from .logger import WorkflowLogger


@dataclass
class LLMResponse:
    """Standardized response from any LLM provider."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str


class LLMClient:
    """Unified LLM client used as the pipeline's collaborator.

    Supports Anthropic, OpenAI, and Gemini providers with automatic detection
    based on model name. Every call is a single attempt: errors propagate to
    the caller, which decides how to recover.

    Example:
        >>> client = LLMClient(CostTracker())
        >>> text = client.generate(
        ...     model="gpt-5.1",
        ...     prompt="Return JSON ...",
        ...     phase="canonicalize",
        ... )
    """

    def __init__(
        self,
        cost_tracker: CostTracker | None = None,
        logger: "WorkflowLogger | None" = None,
    ):
        """Initialize the LLM client.

        Args:
            cost_tracker: CostTracker instance for tracking usage and costs.
            logger: Optional WorkflowLogger for logging API calls.
        """
        self.cost_tracker = cost_tracker or CostTracker()
        self.logger = logger

        # Lazy-loaded provider clients
        self._anthropic_client: Any = None
        self._openai_client: Any = None
        self._gemini_client: Any = None

    def _get_anthropic_client(self) -> Any:
        """Get or create Anthropic client."""
        if self._anthropic_client is None:
            from anthropic import Anthropic
            self._anthropic_client = Anthropic()
        return self._anthropic_client

    def _get_openai_client(self) -> Any:
        """Get or create OpenAI client."""
        if self._openai_client is None:
            from openai import OpenAI
            self._openai_client = OpenAI()
        return self._openai_client

    def _get_gemini_client(self) -> Any:
        """Get or create Gemini client using the google-genai package."""
        if self._gemini_client is None:
            from google import genai

            api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
            self._gemini_client = genai.Client(api_key=api_key)
        return self._gemini_client

    def generate(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 4096,
        phase: str | None = None,
    ) -> str:
        """Generate a text response from an LLM.

        Args:
            model: Model name (e.g., "gpt-5.1", "claude-sonnet-4-5").
            prompt: User prompt text.
            system_prompt: Optional system prompt.
            max_tokens: Maximum tokens for response.
            phase: Optional pipeline phase name for cost tracking.

        Returns:
            Response text (may be empty).
        """
        provider = detect_provider(model)

        if provider == "anthropic":
            response = self._call_anthropic(model, prompt, system_prompt, max_tokens)
        elif provider == "gemini":
            response = self._call_gemini(model, prompt, system_prompt, max_tokens)
        else:
            response = self._call_openai(model, prompt, system_prompt, max_tokens)

        self.cost_tracker.add_usage(
            response.input_tokens,
            response.output_tokens,
            model=model,
            phase=phase,
        )

        if self.logger:
            self.logger.api(response.input_tokens, response.output_tokens, phase=phase)

        return response.text

    def _call_anthropic(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None,
        max_tokens: int,
    ) -> LLMResponse:
        """Call Anthropic API."""
        client = self._get_anthropic_client()

        kwargs: dict[str, Any] = {}
        if system_prompt:
            kwargs["system"] = system_prompt

        response = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=model,
        )

    def _call_openai(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None,
        max_tokens: int,
    ) -> LLMResponse:
        """Call OpenAI API."""
        client = self._get_openai_client()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = client.chat.completions.create(
            model=model,
            max_completion_tokens=max_tokens,
            messages=messages,
        )

        text = response.choices[0].message.content if response.choices else None
        return LLMResponse(
            text=text or "",
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=model,
        )

    def _call_gemini(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None,
        max_tokens: int,
    ) -> LLMResponse:
        """Call Gemini API using the google-genai package."""
        from google.genai import types

        client = self._get_gemini_client()

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            max_output_tokens=max_tokens,
        )
        response = client.models.generate_content(
            model=model,
            contents=[types.Part.from_text(text=prompt)],
            config=config,
        )

        usage = response.usage_metadata
        return LLMResponse(
            text=response.text or "",
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
            model=model,
        )
