"""Shared fixtures: a scripted LLM client and captured-event factories."""

import json
from dataclasses import dataclass

import pytest

from analyzer.schema import CanonicalScreen, CapturedEvent
from storage.database import WorkflowDatabase


@dataclass
class RecordedCall:
    model: str
    prompt: str
    phase: str | None


class FakeLLMClient:
    """Stands in for LLMClient: replays queued responses and records every call.

    Queue entries are response strings, dicts (serialized to JSON) or
    exceptions (raised from ``generate``).
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[RecordedCall] = []

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    def generate(self, model, prompt, system_prompt=None, max_tokens=4096, phase=None):
        self.calls.append(RecordedCall(model=model, prompt=prompt, phase=phase))
        if not self.responses:
            raise RuntimeError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    def calls_for(self, phase: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.phase == phase]


def make_event(url: str = "https://app.example.com/home", **overrides) -> CapturedEvent:
    """Build a click event with sensible defaults."""
    fields = {
        "timestamp": 1_700_000_000_000,
        "event_type": "click",
        "url": url,
        "screenshot_path": "",
    }
    fields.update(overrides)
    return CapturedEvent(**fields)


def events_on_screens(labels: list[str]) -> tuple[list[CapturedEvent], list[CanonicalScreen]]:
    """Events already bound to screens, one event per label, plus the screen set."""
    screens: dict[str, CanonicalScreen] = {}
    events = []
    for idx, label in enumerate(labels):
        if label not in screens:
            screens[label] = CanonicalScreen(
                id=f"scr_{label.lower()}",
                label=label,
                description=f"{label} screen",
                url_patterns=[f"/{label.lower()}"],
            )
        events.append(
            make_event(
                url=f"https://app.example.com/{label.lower()}",
                timestamp=1_700_000_000_000 + idx * 1000,
                screenshot_path=f"shots/{idx}.png",
                action_summary=f"Action on {label}",
                screen_id=screens[label].id,
            )
        )
    return events, list(screens.values())


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def database(tmp_path):
    return WorkflowDatabase(tmp_path / "workflows.db")
