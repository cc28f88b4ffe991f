import pytest

from utils.llm import LLMClient, LLMResponse
from utils.tracking import CostTracker, Timer, detect_provider, get_model_pricing


@pytest.mark.parametrize(
    "model, provider",
    [
        ("claude-sonnet-4-5", "anthropic"),
        ("gemini-3-flash-preview", "gemini"),
        ("gpt-5.1", "openai"),
        ("o3-mini", "openai"),
    ],
)
def test_detect_provider(model, provider):
    assert detect_provider(model) == provider


def test_cost_tracker_accumulates_per_phase():
    tracker = CostTracker()

    cost = tracker.add_usage(1_000_000, 0, model="gpt-5.1", phase="canonicalize")
    tracker.add_usage(0, 1_000_000, model="gpt-5.1", phase="synthesize")
    tracker.add_usage(0, 1_000_000, model="gpt-5.1", phase="synthesize")

    assert cost == pytest.approx(get_model_pricing("gpt-5.1")[0])
    assert tracker.api_calls == 3
    assert tracker.calls_for_phase("synthesize") == 2
    assert tracker.calls_for_phase("segment") == 0
    assert [row[0] for row in tracker.get_phase_summary()] == ["canonicalize", "synthesize"]
    assert tracker.get_summary()["API Calls"] == "3"


def test_unknown_model_uses_default_pricing():
    assert get_model_pricing("my-custom-model") == get_model_pricing("gpt-5.1")


def test_timer_measures_elapsed():
    with Timer("test") as timer:
        pass
    assert timer.elapsed >= 0
    assert timer.elapsed_str


def test_llm_client_routes_by_model_and_records_usage(monkeypatch):
    tracker = CostTracker()
    client = LLMClient(tracker)
    calls = []

    def fake_call(provider):
        def call(model, prompt, system_prompt, max_tokens):
            calls.append((provider, model, max_tokens))
            return LLMResponse(text='{"ok": true}', input_tokens=10, output_tokens=5, model=model)
        return call

    monkeypatch.setattr(client, "_call_openai", fake_call("openai"))
    monkeypatch.setattr(client, "_call_anthropic", fake_call("anthropic"))
    monkeypatch.setattr(client, "_call_gemini", fake_call("gemini"))

    assert client.generate("gpt-5.1", "prompt", phase="segment") == '{"ok": true}'
    client.generate("claude-sonnet-4-5", "prompt", max_tokens=100, phase="synthesize")

    assert calls == [("openai", "gpt-5.1", 4096), ("anthropic", "claude-sonnet-4-5", 100)]
    assert tracker.total_input_tokens == 20
    assert tracker.calls_for_phase("segment") == 1
    assert tracker.phase_stats["synthesize"]["model"] == "claude-sonnet-4-5"
