"""Segmentation of an event stream into detected workflow instances.

Two interchangeable strategies:

- ``HeuristicSegmenter``: pure state machine over screen ids. Workflows start
  when the user leaves a base screen and end when they return to one or
  revisit a screen already seen in the open workflow.
- ``GoalSegmenter``: asks the collaborator to group events by goal.

Select one with ``create_segmenter()``.
"""

import json
import logging
from collections import Counter
from typing import TYPE_CHECKING, Protocol

from config import SEGMENTER_GOAL, SEGMENTER_HEURISTIC
from prompts.analyzer_prompts import INSTANCE_SEGMENTATION_PROMPT
from utils.tracking import PHASE_SEGMENT

from .errors import CollaboratorError
from .json_utils import decode_json_response, require
from .schema import CanonicalScreen, CapturedEvent, DetectedInstance, screen_label_lookup

if TYPE_CHECKING:
    from utils.llm import LLMClient
    from utils.logger import WorkflowLogger

_module_logger = logging.getLogger(__name__)

SINGLE_ACTION_GOAL = "Single action"
FALLBACK_GOAL = "Browsing session"
GOAL_SEPARATOR = " → "


class Segmenter(Protocol):
    """Strategy that carves detected instances out of an ordered event stream."""

    def segment(
        self,
        events: list[CapturedEvent],
        screens: list[CanonicalScreen],
    ) -> list[DetectedInstance]:
        ...


# =============================================================================
# Heuristic strategy
# =============================================================================


def select_base_screens(counts: dict[str, int]) -> list[str]:
    """Pick the screens a session keeps returning to.

    The most frequent screen is always a base screen. The runner-up is also
    base if its count is at least half the top count and greater than 1.
    Ties keep first-seen order.

    Args:
        counts: Screen id to occurrence count, in first-seen order.

    Returns:
        One or two base screen ids (empty if counts is empty).
    """
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    if not ranked:
        return []

    top_id, top_count = ranked[0]
    base = [top_id]
    if len(ranked) > 1:
        second_id, second_count = ranked[1]
        if second_count >= top_count / 2 and second_count > 1:
            base.append(second_id)
    return base


class HeuristicSegmenter:
    """Base-screen state machine. Total function, never calls a collaborator."""

    def __init__(self, logger: "WorkflowLogger | None" = None):
        self.logger = logger

    def segment(
        self,
        events: list[CapturedEvent],
        screens: list[CanonicalScreen],
    ) -> list[DetectedInstance]:
        if len(events) <= 1:
            return []

        labels = screen_label_lookup(screens)
        screen_ids = [e.screen_id or "" for e in events]
        base_screens = set(select_base_screens(Counter(screen_ids)))
        _module_logger.debug("Base screens: %s", sorted(base_screens))

        instances: list[DetectedInstance] = []
        steps: list[int] = []  # Event indices of the open instance
        seen: set[str] = set()
        active = False

        for i in range(1, len(events)):
            prev_is_base = screen_ids[i - 1] in base_screens
            cur_id = screen_ids[i]
            cur_is_base = cur_id in base_screens

            # Leaving a base screen opens a new instance; the base step is not included
            if prev_is_base and not cur_is_base:
                steps = []
                seen = set()
                active = True

            if not active:
                continue

            loop_detected = cur_id in seen
            returned_to_base = not prev_is_base and cur_is_base

            if loop_detected or returned_to_base:
                if loop_detected and not cur_is_base:
                    steps.append(i)
                if steps:
                    instances.append(self._build_instance(events, steps, labels, succeeded=True))
                steps = []
                seen = set()
                active = False
            else:
                steps.append(i)
                seen.add(cur_id)

        # Stream ended mid-workflow
        if active and steps:
            instances.append(self._build_instance(events, steps, labels, succeeded=False))

        if self.logger:
            self.logger.info(
                f"Detected {len(instances)} workflow instances from {len(events)} events"
            )
        return instances

    @staticmethod
    def _build_instance(
        events: list[CapturedEvent],
        steps: list[int],
        labels: dict[str, str],
        succeeded: bool,
    ) -> DetectedInstance:
        step_events = [events[i] for i in steps]
        goal = GOAL_SEPARATOR.join(
            labels.get(e.screen_id or "", e.screen_id or "Unknown") for e in step_events
        )
        return DetectedInstance(
            goal=goal,
            start_event_index=steps[0],
            end_event_index=steps[-1],
            succeeded=succeeded,
            events=step_events,
        )


# =============================================================================
# Collaborator-driven strategy
# =============================================================================


def _require_index(item: dict, key: str, stage: str) -> int:
    """Fetch an event index; whole-number floats such as 3.0 are accepted."""
    value = require(item, key, (int, float), stage)
    if isinstance(value, bool):
        raise CollaboratorError(stage, f"Field '{key}' must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise CollaboratorError(stage, f"Field '{key}' must be a whole number, got {value!r}")
        return int(value)
    return value


def parse_segmentation_response(response_text: str) -> list[dict]:
    """Decode and validate ``{"instances": [...]}``.

    Raises:
        CollaboratorError: If the payload is missing or malformed.
    """
    stage = PHASE_SEGMENT
    data = decode_json_response(response_text, stage)
    raw_instances = require(data, "instances", list, stage)

    parsed = []
    for item in raw_instances:
        goal = require(item, "goal", str, stage)
        start = _require_index(item, "startEventIndex", stage)
        end = _require_index(item, "endEventIndex", stage)
        succeeded = item.get("succeeded", True)
        if not isinstance(succeeded, bool):
            raise CollaboratorError(stage, f"Field 'succeeded' must be a boolean, got {succeeded!r}")
        parsed.append({"goal": goal, "start": start, "end": end, "succeeded": succeeded})
    return parsed


class GoalSegmenter:
    """Groups events into goal-directed instances with one collaborator call.

    Indices returned by the collaborator are clamped into range and the
    instances sorted by start. Gaps between instances are accepted. Any
    collaborator failure yields a single instance spanning every event.
    """

    def __init__(
        self,
        llm_client: "LLMClient",
        model: str,
        max_tokens: int = 4096,
        logger: "WorkflowLogger | None" = None,
    ):
        """Initialize the segmenter.

        Args:
            llm_client: Collaborator used to find instance boundaries.
            model: Model name for the segmentation call.
            max_tokens: Maximum tokens for the response.
            logger: Optional WorkflowLogger for styled output.
        """
        self.llm_client = llm_client
        self.model = model
        self.max_tokens = max_tokens
        self.logger = logger

    def segment(
        self,
        events: list[CapturedEvent],
        screens: list[CanonicalScreen],
    ) -> list[DetectedInstance]:
        if not events:
            return []
        if len(events) == 1:
            return [
                DetectedInstance(
                    goal=SINGLE_ACTION_GOAL,
                    start_event_index=0,
                    end_event_index=0,
                    succeeded=True,
                    events=[events[0]],
                )
            ]

        try:
            raw_instances = self._request_instances(events, screens)
        except Exception as e:
            _module_logger.warning("Instance segmentation fell back: %s", e)
            if self.logger:
                self.logger.fallback("Segmenter", str(e))
            return [
                DetectedInstance(
                    goal=FALLBACK_GOAL,
                    start_event_index=0,
                    end_event_index=len(events) - 1,
                    succeeded=True,
                    events=list(events),
                )
            ]

        last = len(events) - 1
        instances = []
        for raw in raw_instances:
            start = max(0, min(raw["start"], last))
            end = max(start, min(raw["end"], last))
            instances.append(
                DetectedInstance(
                    goal=raw["goal"],
                    start_event_index=start,
                    end_event_index=end,
                    succeeded=raw["succeeded"],
                    events=events[start:end + 1],
                )
            )
        instances.sort(key=lambda inst: inst.start_event_index)

        if self.logger:
            self.logger.info(
                f"Detected {len(instances)} workflow instances from {len(events)} events"
            )
        return instances

    def _request_instances(
        self,
        events: list[CapturedEvent],
        screens: list[CanonicalScreen],
    ) -> list[dict]:
        labels = screen_label_lookup(screens)
        summaries = []
        for idx, event in enumerate(events):
            summary = {
                "index": idx,
                "screenType": labels.get(event.screen_id or "", "Unknown"),
                "eventType": event.event_type,
                "action": event.describe_action(max_length=50, default=""),
            }
            if event.input_value:
                summary["inputValue"] = event.input_value
            if event.field_name:
                summary["inputName"] = event.field_name
            summaries.append(summary)

        prompt = INSTANCE_SEGMENTATION_PROMPT.format(
            events_json=json.dumps(summaries, indent=2),
        )
        response_text = self.llm_client.generate(
            model=self.model,
            prompt=prompt,
            max_tokens=self.max_tokens,
            phase=PHASE_SEGMENT,
        )
        return parse_segmentation_response(response_text)


def create_segmenter(
    name: str,
    llm_client: "LLMClient | None" = None,
    model: str | None = None,
    max_tokens: int = 4096,
    logger: "WorkflowLogger | None" = None,
) -> Segmenter:
    """Build the segmentation strategy named in configuration.

    Args:
        name: "heuristic" or "goal".
        llm_client: Required for the goal strategy.
        model: Required for the goal strategy.
        max_tokens: Maximum tokens for the goal strategy's response.
        logger: Optional WorkflowLogger.

    Raises:
        ValueError: For an unknown name or missing collaborator settings.
    """
    if name == SEGMENTER_HEURISTIC:
        return HeuristicSegmenter(logger=logger)
    if name == SEGMENTER_GOAL:
        if llm_client is None or not model:
            raise ValueError("Goal segmenter requires an LLM client and a model")
        return GoalSegmenter(llm_client, model, max_tokens=max_tokens, logger=logger)
    raise ValueError(f"Unknown segmenter: {name!r}")
