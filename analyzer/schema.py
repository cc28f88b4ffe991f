"""Data models for captured events, canonical screens, templates and instances."""

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import yaml


def new_id(prefix: str) -> str:
    """Generate a short prefixed identifier, e.g. ``scr_1a2b3c4d``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


# =============================================================================
# Captured Events
# =============================================================================


class EventType(StrEnum):
    """Kinds of UI interactions captured from the browser."""

    CLICK = "click"
    INPUT = "input"
    CHANGE = "change"
    SUBMIT = "submit"


@dataclass
class CapturedEvent:
    """One raw UI interaction recorded by the browser extension.

    ``screen_id`` starts unset and is assigned once per canonicalization
    run. A binding left over from an earlier run is released first.
    """

    timestamp: int  # Milliseconds since epoch
    event_type: str  # click, input, change, submit
    url: str
    screenshot_path: str
    target_tag: str | None = None
    target_text: str | None = None
    click_x: float | None = None
    click_y: float | None = None
    input_value: str | None = None
    input_name: str | None = None
    input_label: str | None = None
    input_type: str | None = None
    action_summary: str | None = None
    screen_id: str | None = None

    def assign_screen(self, screen_id: str) -> None:
        """Bind this event to a canonical screen.

        Raises:
            ValueError: If the event is already bound to a different screen.
        """
        if self.screen_id is not None and self.screen_id != screen_id:
            raise ValueError(
                f"Event at {self.timestamp} already assigned to screen {self.screen_id}"
            )
        self.screen_id = screen_id

    def release_screen(self) -> None:
        """Drop the screen binding so the event can be canonicalized again."""
        self.screen_id = None

    def describe_action(self, max_length: int = 100, default: str = "User action") -> str:
        """Human-readable description of what the user did."""
        if self.action_summary:
            return self.action_summary
        if self.target_text:
            return self.target_text[:max_length]
        return default

    @property
    def field_name(self) -> str | None:
        """Best available name of the input field, preferring its visible label."""
        return self.input_label or self.input_name

    def to_dict(self) -> dict:
        """Convert to serializable dictionary."""
        return {
            "timestamp": self.timestamp,
            "eventType": self.event_type,
            "url": self.url,
            "screenshotPath": self.screenshot_path,
            "targetTag": self.target_tag,
            "targetText": self.target_text,
            "clickX": self.click_x,
            "clickY": self.click_y,
            "inputValue": self.input_value,
            "inputName": self.input_name,
            "inputLabel": self.input_label,
            "inputType": self.input_type,
            "actionSummary": self.action_summary,
            "screenId": self.screen_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "CapturedEvent":
        """Create from a capture payload (camelCase keys)."""
        return cls(
            timestamp=d["timestamp"],
            event_type=d.get("eventType", EventType.CLICK.value),
            url=d["url"],
            screenshot_path=d.get("screenshotPath", ""),
            target_tag=d.get("targetTag"),
            target_text=d.get("targetText"),
            click_x=d.get("clickX"),
            click_y=d.get("clickY"),
            input_value=d.get("inputValue"),
            input_name=d.get("inputName"),
            input_label=d.get("inputLabel"),
            input_type=d.get("inputType"),
            action_summary=d.get("actionSummary"),
            screen_id=d.get("screenId"),
        )


# =============================================================================
# Canonical Screens
# =============================================================================


@dataclass
class CanonicalScreen:
    """A generalized UI state that many concrete URLs map to."""

    id: str
    label: str
    description: str
    url_patterns: list[str] = field(default_factory=list)
    example_screenshot_path: str = ""

    def __post_init__(self):
        # Deduplicate while keeping first-seen order
        self.url_patterns = list(dict.fromkeys(self.url_patterns))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "urlPatterns": self.url_patterns,
            "exampleScreenshotPath": self.example_screenshot_path,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "CanonicalScreen":
        return cls(
            id=d["id"],
            label=d["label"],
            description=d.get("description", ""),
            url_patterns=d.get("urlPatterns", []),
            example_screenshot_path=d.get("exampleScreenshotPath", ""),
        )


def screen_label_lookup(screens: list[CanonicalScreen]) -> dict[str, str]:
    """Map screen id to label."""
    return {s.id: s.label for s in screens}


# =============================================================================
# Segmentation
# =============================================================================


@dataclass
class DetectedInstance:
    """One attempt at a task, carved out of the event stream by a segmenter.

    Transient: exists only between segmentation and template synthesis.
    """

    goal: str
    start_event_index: int  # Inclusive
    end_event_index: int  # Inclusive
    succeeded: bool
    events: list[CapturedEvent] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.events)


# =============================================================================
# Templates and Instances
# =============================================================================


class ParameterType(StrEnum):
    """Types of template parameters."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"

    @classmethod
    def parse(cls, value: Any) -> "ParameterType":
        """Parse a type name, falling back to STRING for anything unknown."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.STRING


@dataclass
class ParameterDef:
    """Declaration of a template input or output."""

    param_type: ParameterType = ParameterType.STRING
    description: str = ""
    required: bool = True
    default: Any = None
    observed_values: list[Any] = field(default_factory=list)

    def observe(self, value: Any) -> None:
        """Record a concrete value seen in an execution. Values are never removed."""
        self.observed_values.append(value)

    def to_dict(self) -> dict:
        d = {
            "type": self.param_type.value,
            "description": self.description,
            "required": self.required,
            "observedValues": self.observed_values,
        }
        if self.default is not None:
            d["default"] = self.default
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ParameterDef":
        return cls(
            param_type=ParameterType.parse(d.get("type", "string")),
            description=d.get("description", ""),
            required=d.get("required", True),
            default=d.get("default"),
            observed_values=list(d.get("observedValues", [])),
        )


class ExtractSource(StrEnum):
    """Where an output value is read from during a step."""

    CLICKED_TEXT = "clicked_text"
    INPUT_VALUE = "input_value"
    URL_PARAM = "url_param"
    PAGE_CONTENT = "page_content"


@dataclass
class TemplateStep:
    """A generalized, reusable step of a workflow template."""

    step_number: int
    screen_pattern: str
    action_template: str  # May contain {placeholders}
    uses_inputs: list[str] = field(default_factory=list)
    extracts: dict[str, dict[str, str]] = field(default_factory=dict)  # output name -> {"from": source}

    def to_dict(self) -> dict:
        return {
            "stepNumber": self.step_number,
            "screenPattern": self.screen_pattern,
            "actionTemplate": self.action_template,
            "usesInputs": self.uses_inputs,
            "extracts": self.extracts,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TemplateStep":
        return cls(
            step_number=d["stepNumber"],
            screen_pattern=d.get("screenPattern", ""),
            action_template=d.get("actionTemplate", ""),
            uses_inputs=list(d.get("usesInputs", [])),
            extracts=dict(d.get("extracts", {})),
        )


@dataclass
class StepSnapshot:
    """Concrete record of one event as it happened in an execution."""

    step_number: int
    screenshot_path: str
    action: str
    screen_label: str

    def to_dict(self) -> dict:
        return {
            "stepNumber": self.step_number,
            "screenshotPath": self.screenshot_path,
            "action": self.action,
            "screenLabel": self.screen_label,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StepSnapshot":
        return cls(
            step_number=d["stepNumber"],
            screenshot_path=d.get("screenshotPath", ""),
            action=d.get("action", ""),
            screen_label=d.get("screenLabel", ""),
        )


@dataclass
class WorkflowTemplate:
    """A generalized, parameterized workflow, reusable across executions."""

    id: str
    name: str
    description: str
    inputs: dict[str, ParameterDef] = field(default_factory=dict)
    outputs: dict[str, ParameterDef] = field(default_factory=dict)
    steps: list[TemplateStep] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def undeclared_references(self) -> tuple[dict[str, int], dict[str, int]]:
        """Find step references to parameters missing from inputs/outputs.

        Returns:
            Tuple of (missing_inputs, missing_outputs), each mapping the
            parameter name to the first step number that references it.
        """
        missing_inputs: dict[str, int] = {}
        missing_outputs: dict[str, int] = {}
        for step in self.steps:
            for name in step.uses_inputs:
                if name not in self.inputs:
                    missing_inputs.setdefault(name, step.step_number)
            for name in step.extracts:
                if name not in self.outputs:
                    missing_outputs.setdefault(name, step.step_number)
        return missing_inputs, missing_outputs

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "inputs": {k: v.to_dict() for k, v in self.inputs.items()},
            "outputs": {k: v.to_dict() for k, v in self.outputs.items()},
            "steps": [s.to_dict() for s in self.steps],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "WorkflowTemplate":
        return cls(
            id=d["id"],
            name=d.get("name", "Untitled Workflow"),
            description=d.get("description", ""),
            inputs={k: ParameterDef.from_dict(v) for k, v in d.get("inputs", {}).items()},
            outputs={k: ParameterDef.from_dict(v) for k, v in d.get("outputs", {}).items()},
            steps=[TemplateStep.from_dict(s) for s in d.get("steps", [])],
            created_at=d.get("createdAt", now_ms()),
            updated_at=d.get("updatedAt", now_ms()),
        )

    def to_markdown(self) -> str:
        """Convert to markdown with YAML frontmatter."""
        frontmatter: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }
        if self.inputs:
            frontmatter["inputs"] = {k: v.to_dict() for k, v in self.inputs.items()}
        if self.outputs:
            frontmatter["outputs"] = {k: v.to_dict() for k, v in self.outputs.items()}

        yaml_str = yaml.safe_dump(frontmatter, default_flow_style=False, sort_keys=False)

        lines = [f"# {self.name}\n", f"{self.description}\n", "## Steps\n"]
        for step in self.steps:
            lines.append(f"### {step.step_number}. {step.action_template}\n")
            lines.append(f"**Screen:** {step.screen_pattern}\n")
            if step.uses_inputs:
                names = ", ".join(f"`{{{n}}}`" for n in step.uses_inputs)
                lines.append(f"**Inputs:** {names}\n")
            if step.extracts:
                extracted = ", ".join(
                    f"`{name}` from {spec.get('from', 'page_content')}"
                    for name, spec in step.extracts.items()
                )
                lines.append(f"**Extracts:** {extracted}\n")

        return f"---\n{yaml_str}---\n\n" + "\n".join(lines)


@dataclass
class WorkflowInstance:
    """One concrete, parameter-bound execution of a template. Append-only."""

    id: str
    template_id: str
    session_id: str
    parameter_values: dict[str, Any] = field(default_factory=dict)
    extracted_values: dict[str, Any] = field(default_factory=dict)
    step_snapshots: list[StepSnapshot] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "templateId": self.template_id,
            "sessionId": self.session_id,
            "parameterValues": self.parameter_values,
            "extractedValues": self.extracted_values,
            "stepSnapshots": [s.to_dict() for s in self.step_snapshots],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "WorkflowInstance":
        return cls(
            id=d["id"],
            template_id=d["templateId"],
            session_id=d["sessionId"],
            parameter_values=dict(d.get("parameterValues", {})),
            extracted_values=dict(d.get("extractedValues", {})),
            step_snapshots=[StepSnapshot.from_dict(s) for s in d.get("stepSnapshots", [])],
            created_at=d.get("createdAt", now_ms()),
        )


@dataclass
class SynthesisResult:
    """A template and the instance that produced it. Persisted together."""

    template: WorkflowTemplate
    instance: WorkflowInstance


@dataclass
class FinalizationResult:
    """Everything produced by one finalize run."""

    screens: list[CanonicalScreen] = field(default_factory=list)
    templates: list[WorkflowTemplate] = field(default_factory=list)
    instances: list[WorkflowInstance] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.screens or self.templates or self.instances)

    def to_dict(self) -> dict:
        return {
            "screens": [s.to_dict() for s in self.screens],
            "templates": [t.to_dict() for t in self.templates],
            "instances": [i.to_dict() for i in self.instances],
        }
