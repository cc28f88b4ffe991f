"""Template synthesis: generalize one detected instance into a reusable template."""

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from prompts.analyzer_prompts import TEMPLATE_SYNTHESIS_PROMPT
from utils.tracking import PHASE_SYNTHESIZE

from .errors import CollaboratorError
from .json_utils import decode_json_response, require
from .schema import (
    CanonicalScreen,
    CapturedEvent,
    DetectedInstance,
    ExtractSource,
    ParameterDef,
    ParameterType,
    StepSnapshot,
    SynthesisResult,
    TemplateStep,
    WorkflowInstance,
    WorkflowTemplate,
    new_id,
    now_ms,
    screen_label_lookup,
)

if TYPE_CHECKING:
    from utils.llm import LLMClient
    from utils.logger import WorkflowLogger

_module_logger = logging.getLogger(__name__)

UNKNOWN_SCREEN = "Unknown"


@dataclass
class TemplateDraft:
    """Validated collaborator response, before ids and observed values are attached."""

    name: str
    description: str
    inputs: dict[str, dict[str, Any]]
    outputs: dict[str, dict[str, Any]]
    steps: list[dict[str, Any]]
    input_values: dict[str, Any] = field(default_factory=dict)
    output_values: dict[str, Any] = field(default_factory=dict)


def parse_synthesis_response(response_text: str) -> TemplateDraft:
    """Decode and validate ``{"template": {...}, "instanceValues": {...}}``.

    Raises:
        CollaboratorError: If the payload is missing or malformed.
    """
    stage = PHASE_SYNTHESIZE
    data = decode_json_response(response_text, stage)
    template = require(data, "template", dict, stage)

    name = require(template, "name", str, stage).strip()
    if not name:
        raise CollaboratorError(stage, "Empty template name")
    description = template.get("description") or ""
    inputs = template.get("inputs") or {}
    outputs = template.get("outputs") or {}
    steps = require(template, "steps", list, stage)

    if not isinstance(description, str):
        raise CollaboratorError(stage, "Field 'description' must be a string")
    for field_name, params in (("inputs", inputs), ("outputs", outputs)):
        if not isinstance(params, dict) or not all(isinstance(v, dict) for v in params.values()):
            raise CollaboratorError(stage, f"Field '{field_name}' must map names to objects")
    for step in steps:
        require(step, "actionTemplate", str, stage)
        if not isinstance(step.get("usesInputs") or [], list):
            raise CollaboratorError(stage, "Field 'usesInputs' must be a list")
        if not isinstance(step.get("extracts") or {}, dict):
            raise CollaboratorError(stage, "Field 'extracts' must be an object")

    instance_values = data.get("instanceValues") or {}
    if not isinstance(instance_values, dict):
        raise CollaboratorError(stage, "Field 'instanceValues' must be an object")
    input_values = instance_values.get("inputs") or {}
    output_values = instance_values.get("outputs") or {}
    if not isinstance(input_values, dict) or not isinstance(output_values, dict):
        raise CollaboratorError(stage, "Instance values must be objects")

    return TemplateDraft(
        name=name,
        description=description,
        inputs=inputs,
        outputs=outputs,
        steps=steps,
        input_values=input_values,
        output_values=output_values,
    )


def _parse_extract_source(spec: Any) -> str:
    source = spec.get("from") if isinstance(spec, dict) else spec
    try:
        return ExtractSource(str(source)).value
    except ValueError:
        return ExtractSource.PAGE_CONTENT.value


class TemplateSynthesizer:
    """Turns detected instances into (template, instance) pairs.

    The collaborator generalizes the events into a parameterized template and
    reports the concrete values used in this execution. Step snapshots are
    always built from the raw events, one per event. If the collaborator
    fails, a literal template with one step per event is produced instead.
    """

    def __init__(
        self,
        llm_client: "LLMClient",
        model: str,
        max_tokens: int = 4096,
        logger: "WorkflowLogger | None" = None,
    ):
        """Initialize the synthesizer.

        Args:
            llm_client: Collaborator used to generalize instances.
            model: Model name for synthesis calls.
            max_tokens: Maximum tokens per response.
            logger: Optional WorkflowLogger for styled output.
        """
        self.llm_client = llm_client
        self.model = model
        self.max_tokens = max_tokens
        self.logger = logger

    def synthesize(
        self,
        instance: DetectedInstance,
        screens: list[CanonicalScreen],
        session_id: str,
    ) -> SynthesisResult:
        """Synthesize a template and its instance from one detected instance."""
        labels = screen_label_lookup(screens)

        try:
            draft = self._request_draft(instance, labels)
        except Exception as e:
            _module_logger.warning("Template synthesis fell back for %r: %s", instance.goal, e)
            if self.logger:
                self.logger.fallback("Synthesizer", str(e))
            return self._fallback_result(instance, labels, session_id)

        now = now_ms()
        template = WorkflowTemplate(
            id=new_id("tmpl"),
            name=draft.name,
            description=draft.description,
            inputs={
                name: self._build_param(spec, draft.input_values, name, is_output=False)
                for name, spec in draft.inputs.items()
            },
            outputs={
                name: self._build_param(spec, draft.output_values, name, is_output=True)
                for name, spec in draft.outputs.items()
            },
            steps=[self._build_step(number, step) for number, step in enumerate(draft.steps, start=1)],
            created_at=now,
            updated_at=now,
        )
        self._repair_references(template, draft)

        workflow_instance = WorkflowInstance(
            id=new_id("inst"),
            template_id=template.id,
            session_id=session_id,
            parameter_values=dict(draft.input_values),
            extracted_values=dict(draft.output_values),
            step_snapshots=self._snapshots(instance.events, labels),
            created_at=now,
        )

        if self.logger:
            self.logger.info(
                f'Created template "{template.name}" with {len(template.inputs)} inputs'
            )
        return SynthesisResult(template=template, instance=workflow_instance)

    def synthesize_all(
        self,
        instances: list[DetectedInstance],
        screens: list[CanonicalScreen],
        session_id: str,
    ) -> list[SynthesisResult]:
        """Synthesize templates for several instances, one call at a time."""
        results = []
        for idx, instance in enumerate(instances, start=1):
            if self.logger:
                self.logger.step(f"[{idx}/{len(instances)}] {instance.goal}")
            results.append(self.synthesize(instance, screens, session_id))
        return results

    # =========================================================================
    # Collaborator path
    # =========================================================================

    def _request_draft(self, instance: DetectedInstance, labels: dict[str, str]) -> TemplateDraft:
        prompt = TEMPLATE_SYNTHESIS_PROMPT.format(
            goal=instance.goal,
            events_json=json.dumps(self._summarize_events(instance.events, labels), indent=2),
        )
        response_text = self.llm_client.generate(
            model=self.model,
            prompt=prompt,
            max_tokens=self.max_tokens,
            phase=PHASE_SYNTHESIZE,
        )
        return parse_synthesis_response(response_text)

    @staticmethod
    def _summarize_events(events: list[CapturedEvent], labels: dict[str, str]) -> list[dict]:
        return [
            {
                "stepNumber": idx,
                "screenType": labels.get(event.screen_id or "", UNKNOWN_SCREEN),
                "eventType": event.event_type,
                "action": event.describe_action(),
                "clickedText": event.target_text[:100] if event.target_text else None,
                "typedText": event.input_value or None,
                "inputFieldName": event.field_name,
                "inputType": event.input_type,
            }
            for idx, event in enumerate(events, start=1)
        ]

    @staticmethod
    def _build_param(
        spec: dict[str, Any],
        values: dict[str, Any],
        name: str,
        is_output: bool,
    ) -> ParameterDef:
        param = ParameterDef(
            param_type=ParameterType.parse(spec.get("type", "string")),
            description=str(spec.get("description") or ""),
            # Outputs are never required of the caller
            required=False if is_output else bool(spec.get("required", True)),
            default=None if is_output else spec.get("default"),
        )
        if name in values and values[name] is not None:
            param.observe(values[name])
        return param

    @staticmethod
    def _build_step(step_number: int, step: dict[str, Any]) -> TemplateStep:
        extracts = {
            str(name): {"from": _parse_extract_source(spec)}
            for name, spec in (step.get("extracts") or {}).items()
        }
        return TemplateStep(
            step_number=step_number,
            screen_pattern=str(step.get("screenPattern") or UNKNOWN_SCREEN),
            action_template=step["actionTemplate"],
            uses_inputs=[str(n) for n in (step.get("usesInputs") or [])],
            extracts=extracts,
        )

    def _repair_references(self, template: WorkflowTemplate, draft: TemplateDraft) -> None:
        """Declare any parameter a step references but the template omits."""
        missing_inputs, missing_outputs = template.undeclared_references()

        for name, step_number in missing_inputs.items():
            self._warn_undeclared("input", name, step_number)
            template.inputs[name] = self._build_param(
                {"type": "string", "description": f"Input used in step {step_number}", "required": False},
                draft.input_values,
                name,
                is_output=False,
            )
        for name, step_number in missing_outputs.items():
            self._warn_undeclared("output", name, step_number)
            template.outputs[name] = self._build_param(
                {"type": "string", "description": f"Value extracted in step {step_number}"},
                draft.output_values,
                name,
                is_output=True,
            )

    def _warn_undeclared(self, kind: str, name: str, step_number: int) -> None:
        message = f"Step {step_number} references undeclared {kind} '{name}'; declaring it"
        _module_logger.warning(message)
        if self.logger:
            self.logger.warning(message)

    @staticmethod
    def _snapshots(
        events: list[CapturedEvent],
        labels: dict[str, str],
        default_action: str = "User action",
    ) -> list[StepSnapshot]:
        return [
            StepSnapshot(
                step_number=idx,
                screenshot_path=event.screenshot_path,
                action=event.describe_action(default=default_action),
                screen_label=labels.get(event.screen_id or "", UNKNOWN_SCREEN),
            )
            for idx, event in enumerate(events, start=1)
        ]

    # =========================================================================
    # Fallback
    # =========================================================================

    def _fallback_result(
        self,
        instance: DetectedInstance,
        labels: dict[str, str],
        session_id: str,
    ) -> SynthesisResult:
        """Literal template: one step per event, no parameters."""
        now = now_ms()
        template = WorkflowTemplate(
            id=new_id("tmpl"),
            name=instance.goal,
            description=f"Workflow: {instance.goal}",
            steps=[
                TemplateStep(
                    step_number=idx,
                    screen_pattern=labels.get(event.screen_id or "", UNKNOWN_SCREEN),
                    action_template=event.describe_action(max_length=50, default="Action"),
                )
                for idx, event in enumerate(instance.events, start=1)
            ],
            created_at=now,
            updated_at=now,
        )
        workflow_instance = WorkflowInstance(
            id=new_id("inst"),
            template_id=template.id,
            session_id=session_id,
            step_snapshots=self._snapshots(instance.events, labels, default_action="Action"),
            created_at=now,
        )
        return SynthesisResult(template=template, instance=workflow_instance)
