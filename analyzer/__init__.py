"""Analysis module for turning recorded sessions into workflow templates."""

from .errors import (
    CollaboratorError,
    SessionBusyError,
    StoreError,
    WorkflowPipelineError,
)
from .schema import (
    # Captured input
    CapturedEvent,
    EventType,
    # Pipeline outputs
    CanonicalScreen,
    DetectedInstance,
    ExtractSource,
    FinalizationResult,
    ParameterDef,
    ParameterType,
    StepSnapshot,
    SynthesisResult,
    TemplateStep,
    WorkflowInstance,
    WorkflowTemplate,
)
from .screen_canonicalizer import ScreenCanonicalizer, extract_url_pattern
from .segmenter import (
    GoalSegmenter,
    HeuristicSegmenter,
    Segmenter,
    create_segmenter,
    select_base_screens,
)
from .template_synthesizer import TemplateSynthesizer
from .pipeline import FinalizationPipeline

__all__ = [
    # Captured input
    "CapturedEvent",
    "EventType",
    # Pipeline outputs
    "CanonicalScreen",
    "DetectedInstance",
    "ExtractSource",
    "FinalizationResult",
    "ParameterDef",
    "ParameterType",
    "StepSnapshot",
    "SynthesisResult",
    "TemplateStep",
    "WorkflowInstance",
    "WorkflowTemplate",
    # Stages
    "ScreenCanonicalizer",
    "extract_url_pattern",
    "Segmenter",
    "HeuristicSegmenter",
    "GoalSegmenter",
    "create_segmenter",
    "select_base_screens",
    "TemplateSynthesizer",
    "FinalizationPipeline",
    # Errors
    "WorkflowPipelineError",
    "CollaboratorError",
    "StoreError",
    "SessionBusyError",
]
