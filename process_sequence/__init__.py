"""
Process Sequence Generation Pipeline

Turns a multi-stage natural process into an ordered, visually consistent
sequence of educational infographics, one per stage.
"""

from .artifact import (
    StrictModel,
    Language,
    Audience,
    AspectRatio,
    ImageQuality,
    ArtStyle,
    ProcessStructure,
    StageNarrative,
    DesignTemplate,
    StageContent,
    StageVisualPlan,
    ConsistencyTemplate,
    ImagePayload,
    SequenceStep,
    ProcessSequence,
    PipelinePhase,
    PipelineState,
    ScientificFact,
    InfographicItem,
)

from .config import Settings, load_settings

from .errors import (
    ProcessSequenceError,
    ConfigurationError,
    GenerationError,
    TransientOverloadError,
    GenerationTimeoutError,
    TransportTimeoutError,
    ContentPolicyBlockError,
    CopyrightBlockError,
    MalformedResponseError,
    ValidationGapError,
    StageCountMismatchError,
    StageFailureError,
    PipelineFailedError,
    PipelineBusyError,
    IncompleteSequenceError,
    FailureKind,
    classify_failure,
)

from .resilience import retry_with_backoff, with_timeout, call_with_resilience

from .artifact_adapters import (
    create_output_dto,
    build_accumulated_context,
    extend_accumulated_context,
    build_exclusion_digest,
    build_consistency_block,
)

from .pipeline import (
    ProcessPipeline,
    plan_structure,
    narrate_stage,
    build_stage_plan_prompt,
    plan_stage_visual,
    render_stage_image,
)

from .infographic import (
    generate_scientific_facts,
    generate_fact_from_concept,
    generate_infographic_plan,
    generate_infographic,
)

from .utils import (
    save_image_to_data,
    save_sequence_checkpoint,
    create_sequence_strip,
    SequenceStore,
)

__all__ = [
    # Core models
    "StrictModel",
    "Language",
    "Audience",
    "AspectRatio",
    "ImageQuality",
    "ArtStyle",
    "ProcessStructure",
    "StageNarrative",
    "DesignTemplate",
    "StageContent",
    "StageVisualPlan",
    "ConsistencyTemplate",
    "ImagePayload",
    "SequenceStep",
    "ProcessSequence",
    "PipelinePhase",
    "PipelineState",
    "ScientificFact",
    "InfographicItem",

    # Config
    "Settings",
    "load_settings",

    # Errors
    "ProcessSequenceError",
    "ConfigurationError",
    "GenerationError",
    "TransientOverloadError",
    "GenerationTimeoutError",
    "TransportTimeoutError",
    "ContentPolicyBlockError",
    "CopyrightBlockError",
    "MalformedResponseError",
    "ValidationGapError",
    "StageCountMismatchError",
    "StageFailureError",
    "PipelineFailedError",
    "PipelineBusyError",
    "IncompleteSequenceError",
    "FailureKind",
    "classify_failure",

    # Resilience
    "retry_with_backoff",
    "with_timeout",
    "call_with_resilience",

    # Adapters
    "create_output_dto",
    "build_accumulated_context",
    "extend_accumulated_context",
    "build_exclusion_digest",
    "build_consistency_block",

    # Pipeline
    "ProcessPipeline",
    "plan_structure",
    "narrate_stage",
    "build_stage_plan_prompt",
    "plan_stage_visual",
    "render_stage_image",

    # Single infographic mode
    "generate_scientific_facts",
    "generate_fact_from_concept",
    "generate_infographic_plan",
    "generate_infographic",

    # Utils
    "save_image_to_data",
    "save_sequence_checkpoint",
    "create_sequence_strip",
    "SequenceStore",
]
