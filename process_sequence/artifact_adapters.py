"""
Artifact Adapters - prompt inputs and outputs for the process pipeline

This module handles:
- Dynamic DTO creation for structured outputs
- The accumulated narrative context carried from stage to stage
- The consistency block injected into every visual-plan prompt
- Composing structured visual plans from model outputs
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Type

from pydantic import Field, create_model

from .artifact import (
    ConsistencyTemplate,
    DesignTemplate,
    PipelinePhase,
    ProcessStructure,
    SequenceStep,
    StageContent,
    StageVisualPlan,
    StrictModel,
)
from .prompts import (
    EXCLUSION_DIGEST_INSTRUCTIONS,
    LATER_STAGE_TEMPLATE_INSTRUCTIONS,
    STAGE_ONE_TEMPLATE_INSTRUCTIONS,
)

CONTEXT_SEPARATOR = "\n\n"


# ---------- Output DTO Creation ----------

def create_output_dto(phase: PipelinePhase, step_number: int = 1) -> Type[StrictModel]:
    """Create the structured output model expected from the text model.

    Args:
        phase: Pipeline phase issuing the call
        step_number: Stage number, only relevant for PLANNING

    Returns:
        Pydantic model class used as the response schema
    """
    fields = {}

    if phase == PipelinePhase.DISCOVERING:
        return ProcessStructure

    elif phase == PipelinePhase.NARRATING:
        fields["description"] = (str, Field(..., description="A 200-250 word explanation of what happens in this step only."))
        fields["key_events"] = (List[str], Field(..., min_length=2, max_length=3, description="2 or 3 short phrases naming this step's key events."))

    elif phase == PipelinePhase.PLANNING:
        # Later stages inherit the stage-1 template and only plan their content
        if step_number == 1:
            fields["template"] = (DesignTemplate, Field(..., description="Design template that every step of the series will replicate."))
        fields["content"] = (StageContent, Field(..., description="Visual content specific to this step."))

    else:
        raise ValueError(f"No structured output for phase: {phase}")

    name = f"{phase.value.title()}Output" if step_number == 1 else f"{phase.value.title()}LaterStageOutput"
    return create_model(name, **fields, __base__=StrictModel)


# ---------- Accumulated Context ----------

def build_accumulated_context(overview_text: str, descriptions: Iterable[str]) -> str:
    """Overview followed by the descriptions of completed stages, in order."""
    return CONTEXT_SEPARATOR.join([overview_text, *descriptions])


def extend_accumulated_context(context: str, description: str) -> str:
    return f"{context}{CONTEXT_SEPARATOR}{description}"


# ---------- Consistency Block ----------

def truncate_text(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def build_exclusion_digest(prior_steps: Iterable[SequenceStep], limit: int = 160) -> str:
    """Bulleted titles and truncated descriptions of the stages already shown."""
    return "\n".join(
        f"- Step {step.step_number}: {step.title}: {truncate_text(step.description, limit)}"
        for step in prior_steps
    )


def build_consistency_block(
    step_number: int,
    total_steps: int,
    consistency: Optional[ConsistencyTemplate],
    prior_steps: List[SequenceStep],
    digest_limit: int = 160,
) -> str:
    """Build the text merged into a stage's visual-plan prompt.

    Stage 1 asks the planner to invent and document a design template.
    Later stages embed stage 1's plan text verbatim, ask for an exact
    replica of its design, and list previous stages as excluded content.
    """
    if step_number == 1:
        return STAGE_ONE_TEMPLATE_INSTRUCTIONS.format(total_steps=total_steps).strip()

    if consistency is None:
        raise ValueError(f"Step {step_number} needs the consistency template fixed at step 1")

    block = LATER_STAGE_TEMPLATE_INSTRUCTIONS.format(
        step_number=step_number,
        total_steps=total_steps,
        template_text=consistency.source_plan_text,
    ).strip()

    if prior_steps:
        digest = build_exclusion_digest(prior_steps, digest_limit)
        block += "\n\n" + EXCLUSION_DIGEST_INSTRUCTIONS.format(digest=digest).strip()

    return block


# ---------- Plan Composition ----------

def compose_stage_plan(
    step_number: int,
    total_steps: int,
    title: str,
    output: StrictModel,
    consistency: Optional[ConsistencyTemplate],
) -> StageVisualPlan:
    """Build a structured plan, pinning later stages to the stage-1 template."""
    template = output.template if consistency is None else consistency.template
    return StageVisualPlan(
        step_number=step_number,
        total_steps=total_steps,
        title=title,
        template=template,
        content=output.content,
    )


def fix_consistency_template(plan: StageVisualPlan) -> ConsistencyTemplate:
    """Derive the series template from the stage-1 plan."""
    return ConsistencyTemplate(template=plan.template, source_plan_text=plan.to_prompt())
