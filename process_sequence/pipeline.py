"""
Process Sequence Generation Pipeline

Decomposes a process into stages, then narrates, plans and renders each stage
strictly in order. Stage 1 fixes the design template that every later stage
replicates. Any failure aborts the run and clears all progress.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Dict, Optional, Type

from pydantic import BaseModel

from .artifact import (
    AUDIENCE_PROFILES,
    ArtStyle,
    AspectRatio,
    Audience,
    ConsistencyTemplate,
    ImagePayload,
    ImageQuality,
    Language,
    PipelinePhase,
    PipelineState,
    ProcessSequence,
    ProcessStructure,
    SequenceStep,
    StageNarrative,
    StageVisualPlan,
    resolve_style,
)
from .artifact_adapters import (
    build_accumulated_context,
    build_consistency_block,
    compose_stage_plan,
    create_output_dto,
    extend_accumulated_context,
    fix_consistency_template,
)
from .config import Settings
from .errors import (
    USER_MESSAGES,
    PipelineBusyError,
    PipelineFailedError,
    StageCountMismatchError,
    StageFailureError,
    classify_failure,
)
from .prompts import (
    IMAGE_RENDER_INSTRUCTIONS,
    PROCESS_DISCOVERY_PROMPT,
    PROCESS_STEP_EXPLANATION_PROMPT,
    PROCESS_STEP_PLAN_PROMPT,
)
from .resilience import call_with_resilience

if TYPE_CHECKING:
    from openrouter_wrapper import OpenRouterClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineState], None]


# ---------- Remote calls ----------

async def generate_structured(
    client: "OpenRouterClient",
    prompt: str,
    output_model: Optional[Type[BaseModel]],
    *,
    label: str,
    settings: Settings,
):
    """Text generation call through the resilience layer."""
    return await call_with_resilience(
        lambda: client.generate_text(
            prompt,
            response_format=output_model,
            reasoning_effort=settings.reasoning_effort,
            caller=label,
        ),
        timeout=settings.text_timeout,
        label=label,
        max_retries=settings.max_retries,
        initial_delay=settings.retry_initial_delay,
    )


async def plan_structure(
    client: "OpenRouterClient",
    topic: str,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    settings: Settings,
) -> ProcessStructure:
    """Decompose a topic into 3 to 8 titled stages plus an overview.

    Raises:
        StageCountMismatchError: If the titles do not match the step count
    """
    profile = AUDIENCE_PROFILES[audience]
    prompt = PROCESS_DISCOVERY_PROMPT.format(
        target_audience=profile.target_audience,
        process=topic,
        tone=profile.tone,
        language=language.display_name,
    )
    structure = await generate_structured(
        client, prompt, create_output_dto(PipelinePhase.DISCOVERING),
        label="structure planning", settings=settings,
    )

    if len(structure.step_titles) != structure.suggested_steps:
        raise StageCountMismatchError(structure.suggested_steps, len(structure.step_titles))

    logger.info(f"Planned '{structure.process_name}' in {structure.suggested_steps} steps")
    return structure


async def narrate_stage(
    client: "OpenRouterClient",
    structure: ProcessStructure,
    step_number: int,
    accumulated_context: str,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    settings: Settings,
) -> StageNarrative:
    """Write one stage's description and key events given everything before it."""
    profile = AUDIENCE_PROFILES[audience]
    title = structure.step_titles[step_number - 1]
    prompt = PROCESS_STEP_EXPLANATION_PROMPT.format(
        target_audience=profile.target_audience,
        step_number=step_number,
        total_steps=structure.suggested_steps,
        process_name=structure.process_name,
        step_title=title,
        previous_context=accumulated_context,
        tone=profile.tone,
        language=language.display_name,
    )
    output = await generate_structured(
        client, prompt, create_output_dto(PipelinePhase.NARRATING),
        label=f"step {step_number} narration", settings=settings,
    )
    return StageNarrative(
        step_number=step_number,
        title=title,
        description=output.description,
        key_events=output.key_events,
    )


def build_stage_plan_prompt(
    structure: ProcessStructure,
    narrative: StageNarrative,
    consistency_block: str,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    style: ArtStyle = ArtStyle.DEFAULT,
) -> str:
    return PROCESS_STEP_PLAN_PROMPT.format(
        step_number=narrative.step_number,
        total_steps=structure.suggested_steps,
        process_name=structure.process_name,
        consistency_block=consistency_block,
        step_title=narrative.title,
        step_description=narrative.description,
        key_events="; ".join(narrative.key_events),
        domain=structure.domain,
        target_audience=AUDIENCE_PROFILES[audience].target_audience,
        visual_style=resolve_style(style, audience),
        language=language.display_name,
    )


async def plan_stage_visual(
    client: "OpenRouterClient",
    prompt: str,
    narrative: StageNarrative,
    total_steps: int,
    consistency: Optional[ConsistencyTemplate],
    *,
    settings: Settings,
) -> StageVisualPlan:
    """Ask for a stage's visual plan. Later stages keep the stage-1 template."""
    output = await generate_structured(
        client, prompt, create_output_dto(PipelinePhase.PLANNING, narrative.step_number),
        label=f"step {narrative.step_number} visual plan", settings=settings,
    )
    return compose_stage_plan(narrative.step_number, total_steps, narrative.title, output, consistency)


async def render_stage_image(
    client: "OpenRouterClient",
    plan_text: str,
    *,
    quality: ImageQuality = ImageQuality.FAST,
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT,
    style: str = "",
    timeout: float,
    settings: Settings,
    label: str = "image rendering",
) -> ImagePayload:
    """Render plan text into an image within the caller's time budget."""
    prompt = IMAGE_RENDER_INSTRUCTIONS.format(style=style or "as described in the plan", plan=plan_text)
    model = settings.image_model_for(quality)
    return await call_with_resilience(
        lambda: client.generate_image(prompt, model=model, aspect_ratio=aspect_ratio.value, caller=label),
        timeout=timeout,
        label=label,
        max_retries=settings.max_retries,
        initial_delay=settings.retry_initial_delay,
    )


# ---------- Controller ----------

class ProcessPipeline:
    """Runs one process through every stage, all or nothing.

    The controller owns the pipeline state. Observers registered through
    ``on_progress`` receive a deep copy on each phase transition, so the
    partial sequence can be displayed while it grows. Only the sequence
    returned by :meth:`run` is complete and safe to persist.
    """

    def __init__(
        self,
        client: "OpenRouterClient",
        settings: Optional[Settings] = None,
        *,
        language: Language = Language.EN,
        audience: Audience = Audience.YOUNG,
        style: ArtStyle = ArtStyle.DEFAULT,
        quality: ImageQuality = ImageQuality.FAST,
        aspect_ratio: AspectRatio = AspectRatio.PORTRAIT,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.language = language
        self.audience = audience
        self.style = style
        self.quality = quality
        self.aspect_ratio = aspect_ratio
        self.on_progress = on_progress
        # Visual-plan prompt of each stage of the latest run
        self.stage_prompts: Dict[int, str] = {}
        self._state = PipelineState()
        self._running = False

    @property
    def state(self) -> PipelineState:
        return self._state.snapshot()

    def _transition(self, phase: PipelinePhase, step: Optional[int] = None) -> None:
        self._state.phase = phase
        if step is not None:
            self._state.current_step_index = step
        logger.info(f"Phase {phase.value} (step {self._state.current_step_index})")
        if self.on_progress is not None:
            self.on_progress(self._state.snapshot())

    async def run(self, topic: str) -> ProcessSequence:
        """Generate the complete sequence for ``topic``.

        Raises:
            PipelineFailedError: After any failure, with state fully reset
            PipelineBusyError: If a run is already in progress
        """
        if self._running:
            raise PipelineBusyError("A sequence is already being generated")
        self._running = True
        self._state = PipelineState()
        self.stage_prompts = {}
        try:
            return await self._run(topic)
        except asyncio.CancelledError:
            self._state.reset()
            self._state.phase = PipelinePhase.IDLE
            raise
        finally:
            self._running = False

    async def _run(self, topic: str) -> ProcessSequence:
        state = self._state
        try:
            self._transition(PipelinePhase.DISCOVERING, 0)
            structure = await plan_structure(
                self.client, topic,
                language=self.language, audience=self.audience, settings=self.settings,
            )
            state.structure = structure
            state.accumulated_context = build_accumulated_context(structure.overview_text, [])
            state.sequence = ProcessSequence(
                topic=topic,
                structure=structure,
                language=self.language,
                audience=self.audience,
                style=self.style,
                quality=self.quality,
                aspect_ratio=self.aspect_ratio,
            )

            for step_number in range(1, structure.suggested_steps + 1):
                await self._run_stage(step_number)

        except Exception as e:
            self._fail(e)

        self._transition(PipelinePhase.COMPLETE)
        return state.sequence

    async def _run_stage(self, step_number: int) -> None:
        state = self._state
        structure = state.structure
        total_steps = structure.suggested_steps

        self._transition(PipelinePhase.NARRATING, step_number)
        narrative = await narrate_stage(
            self.client, structure, step_number, state.accumulated_context,
            language=self.language, audience=self.audience, settings=self.settings,
        )

        self._transition(PipelinePhase.TEMPLATING)
        consistency_block = build_consistency_block(
            step_number, total_steps, state.consistency, state.sequence.steps,
            self.settings.digest_description_limit,
        )
        prompt = build_stage_plan_prompt(
            structure, narrative, consistency_block,
            language=self.language, audience=self.audience, style=self.style,
        )
        self.stage_prompts[step_number] = prompt

        self._transition(PipelinePhase.PLANNING)
        plan = await plan_stage_visual(
            self.client, prompt, narrative, total_steps, state.consistency, settings=self.settings,
        )
        if state.consistency is None:
            state.consistency = fix_consistency_template(plan)
        plan_text = plan.to_prompt()

        self._transition(PipelinePhase.RENDERING)
        image = await render_stage_image(
            self.client, plan_text,
            quality=self.quality,
            aspect_ratio=self.aspect_ratio,
            style=resolve_style(self.style, self.audience),
            timeout=self.settings.process_image_timeout,
            settings=self.settings,
            label=f"step {step_number} rendering",
        )

        state.sequence.append(SequenceStep(
            step_number=step_number,
            title=narrative.title,
            description=narrative.description,
            plan=plan_text,
            image=image,
        ))
        state.accumulated_context = extend_accumulated_context(state.accumulated_context, narrative.description)
        self._transition(PipelinePhase.APPENDED)

    def _fail(self, error: Exception) -> None:
        step = self._state.current_step_index
        phase = self._state.phase
        stage_error = StageFailureError(step, phase.value, error)
        kind = classify_failure(error)
        logger.error(f"{stage_error} (during {phase.value}, classified as {kind.value})")

        self._state.reset()
        self._state.current_step_index = step
        self._transition(PipelinePhase.FAILED)
        raise PipelineFailedError(kind, step, USER_MESSAGES[kind]) from stage_error
