"""
Tests for the process pipeline controller.

The remote model is replaced by the scripted FakeClient from conftest, so
these tests exercise ordering, context threading, template consistency and
all-or-nothing failure handling without network access.
"""

import asyncio

import pytest

from process_sequence import (
    ArtStyle,
    AspectRatio,
    Audience,
    ContentPolicyBlockError,
    CopyrightBlockError,
    FailureKind,
    GenerationTimeoutError,
    ImageQuality,
    Language,
    MalformedResponseError,
    PipelineBusyError,
    PipelineFailedError,
    PipelinePhase,
    ProcessPipeline,
    StageCountMismatchError,
    StageFailureError,
    TransientOverloadError,
    build_accumulated_context,
    plan_structure,
)

from conftest import FakeClient, make_structure, narration_description


def collect_states():
    states = []
    return states, states.append


def assert_fully_reset(state, step):
    assert state.phase == PipelinePhase.FAILED
    assert state.current_step_index == step
    assert state.sequence is None
    assert state.structure is None
    assert state.consistency is None
    assert state.accumulated_context == ""


class TestSuccessfulRun:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("steps", [3, 5, 8])
    async def test_sequence_has_every_step_in_order(self, settings, steps):
        client = FakeClient(make_structure(steps))
        pipeline = ProcessPipeline(client, settings)

        sequence = await pipeline.run("Photosynthesis")

        assert sequence.is_complete
        assert [step.step_number for step in sequence.steps] == list(range(1, steps + 1))
        assert [step.title for step in sequence.steps] == [f"Stage title {i}" for i in range(1, steps + 1)]
        assert pipeline.state.phase == PipelinePhase.COMPLETE

    @pytest.mark.asyncio
    async def test_context_before_each_stage_is_overview_plus_prior_descriptions(self, settings, structure):
        states, on_progress = collect_states()
        pipeline = ProcessPipeline(FakeClient(structure), settings, on_progress=on_progress)

        await pipeline.run("Photosynthesis")

        narrating = [s for s in states if s.phase == PipelinePhase.NARRATING]
        assert [s.current_step_index for s in narrating] == [1, 2, 3, 4, 5]
        for snapshot in narrating:
            i = snapshot.current_step_index
            expected = build_accumulated_context(
                structure.overview_text, [narration_description(j) for j in range(1, i)]
            )
            assert snapshot.accumulated_context == expected
            assert narration_description(i) not in snapshot.accumulated_context

    @pytest.mark.asyncio
    async def test_narration_prompt_receives_accumulated_context(self, settings, structure):
        client = FakeClient(structure)
        await ProcessPipeline(client, settings).run("Photosynthesis")

        prompts = dict(client.text_calls)
        step_three = prompts["step 3 narration"]
        assert structure.overview_text in step_three
        assert narration_description(1) in step_three
        assert narration_description(2) in step_three
        assert narration_description(3) not in step_three

    @pytest.mark.asyncio
    async def test_later_stage_prompts_embed_stage_one_plan(self, settings, structure):
        pipeline = ProcessPipeline(FakeClient(structure), settings)

        sequence = await pipeline.run("Photosynthesis")

        stage_one_plan = sequence.steps[0].plan
        for k in range(2, structure.suggested_steps + 1):
            assert stage_one_plan in pipeline.stage_prompts[k]
        assert "=== STEP 1 PLAN (verbatim) ===" not in pipeline.stage_prompts[1]

    @pytest.mark.asyncio
    async def test_photosynthesis_stage_three_prompt(self, settings, structure):
        pipeline = ProcessPipeline(FakeClient(structure), settings)

        sequence = await pipeline.run("Photosynthesis")

        assert len(sequence.steps) == 5
        prompt = pipeline.stage_prompts[3]
        assert sequence.steps[0].plan in prompt
        assert "- Step 1: Stage title 1: Description of step 1." in prompt
        assert "- Step 2: Stage title 2: Description of step 2." in prompt
        assert "- Step 3:" not in prompt

    @pytest.mark.asyncio
    async def test_later_stages_reuse_stage_one_template(self, settings, structure):
        client = FakeClient(structure)
        pipeline = ProcessPipeline(client, settings)
        sequence = await pipeline.run("Photosynthesis")

        # Only stage 1 is asked for a template; later answers cannot change it
        first_palette_line = next(
            line for line in sequence.steps[0].plan.splitlines() if line.startswith("Color palette")
        )
        for step in sequence.steps[1:]:
            assert first_palette_line in step.plan
            assert f"STEP {step.step_number}/5" in step.plan

    @pytest.mark.asyncio
    async def test_images_use_selected_quality_and_aspect_ratio(self, settings, structure):
        client = FakeClient(structure)
        pipeline = ProcessPipeline(
            client, settings,
            language=Language.FR,
            audience=Audience.ADULT,
            style=ArtStyle.WATERCOLOR,
            quality=ImageQuality.HIGH,
            aspect_ratio=AspectRatio.LANDSCAPE,
        )

        sequence = await pipeline.run("Photosynthesis")

        assert {call[2] for call in client.image_calls} == {settings.image_model_high}
        assert {call[3] for call in client.image_calls} == {AspectRatio.LANDSCAPE.value}
        assert sequence.language == Language.FR
        assert sequence.quality == ImageQuality.HIGH
        assert "French" in dict(client.text_calls)["structure planning"]

    @pytest.mark.asyncio
    async def test_transient_error_is_retried_transparently(self, settings, structure):
        client = FakeClient(structure, failures={"step 2 rendering": [TransientOverloadError("503 overloaded")]})
        states, on_progress = collect_states()

        sequence = await ProcessPipeline(client, settings, on_progress=on_progress).run("Photosynthesis")

        assert sequence.is_complete
        assert [call[0] for call in client.image_calls].count("step 2 rendering") == 2
        assert PipelinePhase.FAILED not in {s.phase for s in states}

    @pytest.mark.asyncio
    async def test_success_on_third_attempt_appends_stage_once(self, settings, structure):
        busy = [TransientOverloadError("503 overloaded"), TransientOverloadError("429 rate limit")]
        client = FakeClient(structure, failures={"step 2 rendering": busy})
        states, on_progress = collect_states()

        sequence = await ProcessPipeline(client, settings, on_progress=on_progress).run("Photosynthesis")

        assert [call[0] for call in client.image_calls].count("step 2 rendering") == 3
        assert [step.step_number for step in sequence.steps] == [1, 2, 3, 4, 5]
        step_two = [s for s in states if s.current_step_index == 2]
        assert [s.phase for s in step_two].count(PipelinePhase.RENDERING) == 1
        assert [s.phase for s in step_two].count(PipelinePhase.APPENDED) == 1
        assert PipelinePhase.FAILED not in {s.phase for s in states}

    @pytest.mark.asyncio
    async def test_phases_of_one_stage(self, settings):
        states, on_progress = collect_states()
        await ProcessPipeline(FakeClient(make_structure(3)), settings, on_progress=on_progress).run("Digestion")

        stage_one = [s.phase for s in states if s.current_step_index == 1]
        assert stage_one == [
            PipelinePhase.NARRATING,
            PipelinePhase.TEMPLATING,
            PipelinePhase.PLANNING,
            PipelinePhase.RENDERING,
            PipelinePhase.APPENDED,
        ]
        assert states[0].phase == PipelinePhase.DISCOVERING
        assert states[-1].phase == PipelinePhase.COMPLETE

    @pytest.mark.asyncio
    async def test_appended_snapshots_grow_by_one(self, settings, structure):
        states, on_progress = collect_states()
        await ProcessPipeline(FakeClient(structure), settings, on_progress=on_progress).run("Photosynthesis")

        appended = [s for s in states if s.phase == PipelinePhase.APPENDED]
        assert [len(s.sequence.steps) for s in appended] == [1, 2, 3, 4, 5]


class TestFailures:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, kind",
        [
            (ContentPolicyBlockError("blocked by safety filter"), FailureKind.CONTENT_BLOCKED),
            (CopyrightBlockError("recitation"), FailureKind.CONTENT_BLOCKED),
            (MalformedResponseError("text instead of image"), FailureKind.GENERIC),
        ],
    )
    async def test_failure_at_stage_discards_everything(self, settings, structure, error, kind):
        client = FakeClient(structure, failures={"step 3 rendering": [error]})
        states, on_progress = collect_states()
        pipeline = ProcessPipeline(client, settings, on_progress=on_progress)

        with pytest.raises(PipelineFailedError) as exc_info:
            await pipeline.run("Photosynthesis")

        failure = exc_info.value
        assert failure.kind == kind
        assert failure.step == 3
        assert isinstance(failure.__cause__, StageFailureError)
        assert failure.__cause__.__cause__ is error
        assert_fully_reset(pipeline.state, 3)
        assert_fully_reset(states[-1], 3)
        # Nothing from stage 4 onwards was attempted
        assert all(not caller.startswith("step 4") for caller, _ in client.text_calls)

    @pytest.mark.asyncio
    async def test_rate_limit_after_exhausted_retries(self, settings, structure):
        busy = [TransientOverloadError("429 rate limit") for _ in range(settings.max_retries + 1)]
        client = FakeClient(structure, failures={"step 2 narration": busy})
        pipeline = ProcessPipeline(client, settings)

        with pytest.raises(PipelineFailedError) as exc_info:
            await pipeline.run("Photosynthesis")

        assert exc_info.value.kind == FailureKind.RATE_LIMITED
        assert exc_info.value.step == 2
        assert_fully_reset(pipeline.state, 2)

    @pytest.mark.asyncio
    async def test_image_timeout_is_reported_as_timed_out(self, settings, structure):
        settings.process_image_timeout = 0.05
        client = FakeClient(structure, delays={"step 1 rendering": 5.0})
        pipeline = ProcessPipeline(client, settings)

        with pytest.raises(PipelineFailedError) as exc_info:
            await pipeline.run("Photosynthesis")

        assert exc_info.value.kind == FailureKind.TIMED_OUT
        assert isinstance(exc_info.value.__cause__.__cause__, GenerationTimeoutError)
        assert_fully_reset(pipeline.state, 1)

    @pytest.mark.asyncio
    async def test_structure_failure_is_stage_zero(self, settings, structure):
        client = FakeClient(structure, failures={"structure planning": [MalformedResponseError("empty")]})
        pipeline = ProcessPipeline(client, settings)

        with pytest.raises(PipelineFailedError) as exc_info:
            await pipeline.run("Photosynthesis")

        assert exc_info.value.step == 0
        assert client.image_calls == []
        assert_fully_reset(pipeline.state, 0)

    @pytest.mark.asyncio
    async def test_stage_count_mismatch_fails_before_any_stage(self, settings):
        broken = make_structure(5).model_copy(update={"step_titles": ["One", "Two", "Three", "Four"]})
        client = FakeClient(broken)
        pipeline = ProcessPipeline(client, settings)

        with pytest.raises(PipelineFailedError) as exc_info:
            await pipeline.run("Photosynthesis")

        assert exc_info.value.step == 0
        assert isinstance(exc_info.value.__cause__.__cause__, StageCountMismatchError)
        assert [caller for caller, _ in client.text_calls] == ["structure planning"]

    @pytest.mark.asyncio
    async def test_pipeline_can_run_again_after_failure(self, settings, structure):
        client = FakeClient(structure, failures={"step 2 visual plan": [ContentPolicyBlockError("blocked")]})
        pipeline = ProcessPipeline(client, settings)

        with pytest.raises(PipelineFailedError):
            await pipeline.run("Photosynthesis")

        sequence = await pipeline.run("Photosynthesis")
        assert sequence.is_complete


class TestControllerState:

    @pytest.mark.asyncio
    async def test_second_run_while_busy_is_rejected(self, settings, structure):
        client = FakeClient(structure, delays={"structure planning": 0.2})
        pipeline = ProcessPipeline(client, settings)

        first = asyncio.create_task(pipeline.run("Photosynthesis"))
        await asyncio.sleep(0.01)
        with pytest.raises(PipelineBusyError):
            await pipeline.run("Photosynthesis")

        sequence = await first
        assert sequence.is_complete

    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self, settings, structure):
        states, on_progress = collect_states()
        pipeline = ProcessPipeline(FakeClient(structure), settings, on_progress=on_progress)

        await pipeline.run("Photosynthesis")

        first_appended = next(s for s in states if s.phase == PipelinePhase.APPENDED)
        assert len(first_appended.sequence.steps) == 1

        snapshot = pipeline.state
        snapshot.sequence.steps.clear()
        assert len(pipeline.state.sequence.steps) == 5

    @pytest.mark.asyncio
    async def test_cancellation_resets_state(self, settings, structure):
        client = FakeClient(structure, delays={"step 2 narration": 5.0})
        states, on_progress = collect_states()
        pipeline = ProcessPipeline(client, settings, on_progress=on_progress)

        task = asyncio.create_task(pipeline.run("Photosynthesis"))
        while not any(s.phase == PipelinePhase.NARRATING and s.current_step_index == 2 for s in states):
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        state = pipeline.state
        assert state.phase == PipelinePhase.IDLE
        assert state.sequence is None
        assert state.accumulated_context == ""


class TestPlanStructure:

    @pytest.mark.asyncio
    async def test_returns_structure(self, settings, structure):
        result = await plan_structure(FakeClient(structure), "Photosynthesis", settings=settings)
        assert result == structure

    @pytest.mark.asyncio
    async def test_mismatch_raises(self, settings):
        broken = make_structure(3).model_copy(update={"step_titles": ["Only one"]})
        with pytest.raises(StageCountMismatchError):
            await plan_structure(FakeClient(broken), "Photosynthesis", settings=settings)
