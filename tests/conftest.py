"""
Pytest Configuration and Fixtures

A scripted stand-in for the OpenRouter client plus shared sample data.
"""

import asyncio
import io
from typing import Dict, List, Optional

import pytest
from PIL import Image

from process_sequence import ImagePayload, ProcessStructure, Settings


def make_png(color=(200, 80, 40), size=(48, 64)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def sample_template() -> dict:
    return {
        "title_style": {
            "font_style": "bold rounded sans-serif",
            "font_size": "48px",
            "text_color": "#2D3748",
            "background": "none",
            "position": "top-center, 30px from the top edge",
            "effects": "subtle drop shadow",
        },
        "badge_style": {
            "shape": "rounded rectangle",
            "background_color": "#FFF5E1",
            "border": "3px solid #1A365D",
            "text_style": "bold 28px sans-serif, #1A365D",
            "position": "top-right corner, 20px from the edges",
            "size": "160x60px",
        },
        "palette": [
            {"concept": "sunlight", "color": "#F6E05E"},
            {"concept": "water", "color": "#4299E1"},
            {"concept": "oxygen", "color": "#E53E3E"},
        ],
        "illustration_technique": "flat vector shapes, 3px outlines, soft light from the upper left",
        "layout": {
            "title_position": "top-center",
            "badge_position": "top-right",
            "callout_placement": "rounded boxes along the right margin",
            "content_area": "central 70% of the canvas",
        },
        "text_style": {
            "label_style": "bold 20px, dark gray, arrow to the element",
            "explanation_style": "18px regular, inside white rounded boxes",
        },
    }


def sample_content(step_number: int) -> dict:
    return {
        "scene_description": f"Scene for step {step_number}",
        "transformation": f"Change during step {step_number}",
        "labels": [f"label {step_number}a", f"label {step_number}b", f"label {step_number}c"],
        "explanations": [f"Explanation sentence for step {step_number}."],
        "callouts": [f"Key event of step {step_number}"],
        "inputs_outputs": None,
    }


def make_structure(steps: int = 5, process_name: str = "Photosynthesis") -> ProcessStructure:
    return ProcessStructure(
        process_name=process_name,
        domain="Biology",
        overview_text=f"Overview of {process_name}.",
        suggested_steps=steps,
        step_titles=[f"Stage title {i}" for i in range(1, steps + 1)],
    )


def narration_description(step_number: int) -> str:
    return f"Description of step {step_number}."


class FakeClient:
    """Answers pipeline calls from their caller label.

    ``failures`` maps a caller label (e.g. "step 2 rendering") to a list of
    exceptions raised on successive calls before the call succeeds.
    ``delays`` maps a caller label to seconds slept before answering.
    """

    def __init__(
        self,
        structure: ProcessStructure,
        failures: Optional[Dict[str, List[BaseException]]] = None,
        delays: Optional[Dict[str, float]] = None,
        template_overrides: Optional[dict] = None,
    ):
        self.structure = structure
        self.failures = {label: list(errors) for label, errors in (failures or {}).items()}
        self.delays = delays or {}
        self.template_overrides = template_overrides or {}
        self.text_calls: List[tuple] = []
        self.image_calls: List[tuple] = []

    async def _maybe_fail(self, caller: str) -> None:
        if caller in self.delays:
            await asyncio.sleep(self.delays[caller])
        pending = self.failures.get(caller)
        if pending:
            raise pending.pop(0)

    async def generate_text(self, text, *, context=None, response_format=None, model=None, reasoning_effort=None, caller="text"):
        self.text_calls.append((caller, text))
        await self._maybe_fail(caller)

        if caller == "structure planning":
            return self.structure

        step_number = int(caller.split()[1]) if caller.startswith("step ") else 0
        if caller.endswith("narration"):
            return response_format.model_validate({
                "description": narration_description(step_number),
                "key_events": [f"event {step_number}a", f"event {step_number}b"],
            })
        if caller.endswith("visual plan"):
            data = {"content": sample_content(step_number)}
            if "template" in response_format.model_fields:
                template = sample_template()
                template.update(self.template_overrides)
                data["template"] = template
            return response_format.model_validate(data)

        return f"Plain text answer for {caller}"

    async def generate_image(self, text, *, model, aspect_ratio="3:4", context=None, caller="image"):
        self.image_calls.append((caller, text, model, aspect_ratio))
        await self._maybe_fail(caller)
        return ImagePayload(mime_type="image/png", data=make_png())


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        openrouter_api_key="test-key",
        text_timeout=5.0,
        image_timeout=5.0,
        process_image_timeout=5.0,
        max_retries=3,
        retry_initial_delay=0.0,
        output_dir=str(tmp_path),
        llm_log_path=str(tmp_path / "llm_log.txt"),
    )


@pytest.fixture
def structure() -> ProcessStructure:
    return make_structure()


@pytest.fixture
def fake_client(structure) -> FakeClient:
    return FakeClient(structure)
