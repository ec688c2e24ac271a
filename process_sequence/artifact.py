from __future__ import annotations

import base64
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


# ---------- Base (forbid unknown keys) ----------

class StrictModel(BaseModel):
    """Base model that rejects unknown fields to keep outputs clean."""
    model_config = ConfigDict(extra="forbid")


class FrozenModel(StrictModel):
    """Strict model that cannot be changed once produced."""
    model_config = ConfigDict(extra="forbid", frozen=True)


# ---------- Options ----------

class Language(str, Enum):
    EN = "en"
    FR = "fr"

    @property
    def display_name(self) -> str:
        return "French" if self is Language.FR else "English"


class Audience(str, Enum):
    YOUNG = "young"
    ADULT = "adult"


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    LANDSCAPE = "4:3"
    TALL = "9:16"


class ImageQuality(str, Enum):
    FAST = "fast"
    HIGH = "high"


class ArtStyle(str, Enum):
    DEFAULT = "DEFAULT"
    PIXEL = "PIXEL"
    CLAY = "CLAY"
    ORIGAMI = "ORIGAMI"
    WATERCOLOR = "WATERCOLOR"
    CYBERPUNK = "CYBERPUNK"
    VINTAGE = "VINTAGE"
    NEON = "NEON"
    MANGA = "MANGA"
    GHIBLI = "GHIBLI"


# DEFAULT falls back to the audience's visual style
STYLE_DESCRIPTIONS: Dict[ArtStyle, str] = {
    ArtStyle.DEFAULT: "",
    ArtStyle.PIXEL: "8-bit pixel art style, vibrant colors, retro video game aesthetic, blocky details",
    ArtStyle.CLAY: "3D claymation style, plasticine texture, handmade look, soft lighting, stop-motion animation feel",
    ArtStyle.ORIGAMI: "Paper cutout style, layered paper texture, origami folds, slight shadows for depth, craft aesthetic",
    ArtStyle.WATERCOLOR: "Soft watercolor painting, artistic brush strokes, pastel colors, fluid blending, on textured paper background",
    ArtStyle.CYBERPUNK: "Futuristic cyberpunk style, neon lights, glowing accents, dark background, high contrast, digital sci-fi look",
    ArtStyle.VINTAGE: "Vintage science textbook illustration, lithograph style, muted earth tones, aged paper texture, detailed line work",
    ArtStyle.NEON: "Minimalist neon line art, glowing vector lines on deep black background, high contrast, modern and sleek",
    ArtStyle.MANGA: "Japanese manga style, bold black outlines, expressive eyes, dynamic action lines, high contrast ink illustrations, dramatic perspectives",
    ArtStyle.GHIBLI: "Studio Ghibli-inspired animation style, soft watercolor tones, whimsical characters, detailed natural backgrounds, warm color palette, magical realism aesthetic",
}


class AudienceProfile(FrozenModel):
    """How prompts address a given audience."""
    target_audience: str = Field(..., description="Who the content is written for.")
    tone: str = Field(..., description="Tone of voice used in explanations.")
    visual_style: str = Field(..., description="Default visual style when no art style is chosen.")


AUDIENCE_PROFILES: Dict[Audience, AudienceProfile] = {
    Audience.YOUNG: AudienceProfile(
        target_audience="children aged 8 to 10",
        tone="playful, warm and encouraging",
        visual_style="colorful cartoon illustration with friendly characters, bold outlines and simple shapes",
    ),
    Audience.ADULT: AudienceProfile(
        target_audience="curious adults without a scientific background",
        tone="clear, engaging and precise",
        visual_style="clean modern editorial illustration with precise diagrams and a restrained palette",
    ),
}


def resolve_style(style: ArtStyle, audience: Audience) -> str:
    """Return the style description, falling back to the audience default."""
    return STYLE_DESCRIPTIONS.get(style) or AUDIENCE_PROFILES[audience].visual_style


# ---------- Structure ----------

class ProcessStructure(FrozenModel):
    """Decomposition of a process into ordered stages."""
    process_name: str = Field(..., description="The name of the process.")
    domain: str = Field(..., description="The scientific domain this process belongs to (e.g. 'Biology').")
    overview_text: str = Field(..., description="A 200-word overview of the entire process that provides context.")
    suggested_steps: int = Field(..., ge=3, le=8, description="The optimal number of steps to explain this process (3 to 8).")
    step_titles: List[str] = Field(..., description="Clear, action-oriented title for each step, one per step, in order.")


class StageNarrative(FrozenModel):
    """Narrative content of one stage."""
    step_number: int = Field(..., ge=1)
    title: str
    description: str
    key_events: List[str] = Field(..., min_length=2, max_length=3)


# ---------- Visual plan ----------

class TitleStyle(FrozenModel):
    font_style: str = Field(..., description="Font style of the step title (e.g. 'bold rounded sans-serif').")
    font_size: str = Field(..., description="Font size of the step title (e.g. '48px').")
    text_color: str = Field(..., description="Concrete title text color as a hex code (e.g. '#2D3748').")
    background: str = Field(..., description="Background treatment behind the title, or 'none'.")
    position: str = Field(..., description="Fixed position of the title (e.g. 'top-center, 30px from the top edge').")
    effects: Optional[str] = Field(None, description="Optional text effects such as shadow or outline.")


class BadgeStyle(FrozenModel):
    shape: str = Field(..., description="Shape of the 'STEP X/Y' badge (e.g. 'rounded rectangle').")
    background_color: str = Field(..., description="Badge background color as a hex code.")
    border: str = Field(..., description="Badge border or outline (e.g. '3px solid #1A365D').")
    text_style: str = Field(..., description="Badge text styling: font, weight and color.")
    position: str = Field(..., description="Fixed badge position (e.g. 'top-right corner, 20px from the edges').")
    size: str = Field(..., description="Fixed badge dimensions (e.g. '160x60px').")


class PaletteEntry(FrozenModel):
    concept: str = Field(..., description="Concept represented by the color (e.g. 'oxygen').")
    color: str = Field(..., description="Color used for the concept, as a hex code.")


class LayoutTemplate(FrozenModel):
    title_position: str
    badge_position: str
    callout_placement: str = Field(..., description="Where callout boxes and annotations sit.")
    content_area: str = Field(..., description="Boundaries of the main illustration area.")


class TextStyleRules(FrozenModel):
    label_style: str = Field(..., description="Styling rules for short labels.")
    explanation_style: str = Field(..., description="Styling rules for explanatory sentences.")


class DesignTemplate(FrozenModel):
    """Visual decisions fixed at stage 1 and replicated by every later stage."""
    title_style: TitleStyle
    badge_style: BadgeStyle
    palette: List[PaletteEntry] = Field(..., min_length=3, max_length=5, description="3 to 5 concept to color assignments.")
    illustration_technique: str = Field(..., description="Line weight, shading, lighting direction and texture.")
    layout: LayoutTemplate
    text_style: TextStyleRules


class StageContent(FrozenModel):
    """What one stage shows, independent of the design template."""
    scene_description: str = Field(..., description="Composition of the main illustration for this step only.")
    transformation: str = Field(..., description="What visibly changes during this step.")
    labels: List[str] = Field(..., min_length=3, max_length=5, description="3 to 5 unique labels identifying key elements.")
    explanations: List[str] = Field(..., min_length=1, max_length=5, description="Short explanatory sentences (8-12 words each).")
    callouts: List[str] = Field(..., description="Callout boxes highlighting the key events.")
    inputs_outputs: Optional[str] = Field(None, description="What enters and leaves this step, if applicable.")


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


class StageVisualPlan(FrozenModel):
    """Structured rendering plan, serialized to text only for image synthesis."""
    step_number: int = Field(..., ge=1)
    total_steps: int = Field(..., ge=1)
    title: str
    template: DesignTemplate
    content: StageContent

    def badge_text(self) -> str:
        return f"STEP {self.step_number}/{self.total_steps}"

    def template_text(self) -> str:
        t = self.template
        title = t.title_style
        badge = t.badge_style
        title_line = (
            f"Title text: {title.font_style}, {title.font_size}, color {title.text_color}, "
            f"background {title.background}, positioned {title.position}"
        )
        if title.effects:
            title_line += f", effects: {title.effects}"
        palette = "; ".join(f"{entry.concept} = {entry.color}" for entry in t.palette)
        return "\n".join([
            "DESIGN TEMPLATE",
            title_line + ".",
            (
                f'Step badge "{self.badge_text()}": {badge.shape}, background {badge.background_color}, '
                f"border {badge.border}, text {badge.text_style}, positioned {badge.position}, size {badge.size}."
            ),
            f"Color palette: {palette}.",
            f"Illustration technique: {t.illustration_technique}.",
            (
                f"Layout: title at {t.layout.title_position}; badge at {t.layout.badge_position}; "
                f"callouts {t.layout.callout_placement}; main content {t.layout.content_area}."
            ),
            f"Labels: {t.text_style.label_style}. Explanations: {t.text_style.explanation_style}.",
        ])

    def content_text(self) -> str:
        c = self.content
        lines = [
            "STEP CONTENT",
            f"Scene: {c.scene_description}",
            f"Transformation: {c.transformation}",
            "Labels:",
            _bullets(c.labels),
            "Explanatory sentences:",
            _bullets(c.explanations),
        ]
        if c.callouts:
            lines += ["Callouts:", _bullets(c.callouts)]
        if c.inputs_outputs:
            lines.append(f"Inputs and outputs: {c.inputs_outputs}")
        return "\n".join(lines)

    def to_prompt(self) -> str:
        header = f'Educational infographic, step {self.step_number} of {self.total_steps}: "{self.title}".'
        return f"{header}\n\n{self.template_text()}\n\n{self.content_text()}"


class ConsistencyTemplate(FrozenModel):
    """Stage 1's design template and its verbatim plan text."""
    template: DesignTemplate
    source_plan_text: str


# ---------- Sequence ----------

class ImagePayload(FrozenModel):
    mime_type: str = "image/png"
    data: bytes

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    @field_serializer("data", when_used="json")
    def _serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")


class SequenceStep(FrozenModel):
    step_number: int = Field(..., ge=1)
    title: str
    description: str
    plan: str = Field(..., description="Plan text the image was rendered from.")
    image: ImagePayload


class ProcessSequence(StrictModel):
    """Ordered, append-only sequence of rendered stages."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    topic: str
    structure: ProcessStructure
    steps: List[SequenceStep] = Field(default_factory=list)
    language: Language = Language.EN
    audience: Audience = Audience.YOUNG
    style: ArtStyle = ArtStyle.DEFAULT
    quality: ImageQuality = ImageQuality.FAST
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def target_length(self) -> int:
        return self.structure.suggested_steps

    @property
    def is_complete(self) -> bool:
        return len(self.steps) == self.target_length

    def append(self, step: SequenceStep) -> None:
        if len(self.steps) >= self.target_length:
            raise ValueError(f"Sequence already holds {self.target_length} steps")
        expected = len(self.steps) + 1
        if step.step_number != expected:
            raise ValueError(f"Expected step {expected}, got step {step.step_number}")
        self.steps.append(step)


# ---------- Pipeline state ----------

class PipelinePhase(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    NARRATING = "narrating"
    TEMPLATING = "templating"
    PLANNING = "planning"
    RENDERING = "rendering"
    APPENDED = "appended"
    COMPLETE = "complete"
    FAILED = "failed"


class PipelineState(StrictModel):
    """Mutable state owned by the controller. Observers only see snapshots."""
    phase: PipelinePhase = PipelinePhase.IDLE
    current_step_index: int = 0
    accumulated_context: str = ""
    structure: Optional[ProcessStructure] = None
    consistency: Optional[ConsistencyTemplate] = None
    sequence: Optional[ProcessSequence] = None

    def snapshot(self) -> "PipelineState":
        return self.model_copy(deep=True)

    def reset(self) -> None:
        self.current_step_index = 0
        self.accumulated_context = ""
        self.structure = None
        self.consistency = None
        self.sequence = None


# ---------- Single infographic mode ----------

class ScientificFact(FrozenModel):
    domain: str = Field(..., description="The scientific domain of the fact.")
    title: str = Field(..., description="A short, catchy title (2 to 4 words).")
    text: str = Field(..., description="A 250-word text summarizing the essence of the fact.")


class InfographicItem(StrictModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = Field(default_factory=lambda: datetime.now(timezone.utc).timestamp())
    fact: ScientificFact
    plan: str
    image: ImagePayload
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    style: ArtStyle = ArtStyle.DEFAULT
    audience: Audience = Audience.YOUNG
    image_model: Optional[str] = None
    language: Language = Language.EN
