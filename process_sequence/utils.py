"""
Utilities for the Process Sequence Pipeline

This module provides file I/O utilities for:
- Saving generated images with systematic naming
- Saving pipeline state checkpoints for inspection
- Creating a strip image of a complete sequence
- Persisting complete sequences (images in parallel, then one metadata record)
"""

import asyncio
import io
import json
import logging
import os
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from PIL import Image, ImageDraw, ImageFont

from .artifact import ImagePayload, PipelineState, ProcessSequence, SequenceStep
from .errors import IncompleteSequenceError

logger = logging.getLogger(__name__)

EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/jpg": "jpg", "image/webp": "webp"}


def sanitize_name(name: str) -> str:
    """Make a name safe for file systems (lowercase, underscores)."""
    sanitized = re.sub(r'[^\w\-_]', '_', name)
    sanitized = re.sub(r'_+', '_', sanitized)
    sanitized = sanitized.strip('_')
    return sanitized.lower()


def image_extension(image: ImagePayload) -> str:
    return EXTENSIONS.get(image.mime_type, "png")


def save_image_to_data(image: ImagePayload, project_name: str, image_type: str, item_name: str, root: str = "data") -> str:
    """Save image to data folder with systematic naming convention.

    Args:
        image: The image payload
        project_name: Name of the project (e.g., 'photosynthesis')
        image_type: Type of image ('step', 'infographic', etc.)
        item_name: Name of the item being generated
        root: Base output folder

    Returns:
        Local file path to the saved image
    """
    # Create directory structure: {root}/{project_name}/images/
    images_dir = os.path.join(root, sanitize_name(project_name), "images")
    os.makedirs(images_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    # Generate filename: {type}_{item_name}_{timestamp}.{ext}
    filename = f"{sanitize_name(image_type)}_{sanitize_name(item_name)}_{timestamp}.{image_extension(image)}"
    filepath = os.path.join(images_dir, filename)

    with open(filepath, "wb") as f:
        f.write(image.data)

    return filepath


def save_sequence_checkpoint(state: PipelineState, name: str, root: str = "data") -> str:
    """Save a pipeline state snapshot as JSON, without image data.

    Args:
        state: Snapshot received from the pipeline
        name: Run name used as folder name
        root: Base output folder

    Returns:
        Path of the checkpoint file
    """
    checkpoint_dir = os.path.join(root, sanitize_name(name))
    os.makedirs(checkpoint_dir, exist_ok=True)

    checkpoint_path = os.path.join(
        checkpoint_dir,
        f"state_step{state.current_step_index}_{state.phase.value}.json",
    )
    data = state.model_dump(
        mode="json",
        exclude={"sequence": {"steps": {"__all__": {"image"}}}},
    )
    with open(checkpoint_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.debug(f"Checkpoint saved: {checkpoint_path}")
    return checkpoint_path


def _load_font(size: int):
    for font_name in ("DejaVuSans-Bold.ttf", "/System/Library/Fonts/Helvetica.ttc", "arial.ttf"):
        try:
            return ImageFont.truetype(font_name, size)
        except OSError:
            continue
    return ImageFont.load_default()


def _wrap_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> List[str]:
    lines = []
    current_line = []
    for word in text.split():
        test_line = ' '.join(current_line + [word])
        bbox = draw.textbbox((0, 0), test_line, font=font)
        if bbox[2] - bbox[0] > max_width and current_line:
            lines.append(' '.join(current_line))
            current_line = [word]
        else:
            current_line.append(word)
    if current_line:
        lines.append(' '.join(current_line))
    return lines


def create_sequence_strip(
    sequence: ProcessSequence,
    output_path: Optional[Union[str, Path]] = None,
    root: str = "data",
) -> str:
    """Create one image showing every step side by side with its title.

    Args:
        sequence: A complete process sequence
        output_path: Optional output file (defaults to {root}/{process}/sequence_strip_{timestamp}.png)
        root: Base output folder

    Returns:
        Path to the saved strip image

    Raises:
        IncompleteSequenceError: If the sequence is not complete
    """
    if not sequence.is_complete:
        raise IncompleteSequenceError(
            f"Sequence has {len(sequence.steps)} of {sequence.target_length} steps"
        )

    images = [Image.open(io.BytesIO(step.image.data)).convert("RGB") for step in sequence.steps]
    max_height = max(img.height for img in images)

    text_height = 160
    padding = 30
    step_padding = 20

    collage_width = sum(img.width for img in images) + (len(images) - 1) * step_padding
    collage_height = max_height + text_height + padding * 2
    collage = Image.new('RGB', (collage_width, collage_height), color='white')
    draw = ImageDraw.Draw(collage)

    title_font = _load_font(32)

    x_offset = 0
    for step, img in zip(sequence.steps, images):
        y_offset = (max_height - img.height) // 2
        collage.paste(img, (x_offset, y_offset))

        text_y = max_height + padding
        title = f"{step.step_number}. {step.title}"
        for line in _wrap_text(draw, title, title_font, img.width - 20)[:3]:
            draw.text((x_offset + 10, text_y), line, fill='black', font=title_font)
            text_y += 40

        x_offset += img.width + step_padding

    if output_path is None:
        output_dir = Path(root) / sanitize_name(sequence.structure.process_name)
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = output_dir / f"sequence_strip_{timestamp}.png"

    collage.save(output_path)
    logger.info(f"Sequence strip saved: {output_path}")
    return str(output_path)


class SequenceStore:
    """Local persistence for complete sequences.

    Each saved sequence gets a generated identifier and a folder holding its
    step images and one ``metadata.json`` record.
    """

    def __init__(self, root: Union[str, Path] = "data/sequences"):
        self.root = Path(root)

    def _write_image(self, folder: Path, step: SequenceStep) -> str:
        path = folder / f"step_{step.step_number:02d}_{sanitize_name(step.title)}.{image_extension(step.image)}"
        path.write_bytes(step.image.data)
        return str(path)

    async def save(self, sequence: ProcessSequence) -> str:
        """Persist a complete sequence and return its record identifier.

        Raises:
            IncompleteSequenceError: If the sequence is not complete
        """
        if not sequence.is_complete:
            raise IncompleteSequenceError(
                f"Only complete sequences can be saved ({len(sequence.steps)}/{sequence.target_length} steps)"
            )

        record_id = str(uuid.uuid4())
        folder = self.root / record_id
        folder.mkdir(parents=True, exist_ok=True)

        image_paths = await asyncio.gather(*(
            asyncio.to_thread(self._write_image, folder, step) for step in sequence.steps
        ))

        structure = sequence.structure
        record = {
            "id": record_id,
            "sequence_id": sequence.id,
            "topic": sequence.topic,
            "process_name": structure.process_name,
            "domain": structure.domain,
            "overview_text": structure.overview_text,
            "language": sequence.language.value,
            "audience": sequence.audience.value,
            "style": sequence.style.value,
            "quality": sequence.quality.value,
            "aspect_ratio": sequence.aspect_ratio.value,
            "created_at": sequence.created_at,
            "saved_at": datetime.now().isoformat(),
            "steps": [
                {
                    "step_number": step.step_number,
                    "title": step.title,
                    "description": step.description,
                    "plan": step.plan,
                    "image_path": path,
                }
                for step, path in zip(sequence.steps, image_paths)
            ],
        }
        with open(folder / "metadata.json", "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved sequence '{structure.process_name}' as {record_id}")
        return record_id

    def load(self, record_id: str) -> dict:
        with open(self.root / record_id / "metadata.json", "r", encoding="utf-8") as f:
            return json.load(f)
