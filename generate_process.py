#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from openrouter_wrapper import OpenRouterClient
from process_sequence import (
    ArtStyle,
    AspectRatio,
    Audience,
    ConfigurationError,
    ImageQuality,
    Language,
    PipelineFailedError,
    PipelinePhase,
    PipelineState,
    ProcessPipeline,
    SequenceStore,
    create_sequence_strip,
    load_settings,
    save_image_to_data,
    save_sequence_checkpoint,
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate a step-by-step infographic sequence for a natural process")
    parser.add_argument("topic", help="Process to explain, e.g. 'Photosynthesis'")
    parser.add_argument("--language", choices=[l.value for l in Language], default=Language.EN.value)
    parser.add_argument("--audience", choices=[a.value for a in Audience], default=Audience.YOUNG.value)
    parser.add_argument("--style", choices=[s.value for s in ArtStyle], default=ArtStyle.DEFAULT.value)
    parser.add_argument("--quality", choices=[q.value for q in ImageQuality], default=ImageQuality.FAST.value)
    parser.add_argument("--aspect-ratio", choices=[r.value for r in AspectRatio], default=AspectRatio.PORTRAIT.value)
    parser.add_argument("--output-dir", default=None, help="Output folder (defaults to OUTPUT_DIR or 'data')")
    parser.add_argument("--strip", action="store_true", help="Also save a strip image of the whole sequence")
    parser.add_argument("--checkpoints", action="store_true", help="Save a JSON state snapshot after every step")
    return parser.parse_args(argv)


def make_progress_printer(run_name: str, output_dir: str, checkpoints: bool):
    def on_progress(state: PipelineState) -> None:
        if state.phase == PipelinePhase.DISCOVERING:
            print("🔎 Decomposing the process into steps...")
        elif state.phase == PipelinePhase.NARRATING:
            total = state.structure.suggested_steps
            title = state.structure.step_titles[state.current_step_index - 1]
            print(f"\n🔄 STEP {state.current_step_index}/{total}: {title}")
            print("  ✍️  Writing explanation...")
        elif state.phase == PipelinePhase.PLANNING:
            print("  📐 Planning visual...")
        elif state.phase == PipelinePhase.RENDERING:
            print("  🎨 Rendering image...")
        elif state.phase == PipelinePhase.APPENDED:
            print(f"  ✅ Step {state.current_step_index} ready ({len(state.sequence.steps)}/{state.sequence.target_length})")
            if checkpoints:
                save_sequence_checkpoint(state, run_name, root=output_dir)
        elif state.phase == PipelinePhase.FAILED:
            print(f"  ❌ Failed at step {state.current_step_index}, progress discarded")
    return on_progress


async def main(argv=None):
    args = parse_args(argv)
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    output_dir = args.output_dir or settings.output_dir
    run_name = f"{args.topic}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    try:
        client = OpenRouterClient.from_settings(settings)
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 1

    print(f"\n🎬 PROCESS SEQUENCE: {args.topic}")
    print("=" * 80)

    async with client:
        pipeline = ProcessPipeline(
            client,
            settings,
            language=Language(args.language),
            audience=Audience(args.audience),
            style=ArtStyle(args.style),
            quality=ImageQuality(args.quality),
            aspect_ratio=AspectRatio(args.aspect_ratio),
            on_progress=make_progress_printer(run_name, output_dir, args.checkpoints),
        )
        try:
            sequence = await pipeline.run(args.topic)
        except PipelineFailedError as e:
            print(f"\n❌ {e.user_message}")
            print(f"   Cause: {e.__cause__}")
            return 1

    print("\n💾 Saving sequence...")
    for step in sequence.steps:
        path = save_image_to_data(step.image, run_name, "step", f"{step.step_number:02d}_{step.title}", root=output_dir)
        print(f"  ✅ {path}")

    record_id = await SequenceStore(f"{output_dir}/sequences").save(sequence)
    print(f"📄 Metadata record: {record_id}")

    if args.strip:
        strip_path = create_sequence_strip(sequence, root=output_dir)
        print(f"🖼️  Strip saved: {strip_path}")

    print("✨ Done!")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
