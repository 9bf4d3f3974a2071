#!/usr/bin/env python3
"""
PhotoWright CLI - Diffusion photo restoration
Command-line interface for restoring a single photograph.
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import cv2
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeRemainingColumn

from . import __version__
from .config import RestorationConfig, load_config
from .core.imaging import image_to_tensor, tensor_to_image
from .engine.orchestrator import RestorationOrchestrator
from .engine.schedule import get_schedule, timestep_sequence
from .exceptions import PhotowrightError
from .infrastructure.resources import ResourceLifecycleManager
from .models import create_loaders
from .utils.logging import add_logging_arguments, configure_from_cli, get_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

console = Console(stderr=True)


def print_error(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")


def get_output_path(args) -> Path:
    """Determine output path from --output or the input name."""
    if args.output:
        return Path(args.output)
    input_path = Path(args.input)
    return input_path.with_name(f"{input_path.stem}_restored.png")


def build_config(args) -> RestorationConfig:
    """Merge the config file (if any) with command line overrides."""
    config = load_config(args.config) if args.config else RestorationConfig()
    overrides = {
        "num_steps": args.steps,
        "encoder_path": args.encoder,
        "denoiser_path": args.denoiser,
        "max_size": args.max_size,
        "seed": args.seed,
        "device": args.device,
    }
    if args.no_keep_awake:
        overrides["keep_awake"] = False
    config = config.with_overrides(**overrides)
    if args.full_size:
        config = replace(config, max_size=None)
    return config


def restore_image(args) -> int:
    """Restore one image file."""
    logger = get_logger("cli")
    input_path = Path(args.input)
    if not input_path.exists():
        print_error(f"Input file not found: {input_path}")
        return EXIT_FAILED

    try:
        config = build_config(args)
        encoder_loader, denoiser_loader = create_loaders(config)
    except PhotowrightError as e:
        print_error(str(e))
        return EXIT_FAILED

    bgr = cv2.imread(str(input_path), cv2.IMREAD_COLOR)
    if bgr is None:
        print_error(f"Could not decode image: {input_path}")
        return EXIT_FAILED
    height, width = bgr.shape[:2]
    tensor = image_to_tensor(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB))
    del bgr

    output_path = get_output_path(args)
    logger.processing_start("restore", input=str(input_path), width=width, height=height)

    lifecycle = ResourceLifecycleManager(encoder_loader, denoiser_loader)
    with RestorationOrchestrator(lifecycle, config) as orchestrator:
        job = orchestrator.start(tensor)
        progress = Progress(
            TextColumn("[bold blue]Restoring"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            console=console,
            disable=args.quiet,
        )
        try:
            with progress:
                task = progress.add_task("sampling", total=config.num_steps)
                for event in job.events():
                    progress.update(task, completed=event.current_step, total=event.total_steps)
            outcome = job.result()
        except KeyboardInterrupt:
            console.print("[yellow]Cancelling after the current step...[/yellow]")
            job.cancel()
            outcome = job.result()

    if outcome.is_cancelled:
        console.print("[yellow]Restoration cancelled[/yellow]")
        return EXIT_CANCELLED
    if outcome.is_failed:
        print_error(f"{outcome.error_kind.value}: {outcome.detail}")
        return EXIT_FAILED

    try:
        rgb = tensor_to_image(outcome.image, reclaim=lifecycle.memory.reclaim)
    except PhotowrightError as e:
        print_error(str(e))
        return EXIT_FAILED

    if args.original_size and rgb.shape[:2] != (height, width):
        rgb = cv2.resize(rgb, (width, height), interpolation=cv2.INTER_CUBIC)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(output_path), cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)):
        print_error(f"Could not write image: {output_path}")
        return EXIT_FAILED

    logger.processing_complete(
        "restore",
        duration_seconds=outcome.metadata.get("total_seconds"),
        output=str(output_path),
    )
    console.print(f"[green]Saved[/green] {output_path}")
    return EXIT_OK


def show_schedule(args) -> int:
    """Print the noise schedule as JSON."""
    try:
        schedule = get_schedule(args.timesteps, args.max_sigma, args.eps)
    except PhotowrightError as e:
        print_error(str(e))
        return EXIT_FAILED

    data = schedule.summary()
    if args.num_steps is not None:
        if args.num_steps < 1:
            print_error("--num-steps must be at least 1")
            return EXIT_FAILED
        data["timesteps_visited"] = timestep_sequence(args.num_steps, schedule.T)
    if args.arrays:
        data["thetas"] = schedule.thetas.tolist()
        data["sigmas"] = schedule.sigmas.tolist()
        data["sigma_bars"] = schedule.sigma_bars.tolist()

    print(json.dumps(data, indent=2))
    return EXIT_OK


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    defaults = RestorationConfig()
    parser = argparse.ArgumentParser(
        prog="photowright",
        description="PhotoWright - diffusion-based photo restoration",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    add_logging_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Restore command
    restore_parser = subparsers.add_parser("restore", help="Restore a photograph")
    restore_parser.add_argument("input", type=str, help="Input image file")
    restore_parser.add_argument("-o", "--output", type=str, help="Output image file")
    restore_parser.add_argument("--config", type=str, help="YAML or JSON config file")
    restore_parser.add_argument("--encoder", type=str, help="Degradation encoder model (.onnx, .pt)")
    restore_parser.add_argument("--denoiser", type=str, help="Denoiser model (.onnx, .pt)")
    restore_parser.add_argument(
        "--steps", type=int, help=f"Reverse SDE steps (default: {defaults.num_steps})"
    )
    restore_parser.add_argument(
        "--max-size", type=int, help=f"Longest side of the working image (default: {defaults.max_size})"
    )
    restore_parser.add_argument(
        "--full-size", action="store_true", help="Restore at the input resolution (no downscale)"
    )
    restore_parser.add_argument(
        "--original-size", action="store_true", help="Resize the result back to the input resolution"
    )
    restore_parser.add_argument("--seed", type=int, help="Noise seed for reproducible results")
    restore_parser.add_argument("--device", choices=["cpu", "cuda"], help="Inference device")
    restore_parser.add_argument(
        "--no-keep-awake", action="store_true", help="Allow system sleep while restoring"
    )
    restore_parser.add_argument("-q", "--quiet", action="store_true", help="Hide the progress bar")
    restore_parser.set_defaults(func=restore_image)

    # Schedule command
    schedule_parser = subparsers.add_parser("schedule", help="Print the noise schedule")
    schedule_parser.add_argument("--timesteps", type=int, default=defaults.timesteps)
    schedule_parser.add_argument("--max-sigma", type=float, default=defaults.max_sigma)
    schedule_parser.add_argument("--eps", type=float, default=defaults.eps)
    schedule_parser.add_argument(
        "--num-steps", type=int, help="Also list the timesteps visited for this step count"
    )
    schedule_parser.add_argument("--arrays", action="store_true", help="Include per-timestep arrays")
    schedule_parser.set_defaults(func=show_schedule)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_cli(
        log_level=getattr(args, "log_level", "INFO"),
        log_format=getattr(args, "log_format", "text"),
        log_file=getattr(args, "log_file", None),
    )

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        return args.func(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
