import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from lethal_gen import __version__
from lethal_gen.config import Settings, load_settings
from lethal_gen.core import GenerationPipeline, JobOutcome, RunReport
from lethal_gen.errors import InputDirectoryError, TemplateLoadError
from lethal_gen.templates import TemplateRegistry
from lethal_gen.writer import CATEGORY_DIRS, MOD_CATEGORY_DIRS, OutputWriter


# Pair failures exit 1 (see RunReport.exit_code); anything fatal exits 2.
EXIT_FATAL = 2

console = Console(stderr=True)


def parse_args(argv: Optional[List[str]], settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lethal-gen",
        description="A poster/painting generation tool for Lethal Posters and Lethal Paintings.",
    )
    parser.add_argument(
        "-t",
        "--templates",
        type=Path,
        default=settings.templates_dir,
        help="Directory containing the poster and painting template images (default: %(default)s).",
    )
    parser.add_argument(
        "-i",
        "--input",
        type=Path,
        default=settings.input_dir,
        help="Directory containing the images to generate posters and paintings for (default: %(default)s).",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=settings.output_dir,
        help="Root folder where generated assets will be stored (default: %(default)s).",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=settings.jobs,
        help="Worker threads; capped at the CPU count (default: one per CPU).",
    )
    parser.add_argument(
        "--format",
        default=settings.image_format,
        help="Output image format understood by Pillow (default: %(default)s).",
    )
    parser.add_argument(
        "--mod-layout",
        action="store_true",
        default=settings.mod_layout,
        help="Write into the BepInEx/plugins/... folders the mods load from.",
    )
    parser.add_argument(
        "--allow-failures",
        action="store_true",
        default=not settings.fail_on_error,
        help="Exit 0 even if some images could not be processed.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)
    if args.jobs is not None and args.jobs < 1:
        parser.error("--jobs must be at least 1")
    # Missing template/input directories are reported by the pipeline itself.
    if args.output.exists() and not args.output.is_dir():
        parser.error(f"output path is not a directory: {args.output}")
    return args


def print_summary(report: RunReport, output_dir: Path) -> None:
    console.print(
        f"[green]{report.succeeded} succeeded[/green], "
        f"[{'red' if report.failed else 'green'}]{report.failed} failed[/]"
    )
    if report.failures:
        table = Table(title="Failed images")
        table.add_column("Template")
        table.add_column("Image")
        table.add_column("Reason", overflow="fold")
        for outcome in report.failures:
            table.add_row(outcome.template_name, outcome.source_name, outcome.reason or "")
        console.print(table)
    console.print(f"Images output to: {output_dir}")


def main(argv: Optional[List[str]] = None) -> int:
    # Environment variables (optionally from a local .env) supply the defaults;
    # explicit flags win. A bad value is only fatal once --help/--version had
    # their chance to exit.
    config_error: Optional[ValueError] = None
    try:
        settings = load_settings()
    except ValueError as e:
        config_error = e
        settings = Settings()

    args = parse_args(argv, settings)

    if config_error is not None:
        console.print(f"[red]Invalid configuration: {config_error}[/red]")
        return EXIT_FATAL

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        registry = TemplateRegistry.load(args.templates)
    except TemplateLoadError as e:
        console.print(f"[red]Failed to load templates: {e}[/red]")
        return EXIT_FATAL

    try:
        writer = OutputWriter(
            args.output,
            image_format=args.format,
            layout=MOD_CATEGORY_DIRS if args.mod_layout else CATEGORY_DIRS,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return EXIT_FATAL

    pipeline = GenerationPipeline(registry, writer, max_workers=args.jobs)
    try:
        jobs = pipeline.plan(args.input)
    except InputDirectoryError as e:
        console.print(f"[red]{e}[/red]")
        return EXIT_FATAL

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        total = sum(len(outcomes) for outcomes in jobs.values())
        task = progress.add_task("Generating posters and paintings...", total=total)

        def advance(outcome: JobOutcome) -> None:
            progress.advance(task)

        pipeline.on_progress = advance
        report = pipeline.run(args.input, jobs=jobs)

    print_summary(report, args.output)
    return report.exit_code(fail_on_error=not args.allow_failures)


if __name__ == "__main__":
    sys.exit(main())
