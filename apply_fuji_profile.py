#!/usr/bin/env -S uv run --quiet --script
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pyexiftool>=0.5.6",
#     "rich>=14.0",
# ]
# ///
#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#
"""
Apply a Fujifilm recipe to RAF files using rawji.

Each selected raw file is rendered by rawji with the chosen film simulation
and tone settings. rawji always reads the original RAF, never an exported
copy. Outputs are written to a temporary directory, then moved next to the
source images, registered with the photo library and tagged
``created with|apply_fuji_profile``.

Prerequisites:
    - rawji (https://github.com/pinpox/rawji) on PATH, in $RAWJI, or --rawji
    - exiftool (for registering and tagging the results)

Usage:
    ./apply_fuji_profile.py --film-sim velvia --exposure 1.0 ~/Pictures/roll/*.RAF
    Or: uv run apply_fuji_profile.py --recipe velvia.json IMG001.RAF
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import ClassVar, Final, Self, override

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from fuji_recipe import (
    SLIDER_RANGES,
    DynamicRange,
    FilmSimulation,
    RecipeError,
    RecipeOptions,
    Strength,
    WhiteBalance,
    build_arguments,
    load_recipe,
    save_recipe,
)
from photo_library import (
    ExiftoolLibrary,
    ImageRecord,
    LibraryError,
    PhotoLibrary,
    create_unique_filename,
    move_file,
)

__all__: Final[list[str]] = [
    "ApplyFujiProfileError",
    "BatchConfig",
    "BatchJob",
    "BatchReport",
    "BatchStatus",
    "ExecutableNotFoundError",
    "ImportRecord",
    "ProcessingResult",
    "RawjiCommand",
    "SourceImage",
    "ValidationError",
    "apply_fuji_profile",
    "extract_collection_path",
    "find_executable",
    "import_processed",
    "main",
    "output_path_for",
    "process_images",
    "run_command",
    "sanitize_filename",
]

__version__: Final[str] = "1.0.0"

EXECUTABLE_NAME: Final[str] = "rawji"
PROVENANCE_TAG: Final[str] = "created with|apply_fuji_profile"
OUTPUT_SUFFIX: Final[str] = "_rawji"
OUTPUT_EXTENSION: Final[str] = ".jpg"

# Exit status reported when the OS cannot start the process at all
LAUNCH_FAILURE: Final[int] = 127

logger = logging.getLogger("apply_fuji_profile")

# Rich console for output
console = Console()


# ═══════════════════════════════════════════════════════════════════
#                        EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════


class ApplyFujiProfileError(Exception):
    """Base exception for recipe application errors."""


class ExecutableNotFoundError(ApplyFujiProfileError):
    """Raised when the rawji executable cannot be located."""


class ValidationError(ApplyFujiProfileError):
    """Raised when command-line input is invalid."""


# ═══════════════════════════════════════════════════════════════════
#                        DATA MODELS
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SourceImage:
    """A selected raw file; ``path`` is the collection directory."""

    path: Path
    filename: str

    @property
    def full_path(self) -> Path:
        return self.path / self.filename

    @property
    def stem(self) -> str:
        return Path(self.filename).stem

    @classmethod
    def from_file(cls, file: Path) -> Self:
        return cls(path=file.parent, filename=file.name)


@dataclass(frozen=True, slots=True, kw_only=True)
class BatchConfig:
    """Batch configuration."""

    tmp_dir: Path
    executable: Path | None = None
    tag: str = PROVENANCE_TAG

    @classmethod
    def create(
        cls,
        *,
        tmp_dir: Path | None = None,
        executable: Path | None = None,
        tag: str | None = None,
    ) -> Self:
        """Create config from arguments with environment variable fallbacks."""
        return cls(
            tmp_dir=(
                tmp_dir
                or _get_env_path("APPLY_FUJI_PROFILE_TMPDIR")
                or Path(tempfile.gettempdir())
            ),
            executable=executable or _get_env_path("RAWJI"),
            tag=tag or PROVENANCE_TAG,
        )


@dataclass(slots=True)
class BatchJob:
    """Progress and cancellation state shared with whoever started the batch.

    Clearing ``valid`` stops the batch before the next image; a rawji process
    that is already running always completes.
    """

    valid: bool = True
    percent: float = 0.0
    on_progress: Callable[[float], None] | None = None

    def advance(self, step: float) -> None:
        self.percent = min(self.percent + step, 1.0)
        if self.on_progress is not None:
            self.on_progress(self.percent)

    def stop(self) -> None:
        self.valid = False


@dataclass(frozen=True, slots=True)
class RawjiCommand:
    """A single rawji invocation."""

    executable: Path
    arguments: tuple[str, ...]
    source: Path
    output: Path

    @property
    def argv(self) -> list[str]:
        return [str(self.executable), *self.arguments, str(self.source), str(self.output)]

    @property
    def command_line(self) -> str:
        """Printable command with both paths quoted for the platform shell."""
        return " ".join(
            [
                str(self.executable),
                *self.arguments,
                sanitize_filename(self.source),
                sanitize_filename(self.output),
            ]
        )


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """Outcome of one rawji run; ``output`` is None on failure."""

    image: SourceImage
    output: Path | None
    returncode: int

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class ImportRecord:
    """An output moved into the collection and, if accepted, registered."""

    source: Path
    destination: Path | None = None
    record: ImageRecord | None = None
    tagged: bool = False

    @property
    def imported(self) -> bool:
        return self.record is not None


class BatchStatus(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    EMPTY = "empty"


@dataclass(slots=True)
class BatchReport:
    """Everything a batch did. Returned even when nothing succeeded."""

    total: int
    status: BatchStatus = BatchStatus.COMPLETED
    results: list[ProcessingResult] = field(default_factory=list)
    imports: list[ImportRecord] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.status is BatchStatus.ABORTED

    @property
    def cancelled(self) -> bool:
        return self.status is BatchStatus.CANCELLED

    @property
    def processed(self) -> list[Path]:
        return [r.output for r in self.results if r.output is not None]

    @property
    def failed(self) -> list[SourceImage]:
        return [r.image for r in self.results if not r.succeeded]

    @property
    def imported(self) -> list[ImportRecord]:
        return [i for i in self.imports if i.imported]

    @property
    def ok(self) -> bool:
        return (
            self.status in (BatchStatus.COMPLETED, BatchStatus.EMPTY)
            and not self.failed
            and len(self.imported) == len(self.results)
        )


# ═══════════════════════════════════════════════════════════════════
#                        RUNTIME HELPERS
# ═══════════════════════════════════════════════════════════════════


def _get_env_path(var_name: str, /) -> Path | None:
    """Get a Path from environment variable, or None if not set/empty."""
    value = os.environ.get(var_name, "").strip()
    return Path(value).expanduser() if value else None


def find_executable(name: str = EXECUTABLE_NAME, explicit: Path | None = None) -> Path:
    """Locate rawji, preferring an explicitly configured path.

    Raises:
        ExecutableNotFoundError: If no usable executable is found.
    """
    if explicit is not None:
        if explicit.is_file() and os.access(explicit, os.X_OK):
            return explicit
        raise ExecutableNotFoundError(f"{name} executable not found at {explicit}")

    found = shutil.which(name)
    if found is None:
        raise ExecutableNotFoundError(f"{name} executable not found in PATH")
    return Path(found)


def sanitize_filename(path: Path | str, *, windows: bool | None = None) -> str:
    """Quote a path so no part of it is interpreted by the shell.

    POSIX: wrapped in double quotes with ``\\``, ``"``, ``$`` and backtick
    escaped. Windows: wrapped in double quotes; embedded quotes are not
    valid in Windows paths and are dropped.
    """
    text = str(path)
    if windows is None:
        windows = os.name == "nt"

    if windows:
        return '"' + text.replace('"', "") + '"'

    for char in ("\\", '"', "$", "`"):
        text = text.replace(char, "\\" + char)
    return f'"{text}"'


def output_path_for(image: SourceImage, tmp_dir: Path) -> Path:
    """Temporary rawji output path for ``image``."""
    return tmp_dir / f"{image.stem}{OUTPUT_SUFFIX}{OUTPUT_EXTENSION}"


def extract_collection_path(images: Sequence[SourceImage]) -> Path:
    """Directory the imported results go to: that of the first image.

    All selected images are expected to share one directory. When they don't,
    the first image's directory is still used and a warning is logged.
    """
    collection_path = images[0].path
    others = sorted({str(i.path) for i in images if i.path != collection_path})
    if others:
        logger.warning(
            "Selected images span several directories; importing results into %s "
            "(also selected from: %s)",
            collection_path,
            ", ".join(others),
        )
    return collection_path


# ═══════════════════════════════════════════════════════════════════
#                        PROCESSING
# ═══════════════════════════════════════════════════════════════════


def run_command(command: RawjiCommand) -> int:
    """Run rawji to completion and return its exit status."""
    logger.debug("Running: %s", command.command_line)

    try:
        result = subprocess.run(
            command.argv,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        logger.error("Could not start %s: %s", command.executable, e)
        return LAUNCH_FAILURE

    if result.returncode != 0:
        error_msg = (result.stderr or result.stdout or "").strip()
        if error_msg:
            logger.debug("rawji output: %s", error_msg)
    return result.returncode


def process_images(
    images: Sequence[SourceImage],
    arguments: Sequence[str],
    executable: Path,
    config: BatchConfig,
    job: BatchJob,
) -> list[ProcessingResult]:
    """Run rawji once per image, in order, tolerating per-image failures."""
    results: list[ProcessingResult] = []
    total = len(images)
    if total == 0:
        return results

    percent_step = 1 / total
    rendered: dict[Path, SourceImage] = {}

    for number, image in enumerate(images, start=1):
        if not job.valid:
            logger.warning("Cancelled after %d of %d image(s)", number - 1, total)
            break

        output = output_path_for(image, config.tmp_dir)
        earlier = rendered.setdefault(output, image)
        if earlier is not image:
            logger.warning(
                "%s and %s both render to %s; the later output replaces the earlier one",
                earlier.full_path,
                image.full_path,
                output.name,
            )
            rendered[output] = image
        command = RawjiCommand(
            executable=executable,
            arguments=tuple(arguments),
            source=image.full_path,
            output=output,
        )

        returncode = run_command(command)
        if returncode == 0:
            results.append(ProcessingResult(image, output, returncode))
            logger.info("[%d/%d] Processed: %s", number, total, image.filename)
        else:
            results.append(ProcessingResult(image, None, returncode))
            logger.error(
                "[%d/%d] Failed to process: %s (exit status %d)",
                number,
                total,
                image.filename,
                returncode,
            )

        job.advance(percent_step)

    return results


def import_processed(
    outputs: Iterable[Path],
    collection_path: Path,
    library: PhotoLibrary,
    tag: str = PROVENANCE_TAG,
) -> list[ImportRecord]:
    """Move outputs into the collection, register and tag each one."""
    records: list[ImportRecord] = []
    created_tag = None

    for file in outputs:
        entry = ImportRecord(source=file)
        records.append(entry)

        try:
            destination = create_unique_filename(collection_path / file.name)
            entry.destination = move_file(file, destination)
        except OSError as e:
            logger.error("Failed to move %s into %s: %s", file.name, collection_path, e)
            continue

        entry.record = library.import_image(entry.destination)
        if entry.record is None:
            logger.error("Failed to import: %s", entry.destination)
            continue

        try:
            if created_tag is None:
                created_tag = library.create_tag(tag)
            library.attach_tag(created_tag, entry.record)
            entry.tagged = True
        except LibraryError as e:
            logger.error("%s", e)

        logger.info("Imported: %s", entry.destination)

    return records


def apply_fuji_profile(
    images: Sequence[SourceImage],
    recipe: RecipeOptions,
    config: BatchConfig,
    library: PhotoLibrary,
    job: BatchJob | None = None,
) -> BatchReport:
    """Apply ``recipe`` to every image and import the results.

    Never raises for conversion or import failures; the returned report
    records what succeeded.
    """
    report = BatchReport(total=len(images))
    if not images:
        report.status = BatchStatus.EMPTY
        return report

    job = job or BatchJob()
    try:
        try:
            executable = find_executable(EXECUTABLE_NAME, config.executable)
        except ExecutableNotFoundError as e:
            logger.error("%s", e)
            report.status = BatchStatus.ABORTED
            return report

        collection_path = extract_collection_path(images)
        arguments = build_arguments(recipe)

        report.results = process_images(images, arguments, executable, config, job)
        if len(report.results) < len(images):
            report.status = BatchStatus.CANCELLED

        processed = report.processed
        if processed:
            logger.info("Importing %d processed image(s)...", len(processed))
            report.imports = import_processed(
                processed, collection_path, library, config.tag
            )
    finally:
        job.valid = False

    return report


# ═══════════════════════════════════════════════════════════════════
#                        LOGGING
# ═══════════════════════════════════════════════════════════════════


class _AnsiColor(StrEnum):
    """ANSI color codes for terminal output."""

    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    RED = "\033[0;31m"
    GRAY = "\033[0;37m"
    RESET = "\033[0m"


class _ColoredFormatter(logging.Formatter):
    """Logging formatter with colored output."""

    _LEVEL_COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: _AnsiColor.GRAY,
        logging.INFO: _AnsiColor.GREEN,
        logging.WARNING: _AnsiColor.YELLOW,
        logging.ERROR: _AnsiColor.RED,
    }

    @override
    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, _AnsiColor.RESET)
        return f"{color}[{record.levelname}]{_AnsiColor.RESET} {record.getMessage()}"


def _configure_logging(verbose: bool) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_ColoredFormatter())
        logger.addHandler(handler)


# ═══════════════════════════════════════════════════════════════════
#                        CLI
# ═══════════════════════════════════════════════════════════════════


def _ranged_float(name: str) -> Callable[[str], float]:
    low, high = SLIDER_RANGES[name]

    def parse(text: str) -> float:
        try:
            value = float(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid number: {text!r}")
        if not low <= value <= high:
            raise argparse.ArgumentTypeError(f"must be between {low:g} and {high:g}")
        return value

    return parse


def _film_simulation(text: str) -> FilmSimulation:
    film_sim = FilmSimulation.parse(text)
    if film_sim is None:
        labels = ", ".join(f.label for f in FilmSimulation)
        raise argparse.ArgumentTypeError(f"unknown film simulation {text!r} ({labels})")
    return film_sim


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Apply a Fujifilm recipe to RAF files with rawji.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Unset options are not passed to rawji, so its own defaults apply.
Results are written next to the source images as <name>_rawji.jpg and tagged
"created with|apply_fuji_profile".

Environment variables:
  RAWJI                        Path to the rawji executable
  APPLY_FUJI_PROFILE_TMPDIR    Temporary directory for rawji output

Examples:
  %(prog)s --film-sim velvia --exposure 1.0 IMG001.RAF
  %(prog)s --recipe kodachrome.json ~/Pictures/roll/*.RAF
  %(prog)s --film-sim classic-chrome --grain weak --save-recipe cc.json *.RAF
""",
    )
    parser.add_argument(
        "images",
        nargs="+",
        type=Path,
        metavar="IMAGE",
        help="Raw files to process",
    )

    recipe = parser.add_argument_group("recipe options")
    recipe.add_argument(
        "--film-sim",
        type=_film_simulation,
        default=None,
        metavar="NAME",
        help="Film simulation (" + ", ".join(f.label for f in FilmSimulation) + ")",
    )
    recipe.add_argument(
        "--exposure",
        type=_ranged_float("exposure"),
        default=None,
        metavar="EV",
        help="Exposure compensation (-5.0 to +5.0)",
    )
    for name, flag, label in (
        ("highlights", "--highlights", "Highlights"),
        ("shadows", "--shadows", "Shadows"),
        ("sharpness", "--sharpness", "Sharpness"),
        ("color", "--color", "Color"),
        ("noise_reduction", "--nr", "Noise reduction"),
    ):
        low, high = SLIDER_RANGES[name]
        recipe.add_argument(
            flag,
            dest=name,
            type=_ranged_float(name),
            default=None,
            metavar="N",
            help=f"{label} ({low:+g} to {high:+g})",
        )
    recipe.add_argument(
        "--grain",
        type=Strength,
        choices=list(Strength),
        default=None,
        help="Grain effect",
    )
    recipe.add_argument(
        "--color-chrome",
        type=Strength,
        choices=list(Strength),
        default=None,
        help="Color chrome effect",
    )
    recipe.add_argument(
        "--dynamic-range",
        type=DynamicRange,
        choices=list(DynamicRange),
        default=None,
        help="Dynamic range",
    )
    recipe.add_argument(
        "--white-balance",
        type=WhiteBalance,
        choices=list(WhiteBalance),
        default=None,
        help="White balance",
    )
    recipe.add_argument(
        "--recipe",
        type=Path,
        default=None,
        metavar="FILE",
        help="Load recipe from a JSON file (options above override it)",
    )
    recipe.add_argument(
        "--save-recipe",
        type=Path,
        default=None,
        metavar="FILE",
        help="Save the effective recipe to a JSON file",
    )

    parser.add_argument(
        "--rawji",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to the rawji executable (default: $RAWJI or PATH lookup)",
    )
    parser.add_argument(
        "--tmp-dir",
        type=Path,
        default=None,
        metavar="DIR",
        help="Directory for intermediate rawji output (default: system temp)",
    )
    parser.add_argument(
        "--tag",
        default=None,
        help=f'Provenance tag for imported images (default: "{PROVENANCE_TAG}")',
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show rawji command lines and output",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def _recipe_from_args(args: argparse.Namespace) -> RecipeOptions:
    base = load_recipe(args.recipe) if args.recipe else RecipeOptions()
    return base.replace(
        film_simulation=args.film_sim,
        exposure=args.exposure,
        highlights=args.highlights,
        shadows=args.shadows,
        sharpness=args.sharpness,
        color=args.color,
        noise_reduction=args.noise_reduction,
        grain=args.grain,
        color_chrome=args.color_chrome,
        dynamic_range=args.dynamic_range,
        white_balance=args.white_balance,
    )


def _collect_images(paths: Sequence[Path]) -> list[SourceImage]:
    """Resolve command-line paths into source images.

    Raises:
        ValidationError: If a path is missing or not a file.
    """
    images: list[SourceImage] = []
    for path in paths:
        resolved = path.expanduser().resolve()
        if not resolved.exists():
            raise ValidationError(f"Image does not exist: {path}")
        if not resolved.is_file():
            raise ValidationError(f"Image is not a file: {path}")
        images.append(SourceImage.from_file(resolved))
    return images


def _print_summary(report: BatchReport) -> None:
    table = Table(title="apply fuji profile")
    table.add_column("File", style="cyan")
    table.add_column("rawji")
    table.add_column("Dimensions")
    table.add_column("Imported as")

    imports = {i.source: i for i in report.imports}
    for result in report.results:
        if not result.succeeded:
            table.add_row(
                result.image.filename, f"[red]exit {result.returncode}[/]", "-", "-"
            )
            continue
        entry = imports.get(result.output)
        if entry is not None and entry.record is not None and entry.destination is not None:
            dimensions = entry.record.dimensions
            imported = f"[green]{entry.destination.name}[/]"
        else:
            dimensions = "-"
            imported = "[red]failed[/]"
        table.add_row(result.image.filename, "[green]ok[/]", dimensions, imported)

    console.print(table)


def main(argv: Sequence[str] | None = None) -> None:
    """Script entry point."""
    args = parse_arguments(argv)
    _configure_logging(args.verbose)

    try:
        recipe = _recipe_from_args(args)
        if args.save_recipe:
            save_recipe(recipe, args.save_recipe)
            console.print(f"[green]Saved recipe:[/] {args.save_recipe}")

        images = _collect_images(args.images)
        config = BatchConfig.create(
            tmp_dir=args.tmp_dir,
            executable=args.rawji,
            tag=args.tag,
        )
        if not config.tmp_dir.is_dir():
            raise ValidationError(f"Temporary directory does not exist: {config.tmp_dir}")
    except RecipeError as e:
        console.print(f"[red]Recipe error:[/] {e}")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(1)

    console.print(f"\n[bold]apply fuji profile[/] v{__version__}")
    console.print(f"  Images: {len(images)}")
    console.print(f"  Recipe: {' '.join(build_arguments(recipe)) or '[dim](rawji defaults)[/]'}\n")

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Applying recipe...", total=1.0)
            job = BatchJob(
                on_progress=lambda percent: progress.update(task, completed=percent)
            )
            report = apply_fuji_profile(images, recipe, config, ExiftoolLibrary(), job)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        sys.exit(130)

    if report.aborted:
        console.print(f"\n[red]Aborted:[/] {EXECUTABLE_NAME} executable not found")
        sys.exit(1)

    _print_summary(report)

    imported = len(report.imported)
    if report.ok:
        console.print(f"\n[bold green]Done![/] {imported} image(s) imported.")
    else:
        console.print(
            f"\n[yellow]Done:[/] {imported} of {report.total} image(s) imported, "
            f"[red]{len(report.failed)} failed in rawji[/]"
        )
    sys.exit(0 if report.ok else 1)


if __name__ == "__main__":
    main()
