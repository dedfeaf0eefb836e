"""
CLI Interface
=============
Command-line interface for the question parser.

Usage:
    python -m question_parser parse <file> [options]
    python -m question_parser areas <file> --areas <areas.json> [options]
    python -m question_parser ocr <image> [<image> ...] [options]
    python -m question_parser payload <response.json> [...]
    python -m question_parser info <file>
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .engine import ParserConfig, ParserEngine
from .exceptions import FormatError, ParsingError
from .models import Area, DocumentFormat, ParseResult
from .sources import describe_pdf

console = Console()

FORMAT_CHOICES = [f.value for f in DocumentFormat]


@click.group()
@click.version_option(version=__version__, prog_name="question-parser")
def cli():
    """Question Parser: exam documents to structured question records."""
    pass


def _build_config(log_level: str, log_file: Optional[str], json_output: bool) -> ParserConfig:
    config = ParserConfig.from_env()
    # Keep stdout clean for JSON mode
    config.log_level = "ERROR" if json_output else log_level
    if log_file:
        config.log_file = log_file
    return config


def _emit(result: ParseResult, json_output: bool, output: Optional[str]):
    data = result.to_dict()
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        if not json_output:
            console.print(f"[dim]Saved JSON output: {output}[/]")

    if json_output:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        _display_results(result)


def _run(action, json_output: bool, log_level: str):
    """Run ``action`` and turn fatal parser errors into exit code 1."""
    try:
        return action()
    except (ParsingError, FormatError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


_common_options = [
    click.option("--output", "-o", default=None, help="Write the JSON result to this file"),
    click.option(
        "--log-level",
        default="INFO",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
        help="Logging level",
    ),
    click.option("--log-file", default=None, help="Path to log file"),
    click.option(
        "--json-output",
        is_flag=True,
        default=False,
        help="Output only JSON result to stdout (for programmatic use)",
    ),
]


def common_options(func):
    for option in reversed(_common_options):
        func = option(func)
    return func


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option(
    "--format", "-f", "fmt",
    default=None,
    type=click.Choice(FORMAT_CHOICES),
    help="Declared input format (defaults to the file extension)",
)
@common_options
def parse(
    file_path: str,
    fmt: Optional[str],
    output: Optional[str],
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Parse a Word, PDF, LaTeX, text or image file."""
    config = _build_config(log_level, log_file, json_output)

    if not json_output:
        _banner(f"Parsing: {os.path.basename(file_path)}")

    result = _run(
        lambda: ParserEngine(config).parse(file_path, fmt),
        json_output,
        log_level,
    )
    _emit(result, json_output, output)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option(
    "--areas", "-a", "areas_path",
    required=True,
    type=click.Path(exists=True),
    help="JSON file with a list of {id, x, y, width, height, pageNumber}",
)
@click.option(
    "--format", "-f", "fmt",
    default=None,
    type=click.Choice(FORMAT_CHOICES),
    help="Declared input format (defaults to the file extension)",
)
@click.option(
    "--workers", "-j",
    default=1,
    type=int,
    help="Number of parallel area workers (1 = sequential)",
)
@click.option(
    "--ocr", "use_ocr",
    is_flag=True,
    default=False,
    help="Render PDF areas and send the crops to the OCR service",
)
@common_options
def areas(
    file_path: str,
    areas_path: str,
    fmt: Optional[str],
    workers: int,
    use_ocr: bool,
    output: Optional[str],
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Extract questions from selected regions of a document."""
    config = _build_config(log_level, log_file, json_output)
    config.max_workers = workers
    config.area_ocr = use_ocr or config.area_ocr

    with open(areas_path, "r", encoding="utf-8") as f:
        raw_areas = json.load(f)
    if isinstance(raw_areas, dict):
        raw_areas = raw_areas.get("areas", [])
    selected = [Area.model_validate(item) for item in raw_areas]

    if not json_output:
        _banner(
            f"Area extraction: {os.path.basename(file_path)} "
            f"({len(selected)} areas)"
        )

    result = _run(
        lambda: ParserEngine(config).parse_areas(file_path, selected, fmt),
        json_output,
        log_level,
    )
    _emit(result, json_output, output)


@cli.command()
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--endpoint", default=None, help="OCR service endpoint URL")
@click.option("--api-key", default=None, help="OCR service API key")
@click.option(
    "--correct",
    is_flag=True,
    default=False,
    help="Run LLM LaTeX correction on recognized text",
)
@common_options
def ocr(
    images: tuple[str, ...],
    endpoint: Optional[str],
    api_key: Optional[str],
    correct: bool,
    output: Optional[str],
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Recognize question images and merge split fragments."""
    config = _build_config(log_level, log_file, json_output)
    config.ocr_endpoint = endpoint or config.ocr_endpoint
    config.ocr_api_key = api_key or config.ocr_api_key
    config.enable_llm_correction = correct or config.enable_llm_correction

    if not json_output:
        _banner(f"OCR: {len(images)} image(s)")

    result = _run(
        lambda: ParserEngine(config).parse_images(list(images)),
        json_output,
        log_level,
    )
    _emit(result, json_output, output)


@cli.command()
@click.argument("responses", nargs=-1, required=True, type=click.Path(exists=True))
@common_options
def payload(
    responses: tuple[str, ...],
    output: Optional[str],
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Parse saved OCR service responses (JSON files)."""
    config = _build_config(log_level, log_file, json_output)

    payloads = []
    for path in responses:
        with open(path, "r", encoding="utf-8") as f:
            payloads.append(json.load(f))

    result = _run(
        lambda: ParserEngine(config).parse_ocr_payloads(payloads),
        json_output,
        log_level,
    )
    _emit(result, json_output, output)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
def info(file_path: str):
    """Display document information."""
    fmt = DocumentFormat.from_path(file_path)

    console.print()
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(file_path))
    table.add_row("Format", fmt.value if fmt else "(unknown)")
    table.add_row(
        "File Size",
        f"{os.path.getsize(file_path) / 1024 / 1024:.2f} MB",
    )

    if fmt == DocumentFormat.PDF:
        pdf = describe_pdf(file_path)
        table.add_row("Pages", str(pdf.page_count))
        for key in ["title", "author", "subject", "creator", "producer"]:
            val = pdf.metadata.get(key, "")
            if val:
                table.add_row(key.title(), val)
        table.add_row("Total Images", str(pdf.image_count))

    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _banner(subtitle: str):
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Parser v{__version__}[/]\n"
            f"[dim]{subtitle}[/]",
            border_style="cyan",
        )
    )
    console.print()


def _display_results(result: ParseResult):
    """Display parse results in formatted tables."""
    console.print()

    summary = Table(title="Parse Summary", border_style="cyan")
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Source", result.metadata.source or "-")
    summary.add_row("Questions", str(len(result.questions)))
    summary.add_row("Pages", str(result.page_count))
    summary.add_row("Math Formulas", str(result.math_formula_count))
    summary.add_row("Images", str(result.image_count))
    summary.add_row("Tables", str(result.table_count))
    summary.add_row("Confidence", f"{result.confidence:g}")
    console.print(summary)
    console.print()

    if result.questions:
        table = Table(title="Questions", border_style="green")
        table.add_column("#", justify="right")
        table.add_column("Type")
        table.add_column("Stem")
        table.add_column("Options", justify="right")
        table.add_column("Subs", justify="right")
        table.add_column("Answer")
        table.add_column("Difficulty", justify="right")

        for position, q in enumerate(result.questions, start=1):
            number = q.question_number if q.question_number is not None else position
            stem = q.stem.replace("\n", " ")
            table.add_row(
                str(number),
                q.type.value,
                stem[:60] + ("..." if len(stem) > 60 else ""),
                str(len(q.options or [])),
                str(len(q.sub_questions or [])),
                (q.answer or "[red]✗[/]")[:20],
                str(q.difficulty),
            )
        console.print(table)
        console.print()

    _display_issues(result)

    md = result.metadata
    console.print(
        f"[dim]Parser v{md.parser_version} | "
        f"Format: {md.format.value if md.format else '-'} | "
        f"Timestamp: {md.parse_timestamp}[/]"
    )
    console.print()


def _display_issues(result: ParseResult):
    """Display errors and warnings as a rich table."""
    if not result.errors and not result.warnings:
        console.print("[green]✓ No errors or warnings[/]")
        console.print()
        return

    table = Table(title="Errors & Warnings", border_style="yellow")
    table.add_column("Id", style="bold")
    table.add_column("Level", justify="center")
    table.add_column("Kind")
    table.add_column("Message")
    table.add_column("Suggestion", style="dim")

    for error in result.errors:
        level = "[red]error[/]" if error.severity.value == "error" else (
            f"[yellow]{error.severity.value}[/]"
        )
        table.add_row(error.id, level, error.kind.value, error.message, "")

    for warning in result.warnings:
        table.add_row(
            warning.id,
            "[yellow]warning[/]",
            warning.kind.value,
            warning.message,
            warning.suggestion,
        )

    console.print(table)
    console.print()


# ─── Entry point (for python -m question_parser.cli) ──────────────────────────


if __name__ == "__main__":
    cli()
