"""Command line interface for the Docshift translator."""

from __future__ import annotations

import argparse
import json
import logging
import pathlib
import re
import sys
from typing import Iterable, List, Optional, Tuple

from .configuration import DEFAULT_STYLE, DocshiftConfig, get_settings
from .errors import DocshiftError
from .extractor import ExtractionOptions
from .glossary import Glossary
from .providers import TranslationProvider, build_provider, normalise_provider_name
from .translator import TranslationRunner, TranslationSummary, validate_paths

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docshift",
        description=(
            "Translate Word (.docx) and PowerPoint (.pptx) documents while "
            "protecting code, URLs and other do-not-translate spans."
        ),
    )
    parser.add_argument(
        "input_file",
        help="The .docx or .pptx document to translate.",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        required=True,
        help="Destination language code (for example ja or de).",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        help="Optional source language code.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Where to write the translated file (default: <input>_<language>.<ext>).",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider: openai (default), legacy-openai, deepl or echo.",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Provider-specific model or deployment identifier.",
    )
    parser.add_argument(
        "-g",
        "--glossary",
        help="Tab-separated glossary file (source term, destination term).",
    )
    parser.add_argument(
        "-b",
        "--batch-budget",
        type=int,
        help="Maximum characters per translation call (capped by the provider).",
    )
    parser.add_argument(
        "--style",
        help="Translation style identifier (default from configuration).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of batches translated concurrently.",
    )
    parser.add_argument(
        "--no-headers",
        action="store_true",
        help="Skip headers and footers.",
    )
    parser.add_argument(
        "--no-footnotes",
        action="store_true",
        help="Skip footnotes and endnotes.",
    )
    parser.add_argument(
        "--no-comments",
        action="store_true",
        help="Skip comments.",
    )
    parser.add_argument(
        "--no-notes",
        action="store_true",
        help="Skip presentation speaker notes.",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="YAML settings file read after the discovered ones.",
    )
    parser.add_argument(
        "--report",
        help="Write the run report as JSON to this path.",
    )
    parser.add_argument(
        "--log-file",
        help="Also write log output to this file.",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Replace an existing output file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log full provider requests and responses (implies --verbose).",
    )
    return parser


def configure_logging(verbose: bool, log_file: str | None = None) -> logging.Logger:
    """Attach console (and optional file) handlers to the package logger."""

    package_logger = logging.getLogger("docshift")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    package_logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    package_logger.propagate = False
    return package_logger


def sanitise_language_for_filename(language: str) -> str:
    """Reduce a language name to ASCII letters, digits and hyphens."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned or "translated"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    """Place the output beside the input as ``<stem>_<language><suffix>``."""

    tag = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{tag}{input_path.suffix}")


def _load_provider(
    provider: str | None,
    provider_debug: bool,
    config_path: pathlib.Path | None = None,
) -> tuple[TranslationProvider, DocshiftConfig | None]:
    """Build the provider; configuration is only read for real backends."""

    name = normalise_provider_name(provider)
    if name == "echo":
        return build_provider(name), None
    settings = get_settings(config_path=config_path)
    debug = provider_debug or settings.DOCSHIFT_PROVIDER_DEBUG
    return build_provider(name, settings, debug=debug), settings


def execute_translation(
    *,
    input_file: str,
    output_file: str | None,
    target_language: str,
    source_language: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    glossary_file: str | None = None,
    batch_budget: int | None = None,
    style: str | None = None,
    workers: int | None = None,
    extraction_options: ExtractionOptions | None = None,
    force_overwrite: bool = False,
    provider_debug: bool = False,
    config_file: str | None = None,
) -> tuple[int, TranslationSummary | None, str | None]:
    """Run one translation and return the exit code, summary, and message."""

    input_path = pathlib.Path(input_file).expanduser().resolve()
    if output_file:
        output_path = pathlib.Path(output_file).expanduser().resolve()
    else:
        output_path = derive_output_path(input_path, target_language)
    config_path = None
    if config_file:
        config_path = pathlib.Path(config_file).expanduser().resolve()

    try:
        validate_paths(input_path, output_path, force_overwrite=force_overwrite)
        translation_provider, settings = _load_provider(
            provider, provider_debug, config_path
        )
        glossary = Glossary()
        if glossary_file:
            glossary = Glossary.load(pathlib.Path(glossary_file).expanduser())
    except (FileNotFoundError, DocshiftError) as exc:
        return 1, None, str(exc)

    if style is None:
        style = settings.DOCSHIFT_STYLE if settings else DEFAULT_STYLE
    if workers is None:
        workers = settings.DOCSHIFT_MAX_WORKERS if settings else 4

    output_path.parent.mkdir(parents=True, exist_ok=True)
    runner = TranslationRunner(
        input_path=input_path,
        output_path=output_path,
        target_language=target_language,
        source_language=source_language,
        provider=translation_provider,
        model=model,
        glossary=glossary,
        batch_budget=batch_budget,
        style=style,
        max_workers=workers,
        extraction_options=extraction_options,
    )

    try:
        return 0, runner.run(), None
    except DocshiftError as exc:
        return 1, None, str(exc)
    except KeyboardInterrupt:
        return 2, None, "Translation interrupted by user."
    except Exception as exc:  # pragma: no cover - defensive catch
        logger.exception("Unexpected failure while translating %s", input_path)
        return 1, None, (
            f"{exc}\n"
            "Unexpected error; rerun with --verbose and check the log for a traceback."
        )


def summary_rows(summary: TranslationSummary) -> List[Tuple[str, str]]:
    report = summary.report
    provider = summary.provider_name
    if summary.model:
        provider += f" ({summary.model})"
    rows = [
        ("Input", str(summary.input_path)),
        ("Output", str(summary.output_path)),
        ("Document", summary.document_type),
        ("Provider", provider),
        ("Languages", f"{summary.source_language or 'auto'} -> {summary.target_language}"),
        ("Segments", f"{report.segments} from {report.leaves} text leaves"),
        ("Batches", f"{report.batches} ({report.api_calls} provider calls)"),
        ("Protected", f"{report.dnt_tokens} spans, {report.glossary_hits} glossary hits"),
        ("Characters", f"{report.chars_in} in, {report.chars_out} out"),
        ("Elapsed", f"{summary.elapsed_seconds:.2f} s"),
    ]
    if report.fallback_segments:
        rows.append(
            (
                "Untranslated",
                f"{report.fallback_segments} segments "
                f"({report.fallback_batches} failed batches)",
            )
        )
    return rows


def print_summary(summary: TranslationSummary) -> None:
    print("\nTranslation complete.")
    for label, value in summary_rows(summary):
        print(f"  {label + ':':<14}{value}")
    if summary.error_messages:
        print("  Notes:")
        for message in summary.error_messages:
            print(f"    - {message}")


def write_report(summary: TranslationSummary, path: pathlib.Path) -> None:
    """Persist the run summary and counters as JSON."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(summary.to_dict(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    configure_logging(args.verbose or args.debug_provider, args.log_file)

    exit_code, summary, message = execute_translation(
        input_file=args.input_file,
        output_file=args.output,
        target_language=args.target_language,
        source_language=args.source_language,
        provider=args.provider,
        model=args.model,
        glossary_file=args.glossary,
        batch_budget=args.batch_budget,
        style=args.style,
        workers=args.workers,
        extraction_options=ExtractionOptions(
            headers_footers=not args.no_headers,
            footnotes=not args.no_footnotes,
            comments=not args.no_comments,
            notes=not args.no_notes,
        ),
        force_overwrite=args.force,
        provider_debug=args.debug_provider,
        config_file=args.config,
    )

    if message:
        print(message)
    if summary:
        print_summary(summary)
        if args.report:
            write_report(summary, pathlib.Path(args.report).expanduser())
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
