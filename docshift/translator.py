"""High-level orchestration for document translation."""

from __future__ import annotations

import logging
import pathlib
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .configuration import DEFAULT_STYLE
from .documents import detect_handler
from .errors import (
    DocshiftError,
    DocumentStructureError,
    ErrorCategory,
    OverwriteRefusedError,
    TranslationProviderError,
)
from .extractor import ExtractionOptions, TextExtractor
from .glossary import Glossary
from .policy import ErrorPolicy
from .protection import SpanProtector
from .providers import TranslationProvider
from .reinserter import Reinserter
from .segmenter import BatchBuilder, Segmenter
from .structures import (
    MaskedSegment,
    Segment,
    SpanMap,
    TranslationBatch,
    TranslatorContext,
)

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Counters produced once per run."""

    leaves: int = 0
    segments: int = 0
    dnt_tokens: int = 0
    glossary_hits: int = 0
    batches: int = 0
    api_calls: int = 0
    chars_in: int = 0
    chars_out: int = 0
    elapsed_ms: int = 0
    fallback_batches: int = 0
    fallback_segments: int = 0
    reinsertion_failures: int = 0
    unknown_tokens: int = 0
    lost_tokens: int = 0
    glossary_skipped_lines: int = 0
    handled_errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class TranslationSummary:
    """Report returned after processing a document."""

    input_path: pathlib.Path
    output_path: pathlib.Path
    document_type: str
    provider_name: str
    model: str | None
    target_language: str
    source_language: str | None
    report: RunReport
    error_messages: List[str] = field(default_factory=list)

    @property
    def elapsed_seconds(self) -> float:
        return self.report.elapsed_ms / 1000

    def to_dict(self) -> Dict[str, object]:
        return {
            "input_path": str(self.input_path),
            "output_path": str(self.output_path),
            "document_type": self.document_type,
            "provider": self.provider_name,
            "model": self.model,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "report": self.report.to_dict(),
            "errors": list(self.error_messages),
        }


@dataclass
class BatchOutcome:
    """Translations for one batch, re-associated by batch id."""

    batch_id: int
    translations: Dict[str, str]
    calls: int
    failed: bool = False
    fallback_ids: List[str] = field(default_factory=list)


class TranslationRunner:
    """Coordinates extraction, masking, translation, and reinsertion."""

    def __init__(
        self,
        *,
        input_path: pathlib.Path,
        output_path: pathlib.Path,
        target_language: str,
        source_language: str | None,
        provider: TranslationProvider,
        model: str | None = None,
        glossary: Optional[Glossary] = None,
        batch_budget: Optional[int] = None,
        style: str = DEFAULT_STYLE,
        max_workers: int = 4,
        extraction_options: Optional[ExtractionOptions] = None,
    ) -> None:
        self.input_path = input_path
        self.output_path = output_path
        self.target_language = target_language
        self.source_language = source_language
        self.provider = provider
        self.model = model
        self.glossary = glossary or Glossary()
        self.batch_budget = batch_budget
        self.style = style
        self.max_workers = max(1, max_workers)
        self.extraction_options = extraction_options or ExtractionOptions()

        self.protector = SpanProtector()
        self.error_policy = ErrorPolicy()
        self.max_retries = 3
        self.retry_backoff = [1, 4, 9]

    @property
    def budget(self) -> int:
        """Characters per call: the provider limit, or less if requested."""

        if self.batch_budget is None:
            return self.provider.max_chars_per_call
        return min(self.batch_budget, self.provider.max_chars_per_call)

    def run(self) -> TranslationSummary:
        start_time = time.perf_counter()
        report = RunReport()

        source = self.glossary.source or "glossary"
        for line_number in self.glossary.skipped_lines:
            self.error_policy.handle_error(
                ErrorCategory.GLOSSARY,
                f"Skipped malformed glossary line {line_number} in {source}.",
            )

        handler = detect_handler(self.input_path)
        leaves = TextExtractor(self.extraction_options).extract(handler)
        if not leaves:
            raise DocumentStructureError(
                f"{self.input_path.name} contains no translatable text."
            )

        segments = list(Segmenter().build(leaves))
        masked_segments = self.prepare_segments(segments)
        batches = BatchBuilder(self.budget).build(masked_segments)
        logger.info(
            "Prepared %d leaves, %d segments, %d batches (budget %d chars).",
            len(leaves),
            len(segments),
            len(batches),
            self.budget,
        )

        outcomes = self.translate_batches(batches)
        results, passthrough = self.finalise(masked_segments, outcomes, report)

        stats = Reinserter().apply(results, handler)
        for message in stats.failures:
            self.error_policy.handle_error(ErrorCategory.REINSERTION, message)

        handler.save(self.output_path)

        report.leaves = len(leaves)
        report.segments = len(segments)
        report.dnt_tokens = sum(item.token_count for item in masked_segments)
        report.glossary_hits = sum(item.glossary_hits for item in masked_segments)
        report.batches = len(batches)
        report.api_calls = sum(outcome.calls for outcome in outcomes.values())
        report.chars_in = sum(len(segment.source_text) for segment in segments)
        report.chars_out = sum(len(text) for _segment, text in results) + sum(
            len(segment.source_text) for segment in passthrough
        )
        report.fallback_batches = sum(
            1 for outcome in outcomes.values() if outcome.failed
        )
        report.fallback_segments = len(passthrough)
        report.reinsertion_failures = self.error_policy.count(ErrorCategory.REINSERTION)
        report.glossary_skipped_lines = self.error_policy.count(ErrorCategory.GLOSSARY)
        report.handled_errors = self.error_policy.total
        report.elapsed_ms = int((time.perf_counter() - start_time) * 1000)

        return TranslationSummary(
            input_path=self.input_path,
            output_path=self.output_path,
            document_type=handler.document_type,
            provider_name=self.provider.name,
            model=self.model,
            target_language=self.target_language,
            source_language=self.source_language,
            report=report,
            error_messages=self.error_policy.messages(),
        )

    def prepare_segments(self, segments: Sequence[Segment]) -> List[MaskedSegment]:
        """Mask protected spans, then apply the glossary, segment by segment."""

        prepared: List[MaskedSegment] = []
        for segment in segments:
            spans = SpanMap()
            masked_text, token_count = self.protector.mask(segment.source_text, spans)
            glossary_text, hits = self.glossary.apply(masked_text)
            prepared.append(
                MaskedSegment(
                    segment=segment,
                    masked_text=masked_text,
                    glossary_text=glossary_text,
                    token_count=token_count,
                    spans=spans,
                    glossary_hits=hits,
                )
            )
        return prepared

    def translate_batches(
        self, batches: Sequence[TranslationBatch]
    ) -> Dict[int, BatchOutcome]:
        """Dispatch batches with bounded parallelism; results keyed by batch id."""

        context = TranslatorContext(style=self.style, hints=self.glossary.hints)
        outcomes: Dict[int, BatchOutcome] = {}
        if not batches:
            return outcomes

        workers = min(self.max_workers, len(batches))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {
                executor.submit(self._process_batch, batch, context): batch.batch_id
                for batch in batches
            }
            for future in as_completed(future_map):
                batch_id = future_map[future]
                outcomes[batch_id] = future.result()
        return outcomes

    def finalise(
        self,
        masked_segments: Sequence[MaskedSegment],
        outcomes: Dict[int, BatchOutcome],
        report: RunReport,
    ) -> Tuple[List[Tuple[Segment, str]], List[Segment]]:
        """Unmask translations; untranslated segments pass through untouched."""

        translations: Dict[str, str] = {}
        fallback_ids = set()
        for outcome in outcomes.values():
            translations.update(outcome.translations)
            fallback_ids.update(outcome.fallback_ids)

        results: List[Tuple[Segment, str]] = []
        passthrough: List[Segment] = []
        for item in masked_segments:
            translated = translations.get(item.segment_id)
            if translated is None or item.segment_id in fallback_ids:
                passthrough.append(item.segment)
                continue

            restored = self.protector.unmask(translated, item.spans)
            if restored.unknown_tokens:
                report.unknown_tokens += len(restored.unknown_tokens)
                self.error_policy.handle_error(
                    ErrorCategory.MASKING,
                    f"Segment {item.segment_id} contains unknown placeholders "
                    f"{', '.join(restored.unknown_tokens)}; left verbatim.",
                )
            if restored.lost_tokens:
                report.lost_tokens += len(restored.lost_tokens)
                self.error_policy.handle_error(
                    ErrorCategory.MASKING,
                    f"Translation of {item.segment_id} dropped placeholders "
                    f"{', '.join(restored.lost_tokens)}.",
                )
            results.append((item.segment, restored.text))
        return results, passthrough

    def _process_batch(
        self,
        batch: TranslationBatch,
        context: TranslatorContext,
    ) -> BatchOutcome:
        attempt = 0
        while True:
            try:
                mapping = self.provider.translate(
                    batch.segments,
                    source_language=self.source_language,
                    target_language=self.target_language,
                    context=context,
                    model=self.model,
                )
            except TranslationProviderError as exc:
                attempt += 1
                if attempt <= self.max_retries:
                    wait_time = self.retry_backoff[
                        min(attempt - 1, len(self.retry_backoff) - 1)
                    ]
                    logger.warning(
                        "Could not translate batch %d (retry %d of %d: %s). "
                        "Retrying in %ds.",
                        batch.batch_id,
                        attempt,
                        self.max_retries,
                        exc,
                        wait_time,
                    )
                    time.sleep(wait_time)
                    continue

                self.error_policy.handle_error(
                    ErrorCategory.TRANSLATION,
                    f"Batch {batch.batch_id} failed after {attempt} calls; "
                    "keeping source text.",
                    details=str(exc),
                )
                return BatchOutcome(
                    batch_id=batch.batch_id,
                    translations={
                        segment.segment_id: segment.glossary_text
                        for segment in batch.segments
                    },
                    calls=attempt,
                    failed=True,
                    fallback_ids=[segment.segment_id for segment in batch.segments],
                )

            return self._map_translations(batch, mapping, calls=attempt + 1)

    def _map_translations(
        self,
        batch: TranslationBatch,
        mapping: Dict[str, str],
        *,
        calls: int,
    ) -> BatchOutcome:
        outcome = BatchOutcome(batch_id=batch.batch_id, translations={}, calls=calls)
        for segment in batch.segments:
            translated = mapping.get(segment.segment_id)
            if translated is None:
                self.error_policy.handle_error(
                    ErrorCategory.TRANSLATION,
                    f"Translation missing for segment {segment.segment_id}; "
                    "keeping source text.",
                )
                outcome.translations[segment.segment_id] = segment.glossary_text
                outcome.fallback_ids.append(segment.segment_id)
                continue
            outcome.translations[segment.segment_id] = translated
        logger.debug(
            "Processed batch %d (%d segments, %d chars).",
            batch.batch_id,
            len(batch.segments),
            batch.char_count,
        )
        return outcome


def validate_paths(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError(
            "Input file not found. Please provide a readable .docx or .pptx file."
        )
    if not input_path.is_file():
        raise DocshiftError("Input path must be a file.")

    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input document. Refusing to overwrite the source file."
        )

    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists. Rename it or use the overwrite flag."
        )
