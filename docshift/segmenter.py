"""Sentence segmentation and batching utilities."""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .structures import MaskedSegment, Segment, TextLeaf, TranslationBatch

TERMINAL_PUNCTUATION = (".", "?", "!")
SENTENCE_PUNCTUATION = (".", "!", "?", ":")
HEADING_MAX_LENGTH = 100

DEFAULT_ABBREVIATIONS = (
    "e.g.", "i.e.", "U.S.", "No.", "Dr.", "Mr.", "Mrs.", "Ms.",
    "vs.", "etc.", "Inc.", "Ltd.", "Corp.",
)

LIST_BULLETS = ("•", "◦", "▪", "‣", "·", "-", "*")
NUMBERED_ITEM_PATTERN = re.compile(r"^\d+\.\s")
HEADING_STYLE_PATTERN = re.compile(r"^(heading|title|subtitle)", re.IGNORECASE)
LINE_BREAK_PATTERN = re.compile(r"[\r\n]+")


def is_heading_text(text: str) -> bool:
    """Short text without terminal punctuation reads as a heading."""

    return len(text) < HEADING_MAX_LENGTH and not text.rstrip().endswith(
        TERMINAL_PUNCTUATION
    )


def is_list_item(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith(LIST_BULLETS) or bool(
        NUMBERED_ITEM_PATTERN.match(stripped)
    )


class Segmenter:
    """Groups consecutive text leaves into sentence-level segments."""

    def __init__(self, abbreviations: Sequence[str] = DEFAULT_ABBREVIATIONS) -> None:
        self.abbreviations = tuple(
            abbreviation.casefold() for abbreviation in abbreviations
        )

    def build(self, leaves: Iterable[TextLeaf]) -> Iterator[Segment]:
        """Yield segments covering every leaf exactly once, in order."""

        counters: Dict[str, int] = defaultdict(int)
        current: List[TextLeaf] = []
        heading_paragraph: Optional[str] = None

        def flush() -> Segment:
            nonlocal current, heading_paragraph
            part_id = current[0].part_id
            segment = Segment(
                segment_id=f"{part_id}#{counters[part_id]}",
                part_id=part_id,
                leaves=current,
                source_text="".join(leaf.raw_text for leaf in current),
            )
            counters[part_id] += 1
            current = []
            heading_paragraph = None
            return segment

        for leaf in leaves:
            if current and self._starts_block(leaf, current, heading_paragraph):
                yield flush()

            current.append(leaf)

            if self._has_heading_style(leaf):
                heading_paragraph = leaf.paragraph
                continue
            if heading_paragraph is None and self._is_heuristic_heading(leaf):
                yield flush()
                continue
            if heading_paragraph is None and self.closes_sentence(
                "".join(item.raw_text for item in current)
            ):
                yield flush()

        if current:
            yield flush()

    def closes_sentence(self, text: str) -> bool:
        """Return True when accumulated text ends a sentence."""

        if not text.strip():
            return False

        trimmed = text.rstrip()
        if not trimmed.endswith(SENTENCE_PUNCTUATION):
            return False

        # A finished line after an internal line break closes the segment even
        # when it ends in an abbreviation.
        lines = [line for line in LINE_BREAK_PATTERN.split(trimmed) if line.strip()]
        if len(lines) > 1:
            return True
        return not self._ends_with_abbreviation(trimmed)

    # --- Internal helpers -------------------------------------------------

    def _starts_block(
        self,
        leaf: TextLeaf,
        current: Sequence[TextLeaf],
        heading_paragraph: Optional[str],
    ) -> bool:
        if leaf.part_id != current[0].part_id:
            return True
        if heading_paragraph is not None:
            return leaf.paragraph != heading_paragraph
        if self._has_heading_style(leaf) or self._is_heuristic_heading(leaf):
            return True
        return is_list_item(leaf.raw_text)

    def _has_heading_style(self, leaf: TextLeaf) -> bool:
        return bool(
            leaf.style
            and leaf.paragraph is not None
            and HEADING_STYLE_PATTERN.match(leaf.style)
        )

    def _is_heuristic_heading(self, leaf: TextLeaf) -> bool:
        # Explicit non-heading paragraph styles override the text heuristic.
        if leaf.style:
            return False
        return is_heading_text(leaf.raw_text)

    def _ends_with_abbreviation(self, text: str) -> bool:
        folded = text.casefold()
        for abbreviation in self.abbreviations:
            if not folded.endswith(abbreviation):
                continue
            start = len(folded) - len(abbreviation)
            if start == 0 or not folded[start - 1].isalnum():
                return True
        return False


class BatchBuilder:
    """Aggregates masked segments into batches within a character budget."""

    def __init__(self, budget: int) -> None:
        self.budget = max(1, budget)

    def build(self, segments: Sequence[MaskedSegment]) -> List[TranslationBatch]:
        batches: List[TranslationBatch] = []
        batch_segments: List[MaskedSegment] = []
        running_total = 0
        batch_id = 0

        for segment in segments:
            size = len(segment.glossary_text)
            if size > self.budget:
                if batch_segments:
                    batches.append(
                        TranslationBatch(batch_id=batch_id, segments=batch_segments)
                    )
                    batch_id += 1
                    batch_segments = []
                    running_total = 0
                batches.append(TranslationBatch(batch_id=batch_id, segments=[segment]))
                batch_id += 1
                continue

            if running_total + size > self.budget and batch_segments:
                batches.append(
                    TranslationBatch(batch_id=batch_id, segments=batch_segments)
                )
                batch_id += 1
                batch_segments = []
                running_total = 0

            batch_segments.append(segment)
            running_total += size

        if batch_segments:
            batches.append(TranslationBatch(batch_id=batch_id, segments=batch_segments))

        return batches
