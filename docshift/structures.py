"""Core data structures for the Docshift translator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from lxml import etree

from .errors import LocationError


class LeafKind(Enum):
    """Leaf categories that need different reinsertion handling."""

    RUN = "run"
    TEXT_FRAME = "text-frame"
    HYPERLINK = "hyperlink"


LocationStep = Tuple[str, int]


@dataclass(frozen=True)
class Location:
    """Path from a part root to one node, as (tag, child index) steps.

    Locations are re-resolved against the live tree at reinsertion time, so
    the tree must not change shape between extraction and reinsertion.
    """

    steps: Tuple[LocationStep, ...]

    @classmethod
    def of(cls, element: etree._Element, root: etree._Element) -> "Location":
        """Record the path from ``root`` down to ``element``."""

        steps: List[LocationStep] = []
        current = element
        while current is not root:
            parent = current.getparent()
            if parent is None:
                raise LocationError("Element is not a descendant of the part root.")
            steps.append((current.tag, parent.index(current)))
            current = parent
        steps.reverse()
        return cls(tuple(steps))

    def resolve(self, root: etree._Element) -> etree._Element:
        """Walk the recorded steps from ``root`` and return the node."""

        current = root
        for depth, (tag, index) in enumerate(self.steps):
            if index >= len(current):
                raise LocationError(
                    f"Location {self} broken at step {depth}: index {index} out of range."
                )
            child = current[index]
            if child.tag != tag:
                raise LocationError(
                    f"Location {self} broken at step {depth}: "
                    f"expected {etree.QName(tag).localname}, found {child.tag!r}."
                )
            current = child
        return current

    def __str__(self) -> str:
        return "".join(
            f"/{etree.QName(tag).localname}[{index}]" for tag, index in self.steps
        )


@dataclass(frozen=True)
class TextLeaf:
    """One addressable text node captured by the extractor."""

    part_id: str
    location: Location
    raw_text: str
    kind: LeafKind = LeafKind.RUN
    # Style id of the containing paragraph: "" means the default style,
    # None means the format carries no style ids.
    style: Optional[str] = None
    paragraph: Optional[str] = None


@dataclass
class Segment:
    """A sentence-level translation unit made of contiguous leaves."""

    segment_id: str
    part_id: str
    leaves: List[TextLeaf]
    source_text: str


@dataclass
class SpanMap:
    """Placeholder token to original text mapping owned by one segment."""

    tokens: Dict[str, str] = field(default_factory=dict)
    issued: int = 0

    def __len__(self) -> int:
        return len(self.tokens)

    def next_token(self) -> str:
        token = f"{{DNT{self.issued}}}"
        self.issued += 1
        return token

    def clear(self) -> None:
        self.tokens.clear()
        self.issued = 0


@dataclass
class MaskedSegment:
    """A segment together with its masked and glossary-applied text."""

    segment: Segment
    masked_text: str
    glossary_text: str
    token_count: int
    spans: SpanMap
    glossary_hits: int = 0

    @property
    def segment_id(self) -> str:
        return self.segment.segment_id


@dataclass
class TranslationBatch:
    """A batch of segments constrained by a character budget."""

    batch_id: int
    segments: List[MaskedSegment]

    @property
    def char_count(self) -> int:
        return sum(len(segment.glossary_text) for segment in self.segments)


@dataclass(frozen=True)
class TranslatorContext:
    """Style identifier and glossary hints handed to a provider."""

    style: str
    hints: Mapping[str, str] = field(default_factory=dict)
