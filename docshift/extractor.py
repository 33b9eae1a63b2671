"""Structural text extraction from document parts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from lxml import etree

from .documents import BaseDocumentHandler, DocumentPart, PartCategory
from .structures import LeafKind, Location, TextLeaf

logger = logging.getLogger(__name__)

NAMESPACES = {
    "w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "mc": "http://schemas.openxmlformats.org/markup-compatibility/2006",
}


def qn(tag: str) -> str:
    """Clark notation for a ``prefix:name`` tag."""

    prefix, name = tag.split(":")
    return f"{{{NAMESPACES[prefix]}}}{name}"


W_T = qn("w:t")
A_T = qn("a:t")
W_P = qn("w:p")
A_P = qn("a:p")
W_HYPERLINK = qn("w:hyperlink")
MC_FALLBACK = qn("mc:Fallback")
TEXT_FRAME_CONTAINERS = frozenset(
    {qn("w:drawing"), qn("w:pict"), qn("w:txbxContent"), qn("w:object")}
)


@dataclass
class ExtractionOptions:
    """Which optional parts take part in a run."""

    headers_footers: bool = True
    footnotes: bool = True
    comments: bool = True
    notes: bool = True

    def includes(self, category: PartCategory) -> bool:
        if category in {PartCategory.HEADER, PartCategory.FOOTER}:
            return self.headers_footers
        if category in {PartCategory.FOOTNOTES, PartCategory.ENDNOTES}:
            return self.footnotes
        if category is PartCategory.COMMENTS:
            return self.comments
        if category is PartCategory.NOTES:
            return self.notes
        return True


class TextExtractor:
    """Walks document parts and emits addressable text leaves in reading order."""

    def __init__(self, options: Optional[ExtractionOptions] = None) -> None:
        self.options = options or ExtractionOptions()

    def extract(self, handler: BaseDocumentHandler) -> List[TextLeaf]:
        leaves: List[TextLeaf] = []
        for part in handler.parts():
            if not self.options.includes(part.category):
                logger.debug("Skipping disabled part %s.", part.part_id)
                continue
            part_leaves = self.extract_part(part)
            logger.debug("Extracted %d leaves from %s.", len(part_leaves), part.part_id)
            leaves.extend(part_leaves)
        return leaves

    def extract_part(self, part: DocumentPart) -> List[TextLeaf]:
        leaves: List[TextLeaf] = []
        for element in part.root.iter(W_T, A_T):
            text = element.text or ""
            if not text.strip():
                continue
            kind = self._classify(element)
            if kind is None:
                continue
            style, paragraph = self._paragraph_context(element, part.root)
            leaves.append(
                TextLeaf(
                    part_id=part.part_id,
                    location=Location.of(element, part.root),
                    raw_text=text,
                    kind=kind,
                    style=style,
                    paragraph=paragraph,
                )
            )
        return leaves

    # --- Internal helpers -------------------------------------------------

    def _classify(self, element: etree._Element) -> Optional[LeafKind]:
        in_frame = False
        in_hyperlink = False
        for ancestor in element.iterancestors():
            tag = ancestor.tag
            if tag == MC_FALLBACK:
                # Duplicate of the mc:Choice content.
                return None
            if tag in TEXT_FRAME_CONTAINERS:
                in_frame = True
            elif tag == W_HYPERLINK:
                in_hyperlink = True

        if element.tag == A_T:
            run = element.getparent()
            if run is not None and run.find("a:rPr/a:hlinkClick", NAMESPACES) is not None:
                return LeafKind.HYPERLINK
            return LeafKind.TEXT_FRAME
        if in_frame:
            return LeafKind.TEXT_FRAME
        if in_hyperlink:
            return LeafKind.HYPERLINK
        return LeafKind.RUN

    def _paragraph_context(
        self, element: etree._Element, root: etree._Element
    ) -> Tuple[Optional[str], Optional[str]]:
        for ancestor in element.iterancestors(W_P, A_P):
            paragraph = str(Location.of(ancestor, root))
            if ancestor.tag == A_P:
                return None, paragraph
            style = ancestor.find("w:pPr/w:pStyle", NAMESPACES)
            if style is None:
                return "", paragraph
            return style.get(qn("w:val"), ""), paragraph
        return None, None
