"""Position-preserving reinsertion of translated text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Tuple

from lxml import etree

from .documents import BaseDocumentHandler
from .errors import LocationError
from .extractor import A_T, NAMESPACES, W_HYPERLINK, W_T
from .structures import LeafKind, Segment, TextLeaf

logger = logging.getLogger(__name__)

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


@dataclass
class ReinsertionStats:
    """Counts of written, cleared and unresolved leaves."""

    written: int = 0
    cleared: int = 0
    failures: List[str] = field(default_factory=list)


def _set_text(element: etree._Element, text: str) -> None:
    element.text = text
    if element.tag != W_T:
        return
    if text and (text[0].isspace() or text[-1].isspace()):
        element.set(XML_SPACE, "preserve")


def _write_run(element: etree._Element, text: str) -> None:
    if element.tag != W_T:
        raise LocationError(f"Expected a run text node, found {element.tag!r}.")
    _set_text(element, text)


def _write_text_frame(element: etree._Element, text: str) -> None:
    if element.tag not in {W_T, A_T}:
        raise LocationError(f"Expected a text frame node, found {element.tag!r}.")
    _set_text(element, text)


def _write_hyperlink(element: etree._Element, text: str) -> None:
    # Only the display text changes; the link target lives on the
    # hyperlink element or its relationship and is never touched.
    if element.tag == W_T:
        if next(element.iterancestors(W_HYPERLINK), None) is None:
            raise LocationError("Hyperlink text node is no longer inside a hyperlink.")
    elif element.tag == A_T:
        run = element.getparent()
        if run is None or run.find("a:rPr/a:hlinkClick", NAMESPACES) is None:
            raise LocationError("Hyperlink text run has lost its click action.")
    else:
        raise LocationError(f"Expected hyperlink text, found {element.tag!r}.")
    _set_text(element, text)


LeafWriter = Callable[[etree._Element, str], None]

LEAF_WRITERS: Dict[LeafKind, LeafWriter] = {
    LeafKind.RUN: _write_run,
    LeafKind.TEXT_FRAME: _write_text_frame,
    LeafKind.HYPERLINK: _write_hyperlink,
}


class Reinserter:
    """Writes each segment's translation into its first leaf and clears the rest.

    Only the first leaf keeps its run formatting; the remaining leaves of a
    multi-leaf segment become empty runs.
    When the first leaf cannot be written the whole segment keeps its source
    text.
    """

    def apply(
        self,
        results: Iterable[Tuple[Segment, str]],
        handler: BaseDocumentHandler,
    ) -> ReinsertionStats:
        stats = ReinsertionStats()
        for segment, translated in results:
            if not segment.leaves:
                continue
            first, *rest = segment.leaves
            if not self._write(handler, first, translated, stats):
                continue
            stats.written += 1
            for leaf in rest:
                if self._write(handler, leaf, "", stats):
                    stats.cleared += 1
        return stats

    def _write(
        self,
        handler: BaseDocumentHandler,
        leaf: TextLeaf,
        text: str,
        stats: ReinsertionStats,
    ) -> bool:
        try:
            element = handler.resolve(leaf.part_id, leaf.location)
            if (element.text or "") != leaf.raw_text:
                raise LocationError("Text at location changed since extraction.")
            LEAF_WRITERS[leaf.kind](element, text)
        except (LocationError, ValueError) as exc:
            # lxml rejects text with NUL or other XML-incompatible characters.
            message = f"Could not write to {leaf.part_id}{leaf.location}: {exc}"
            logger.warning(message)
            stats.failures.append(message)
            return False
        return True
