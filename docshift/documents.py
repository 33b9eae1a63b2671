"""Document containers: open, enumerate XML parts, resolve and save."""

from __future__ import annotations

import logging
import pathlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from docx import Document
from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.oxml import serialize_part_xml
from docx.opc.part import XmlPart
from docx.oxml import parse_xml
from lxml import etree

from .errors import (
    DocshiftError,
    DocumentStructureError,
    LocationError,
    UnsupportedFileTypeError,
)
from .structures import Location

logger = logging.getLogger(__name__)


class PartCategory(Enum):
    """Kinds of document sub-parts, in extraction order."""

    MAIN = 0
    HEADER = 1
    FOOTER = 2
    FOOTNOTES = 3
    ENDNOTES = 4
    COMMENTS = 5
    SLIDE = 6
    NOTES = 7


DOCX_PART_CATEGORIES = {
    CT.WML_HEADER: PartCategory.HEADER,
    CT.WML_FOOTER: PartCategory.FOOTER,
    CT.WML_FOOTNOTES: PartCategory.FOOTNOTES,
    CT.WML_ENDNOTES: PartCategory.ENDNOTES,
    CT.WML_COMMENTS: PartCategory.COMMENTS,
}


@dataclass
class DocumentPart:
    """One XML part of a package with its live root element."""

    part_id: str
    category: PartCategory
    root: etree._Element


def _import_pptx():
    try:
        from pptx import Presentation  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise DocshiftError(
            "python-pptx is required to process .pptx files. "
            "Install it with `pip install python-pptx`."
        ) from exc
    return Presentation


class BaseDocumentHandler(ABC):
    """Common base class for document handlers.

    Parts are enumerated once and cached, so every resolution during a run
    sees the same element objects the extractor walked.
    """

    document_type = "document"

    def __init__(self, source_path: pathlib.Path):
        self.source_path = source_path
        self._parts: Optional[List[DocumentPart]] = None

    @abstractmethod
    def _load_parts(self) -> List[DocumentPart]:
        """Return every translatable XML part, main body first."""

    @abstractmethod
    def save(self, destination: pathlib.Path) -> None:
        """Persist the document."""

    def parts(self) -> List[DocumentPart]:
        if self._parts is None:
            parts = self._load_parts()
            if not parts or parts[0].category not in {
                PartCategory.MAIN,
                PartCategory.SLIDE,
            }:
                raise DocumentStructureError(
                    f"{self.source_path.name} has no main body to translate."
                )
            self._parts = parts
            logger.debug(
                "Loaded %d parts from %s: %s",
                len(parts),
                self.source_path.name,
                ", ".join(part.part_id for part in parts),
            )
        return self._parts

    def part(self, part_id: str) -> DocumentPart:
        for part in self.parts():
            if part.part_id == part_id:
                return part
        raise LocationError(f"Document part {part_id} not found.")

    def resolve(self, part_id: str, location: Location) -> etree._Element:
        """Locate the node recorded at ``location`` inside ``part_id``."""

        return location.resolve(self.part(part_id).root)


class DocxDocumentHandler(BaseDocumentHandler):
    """Word documents, loaded with python-docx."""

    document_type = "docx"

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        self.document = Document(str(source_path))
        # Parts python-docx keeps only as raw bytes; written back on save.
        self._detached: Dict[str, Tuple[object, etree._Element]] = {}

    def save(self, destination: pathlib.Path) -> None:
        for part, root in self._detached.values():
            part._blob = serialize_part_xml(root)  # type: ignore[attr-defined]
        self.document.save(str(destination))

    # --- Internal helpers -------------------------------------------------

    def _load_parts(self) -> List[DocumentPart]:
        main_part = self.document.part
        if self.document.element.body is None:
            raise DocumentStructureError(
                f"{self.source_path.name} has no document body to translate."
            )
        parts = [
            DocumentPart(
                part_id=str(main_part.partname),
                category=PartCategory.MAIN,
                root=main_part._element,  # type: ignore[attr-defined]
            )
        ]

        extras: List[DocumentPart] = []
        for part in main_part.package.iter_parts():
            category = DOCX_PART_CATEGORIES.get(part.content_type)
            if category is None:
                continue
            extras.append(
                DocumentPart(
                    part_id=str(part.partname),
                    category=category,
                    root=self._root_of(part),
                )
            )
        extras.sort(key=lambda item: (item.category.value, item.part_id))
        return parts + extras

    def _root_of(self, part) -> etree._Element:
        if isinstance(part, XmlPart):
            return part._element  # type: ignore[attr-defined]
        partname = str(part.partname)
        if partname not in self._detached:
            self._detached[partname] = (part, parse_xml(part.blob))
        return self._detached[partname][1]


class PptxDocumentHandler(BaseDocumentHandler):
    """PowerPoint presentations, loaded with python-pptx."""

    document_type = "pptx"

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        Presentation = _import_pptx()
        self.presentation = Presentation(str(source_path))

    def save(self, destination: pathlib.Path) -> None:
        self.presentation.save(str(destination))

    def _load_parts(self) -> List[DocumentPart]:
        slides: List[DocumentPart] = []
        notes: List[DocumentPart] = []
        for slide in self.presentation.slides:
            slides.append(
                DocumentPart(
                    part_id=str(slide.part.partname),
                    category=PartCategory.SLIDE,
                    root=slide.part._element,  # type: ignore[attr-defined]
                )
            )
            if getattr(slide, "has_notes_slide", False):
                notes_part = slide.notes_slide.part
                notes.append(
                    DocumentPart(
                        part_id=str(notes_part.partname),
                        category=PartCategory.NOTES,
                        root=notes_part._element,  # type: ignore[attr-defined]
                    )
                )
        return slides + notes


def detect_handler(path: pathlib.Path) -> BaseDocumentHandler:
    """Select an appropriate handler for the provided file."""

    suffix = path.suffix.lower()
    if suffix == ".docx":
        return DocxDocumentHandler(path)
    if suffix == ".pptx":
        return PptxDocumentHandler(path)
    raise UnsupportedFileTypeError(
        "This file type isn't supported. Please use .docx or .pptx."
    )
