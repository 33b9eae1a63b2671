from __future__ import annotations

import logging
import pathlib
from typing import Dict, List, Optional, Sequence

import docx
import pytest
from docx.oxml import parse_xml

from docshift.documents import BaseDocumentHandler, DocumentPart, PartCategory
from docshift.errors import TranslationProviderError
from docshift.extractor import W_T
from docshift.providers import TranslationProvider
from docshift.structures import LeafKind, Location, MaskedSegment, TextLeaf

MAIN_PART = "/word/document.xml"

XMLNS = (
    'xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main" '
    'xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main" '
    'xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships" '
    'xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006" '
    'xmlns:v="urn:schemas-microsoft-com:vml"'
)


def wml(body: str):
    """Parse a ``w:document`` root around the given body markup."""

    return parse_xml(f"<w:document {XMLNS}><w:body>{body}</w:body></w:document>")


def dml(body: str):
    """Parse a slide-like root holding DrawingML paragraphs."""

    return parse_xml(f"<a:txBody {XMLNS}>{body}</a:txBody>")


def make_leaves(
    *texts: str,
    part_id: str = MAIN_PART,
    style: Optional[str] = None,
    paragraph: Optional[str] = None,
) -> List[TextLeaf]:
    return [
        TextLeaf(
            part_id=part_id,
            location=Location(((W_T, index),)),
            raw_text=text,
            kind=LeafKind.RUN,
            style=style,
            paragraph=paragraph,
        )
        for index, text in enumerate(texts)
    ]


class FakeHandler(BaseDocumentHandler):
    """In-memory handler over pre-built part roots."""

    document_type = "fake"

    def __init__(self, parts: Sequence[DocumentPart]):
        super().__init__(pathlib.Path("fake.docx"))
        self._fixture_parts = list(parts)
        self.saved_to: Optional[pathlib.Path] = None

    def _load_parts(self) -> List[DocumentPart]:
        return list(self._fixture_parts)

    def save(self, destination: pathlib.Path) -> None:
        self.saved_to = destination


def main_handler(body: str) -> FakeHandler:
    return FakeHandler([DocumentPart(MAIN_PART, PartCategory.MAIN, wml(body))])


class UpperCaseProvider(TranslationProvider):
    name = "upper"

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    def translate(
        self, segments: Sequence[MaskedSegment], **kwargs
    ) -> Dict[str, str]:
        self.calls.append([segment.segment_id for segment in segments])
        return {
            segment.segment_id: segment.glossary_text.upper() for segment in segments
        }


class FailingProvider(TranslationProvider):
    name = "failing"

    def __init__(self, failures: int = 10**6) -> None:
        self.failures = failures
        self.attempts = 0

    def translate(
        self, segments: Sequence[MaskedSegment], **kwargs
    ) -> Dict[str, str]:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TranslationProviderError("service unavailable")
        return {segment.segment_id: f"[{segment.glossary_text}]" for segment in segments}


@pytest.fixture
def make_docx(tmp_path):
    """Build a real .docx file with python-docx and return its path."""

    def _make(
        paragraphs: Sequence[str],
        *,
        header: Optional[str] = None,
        name: str = "sample.docx",
    ) -> pathlib.Path:
        document = docx.Document()
        for text in paragraphs:
            document.add_paragraph(text)
        if header is not None:
            document.sections[0].header.paragraphs[0].text = header
        path = tmp_path / name
        document.save(str(path))
        return path

    return _make


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    package_logger = logging.getLogger("docshift")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
