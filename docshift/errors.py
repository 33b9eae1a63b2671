"""Error definitions and policy helpers for the Docshift translator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class ErrorCategory(Enum):
    """Categorises handled errors for the run report."""

    GLOSSARY = auto()
    MASKING = auto()
    TRANSLATION = auto()
    REINSERTION = auto()


class DocshiftError(Exception):
    """Base exception for all custom errors."""


class UnsupportedFileTypeError(DocshiftError):
    """Raised when a given file extension is not supported."""


class OverwriteRefusedError(DocshiftError):
    """Raised when attempting to overwrite an output without consent."""


class DocumentStructureError(DocshiftError):
    """Raised when a document has no main body or no translatable text."""


class LocationError(DocshiftError):
    """Raised when a recorded leaf location no longer resolves."""


class GlossaryError(DocshiftError):
    """Raised when a glossary file cannot be read."""


class ProviderConfigurationError(DocshiftError):
    """Raised when the translation provider is misconfigured."""


class TranslationProviderError(DocshiftError):
    """Raised when the translation provider fails for one call."""


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None
