"""Glossary loading and pre-translation term substitution."""

from __future__ import annotations

import logging
import pathlib
import re
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import GlossaryError
from .protection import TOKEN_PATTERN

logger = logging.getLogger(__name__)


class Glossary:
    """Source term to destination term mapping applied before translation.

    Terms are matched case-insensitively, longest first, in a single pass so
    that replaced text is never rescanned. Placeholder tokens are skipped.
    """

    def __init__(self, terms: Optional[Mapping[str, str]] = None) -> None:
        self._terms: Dict[str, str] = {}
        self._lookup: Dict[str, str] = {}
        self._pattern: Optional[re.Pattern[str]] = None
        self.skipped_lines: List[int] = []
        self.source: Optional[pathlib.Path] = None
        for source, destination in (terms or {}).items():
            self.add_term(source, destination)

    def __len__(self) -> int:
        return len(self._terms)

    @classmethod
    def load(cls, path: pathlib.Path) -> "Glossary":
        """Load a tab-separated terms file.

        Blank lines and lines starting with ``#`` are ignored. Lines without
        two non-empty tab-delimited fields are skipped and remembered in
        :attr:`skipped_lines`.
        """

        if not path.is_file():
            raise GlossaryError(f"Glossary file not found: {path}")
        try:
            content = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise GlossaryError(f"Glossary file could not be read: {exc}") from exc

        glossary = cls()
        glossary.source = path
        for line_number, line in enumerate(content.splitlines(), start=1):
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.split("\t")
            if len(fields) < 2 or not fields[0].strip() or not fields[1].strip():
                logger.debug(
                    "Skipping malformed glossary line %d in %s.", line_number, path
                )
                glossary.skipped_lines.append(line_number)
                continue
            glossary.add_term(fields[0].strip(), fields[1].strip())

        logger.info("Loaded %d glossary terms from %s.", len(glossary), path)
        return glossary

    def add_term(self, source: str, destination: str) -> None:
        if not source or not destination:
            return
        key = source.casefold()
        previous = self._lookup.get(key)
        if previous is not None:
            self._terms = {
                term: value
                for term, value in self._terms.items()
                if term.casefold() != key
            }
        self._terms[source] = destination
        self._lookup[key] = destination
        self._pattern = None

    @property
    def hints(self) -> Mapping[str, str]:
        """Read-only term mapping for providers that accept hints."""

        return MappingProxyType(self._terms)

    def apply(self, text: str) -> Tuple[str, int]:
        """Substitute glossary terms and return the new text and hit count."""

        if not self._terms or not text:
            return text, 0

        pattern = self._compiled()
        hits = 0

        def _replace(match: re.Match[str]) -> str:
            nonlocal hits
            matched = match.group(0)
            if match.lastgroup == "token":
                return matched
            hits += 1
            return self._lookup.get(matched.casefold(), matched)

        return pattern.sub(_replace, text), hits

    def _compiled(self) -> re.Pattern[str]:
        if self._pattern is None:
            ordered = sorted(self._terms, key=len, reverse=True)
            alternation = "|".join(re.escape(term) for term in ordered)
            self._pattern = re.compile(
                rf"(?P<token>{TOKEN_PATTERN.pattern})|(?P<term>{alternation})",
                re.IGNORECASE,
            )
        return self._pattern
