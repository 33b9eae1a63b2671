"""Reversible masking of do-not-translate spans."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .structures import SpanMap

TOKEN_PATTERN = re.compile(r"\{DNT\d+\}")

UNIT_SYMBOLS = (
    "kV", "kW", "MW", "mA", "kHz", "MHz", "GHz", "Hz",
    "°C", "°F", "mm", "cm", "km", "V", "A", "W", "%", "m",
)

# Applied in this order; earlier patterns claim text before later ones see it.
DNT_PATTERNS: Tuple[Tuple[str, re.Pattern[str]], ...] = (
    ("url", re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*://\S+")),
    (
        "email",
        re.compile(r"[A-Z0-9._%+\-]+@[A-Z0-9.\-]+\.[A-Z]{2,}", re.IGNORECASE),
    ),
    ("version", re.compile(r"\bv?\d+(?:\.\d+)+\b")),
    (
        "unit",
        re.compile(
            r"\b\d+(?:\.\d+)?\s?(?:"
            + "|".join(re.escape(symbol) for symbol in UNIT_SYMBOLS)
            + r")(?![A-Za-z0-9])"
        ),
    ),
    ("code", re.compile(r"`[^`]+`")),
    ("function", re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\(\)")),
    ("tag", re.compile(r"<[^>]+>")),
)


@dataclass
class UnmaskResult:
    """Restored text plus token diagnostics."""

    text: str
    unknown_tokens: List[str] = field(default_factory=list)
    lost_tokens: List[str] = field(default_factory=list)


class SpanProtector:
    """Replaces non-translatable spans with ``{DNT<n>}`` placeholders.

    The protector itself is stateless; every call works on an explicit
    :class:`SpanMap` so that each segment can own its own tokens.
    """

    def __init__(
        self,
        patterns: Sequence[Tuple[str, re.Pattern[str]]] = DNT_PATTERNS,
    ) -> None:
        # Placeholder-shaped text already present in the source is claimed
        # first, otherwise unmasking would expand it.
        self.patterns = (("literal-token", TOKEN_PATTERN),) + tuple(patterns)

    def mask(self, text: str, spans: SpanMap) -> Tuple[str, int]:
        """Mask ``text`` and return the masked text and the token count."""

        spans.clear()
        masked = text
        for index, (_name, pattern) in enumerate(self.patterns):
            expand = index > 0
            masked = pattern.sub(
                lambda match: self._claim(match, spans, expand=expand), masked
            )

        # Tokens swallowed by a later, wider span live on inside that span's
        # expanded original and are no longer addressable on their own.
        visible = set(TOKEN_PATTERN.findall(masked))
        for token in [token for token in spans.tokens if token not in visible]:
            del spans.tokens[token]
        return masked, len(spans)

    def unmask(self, text: str, spans: SpanMap) -> UnmaskResult:
        """Restore every known token in one pass; unknown tokens stay verbatim."""

        result = UnmaskResult(text=text)
        seen = set()

        def _restore(match: re.Match[str]) -> str:
            token = match.group(0)
            original = spans.tokens.get(token)
            if original is None:
                result.unknown_tokens.append(token)
                return token
            seen.add(token)
            return original

        result.text = TOKEN_PATTERN.sub(_restore, text)
        result.lost_tokens = [token for token in spans.tokens if token not in seen]
        return result

    def _claim(self, match: re.Match[str], spans: SpanMap, *, expand: bool) -> str:
        token = spans.next_token()
        original = match.group(0)
        # Store the fully expanded original: a later pattern may swallow
        # tokens produced by an earlier one (e.g. a tag around a version).
        spans.tokens[token] = _expand(original, spans) if expand else original
        return token


def _expand(text: str, spans: SpanMap) -> str:
    return TOKEN_PATTERN.sub(
        lambda match: spans.tokens.get(match.group(0), match.group(0)), text
    )
