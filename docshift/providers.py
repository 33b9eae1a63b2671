"""Translation provider abstractions."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from .configuration import DocshiftConfig, validate_provider_settings
from .errors import ProviderConfigurationError, TranslationProviderError
from .structures import MaskedSegment, TranslatorContext

logger = logging.getLogger(__name__)


class TranslationProvider(ABC):
    """Abstract adapter for translation providers.

    ``translate`` receives the segments of one batch and returns their
    translations keyed by segment id. Failures are raised as
    :class:`TranslationProviderError`; the runner applies the
    fallback-to-source policy.
    """

    name = "provider"
    max_chars_per_call = 2000

    @abstractmethod
    def translate(
        self,
        segments: Sequence[MaskedSegment],
        *,
        source_language: str | None,
        target_language: str,
        context: TranslatorContext,
        model: str | None = None,
    ) -> Dict[str, str]:
        """Translate the provided segments and return a mapping by segment id."""


class EchoTranslationProvider(TranslationProvider):
    """A provider that returns the original text (useful for testing)."""

    name = "echo"

    def translate(
        self,
        segments: Sequence[MaskedSegment],
        *,
        source_language: str | None,
        target_language: str,
        context: TranslatorContext,
        model: str | None = None,
    ) -> Dict[str, str]:
        return {segment.segment_id: segment.glossary_text for segment in segments}


class OpenAITranslationProvider(TranslationProvider):
    """Sends each batch as one JSON request to the OpenAI Responses API.

    ``LLM_PROVIDER`` selects between api.openai.com and an Azure OpenAI
    deployment; both speak the same protocol. Subclasses only change how
    the request text is sent (:meth:`_complete`).
    """

    name = "openai"
    max_chars_per_call = 1500
    DEFAULT_MODEL = "gpt-5-mini"

    def __init__(self, settings: DocshiftConfig, *, debug: bool = False) -> None:
        self.debug = debug
        self.settings = settings
        self._client, self._default_model = self._connect()

    def _connect(self) -> tuple[Any, str]:
        try:
            from openai import AzureOpenAI, OpenAI  # type: ignore
        except ImportError as exc:  # pragma: no cover - import guard
            raise ProviderConfigurationError(
                "OpenAI Python SDK not installed. Install with `pip install openai`."
            ) from exc

        settings = self.settings
        if settings.LLM_PROVIDER == "azure_openai":
            client = AzureOpenAI(
                api_key=settings.AZURE_OPENAI_API_KEY,
                api_version=settings.AZURE_OPENAI_API_VERSION,
                azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            )
            return client, settings.AZURE_OPENAI_DEPLOYMENT_NAME  # type: ignore[return-value]
        return (
            OpenAI(api_key=settings.OPENAI_API_KEY),
            settings.OPENAI_MODEL or self.DEFAULT_MODEL,
        )

    def translate(
        self,
        segments: Sequence[MaskedSegment],
        *,
        source_language: str | None,
        target_language: str,
        context: TranslatorContext,
        model: str | None = None,
    ) -> Dict[str, str]:
        if not segments:
            return {}

        system_prompt = build_system_prompt(context)
        request = {
            "source_language": source_language,
            "target_language": target_language,
            "segments": [
                {"id": segment.segment_id, "text": segment.glossary_text}
                for segment in segments
            ],
        }
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.payload", request)

        raw = self._complete(
            system_prompt,
            json.dumps(request, ensure_ascii=False),
            model=model or self._default_model,
        )
        self._log_debug("provider.response.text", raw)

        mapping = parse_translations(raw)
        wanted = {segment.segment_id for segment in segments}
        extra = sorted(set(mapping) - wanted)
        if extra:
            logger.debug("Ignoring translations for unknown ids: %s", ", ".join(extra))
        return {key: value for key, value in mapping.items() if key in wanted}

    def _complete(self, system_prompt: str, user_text: str, *, model: str) -> str:
        """Return the raw text of the model's answer."""

        try:
            response = self._client.responses.create(
                model=model,
                input=[
                    {
                        "role": "system",
                        "content": [{"type": "input_text", "text": system_prompt}],
                    },
                    {
                        "role": "user",
                        "content": [{"type": "input_text", "text": user_text}],
                    },
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc

        if getattr(response, "output_text", None):
            return str(response.output_text)
        for item in getattr(response, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                if getattr(part, "text", None):
                    return str(part.text)
        raise TranslationProviderError("Translation provider returned no text.")

    def _log_debug(self, label: str, payload: Any) -> None:
        if not self.debug:
            return
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload, ensure_ascii=False, indent=2)
        logger.debug("%s:\n%s", label, payload)


class LegacyOpenAITranslationProvider(OpenAITranslationProvider):
    """Same requests, sent through Chat Completions for older deployments."""

    name = "legacy-openai"

    def _complete(self, system_prompt: str, user_text: str, *, model: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=model,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc

        for choice in getattr(response, "choices", None) or []:
            content = getattr(getattr(choice, "message", None), "content", None)
            if content:
                return str(content)
        raise TranslationProviderError("Translation provider returned no text.")


class DeepLTranslationProvider(TranslationProvider):
    """Translation provider backed by the DeepL API."""

    name = "deepl"
    max_chars_per_call = 2000

    FORMALITY_BY_STYLE = {
        "tech-ja-keitei": "prefer_more",
        "polite": "prefer_more",
        "formal": "prefer_more",
        "casual": "prefer_less",
    }

    def __init__(self, settings: DocshiftConfig, *, debug: bool = False) -> None:
        self.debug = debug
        try:
            import deepl  # type: ignore
        except ImportError as exc:  # pragma: no cover - import guard
            raise ProviderConfigurationError(
                "DeepL Python library not installed. Install with `pip install deepl`."
            ) from exc

        self._deepl = deepl
        self._client = deepl.Translator(
            settings.DEEPL_API_KEY,
            server_url=settings.DEEPL_SERVER_URL,
        )

    def translate(
        self,
        segments: Sequence[MaskedSegment],
        *,
        source_language: str | None,
        target_language: str,
        context: TranslatorContext,
        model: str | None = None,
    ) -> Dict[str, str]:
        if not segments:
            return {}

        texts = [segment.glossary_text for segment in segments]
        if self.debug:
            logger.debug("deepl.request: %d texts, style=%s", len(texts), context.style)
        try:
            results = self._client.translate_text(
                texts,
                source_lang=deepl_source_language(source_language),
                target_lang=deepl_target_language(target_language),
                formality=self.FORMALITY_BY_STYLE.get(context.style.lower()),
                preserve_formatting=True,
            )
        except self._deepl.DeepLException as exc:  # pragma: no cover - network call
            raise TranslationProviderError(f"DeepL request failed: {exc}") from exc

        translated: List[str] = [result.text for result in results]
        if len(translated) != len(segments):
            raise TranslationProviderError(
                "DeepL returned a different number of texts than requested."
            )
        return {
            segment.segment_id: text for segment, text in zip(segments, translated)
        }


def build_system_prompt(context: TranslatorContext) -> str:
    """System prompt shared by the OpenAI providers."""

    lines = [
        "You are a professional technical translator. Return only JSON.",
        f"Style: {context.style}.",
        "Translate each provided text segment into the requested language.",
        "Tokens shaped like {DNT0}, {DNT1}, ... are placeholders: copy them "
        "unchanged and keep each one exactly once.",
        "Preserve numbers, units, punctuation style and line breaks.",
        "Respond strictly with an object shaped as "
        '{"translations": [{"id": "...", "translated": "..."}]} '
        "containing every input id.",
        "Do not add commentary. Do not wrap the JSON in markdown code fences.",
    ]
    if context.hints:
        lines.append("Follow this glossary strictly (source -> target):")
        lines.extend(f"{source} -> {target}" for source, target in context.hints.items())
    return "\n".join(lines)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence and its language hint."""

    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    _, _, body = stripped.partition("\n")
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


def parse_translations(raw: str) -> Dict[str, str]:
    """Turn a model answer into ``{segment_id: translated}``.

    Accepts ``{"translations": [...]}`` or a bare list of
    ``{"id": ..., "translated": ...}`` objects.
    """

    try:
        payload = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise TranslationProviderError(
            f"Translation provider returned invalid JSON: {exc}"
        ) from exc

    if isinstance(payload, dict):
        payload = payload.get("translations")
    if not isinstance(payload, list):
        raise TranslationProviderError(
            "Translation provider response malformed: no translations list."
        )

    mapping: Dict[str, str] = {}
    for item in payload:
        if not isinstance(item, dict):
            raise TranslationProviderError(
                "Translation provider response malformed: expected objects."
            )
        segment_id, translated = item.get("id"), item.get("translated")
        if not isinstance(segment_id, str) or not isinstance(translated, str):
            raise TranslationProviderError(
                "Translation provider response malformed: missing fields."
            )
        mapping[segment_id] = translated
    return mapping


def deepl_source_language(language: str | None) -> str | None:
    if not language:
        return None
    return language.split("-")[0].upper()


def deepl_target_language(language: str) -> str:
    code = language.upper()
    return {"EN": "EN-US", "PT": "PT-PT"}.get(code, code)


PROVIDER_ALIASES = {
    "openai": {"openai", "gpt", "default"},
    "legacy-openai": {"legacy-openai", "legacy_openai", "legacy", "openai-legacy"},
    "deepl": {"deepl"},
    "echo": {"echo", "noop", "mock"},
}


def normalise_provider_name(name: str | None) -> str:
    normalized = (name or "openai").strip().lower()
    for canonical, aliases in PROVIDER_ALIASES.items():
        if normalized in aliases:
            return canonical
    raise ProviderConfigurationError(f"Unknown translation provider '{name}'.")


def build_provider(
    name: str | None,
    settings: DocshiftConfig | None = None,
    *,
    debug: bool = False,
) -> TranslationProvider:
    """Factory to create providers by name."""

    canonical = normalise_provider_name(name)
    if canonical == "echo":
        return EchoTranslationProvider()

    if settings is None:
        raise ProviderConfigurationError(
            f"The '{canonical}' provider needs configuration; none was loaded."
        )
    validate_provider_settings(settings, canonical)
    if canonical == "deepl":
        return DeepLTranslationProvider(settings, debug=debug)
    if canonical == "legacy-openai":
        return LegacyOpenAITranslationProvider(settings, debug=debug)
    return OpenAITranslationProvider(settings, debug=debug)
