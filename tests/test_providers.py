import json
from types import SimpleNamespace

import pytest

from conftest import make_leaves
from docshift.errors import ProviderConfigurationError, TranslationProviderError
from docshift.providers import (
    DeepLTranslationProvider,
    EchoTranslationProvider,
    LegacyOpenAITranslationProvider,
    OpenAITranslationProvider,
    build_provider,
    build_system_prompt,
    deepl_source_language,
    deepl_target_language,
    normalise_provider_name,
    parse_translations,
    strip_code_fence,
)
from docshift.structures import MaskedSegment, Segment, SpanMap, TranslatorContext

CONTEXT = TranslatorContext(style="tech-ja-keitei", hints={"cable": "ケーブル"})


def settings(**overrides):
    values = dict(
        LLM_PROVIDER="openai",
        OPENAI_API_KEY=None,
        OPENAI_MODEL=None,
        AZURE_OPENAI_API_KEY=None,
        AZURE_OPENAI_ENDPOINT=None,
        AZURE_OPENAI_API_VERSION=None,
        AZURE_OPENAI_DEPLOYMENT_NAME=None,
        DEEPL_API_KEY=None,
        DEEPL_SERVER_URL=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def segments(*texts):
    result = []
    for index, text in enumerate(texts):
        segment = Segment(
            segment_id=f"/word/document.xml#{index}",
            part_id="/word/document.xml",
            leaves=make_leaves(text),
            source_text=text,
        )
        result.append(
            MaskedSegment(
                segment=segment,
                masked_text=text,
                glossary_text=text,
                token_count=0,
                spans=SpanMap(),
            )
        )
    return result


class FakeResponses:
    def __init__(self, output_text):
        self.output_text = output_text
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(output_text=self.output_text)


class FakeCompletions:
    def __init__(self, content):
        self.content = content

    def create(self, **kwargs):
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def stub_provider(cls, client):
    class Stubbed(cls):
        def _connect(self):
            return client, "test-model"

    return Stubbed(settings(OPENAI_API_KEY="sk-test"))


def test_echo_returns_glossary_text():
    items = segments("one", "two")

    result = EchoTranslationProvider().translate(
        items, source_language=None, target_language="ja", context=CONTEXT
    )

    assert result == {items[0].segment_id: "one", items[1].segment_id: "two"}


def test_openai_provider_maps_translations_by_id():
    items = segments("Check {DNT0} first.")
    payload = {"translations": [{"id": items[0].segment_id, "translated": "まず{DNT0}を確認。"}]}
    responses = FakeResponses("```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```")
    client = SimpleNamespace(responses=responses)
    provider = stub_provider(OpenAITranslationProvider, client)

    result = provider.translate(
        items, source_language="en", target_language="ja", context=CONTEXT
    )

    assert result == {items[0].segment_id: "まず{DNT0}を確認。"}
    request = responses.requests[0]
    assert request["model"] == "test-model"
    user_text = request["input"][1]["content"][0]["text"]
    assert json.loads(user_text)["segments"][0]["text"] == "Check {DNT0} first."


def test_openai_provider_rejects_invalid_json():
    client = SimpleNamespace(responses=FakeResponses("not json"))
    provider = stub_provider(OpenAITranslationProvider, client)

    with pytest.raises(TranslationProviderError):
        provider.translate(
            segments("text"), source_language=None, target_language="ja", context=CONTEXT
        )


def test_legacy_provider_reads_chat_completion():
    items = segments("Hello.")
    content = json.dumps([{"id": items[0].segment_id, "translated": "こんにちは。"}])
    client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))
    provider = stub_provider(LegacyOpenAITranslationProvider, client)

    result = provider.translate(
        items, source_language=None, target_language="ja", context=CONTEXT
    )

    assert result == {items[0].segment_id: "こんにちは。"}


def test_system_prompt_mentions_tokens_style_and_glossary():
    prompt = build_system_prompt(CONTEXT)

    assert "{DNT0}" in prompt
    assert "tech-ja-keitei" in prompt
    assert "cable -> ケーブル" in prompt


def test_deepl_provider_batches_texts():
    items = segments("Hello.", "Bye.")
    provider = DeepLTranslationProvider(settings(DEEPL_API_KEY="key:fx"))
    calls = []

    def translate_text(texts, **kwargs):
        calls.append((texts, kwargs))
        return [SimpleNamespace(text=f"ja:{text}") for text in texts]

    provider._client = SimpleNamespace(translate_text=translate_text)

    result = provider.translate(
        items, source_language="en", target_language="ja", context=CONTEXT
    )

    assert result == {
        items[0].segment_id: "ja:Hello.",
        items[1].segment_id: "ja:Bye.",
    }
    texts, kwargs = calls[0]
    assert texts == ["Hello.", "Bye."]
    assert kwargs["source_lang"] == "EN"
    assert kwargs["target_lang"] == "JA"
    assert kwargs["formality"] == "prefer_more"


def test_deepl_language_codes():
    assert deepl_source_language(None) is None
    assert deepl_source_language("en-GB") == "EN"
    assert deepl_target_language("en") == "EN-US"
    assert deepl_target_language("pt") == "PT-PT"
    assert deepl_target_language("de") == "DE"


def test_provider_names_are_normalised():
    assert normalise_provider_name(None) == "openai"
    assert normalise_provider_name(" Legacy ") == "legacy-openai"
    assert normalise_provider_name("mock") == "echo"
    with pytest.raises(ProviderConfigurationError):
        normalise_provider_name("babelfish")


def test_build_provider_checks_credentials():
    assert isinstance(build_provider("echo"), EchoTranslationProvider)
    with pytest.raises(ProviderConfigurationError):
        build_provider("openai")
    with pytest.raises(ProviderConfigurationError):
        build_provider("deepl", settings())
    with pytest.raises(ProviderConfigurationError):
        build_provider("openai", settings(LLM_PROVIDER="azure_openai", AZURE_OPENAI_API_KEY="k"))


def test_provider_budgets():
    assert OpenAITranslationProvider.max_chars_per_call == 1500
    assert DeepLTranslationProvider.max_chars_per_call == 2000
    assert EchoTranslationProvider.max_chars_per_call == 2000


def test_parse_translations_accepts_fenced_lists():
    raw = '```json\n[{"id": "a#0", "translated": "x"}]\n```'

    assert strip_code_fence(raw) == '[{"id": "a#0", "translated": "x"}]'
    assert parse_translations(raw) == {"a#0": "x"}
    with pytest.raises(TranslationProviderError):
        parse_translations('{"translations": [{"id": 3}]}')


def test_openai_provider_ignores_unrequested_ids():
    items = segments("Hi.")
    payload = {
        "translations": [
            {"id": items[0].segment_id, "translated": "やあ。"},
            {"id": "/word/document.xml#99", "translated": "?"},
        ]
    }
    client = SimpleNamespace(responses=FakeResponses(json.dumps(payload)))
    provider = stub_provider(OpenAITranslationProvider, client)

    result = provider.translate(
        items, source_language=None, target_language="ja", context=CONTEXT
    )

    assert result == {items[0].segment_id: "やあ。"}
