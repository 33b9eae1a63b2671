import pytest

from docshift.protection import SpanProtector
from docshift.structures import SpanMap


@pytest.fixture
def protector():
    return SpanProtector()


def test_urls_are_masked(protector):
    spans = SpanMap()
    masked, count = protector.mask(
        "Visit https://example.com and http://test.org for more info.", spans
    )

    assert count == 2
    assert "{DNT0}" in masked and "{DNT1}" in masked
    assert "https://example.com" not in masked
    assert "http://test.org" not in masked


def test_version_strings_are_masked(protector):
    spans = SpanMap()
    masked, count = protector.mask("Version 1.2.3 and v2.0.1 are available", spans)

    assert count == 2
    assert masked == "Version {DNT0} and {DNT1} are available"
    assert spans.tokens == {"{DNT0}": "1.2.3", "{DNT1}": "v2.0.1"}


def test_plain_text_is_unchanged(protector):
    spans = SpanMap()
    text = "This is plain text without any special content."
    masked, count = protector.mask(text, spans)

    assert count == 0
    assert masked == text
    assert len(spans) == 0


def test_email_units_code_function_and_tags(protector):
    spans = SpanMap()
    masked, count = protector.mask(
        "Mail ops@example.co.jp, apply 230 V at 50Hz, run `make all`, "
        "call reset() and keep <br/> intact.",
        spans,
    )

    assert count == 6
    assert sorted(spans.tokens.values()) == sorted(
        ["ops@example.co.jp", "230 V", "50Hz", "`make all`", "reset()", "<br/>"]
    )
    assert "@" not in masked and "`" not in masked and "<" not in masked


def test_url_claims_digits_before_version_pattern(protector):
    spans = SpanMap()
    text = "Download https://example.com/releases/1.2.3/setup.exe now."
    masked, count = protector.mask(text, spans)

    assert count == 1
    assert spans.tokens["{DNT0}"] == "https://example.com/releases/1.2.3/setup.exe"
    assert protector.unmask(masked, spans).text == text


def test_wider_span_swallowing_an_earlier_token_round_trips(protector):
    spans = SpanMap()
    text = "Use <tool version=1.2.3> here."
    masked, count = protector.mask(text, spans)

    assert count == 1
    assert masked == "Use {DNT1} here."
    assert spans.tokens == {"{DNT1}": "<tool version=1.2.3>"}

    result = protector.unmask(masked, spans)
    assert result.text == text
    assert result.lost_tokens == []


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Release v10.4 ships 12.5 mA drivers; see docs at ftp://files.example.org/a.",
        "Tokens like {DNT0} and {DNT7} already appear in the source.",
        "Nested `code 1.2` with <b>tags</b> and f() calls: x@y.io",
        "100% of 3.3V rails at 25°C",
    ],
)
def test_unmask_inverts_mask(protector, text):
    spans = SpanMap()
    masked, _count = protector.mask(text, spans)

    result = protector.unmask(masked, spans)
    assert result.text == text
    assert result.unknown_tokens == []


def test_literal_placeholder_text_is_protected(protector):
    spans = SpanMap()
    masked, count = protector.mask("Literal {DNT0} then 1.2.3", spans)

    assert count == 2
    assert spans.tokens["{DNT0}"] == "{DNT0}"
    assert spans.tokens["{DNT1}"] == "1.2.3"
    assert protector.unmask(masked, spans).text == "Literal {DNT0} then 1.2.3"


def test_unknown_tokens_are_left_verbatim(protector):
    spans = SpanMap()
    masked, _count = protector.mask("See v1.0 notes.", spans)

    result = protector.unmask(masked + " {DNT9}", spans)

    assert result.text == "See v1.0 notes. {DNT9}"
    assert result.unknown_tokens == ["{DNT9}"]


def test_dropped_tokens_are_reported(protector):
    spans = SpanMap()
    protector.mask("Install 2.0.1 from https://example.com.", spans)

    result = protector.unmask("Install it from {DNT0}.", spans)

    assert result.lost_tokens == ["{DNT1}"]


def test_mask_starts_from_a_cleared_map(protector):
    spans = SpanMap()
    protector.mask("Old text with v1.1", spans)
    masked, count = protector.mask("Fresh 2.2.2", spans)

    assert count == 1
    assert masked == "Fresh {DNT0}"
    assert spans.tokens == {"{DNT0}": "2.2.2"}
