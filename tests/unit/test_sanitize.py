import pytest

from local_translate.utils.sanitize import (
    contains_chat_template_tokens,
    remove_wrapping_quotes,
    sanitize,
    sanitize_chunk,
)


@pytest.mark.unit
def test_sanitize_strips_chatml_role_and_end_tokens():
    raw = "<|im_start|>assistant\nこんにちは<|im_end|>"
    assert sanitize(raw) == "こんにちは"


@pytest.mark.unit
def test_sanitize_strips_llama_markers():
    assert sanitize("[INST] Bonjour [/INST]") == "Bonjour"
    assert sanitize("<<SYS>>Hola<</SYS>>") == "Hola"
    assert sanitize("<s>Ciao</s>") == "Ciao"
    assert sanitize("<|begin_of_text|>Hallo<|eot_id|>") == "Hallo"


@pytest.mark.unit
def test_sanitize_strips_generic_special_tokens():
    assert sanitize("Hello<|plamo:op|>") == "Hello"
    assert sanitize("<|start_header_id|>assistant<|end_header_id|>Hi") == "Hi"


@pytest.mark.unit
def test_sanitize_strips_incomplete_trailing_token():
    assert sanitize("こんにちは<|im_") == "こんにちは"
    assert sanitize("こんにちは<|") == "こんにちは"
    assert sanitize("Hello [INST") == "Hello"


@pytest.mark.unit
def test_sanitize_collapses_blank_lines_and_spaces():
    assert sanitize("a\n\n\n\nb") == "a\n\nb"
    assert sanitize("a    b") == "a b"
    assert sanitize("  padded  ") == "padded"


@pytest.mark.unit
def test_sanitize_removes_one_layer_of_wrapping_quotes():
    assert sanitize('"Hello"') == "Hello"
    assert sanitize("'Hello'") == "Hello"
    assert sanitize("「こんにちは」") == "こんにちは"
    assert sanitize("『こんにちは』") == "こんにちは"


@pytest.mark.unit
def test_sanitize_keeps_quotes_used_inside_text():
    assert sanitize('"He said "hi" twice"') == '"He said "hi" twice"'
    assert sanitize("「彼は「はい」と言った」") == "「彼は「はい」と言った」"


@pytest.mark.unit
def test_remove_wrapping_quotes_ignores_single_character():
    assert remove_wrapping_quotes('"') == '"'


@pytest.mark.unit
def test_sanitize_strips_english_lead_ins():
    assert sanitize("Here is the translation: Bonjour") == "Bonjour"
    assert sanitize("Here's the translation:\nBonjour") == "Bonjour"
    assert sanitize("Translation: Bonjour") == "Bonjour"
    assert sanitize("translated text: Bonjour") == "Bonjour"


@pytest.mark.unit
def test_sanitize_strips_japanese_lead_ins():
    assert sanitize("翻訳結果：こんにちは") == "こんにちは"
    assert sanitize("翻訳: こんにちは") == "こんにちは"
    assert sanitize("以下が翻訳です：こんにちは") == "こんにちは"


@pytest.mark.unit
def test_sanitize_keeps_text_that_only_starts_like_a_lead_in():
    assert sanitize("Translation memory is useful.") == "Translation memory is useful."
    assert sanitize("翻訳は難しい") == "翻訳は難しい"


@pytest.mark.unit
def test_sanitize_reaches_fixpoint_across_steps():
    assert sanitize('"「こんにちは」"') == "こんにちは"
    assert sanitize('Translation: "Bonjour"') == "Bonjour"
    assert sanitize('<|im_start|>assistant\n"Hello"<|im_end|>') == "Hello"


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw",
    [
        "<|im_start|>assistant\nこんにちは<|im_end|>",
        '"「こんにちは」"',
        "Here is the translation: 'Bonjour'",
        "a\n\n\n\nb    c",
        "<|im<|im_end|>_end|>x",
        "plain text",
        "",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize(raw)
    assert sanitize(once) == once


@pytest.mark.unit
def test_sanitize_empty_text():
    assert sanitize("") == ""
    assert sanitize("<|im_end|>") == ""


@pytest.mark.unit
def test_sanitize_chunk_removes_only_complete_unambiguous_tokens():
    assert sanitize_chunk("Hello<|im_end|>") == "Hello"
    assert sanitize_chunk("<|im_start|>assistant") == ""
    assert sanitize_chunk("<|im_") == "<|im_"
    assert sanitize_chunk("  keep spacing ") == "  keep spacing "
    assert sanitize_chunk('"quoted"') == '"quoted"'


@pytest.mark.unit
def test_contains_chat_template_tokens():
    assert contains_chat_template_tokens("x<|im_end|>")
    assert contains_chat_template_tokens("[INST] hi")
    assert not contains_chat_template_tokens("plain text")
