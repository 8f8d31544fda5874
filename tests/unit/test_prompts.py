import pytest

from local_translate.prompts.builder import build_messages, render_template
from local_translate.registry.settings import DEFAULT_PROFILE, TranslationProfile


@pytest.mark.unit
def test_render_template_replaces_known_tokens_only():
    rendered = render_template(
        "{{a}} and {{b}} and {{a}}", {"a": "x"}
    )
    assert rendered == "x and {{b}} and x"


@pytest.mark.unit
def test_build_messages_default_profile():
    messages = build_messages(DEFAULT_PROFILE, "Hello world", "English", "Japanese")

    assert [m["role"] for m in messages] == ["system", "user"]
    assert "Japanese" in messages[0]["content"]
    assert "{{target_language}}" not in messages[0]["content"]
    user = messages[1]["content"]
    assert "<|plamo:op|>input lang=English\nHello world\n" in user
    assert user.endswith("<|plamo:op|>output lang=Japanese")


@pytest.mark.unit
def test_build_messages_system_prompt_only_sees_target_language():
    profile = TranslationProfile(
        id="p",
        name="p",
        api_endpoint="http://localhost:1",
        system_prompt="To {{target_language}} from {{source_language}}: {{input_text}}",
        user_prompt_template="{{input_text}}",
    )
    messages = build_messages(profile, "hi", "English", "French")
    assert messages[0]["content"] == "To French from {{source_language}}: {{input_text}}"
    assert messages[1]["content"] == "hi"


@pytest.mark.unit
def test_build_messages_blank_template_sends_raw_text():
    profile = TranslationProfile(
        id="p",
        name="p",
        api_endpoint="http://localhost:1",
        system_prompt="",
        user_prompt_template="   ",
    )
    messages = build_messages(profile, "raw text", "auto", "Japanese")
    assert messages == [
        {"role": "system", "content": ""},
        {"role": "user", "content": "raw text"},
    ]
