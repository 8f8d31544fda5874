import pytest

from local_translate.validation import is_loopback_host, validate_api_endpoint, validate_profile


@pytest.mark.unit
@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:3002/v1/chat/completions",
        "http://127.0.0.1:8080",
        "http://127.0.0.2:8080/v1",
        "http://[::1]:8080/v1",
        "https://api.example.com/v1",
    ],
)
def test_validate_api_endpoint_accepts_trusted_urls(url):
    assert validate_api_endpoint(url) == (True, None)


@pytest.mark.unit
@pytest.mark.parametrize(
    "url, error",
    [
        ("", "missing_endpoint"),
        ("   ", "missing_endpoint"),
        ("not a url", "invalid_url"),
        ("ftp://localhost/v1", "invalid_url"),
        ("http://example.com/v1", "insecure_endpoint"),
        ("http://192.168.1.10:8080", "insecure_endpoint"),
    ],
)
def test_validate_api_endpoint_rejects(url, error):
    assert validate_api_endpoint(url) == (False, error)


@pytest.mark.unit
def test_is_loopback_host():
    assert is_loopback_host("localhost")
    assert is_loopback_host("LOCALHOST")
    assert is_loopback_host("::1")
    assert not is_loopback_host("example.com")
    assert not is_loopback_host("")


@pytest.mark.unit
def test_validate_profile_ok_with_warnings():
    result = validate_profile(
        {
            "id": "local",
            "api_endpoint": "http://localhost:3002/v1",
            "model": "m",
            "user_prompt_template": "Translate: {{input_text}}",
        }
    )
    assert result.ok
    assert "missing_api_key" in result.warnings
    assert "prompt_missing_target_language" in result.warnings
    assert "prompt_missing_input_text" not in result.warnings


@pytest.mark.unit
def test_validate_profile_collects_errors():
    result = validate_profile(
        {
            "id": "../bad",
            "api_endpoint": "http://example.com/v1",
            "timeout": 0,
            "temperature": "hot",
            "api_key": "k",
        }
    )
    assert not result.ok
    assert "invalid_id" in result.errors
    assert "missing_field:model" in result.errors
    assert "insecure_endpoint" in result.errors
    assert "invalid_timeout" in result.errors
    assert "invalid_temperature" in result.errors


@pytest.mark.unit
def test_validate_profile_rejects_non_mapping():
    result = validate_profile(["not", "a", "dict"])
    assert result.errors == ["invalid_yaml"]


@pytest.mark.unit
def test_validate_profile_missing_id_and_endpoint():
    result = validate_profile({"model": "m"})
    assert "missing_id" in result.errors
    assert "missing_field:api_endpoint" in result.errors
