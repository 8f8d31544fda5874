# Validation helpers for translation profiles and endpoints.

from __future__ import annotations

from dataclasses import dataclass, field
import ipaddress
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from local_translate.registry.profile_store import ProfileStore


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def is_loopback_host(host: str) -> bool:
    if not host:
        return False
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_api_endpoint(url: str) -> Tuple[bool, Optional[str]]:
    """Check the endpoint trust rule: plain http only for loopback hosts.

    Returns ``(ok, error)`` where ``error`` is a short snake_case code.
    """
    text = str(url or "").strip()
    if not text:
        return False, "missing_endpoint"
    try:
        parsed = urlparse(text)
        host = parsed.hostname or ""
    except ValueError:
        return False, "invalid_url"
    scheme = (parsed.scheme or "").lower()
    if scheme not in {"http", "https"} or not host:
        return False, "invalid_url"
    if is_loopback_host(host):
        return True, None
    if scheme != "https":
        return False, "insecure_endpoint"
    return True, None


def _ensure_field(data: Dict[str, Any], name: str, result: ValidationResult) -> None:
    if not data.get(name):
        result.errors.append(f"missing_field:{name}")


def validate_profile(data: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(data, dict):
        result.errors.append("invalid_yaml")
        return result

    if not data.get("id"):
        result.errors.append("missing_id")
    else:
        raw_id = str(data.get("id") or "").strip()
        if not ProfileStore.is_safe_profile_id(raw_id):
            result.errors.append("invalid_id")

    for name in ("api_endpoint", "model"):
        _ensure_field(data, name, result)

    endpoint = str(data.get("api_endpoint") or "").strip()
    if endpoint:
        ok, error = validate_api_endpoint(endpoint)
        if not ok and error:
            result.errors.append(error)

    if data.get("timeout") is not None and data.get("timeout") != "":
        try:
            timeout_value = float(data.get("timeout"))
        except (TypeError, ValueError):
            timeout_value = None
        if timeout_value is None or timeout_value <= 0:
            result.errors.append("invalid_timeout")

    if data.get("temperature") is not None and data.get("temperature") != "":
        try:
            float(data.get("temperature"))
        except (TypeError, ValueError):
            result.errors.append("invalid_temperature")

    if not data.get("api_key"):
        result.warnings.append("missing_api_key")

    template = data.get("user_prompt_template")
    if isinstance(template, str) and template.strip():
        if "{{input_text}}" not in template:
            result.warnings.append("prompt_missing_input_text")
        if "{{target_language}}" not in template:
            result.warnings.append("prompt_missing_target_language")

    return result
