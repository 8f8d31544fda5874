"""Translation profiles and runtime settings."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

DEFAULT_SYSTEM_PROMPT = (
    "あなたはテクノロジー分野に精通した高度な翻訳エンジンである。"
    "あなたの役割は、原文の書式、専門用語、略語を正確に保持しつつ、"
    "テキストを{{target_language}}に正確に翻訳することである。"
    "翻訳結果にはいかなる説明や注釈も付加してはならない。\n"
    "---\n"
    "翻訳結果の文末の敬体表現「～ます。～です。～ました。」を禁止する。"
    "如何なる時も常体表現「～だ。～である。～した。」で翻訳せよ。具体例は次の通り。\n"
    "原文例1: Running is good constitution to your health.\n"
    "翻訳文例1: ランニングは健康に良い体質を作る。\n"
    "原文例2: Here is an apple on the table. It's smell is freshly, sweet, and ready to eat.\n"
    "翻訳文例2: テーブルの上にリンゴが置いてある。その香りは新鮮で甘く、食べるのに丁度よい。\n"
    "原文例3: No need to mention, we have to hurry as possible as we can.\n"
    "翻訳文例3: 言うまでもなく、私たちは可能な限り急ぐ必要がある。"
)

DEFAULT_USER_PROMPT_TEMPLATE = (
    "<|plamo:op|>dataset\n"
    "translation\n"
    "<|plamo:op|>input lang={{source_language}}\n"
    "{{input_text}}\n"
    "<|plamo:op|>output lang={{target_language}}"
)

DEFAULT_PROFILE_ID = "default-plamo2-llama-cpp"
DEFAULT_TIMEOUT_SECONDS = 600
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_INTERVAL_MS = 1000
DEFAULT_HISTORY_MAX_ITEMS = 100
REDACTED = "[REDACTED]"


class ProfileNotFoundError(LookupError):
    pass


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: Any, default: int, *, minimum: int = 0) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        parsed = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _parse_float(value: Any) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class TranslationProfile:
    id: str
    name: str
    api_endpoint: str
    api_key: str = ""
    model: str = ""
    timeout: int = DEFAULT_TIMEOUT_SECONDS
    source_language: str = "auto"
    target_language: str = "Japanese"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    user_prompt_template: str = DEFAULT_USER_PROMPT_TEMPLATE
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranslationProfile":
        profile_id = str(data.get("id") or "").strip()
        raw_max_tokens = data.get("max_tokens")
        max_tokens = _parse_int(raw_max_tokens, 0, minimum=1) or None
        params = data.get("params") if isinstance(data.get("params"), dict) else {}
        headers = data.get("headers") if isinstance(data.get("headers"), dict) else {}
        system_prompt = data.get("system_prompt")
        user_prompt_template = data.get("user_prompt_template")
        return cls(
            id=profile_id,
            name=str(data.get("name") or profile_id),
            api_endpoint=str(data.get("api_endpoint") or "").strip(),
            api_key=str(data.get("api_key") or ""),
            model=str(data.get("model") or "").strip(),
            timeout=_parse_int(data.get("timeout"), DEFAULT_TIMEOUT_SECONDS, minimum=1),
            source_language=str(data.get("source_language") or "auto"),
            target_language=str(data.get("target_language") or "Japanese"),
            system_prompt=(
                DEFAULT_SYSTEM_PROMPT if system_prompt is None else str(system_prompt)
            ),
            user_prompt_template=(
                DEFAULT_USER_PROMPT_TEMPLATE
                if user_prompt_template is None
                else str(user_prompt_template)
            ),
            temperature=_parse_float(data.get("temperature")),
            max_tokens=max_tokens,
            params=dict(params),
            headers={str(k): str(v) for k, v in headers.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None or value == {}:
                continue
            data[item.name] = value
        return data

    def public_dict(self) -> Dict[str, Any]:
        """Profile data safe to hand to clients."""
        data = self.to_dict()
        if data.get("api_key"):
            data["api_key"] = REDACTED
        return data


DEFAULT_PROFILE = TranslationProfile(
    id=DEFAULT_PROFILE_ID,
    name="Default-PLaMo2-Llama-cpp",
    api_endpoint="http://localhost:3002/v1/chat/completions",
    api_key="test",
    model="plamo-2-translate-gguf",
    timeout=DEFAULT_TIMEOUT_SECONDS,
    source_language="auto",
    target_language="Japanese",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_RETRY_COUNT
    retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_interval_ms < 0:
            raise ValueError("retry_interval_ms must be >= 0")

    @property
    def retry_interval_seconds(self) -> float:
        return self.retry_interval_ms / 1000.0


@dataclass
class Settings:
    profiles: List[TranslationProfile] = field(default_factory=lambda: [DEFAULT_PROFILE])
    active_profile_id: str = DEFAULT_PROFILE_ID
    retry_count: int = DEFAULT_RETRY_COUNT
    retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS
    streaming_enabled: bool = True
    history_enabled: bool = True
    history_max_items: int = DEFAULT_HISTORY_MAX_ITEMS

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=max(self.retry_count, 0),
            retry_interval_ms=max(self.retry_interval_ms, 0),
        )

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], profiles: List[TranslationProfile]
    ) -> "Settings":
        return cls(
            profiles=list(profiles),
            active_profile_id=str(data.get("active_profile_id") or DEFAULT_PROFILE_ID),
            retry_count=_parse_int(data.get("retry_count"), DEFAULT_RETRY_COUNT),
            retry_interval_ms=_parse_int(
                data.get("retry_interval_ms"), DEFAULT_RETRY_INTERVAL_MS
            ),
            streaming_enabled=_parse_bool(data.get("streaming_enabled"), True),
            history_enabled=_parse_bool(data.get("history_enabled"), True),
            history_max_items=_parse_int(
                data.get("history_max_items"), DEFAULT_HISTORY_MAX_ITEMS, minimum=1
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_profile_id": self.active_profile_id,
            "retry_count": self.retry_count,
            "retry_interval_ms": self.retry_interval_ms,
            "streaming_enabled": self.streaming_enabled,
            "history_enabled": self.history_enabled,
            "history_max_items": self.history_max_items,
        }


def resolve_profile(
    profiles: List[TranslationProfile],
    profile_id: Optional[str] = None,
    active_profile_id: Optional[str] = None,
) -> TranslationProfile:
    """Pick the requested profile, else the active one, else the first."""
    if not profiles:
        raise ProfileNotFoundError("Profile not found")
    wanted = profile_id or active_profile_id
    if wanted:
        for profile in profiles:
            if profile.id == wanted:
                return profile
    return profiles[0]
