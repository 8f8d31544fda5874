"""Profile store for translation profiles and runtime settings (YAML-based)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import re
import shutil

import yaml

from local_translate.registry.settings import Settings, TranslationProfile

logger = logging.getLogger(__name__)

PROFILE_KIND = "profile"
SETTINGS_FILENAME = "settings.yaml"


class InvalidSettingsError(ValueError):
    pass


# Keys written by the browser-extension era of the settings format.
_LEGACY_PROFILE_KEYS = {
    "apiEndpoint": "api_endpoint",
    "apiKey": "api_key",
    "sourceLanguage": "source_language",
    "targetLanguage": "target_language",
    "systemPrompt": "system_prompt",
    "userPromptTemplate": "user_prompt_template",
    "maxTokens": "max_tokens",
}
_LEGACY_SETTINGS_KEYS = {
    "activeProfileId": "active_profile_id",
    "retryCount": "retry_count",
    "retryInterval": "retry_interval_ms",
    "streamingEnabled": "streaming_enabled",
    "historyEnabled": "history_enabled",
    "historyMaxItems": "history_max_items",
}


@dataclass
class ProfileRef:
    profile_id: str
    path: str
    name: str


def _rename_legacy_keys(data: Dict[str, Any], mapping: Dict[str, str]) -> bool:
    changed = False
    for legacy, current in mapping.items():
        if legacy in data:
            if current not in data:
                data[current] = data[legacy]
            del data[legacy]
            changed = True
    return changed


class ProfileStore:
    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    @staticmethod
    def is_safe_profile_id(value: str) -> bool:
        if not value:
            return False
        trimmed = str(value).strip()
        if not trimmed:
            return False
        if ".." in trimmed:
            return False
        if "/" in trimmed or "\\" in trimmed:
            return False
        return bool(re.match(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$", trimmed))

    def _normalize_path(self, path: str) -> str:
        normalized = os.path.abspath(path)
        return normalized.lower() if os.name == "nt" else normalized

    def _is_within_base_dir(self, path: str) -> bool:
        base = self._normalize_path(self.base_dir)
        target = self._normalize_path(path)
        if target == base:
            return True
        return target.startswith(base + os.sep)

    @property
    def profile_dir(self) -> str:
        return os.path.join(self.base_dir, PROFILE_KIND)

    @property
    def settings_path(self) -> str:
        return os.path.join(self.base_dir, SETTINGS_FILENAME)

    def ensure_dirs(self) -> None:
        os.makedirs(self.profile_dir, exist_ok=True)

    def seed_defaults(self, defaults_dir: Path) -> None:
        """Copy bundled profiles and settings that are missing from ``base_dir``."""
        if not defaults_dir.exists():
            return
        self.ensure_dirs()
        source_dir = defaults_dir / PROFILE_KIND
        target_dir = Path(self.profile_dir)
        if source_dir.exists():
            for file in source_dir.iterdir():
                if file.suffix.lower() not in {".yaml", ".yml"}:
                    continue
                target = target_dir / file.name
                if not target.exists():
                    shutil.copy2(file, target)
        settings_file = defaults_dir / SETTINGS_FILENAME
        if settings_file.exists() and not os.path.exists(self.settings_path):
            shutil.copy2(settings_file, self.settings_path)

    def _write_yaml(self, path: str, data: Dict[str, Any]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True, width=120)

    def list_profiles(self) -> List[ProfileRef]:
        result: List[ProfileRef] = []
        if not os.path.isdir(self.profile_dir):
            return result
        for name in sorted(os.listdir(self.profile_dir)):
            if not name.endswith((".yaml", ".yml")):
                continue
            fallback_id = os.path.splitext(name)[0]
            if not self.is_safe_profile_id(fallback_id):
                continue
            path = os.path.join(self.profile_dir, name)
            try:
                data = self.load_profile_by_path(path)
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.warning(f"Skipping unreadable profile {path}: {exc}")
                continue
            result.append(
                ProfileRef(
                    profile_id=data["id"],
                    path=path,
                    name=str(data.get("name") or data["id"]),
                )
            )
        return result

    def load_profile(self, ref: str) -> Dict[str, Any]:
        path = self.resolve_profile_path(ref)
        if not path:
            raise FileNotFoundError(f"Profile not found: {ref}")
        return self.load_profile_by_path(path)

    def load_profile_by_path(self, path: str) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid profile YAML: {path}")
        fallback_id = os.path.splitext(os.path.basename(path))[0]
        if not self.is_safe_profile_id(fallback_id):
            raise ValueError(f"Invalid profile id: {fallback_id}")
        raw_id = str(data.get("id") or "").strip()
        if self.is_safe_profile_id(raw_id):
            data["id"] = raw_id
        else:
            data["id"] = fallback_id
        data.setdefault("name", data.get("id"))
        if _rename_legacy_keys(data, _LEGACY_PROFILE_KEYS):
            try:
                self._write_yaml(path, data)
            except OSError as exc:
                # keep the migrated in-memory copy
                logger.debug(f"Could not rewrite legacy profile {path}: {exc}")
        return data

    def resolve_profile_path(self, ref: str) -> Optional[str]:
        if not ref:
            return None
        if os.path.isabs(ref) and os.path.exists(ref):
            return ref if self._is_within_base_dir(ref) else None
        if ref.endswith((".yaml", ".yml")):
            base = os.path.splitext(os.path.basename(ref))[0]
            if not self.is_safe_profile_id(base):
                return None
            if "/" in ref or "\\" in ref:
                return None
            candidate = os.path.join(self.profile_dir, ref)
            if os.path.exists(candidate):
                return candidate
        if not self.is_safe_profile_id(ref):
            return None
        candidate = os.path.join(self.profile_dir, f"{ref}.yaml")
        if os.path.exists(candidate):
            return candidate
        for profile in self.list_profiles():
            if profile.profile_id == ref:
                return profile.path
        return None

    def save_profile(self, data: Dict[str, Any], *, allow_overwrite: bool = False) -> str:
        profile_id = str(data.get("id") or "").strip()
        if not self.is_safe_profile_id(profile_id):
            raise ValueError(f"Invalid profile id: {profile_id}")
        self.ensure_dirs()
        target = os.path.join(self.profile_dir, f"{profile_id}.yaml")
        if os.path.exists(target) and not allow_overwrite:
            raise FileExistsError(f"Profile exists: {profile_id}")
        payload = {k: v for k, v in data.items() if not str(k).startswith("_")}
        self._write_yaml(target, payload)
        return target

    def delete_profile(self, profile_id: str) -> bool:
        if not self.is_safe_profile_id(profile_id):
            raise ValueError(f"Invalid profile id: {profile_id}")
        path = os.path.join(self.profile_dir, f"{profile_id}.yaml")
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True

    def load_translation_profiles(self) -> List[TranslationProfile]:
        return [
            TranslationProfile.from_dict(self.load_profile_by_path(ref.path))
            for ref in self.list_profiles()
        ]

    def load_settings(self) -> Settings:
        """Read settings and profiles from disk; called once per submission."""
        data: Dict[str, Any] = {}
        if os.path.exists(self.settings_path):
            try:
                with open(self.settings_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise InvalidSettingsError(
                    f"Invalid settings YAML: {self.settings_path}"
                ) from exc
            if not isinstance(loaded, dict):
                raise InvalidSettingsError(f"Invalid settings YAML: {self.settings_path}")
            data = loaded
            _rename_legacy_keys(data, _LEGACY_SETTINGS_KEYS)
        return Settings.from_dict(data, self.load_translation_profiles())

    def save_settings(self, settings: Settings) -> None:
        os.makedirs(self.base_dir, exist_ok=True)
        self._write_yaml(self.settings_path, settings.to_dict())
