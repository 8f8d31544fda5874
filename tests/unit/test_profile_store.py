from pathlib import Path

import pytest
import yaml

import local_translate
from local_translate.registry.profile_store import InvalidSettingsError, ProfileStore
from local_translate.registry.settings import DEFAULT_PROFILE_ID, Settings

BUNDLED_PROFILES = Path(local_translate.__file__).resolve().parent / "profiles"


@pytest.mark.unit
def test_profile_store_seed_defaults(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.seed_defaults(BUNDLED_PROFILES)

    assert (tmp_path / "settings.yaml").exists()
    refs = store.list_profiles()
    assert [ref.profile_id for ref in refs] == [DEFAULT_PROFILE_ID]

    settings = store.load_settings()
    assert settings.active_profile_id == DEFAULT_PROFILE_ID
    profile = settings.profiles[0]
    assert profile.api_endpoint == "http://localhost:3002/v1/chat/completions"
    assert "{{input_text}}" in profile.user_prompt_template


@pytest.mark.unit
def test_profile_store_seed_keeps_existing_files(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.ensure_dirs()
    (tmp_path / "settings.yaml").write_text("retry_count: 7\n", encoding="utf-8")
    store.seed_defaults(BUNDLED_PROFILES)
    assert store.load_settings().retry_count == 7


@pytest.mark.unit
def test_profile_store_load_and_fallback_id(tmp_path):
    profile_dir = tmp_path / "profile"
    profile_dir.mkdir(parents=True)
    (profile_dir / "local.yaml").write_text(
        "id: ../escape\napi_endpoint: http://localhost:8080\nmodel: m\n",
        encoding="utf-8",
    )
    store = ProfileStore(str(tmp_path))
    data = store.load_profile("local")
    assert data["id"] == "local"
    assert data["name"] == "local"


@pytest.mark.unit
def test_profile_store_migrates_legacy_keys(tmp_path):
    profile_dir = tmp_path / "profile"
    profile_dir.mkdir(parents=True)
    path = profile_dir / "legacy.yaml"
    path.write_text(
        "id: legacy\napiEndpoint: http://localhost:8080/v1\napiKey: k\n"
        "targetLanguage: French\n",
        encoding="utf-8",
    )
    (tmp_path / "settings.yaml").write_text(
        "activeProfileId: legacy\nretryCount: 1\nstreamingEnabled: false\n",
        encoding="utf-8",
    )
    store = ProfileStore(str(tmp_path))

    settings = store.load_settings()
    assert settings.active_profile_id == "legacy"
    assert settings.retry_count == 1
    assert settings.streaming_enabled is False
    profile = settings.profiles[0]
    assert profile.api_endpoint == "http://localhost:8080/v1"
    assert profile.api_key == "k"
    assert profile.target_language == "French"

    rewritten = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert "apiEndpoint" not in rewritten
    assert rewritten["api_endpoint"] == "http://localhost:8080/v1"


@pytest.mark.unit
def test_profile_store_skips_unreadable_profiles(tmp_path):
    profile_dir = tmp_path / "profile"
    profile_dir.mkdir(parents=True)
    (profile_dir / "broken.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    (profile_dir / "good.yaml").write_text("id: good\n", encoding="utf-8")
    store = ProfileStore(str(tmp_path))
    assert [ref.profile_id for ref in store.list_profiles()] == ["good"]


@pytest.mark.unit
def test_profile_store_blocks_paths_outside_base(tmp_path):
    base = tmp_path / "base"
    base.mkdir()
    outside = tmp_path / "outside.yaml"
    outside.write_text("id: outside\n", encoding="utf-8")
    store = ProfileStore(str(base))

    assert store.resolve_profile_path(str(outside)) is None
    assert store.resolve_profile_path("../outside.yaml") is None
    assert store.resolve_profile_path("") is None


@pytest.mark.unit
def test_profile_store_save_and_delete(tmp_path):
    store = ProfileStore(str(tmp_path))
    path = store.save_profile({"id": "mine", "api_endpoint": "http://localhost:1", "_tmp": 1})
    assert Path(path).exists()
    assert "_tmp" not in store.load_profile("mine")

    with pytest.raises(FileExistsError):
        store.save_profile({"id": "mine"})
    store.save_profile({"id": "mine", "model": "m2"}, allow_overwrite=True)
    assert store.load_profile("mine")["model"] == "m2"

    with pytest.raises(ValueError):
        store.save_profile({"id": "../bad"})

    assert store.delete_profile("mine") is True
    assert store.delete_profile("mine") is False
    with pytest.raises(FileNotFoundError):
        store.load_profile("mine")


@pytest.mark.unit
def test_profile_store_save_settings_round_trip(tmp_path):
    store = ProfileStore(str(tmp_path))
    store.save_settings(Settings(retry_count=5, history_enabled=False))
    loaded = store.load_settings()
    assert loaded.retry_count == 5
    assert loaded.history_enabled is False
    assert loaded.profiles == []


@pytest.mark.unit
@pytest.mark.parametrize("content", ["retry_count: [1\n", "- just\n- a list\n"])
def test_profile_store_rejects_malformed_settings(tmp_path, content):
    (tmp_path / "settings.yaml").write_text(content, encoding="utf-8")
    store = ProfileStore(str(tmp_path))
    with pytest.raises(InvalidSettingsError):
        store.load_settings()
