from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from batch_image_converter.image_formats import TargetFormat
from batch_image_converter.settings_store import (
    SCHEMA_VERSION,
    ConverterSettings,
    SettingsStore,
    default_settings,
)


def test_load_returns_defaults_when_no_settings_file(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    store = SettingsStore(settings_path=settings_path)

    assert store.load() == default_settings()
    assert not settings_path.exists()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = SettingsStore(settings_path=tmp_path / "nested" / "settings.json")

    payload = default_settings()
    payload["max_workers"] = 2
    payload["default_target_format"] = "jpeg"
    payload["verbose_logging"] = True
    store.save(payload)

    loaded = store.load()
    assert loaded["max_workers"] == 2
    assert loaded["default_target_format"] == "jpeg"
    assert loaded["verbose_logging"] is True
    assert loaded["schema_version"] == SCHEMA_VERSION
    assert not list((tmp_path / "nested").glob("*.tmp"))


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(settings_path=settings_path).load() == default_settings()


def test_unknown_keys_are_preserved(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"window_geometry": "800x600"}), encoding="utf-8")

    loaded = SettingsStore(settings_path=settings_path).load()
    assert loaded["window_geometry"] == "800x600"
    assert loaded["max_workers"] == default_settings()["max_workers"]


def test_load_settings_validates_values(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(
        json.dumps(
            {
                "max_workers": "3",
                "default_target_format": "TIF",
                "jpeg_quality": 200,
                "step_delay_ms": 120,
                "work_dir": str(tmp_path / "work"),
            }
        ),
        encoding="utf-8",
    )

    settings = SettingsStore(settings_path=settings_path).load_settings()
    assert settings.max_workers == 3
    assert settings.default_target_format is TargetFormat.TIFF
    assert settings.jpeg_quality == 95
    assert settings.step_delay == 0.12
    assert settings.work_dir == tmp_path / "work"


def test_from_mapping_replaces_invalid_values() -> None:
    settings = ConverterSettings.from_mapping(
        {"max_workers": "many", "default_target_format": "webp", "step_delay_ms": "slow"}
    )
    assert settings == ConverterSettings()


@pytest.mark.skipif(os.name == "nt", reason="POSIX only")
def test_default_path_uses_xdg_config_home(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    store = SettingsStore()
    assert store.settings_path == tmp_path / "batch-image-converter" / "settings.json"
