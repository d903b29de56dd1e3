"""変換設定の永続化ストア。"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from loguru import logger

from batch_image_converter.batch_converter import DEFAULT_MAX_WORKERS
from batch_image_converter.errors import UnsupportedFormatError
from batch_image_converter.image_codec import DEFAULT_JPEG_QUALITY
from batch_image_converter.image_formats import DEFAULT_TARGET_FORMAT, TargetFormat, parse_target_format

SCHEMA_VERSION = 1
_SETTINGS_FILENAME = "settings.json"
_APP_DIR_NAME = "BatchImageConverter"
_APP_DIR_NAME_LC = "batch-image-converter"


def default_settings() -> dict[str, Any]:
    """設定のデフォルト値を返す。"""
    return {
        "schema_version": SCHEMA_VERSION,
        "max_workers": DEFAULT_MAX_WORKERS,
        "default_target_format": DEFAULT_TARGET_FORMAT.value,
        "jpeg_quality": DEFAULT_JPEG_QUALITY,
        "work_dir": "",
        "step_delay_ms": 0,
        "recursive_folders": False,
        "verbose_logging": False,
    }


@dataclass(frozen=True)
class ConverterSettings:
    """検証済みの設定値"""

    max_workers: int = DEFAULT_MAX_WORKERS
    default_target_format: TargetFormat = DEFAULT_TARGET_FORMAT
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    work_dir: Optional[Path] = None
    step_delay: float = 0.0
    recursive_folders: bool = False
    verbose_logging: bool = False

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ConverterSettings":
        """不正な値はデフォルトに戻して読み込む。"""
        defaults = cls()
        try:
            max_workers = max(1, int(values.get("max_workers", defaults.max_workers)))
        except (TypeError, ValueError):
            max_workers = defaults.max_workers
        try:
            target = parse_target_format(values.get("default_target_format", defaults.default_target_format))
        except UnsupportedFormatError:
            logger.warning(f"設定の出力形式が不正なためデフォルトを使用: {values.get('default_target_format')!r}")
            target = defaults.default_target_format
        try:
            quality = max(1, min(95, int(values.get("jpeg_quality", defaults.jpeg_quality))))
        except (TypeError, ValueError):
            quality = defaults.jpeg_quality
        try:
            step_delay = max(0.0, float(values.get("step_delay_ms", 0)) / 1000)
        except (TypeError, ValueError):
            step_delay = 0.0
        work_dir_text = str(values.get("work_dir") or "").strip()
        return cls(
            max_workers=max_workers,
            default_target_format=target,
            jpeg_quality=quality,
            work_dir=Path(work_dir_text) if work_dir_text else None,
            step_delay=step_delay,
            recursive_folders=bool(values.get("recursive_folders", False)),
            verbose_logging=bool(values.get("verbose_logging", False)),
        )


class SettingsStore:
    """設定のロード/保存を行う。"""

    def __init__(self, settings_path: Optional[Path] = None) -> None:
        self.settings_path = settings_path or self._build_default_settings_path()

    def load(self) -> dict[str, Any]:
        """設定を読み込む。ファイルが無い・壊れている場合はデフォルト。"""
        defaults = default_settings()
        loaded = self._read_json(self.settings_path)
        if loaded is not None:
            defaults.update(loaded)
        defaults["schema_version"] = SCHEMA_VERSION
        return defaults

    def load_settings(self) -> ConverterSettings:
        return ConverterSettings.from_mapping(self.load())

    def save(self, settings: Mapping[str, Any]) -> None:
        """設定を保存する。"""
        payload = default_settings()
        payload.update(dict(settings))
        payload["schema_version"] = SCHEMA_VERSION

        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.settings_path.with_suffix(f"{self.settings_path.suffix}.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        tmp_path.replace(self.settings_path)

    @staticmethod
    def _read_json(path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f"設定ファイルを読み込めませんでした ({path}): {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data

    @staticmethod
    def _build_default_settings_path() -> Path:
        if os.name == "nt":
            app_data = os.environ.get("APPDATA")
            if app_data:
                return Path(app_data) / _APP_DIR_NAME / _SETTINGS_FILENAME
            return Path.home() / f".{_APP_DIR_NAME_LC}" / _SETTINGS_FILENAME

        config_home = os.environ.get("XDG_CONFIG_HOME")
        if config_home:
            return Path(config_home) / _APP_DIR_NAME_LC / _SETTINGS_FILENAME
        return Path.home() / ".config" / _APP_DIR_NAME_LC / _SETTINGS_FILENAME
