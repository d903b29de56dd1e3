"""変換先フォーマットと入力拡張子の定義。"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, Union

from batch_image_converter.errors import UnsupportedFormatError


class TargetFormat(str, Enum):
    """変換先として選択できるフォーマット。"""

    PNG = "png"
    JPEG = "jpeg"
    BMP = "bmp"
    GIF = "gif"
    TIFF = "tiff"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @property
    def pillow_format(self) -> str:
        return _PILLOW_FORMATS[self]


_PILLOW_FORMATS: Dict[TargetFormat, str] = {
    TargetFormat.PNG: "PNG",
    TargetFormat.JPEG: "JPEG",
    TargetFormat.BMP: "BMP",
    TargetFormat.GIF: "GIF",
    TargetFormat.TIFF: "TIFF",
}

# 入力として受け付ける拡張子（小文字）
ACCEPTED_INPUT_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".gif", ".tif", ".tiff")

DEFAULT_TARGET_FORMAT = TargetFormat.PNG

_FORMAT_ALIASES = {
    "jpg": TargetFormat.JPEG,
    "tif": TargetFormat.TIFF,
}


def available_target_formats() -> list[str]:
    """UIの選択肢として使うフォーマット名を返す。"""
    return [fmt.value for fmt in TargetFormat]


def parse_target_format(value: Union[str, TargetFormat]) -> TargetFormat:
    """文字列を TargetFormat に変換する。未対応なら UnsupportedFormatError。"""
    if isinstance(value, TargetFormat):
        return value

    text = str(value or "").strip().lower().lstrip(".")
    if text in _FORMAT_ALIASES:
        return _FORMAT_ALIASES[text]
    try:
        return TargetFormat(text)
    except ValueError:
        raise UnsupportedFormatError(value) from None


def is_accepted_input(path: Union[str, Path]) -> bool:
    """受け付け可能な画像拡張子かどうか。"""
    return Path(path).suffix.lower() in ACCEPTED_INPUT_EXTENSIONS


def original_format_of(path: Union[str, Path]) -> str:
    """拡張子から元フォーマット名を推定する（表示用）。"""
    return Path(path).suffix.lstrip(".").lower()
