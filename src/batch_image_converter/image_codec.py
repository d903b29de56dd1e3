"""画像のデコード/エンコードを担うコーデック。

変換パイプラインは ImageCodec プロトコルだけに依存し、
実装は Pillow を使う PillowCodec を標準とする。
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, Protocol, Union

from PIL import Image
from loguru import logger

from batch_image_converter.errors import (
    DecodeError,
    EncodeError,
    ValidationError,
)
from batch_image_converter.image_formats import TargetFormat, parse_target_format

DEFAULT_JPEG_QUALITY = 90

# Pillow が各フォーマットでそのまま書き出せるモード
_WRITABLE_MODES: Dict[TargetFormat, set[str]] = {
    TargetFormat.PNG: {"1", "L", "LA", "I;16", "P", "RGB", "RGBA"},
    TargetFormat.JPEG: {"L", "RGB", "CMYK"},
    TargetFormat.BMP: {"1", "L", "P", "RGB", "RGBA"},
    TargetFormat.GIF: {"1", "L", "P"},
    TargetFormat.TIFF: {"1", "L", "LA", "I", "I;16", "F", "P", "RGB", "RGBA", "CMYK"},
}


class ImageCodec(Protocol):
    """変換パイプラインが利用するコーデックのインターフェース"""

    def inspect(self, path: Path) -> str:
        """画像として読めるか確認し、検出したフォーマット名を返す。"""
        ...

    def decode(self, path: Path) -> Any:
        ...

    def encode(self, image: Any, target_format: Union[str, TargetFormat]) -> bytes:
        ...


class PillowCodec:
    """Pillow によるコーデック実装"""

    def __init__(self, jpeg_quality: int = DEFAULT_JPEG_QUALITY) -> None:
        self.jpeg_quality = max(1, min(95, int(jpeg_quality)))

    def inspect(self, path: Path) -> str:
        try:
            with Image.open(path) as img:
                detected = (img.format or "").lower()
                img.verify()
        except Exception as e:
            raise ValidationError(path, f"cannot be read as an image ({e})") from e
        return detected

    def decode(self, path: Path) -> Image.Image:
        """先頭フレームを読み込み、ファイルから切り離した画像を返す。"""
        try:
            with Image.open(path) as img:
                img.load()
                frame = img.copy()
        except Exception as e:
            raise DecodeError(path, e) from e
        logger.debug(f"デコード完了: {path} mode={frame.mode} size={frame.size}")
        return frame

    def encode(self, image: Image.Image, target_format: Union[str, TargetFormat]) -> bytes:
        fmt = parse_target_format(target_format)
        prepared = prepare_for_format(image, fmt)
        buffer = io.BytesIO()
        try:
            prepared.save(buffer, **self.build_save_kwargs(fmt))
        except Exception as e:
            raise EncodeError(getattr(image, "filename", "") or "<memory>", e) from e
        return buffer.getvalue()

    def build_save_kwargs(self, fmt: TargetFormat) -> Dict[str, Any]:
        """出力形式に応じたエンコーダ設定を返す。"""
        if fmt is TargetFormat.JPEG:
            return {"format": "JPEG", "quality": self.jpeg_quality}
        if fmt is TargetFormat.PNG:
            return {"format": "PNG", "optimize": True}
        return {"format": fmt.pillow_format}


def prepare_for_format(image: Image.Image, fmt: TargetFormat) -> Image.Image:
    """書き出し先で扱えないモードを変換する。"""
    mode = image.mode
    if mode in _WRITABLE_MODES[fmt]:
        return image

    if fmt is TargetFormat.PNG and mode == "I":
        # 32bit整数はPNGで保存できないため16bitグレースケールへ落とす
        return image.convert("I;16")

    if fmt is TargetFormat.GIF:
        # GIFはパレット画像として書き出す（透過は失われる）
        return image.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE)

    if fmt is TargetFormat.JPEG and mode in {"RGBA", "LA", "P", "PA"}:
        # 透過を持つ画像は白背景へ合成して保存する
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        background.alpha_composite(rgba)
        return background.convert("RGB")

    if mode in {"LA", "PA"} or "A" in image.getbands():
        if "RGBA" in _WRITABLE_MODES[fmt]:
            return image.convert("RGBA")

    return image.convert("RGB")
