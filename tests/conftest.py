#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
pytest設定ファイル
共通のフィクスチャやテスト設定を定義
"""

import shutil
import sys
import tempfile
import threading
import time
from pathlib import Path

import pytest
from loguru import logger
from PIL import Image

from batch_image_converter.image_codec import PillowCodec


@pytest.fixture
def temp_dir():
    """一時ディレクトリを作成・削除するフィクスチャ"""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sample_images(temp_dir):
    """様々なフォーマットのサンプル画像を作成するフィクスチャ"""
    images = {}

    png_path = temp_dir / "a.png"
    Image.new("RGB", (64, 48), color=(255, 0, 0)).save(png_path, "PNG")
    images["png"] = png_path

    rgba_path = temp_dir / "alpha.png"
    Image.new("RGBA", (32, 32), color=(0, 255, 0, 128)).save(rgba_path, "PNG")
    images["rgba"] = rgba_path

    jpeg_path = temp_dir / "photo.jpg"
    Image.new("RGB", (80, 60), color=(0, 0, 255)).save(jpeg_path, "JPEG", quality=95)
    images["jpeg"] = jpeg_path

    bmp_path = temp_dir / "icon.bmp"
    Image.new("RGB", (16, 16), color=(10, 20, 30)).save(bmp_path, "BMP")
    images["bmp"] = bmp_path

    gif_path = temp_dir / "anim.gif"
    Image.new("P", (40, 30), color=0).save(gif_path, "GIF")
    images["gif"] = gif_path

    tiff_path = temp_dir / "scan.tiff"
    Image.new("L", (20, 20), color=128).save(tiff_path, "TIFF")
    images["tiff"] = tiff_path

    # 拡張子は画像だが中身は壊れている
    broken_path = temp_dir / "broken.png"
    broken_path.write_bytes(b"not really a png")
    images["broken"] = broken_path

    return images


@pytest.fixture(autouse=True)
def _reset_loguru():
    """テストごとにloguruのsinkを初期状態へ戻す"""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


@pytest.fixture
def log_messages():
    """loguruの出力を集めるフィクスチャ"""
    messages = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    try:
        logger.remove(sink_id)
    except ValueError:
        pass


class SlowCodec(PillowCodec):
    """デコード中の同時実行数を記録するコーデック"""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.decode_calls = 0
        self._lock = threading.Lock()

    def decode(self, path):
        with self._lock:
            self.active += 1
            self.decode_calls += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            return super().decode(path)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def slow_codec():
    return SlowCodec()


@pytest.fixture
def many_pngs(temp_dir):
    """同じ内容のPNGを複数作成する"""
    paths = []
    for index in range(10):
        path = temp_dir / f"img_{index:02d}.png"
        Image.new("RGB", (8, 8), color=(index * 20, 0, 0)).save(path, "PNG")
        paths.append(path)
    return paths
