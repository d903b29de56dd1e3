from __future__ import annotations

from pathlib import Path

import pytest

from batch_image_converter.errors import UnsupportedFormatError
from batch_image_converter.image_formats import (
    TargetFormat,
    available_target_formats,
    is_accepted_input,
    original_format_of,
    parse_target_format,
)


def test_available_target_formats_is_closed_set() -> None:
    assert available_target_formats() == ["png", "jpeg", "bmp", "gif", "tiff"]


def test_parse_target_format_accepts_aliases_and_case() -> None:
    assert parse_target_format("PNG") is TargetFormat.PNG
    assert parse_target_format("jpg") is TargetFormat.JPEG
    assert parse_target_format(".tif") is TargetFormat.TIFF
    assert parse_target_format(TargetFormat.GIF) is TargetFormat.GIF


@pytest.mark.parametrize("value", ["webp", "avif", "", None])
def test_parse_target_format_rejects_unknown(value) -> None:
    with pytest.raises(UnsupportedFormatError) as exc_info:
        parse_target_format(value)
    assert "Unsupported format" in str(exc_info.value)


def test_is_accepted_input_is_case_insensitive() -> None:
    assert is_accepted_input(Path("a.PNG"))
    assert is_accepted_input("b.Jpeg")
    assert is_accepted_input("c.TIF")
    assert not is_accepted_input("d.webp")
    assert not is_accepted_input("e")


def test_original_format_of_uses_extension() -> None:
    assert original_format_of("dir/Photo.JPG") == "jpg"
    assert original_format_of("noext") == ""


def test_target_format_extension_and_pillow_name() -> None:
    assert TargetFormat.JPEG.extension == ".jpeg"
    assert TargetFormat.TIFF.pillow_format == "TIFF"
