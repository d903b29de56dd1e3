from __future__ import annotations

import errno

from PIL import UnidentifiedImageError

from batch_image_converter.errors import (
    DecodeError,
    NotReadyError,
    PersistError,
    ValidationError,
    describe_error,
)


def test_describe_error_file_errors() -> None:
    assert describe_error(FileNotFoundError("x.png")).startswith("File not found")
    assert describe_error(PermissionError("x.png")).startswith("Permission denied")


def test_describe_error_image_errors() -> None:
    assert "Not a recognised image" in describe_error(UnidentifiedImageError("x"))


def test_describe_error_disk_full() -> None:
    assert describe_error(OSError(errno.ENOSPC, "full")) == "No space left on device"


def test_describe_error_fallback_includes_type() -> None:
    assert describe_error(ValueError("bad")) == "ValueError: bad"


def test_stage_errors_include_stage_and_cause() -> None:
    err = DecodeError("a.png", FileNotFoundError("a.png"))
    assert str(err).startswith("Decode failed for a.png")
    assert "File not found" in str(err)
    assert err.cause is not None

    persist = PersistError("out.png", message="disk gone")
    assert str(persist) == "Persist failed for out.png: disk gone"


def test_validation_and_not_ready_messages() -> None:
    assert "file does not exist" in str(ValidationError("x.png", "file does not exist"))
    assert "File not yet converted" in str(NotReadyError("x.png", "pending"))
