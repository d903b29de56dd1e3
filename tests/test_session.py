"""
ConverterSession のテスト
"""

from __future__ import annotations

from pathlib import Path

import pytest

from batch_image_converter.conversion_job import JobState
from batch_image_converter.image_formats import TargetFormat
from batch_image_converter.session import (
    MSG_NO_JOBS,
    MSG_NOT_CONVERTED,
    MSG_NOTHING_TO_SAVE,
    MSG_SAVED,
    ConverterSession,
)
from batch_image_converter.settings_store import ConverterSettings


@pytest.fixture
def messages() -> list[str]:
    return []


@pytest.fixture
def session(temp_dir, messages):
    settings = ConverterSettings(max_workers=2, work_dir=temp_dir / "work")
    with ConverterSession(settings, notify=messages.append) as s:
        yield s


def test_add_files_reports_added_duplicates_and_rejected(session, sample_images) -> None:
    first = session.add_files([sample_images["png"], sample_images["gif"]])
    second = session.add_files([sample_images["png"], sample_images["broken"]])

    assert [job.file_name for job in first.added] == ["a.png", "anim.gif"]
    assert [job.file_name for job in second.duplicates] == ["a.png"]
    assert second.rejected == [sample_images["broken"]]
    assert session.files_ready_text == "2 file(s) ready"


def test_add_files_accepts_folders(session, sample_images, temp_dir) -> None:
    result = session.add_files([temp_dir])
    # broken.png は検証で除外される
    assert len(result.added) == 6
    assert result.rejected == [sample_images["broken"]]


def test_add_dropped_parses_payload(session, sample_images) -> None:
    payload = "\n".join(
        [
            "{" + str(sample_images["png"]) + "}",
            sample_images["gif"].as_uri(),
            '"' + str(sample_images["png"]) + '"',
            str(sample_images["broken"]),
        ]
    )

    result = session.add_dropped(payload)

    assert [job.file_name for job in result.added] == ["a.png", "anim.gif"]
    assert result.rejected == [sample_images["broken"]]
    assert session.add_dropped("").added == []


def test_convert_all_without_jobs_notifies(session, messages) -> None:
    assert session.convert_all() is None
    assert messages == [MSG_NO_JOBS]


def test_convert_then_save(session, sample_images, messages, temp_dir) -> None:
    session.add_files([sample_images["png"], sample_images["tiff"]])
    session.set_target_format(sample_images["png"], "bmp")

    result = session.convert_all()
    assert result.completed == 2

    target = session.save_one(sample_images["png"], temp_dir / "single" / "a.bmp")
    assert target.exists()
    assert messages[-1] == MSG_SAVED

    saved = session.save_all(temp_dir / "export")
    assert saved.saved_count == 2
    assert messages[-1] == f"All files copied to: {temp_dir / 'export'}"
    assert sorted(p.name for p in (temp_dir / "export").iterdir()) == ["a.bmp", "scan.png"]


def test_save_before_conversion_notifies(session, sample_images, messages, temp_dir) -> None:
    session.add_files([sample_images["png"]])

    assert session.save_one(sample_images["png"], temp_dir / "a.png") is None
    assert session.save_all(temp_dir / "export") is None

    assert messages == [MSG_NOT_CONVERTED, MSG_NOTHING_TO_SAVE]
    assert not (temp_dir / "a.png").exists()
    assert not (temp_dir / "export").exists()


def test_background_conversion_returns_future(session, sample_images) -> None:
    session.add_files([sample_images["jpeg"]])
    future = session.convert_all(background=True)
    result = future.result(timeout=10)
    assert result.completed == 1
    assert session.jobs[0].state is JobState.COMPLETED


def test_settings_flow_into_new_jobs(temp_dir, sample_images) -> None:
    settings = ConverterSettings(default_target_format=TargetFormat.GIF, work_dir=temp_dir / "work")
    with ConverterSession(settings) as s:
        s.add_files([sample_images["png"]])
        assert s.jobs[0].target_format is TargetFormat.GIF
        assert s.converter.max_workers == settings.max_workers


def test_unknown_path_raises_key_error(session, temp_dir) -> None:
    with pytest.raises(KeyError):
        session.set_target_format(temp_dir / "nothing.png", "bmp")
    assert session.remove(Path("nothing.png")) is False
