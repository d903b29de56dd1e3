"""
変換セッション

ジョブストア・コンバーター・保存処理をまとめ、画面やCLIから呼ばれる
操作の入口になります。バッチ全体の前提条件（ジョブが無い、保存できる
ファイルが無い等）はここで確認し、notify でユーザーへ知らせます。
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Union

from loguru import logger

from batch_image_converter.batch_converter import BatchConverter, BatchResult, JobOutcome
from batch_image_converter.conversion_job import ConversionJob
from batch_image_converter.errors import NotReadyError, PersistError
from batch_image_converter.image_codec import ImageCodec, PillowCodec
from batch_image_converter.image_formats import TargetFormat
from batch_image_converter.input_paths import SplitTexts, collect_input_paths, parse_drop_paths
from batch_image_converter.job_store import JobStore
from batch_image_converter import output_sink
from batch_image_converter.settings_store import ConverterSettings

MSG_NO_JOBS = "Add images first."
MSG_NOT_CONVERTED = "File not yet converted."
MSG_SAVED = "Saved."
MSG_NOTHING_TO_SAVE = "No converted files yet."
MSG_ALL_SAVED = "All files copied to: {folder}"


@dataclass
class AddFilesResult:
    added: List[ConversionJob] = field(default_factory=list)
    duplicates: List[ConversionJob] = field(default_factory=list)
    rejected: List[Path] = field(default_factory=list)


class ConverterSession:
    """1画面（または1回のCLI実行）分の変換操作をまとめるクラス"""

    def __init__(
        self,
        settings: Optional[ConverterSettings] = None,
        *,
        codec: Optional[ImageCodec] = None,
        notify: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.settings = settings or ConverterSettings()
        self.codec: ImageCodec = codec or PillowCodec(jpeg_quality=self.settings.jpeg_quality)
        self.store = JobStore(self.codec, default_target_format=self.settings.default_target_format)
        self.converter = BatchConverter(
            self.codec,
            max_workers=self.settings.max_workers,
            work_dir=self.settings.work_dir,
            step_delay=self.settings.step_delay,
        )
        self._notify = notify or (lambda message: logger.info(message))

    @property
    def jobs(self) -> List[ConversionJob]:
        return self.store.all()

    @property
    def files_ready_text(self) -> str:
        return f"{len(self.store)} file(s) ready"

    def add_files(
        self,
        items: Iterable[Union[str, Path]],
        *,
        recursive: Optional[bool] = None,
    ) -> AddFilesResult:
        """ドロップ/選択されたファイルを追加する。"""
        use_recursive = self.settings.recursive_folders if recursive is None else recursive
        result = AddFilesResult()
        for path in collect_input_paths(items, recursive=use_recursive):
            job, created = self.store.add(path)
            if job is None:
                result.rejected.append(path)
            elif created:
                result.added.append(job)
            else:
                result.duplicates.append(job)
        logger.info(
            f"{self.files_ready_text} (追加 {len(result.added)}, 重複 {len(result.duplicates)}, "
            f"除外 {len(result.rejected)})"
        )
        return result

    def add_dropped(
        self,
        raw_data: Any,
        *,
        split_texts: Optional[SplitTexts] = None,
        recursive: Optional[bool] = None,
    ) -> AddFilesResult:
        """ドラッグ&ドロップのデータ（パス/URIの並び）から追加する。"""
        paths = parse_drop_paths(raw_data, split_texts)
        logger.debug(f"ドロップされた項目: {len(paths)}件")
        return self.add_files(paths, recursive=recursive)

    def remove(self, path: Union[str, Path]) -> bool:
        return self.store.remove(path)

    def set_target_format(self, path: Union[str, Path], target_format: Union[str, TargetFormat]) -> ConversionJob:
        job = self.store.find_by_path(path)
        if job is None:
            raise KeyError(str(path))
        job.target_format = target_format
        return job

    def convert_all(
        self,
        *,
        background: bool = False,
        on_job_finished: Optional[Callable[[ConversionJob, JobOutcome], None]] = None,
    ) -> Union[BatchResult, "Future[BatchResult]", None]:
        """未変換のジョブをすべて変換する。ジョブが無ければ通知して何もしない。"""
        if len(self.store) == 0:
            self._notify(MSG_NO_JOBS)
            return None
        if background:
            return self.converter.start(self.store, on_job_finished)
        return self.converter.run(self.store, on_job_finished)

    def cancel(self) -> None:
        self.converter.cancel()

    def save_one(self, path: Union[str, Path], destination: Union[str, Path]) -> Optional[Path]:
        job = self.store.find_by_path(path)
        if job is None:
            raise KeyError(str(path))
        try:
            saved = output_sink.save_one(job, destination)
        except NotReadyError:
            self._notify(MSG_NOT_CONVERTED)
            return None
        except PersistError as e:
            self._notify(str(e))
            return None
        self._notify(MSG_SAVED)
        return saved

    def save_all(self, destination_dir: Union[str, Path]) -> Optional[output_sink.SaveAllResult]:
        converted = [
            job
            for job in self.store.completed()
            if job.output_location is not None and job.output_location.exists()
        ]
        if not converted:
            self._notify(MSG_NOTHING_TO_SAVE)
            return None
        result = output_sink.save_all(self.store.all(), destination_dir)
        self._notify(MSG_ALL_SAVED.format(folder=Path(destination_dir)))
        return result

    def close(self) -> None:
        self.converter.shutdown(wait=True)

    def __enter__(self) -> "ConverterSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False
