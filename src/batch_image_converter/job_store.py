"""変換ジョブの一覧を保持する挿入順のストア。"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Literal, Optional, Tuple, Union

from loguru import logger

from batch_image_converter.conversion_job import (
    ConversionJob,
    JobObserver,
    JobState,
    path_key,
)
from batch_image_converter.errors import ValidationError
from batch_image_converter.image_codec import ImageCodec, PillowCodec
from batch_image_converter.image_formats import (
    DEFAULT_TARGET_FORMAT,
    TargetFormat,
    is_accepted_input,
)

StoreChangeKind = Literal["added", "removed"]


@dataclass(frozen=True)
class StoreChange:
    kind: StoreChangeKind
    job: ConversionJob


StoreObserver = Callable[[StoreChange], None]


class JobStore:
    """ソースパスで重複排除されたジョブ一覧。"""

    def __init__(
        self,
        codec: Optional[ImageCodec] = None,
        default_target_format: Union[str, TargetFormat] = DEFAULT_TARGET_FORMAT,
    ) -> None:
        self.codec: ImageCodec = codec or PillowCodec()
        self.default_target_format = default_target_format
        self._jobs: Dict[str, ConversionJob] = {}
        self._lock = threading.RLock()
        self._observers: List[StoreObserver] = []
        self._job_observers: List[JobObserver] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __iter__(self) -> Iterator[ConversionJob]:
        return iter(self.all())

    def __contains__(self, path: object) -> bool:
        if isinstance(path, ConversionJob):
            path = path.source_path
        if not isinstance(path, (str, Path)):
            return False
        return self.find_by_path(path) is not None

    def add(self, path: Union[str, Path]) -> Tuple[Optional[ConversionJob], bool]:
        """
        ファイルをジョブとして追加します

        Returns:
            (job, created): 既存パスなら (既存ジョブ, False)、
            検証に失敗した場合は (None, False)
        """
        source = Path(path)
        existing = self.find_by_path(source)
        if existing is not None:
            logger.debug(f"既に追加済みのためスキップ: {source}")
            return existing, False

        try:
            self._validate(source)
        except ValidationError as e:
            logger.warning(f"追加できないファイルをスキップしました: {e}")
            return None, False

        job = ConversionJob(source, target_format=self.default_target_format)
        with self._lock:
            # 検証中に別経路で追加された場合は既存を返す
            if job.key in self._jobs:
                return self._jobs[job.key], False
            self._jobs[job.key] = job
            job_observers = list(self._job_observers)

        for observer in job_observers:
            job.subscribe(observer)
        logger.info(f"追加: {job.file_name} ({job.original_format} → {job.target_format_name})")
        self._notify(StoreChange("added", job))
        return job, True

    def add_many(self, paths: Iterable[Union[str, Path]]) -> List[ConversionJob]:
        """複数ファイルを追加し、新規に作成されたジョブだけを返す。"""
        created_jobs: List[ConversionJob] = []
        for path in paths:
            job, created = self.add(path)
            if created and job is not None:
                created_jobs.append(job)
        return created_jobs

    def remove(self, path: Union[str, Path, ConversionJob]) -> bool:
        if isinstance(path, ConversionJob):
            path = path.source_path
        with self._lock:
            job = self._jobs.pop(path_key(path), None)
            job_observers = list(self._job_observers)
        if job is None:
            return False

        for observer in job_observers:
            job.unsubscribe(observer)
        logger.info(f"削除: {job.file_name}")
        self._notify(StoreChange("removed", job))
        return True

    def clear(self) -> None:
        for job in self.all():
            self.remove(job)

    def all(self) -> List[ConversionJob]:
        with self._lock:
            return list(self._jobs.values())

    def find_by_path(self, path: Union[str, Path]) -> Optional[ConversionJob]:
        with self._lock:
            return self._jobs.get(path_key(path))

    def pending(self) -> List[ConversionJob]:
        return self._by_state(JobState.PENDING)

    def completed(self) -> List[ConversionJob]:
        return self._by_state(JobState.COMPLETED)

    def failed(self) -> List[ConversionJob]:
        return self._by_state(JobState.FAILED)

    def subscribe(self, observer: StoreObserver) -> None:
        """追加/削除の通知を購読する。"""
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: StoreObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def subscribe_jobs(self, observer: JobObserver) -> None:
        """ストア内の全ジョブ（今後追加されるものも含む）の変更を購読する。"""
        with self._lock:
            if observer in self._job_observers:
                return
            self._job_observers.append(observer)
            jobs = list(self._jobs.values())
        for job in jobs:
            job.subscribe(observer)

    def unsubscribe_jobs(self, observer: JobObserver) -> None:
        with self._lock:
            if observer not in self._job_observers:
                return
            self._job_observers.remove(observer)
            jobs = list(self._jobs.values())
        for job in jobs:
            job.unsubscribe(observer)

    def _by_state(self, state: JobState) -> List[ConversionJob]:
        return [job for job in self.all() if job.state is state]

    def _validate(self, source: Path) -> None:
        if not source.exists():
            raise ValidationError(source, "file does not exist")
        if not source.is_file():
            raise ValidationError(source, "not a regular file")
        if not is_accepted_input(source):
            raise ValidationError(source, f"unsupported extension '{source.suffix}'")
        try:
            self.codec.inspect(source)
        except ValidationError:
            raise
        except Exception as e:
            raise ValidationError(source, f"cannot be read as an image ({e})") from e

    def _notify(self, change: StoreChange) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(change)
            except Exception:
                logger.opt(exception=True).warning(f"ストア通知コールバックでエラー ({change.kind})")

