"""
一括変換処理モジュール

ジョブの一覧を固定サイズのワーカープールで変換します。
1件の失敗はそのジョブだけを FAILED にし、バッチ全体は止めません。
"""

from __future__ import annotations

import os
import tempfile
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Literal, Optional, Union

from loguru import logger

from batch_image_converter.conversion_job import ConversionJob, JobState
from batch_image_converter.errors import (
    BatchCancelledError,
    ConversionError,
    DecodeError,
    EncodeError,
    PersistError,
    describe_error,
)
from batch_image_converter.image_codec import ImageCodec, PillowCodec
from batch_image_converter.image_formats import TargetFormat, parse_target_format

DEFAULT_MAX_WORKERS = 4
OUTPUT_PREFIX = "imgconv_"

# 進捗チェックポイント
PROGRESS_LOAD_STARTED = 10
PROGRESS_DECODED = 50
PROGRESS_ENCODED = 80

JobOutcome = Literal["completed", "failed", "cancelled", "interrupted", "skipped"]


@dataclass
class BatchResult:
    """バッチ処理の結果"""

    submitted: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    elapsed_seconds: float = 0.0
    failed_jobs: List[ConversionJob] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def success_rate(self) -> float:
        """成功率（%）"""
        if self.processed == 0:
            return 0.0
        return self.completed / self.processed * 100

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0 and self.cancelled == 0

    def summary_text(self) -> str:
        parts = [
            f"completed: {self.completed}/{self.submitted}",
            f"failed: {self.failed}",
            f"skipped: {self.skipped}",
        ]
        if self.cancelled:
            parts.append(f"cancelled: {self.cancelled}")
        parts.append(f"elapsed: {self.elapsed_seconds:.1f}s")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "failed_files": [str(job.source_path) for job in self.failed_jobs],
        }


class BatchConverter:
    """ジョブを並列数上限つきで変換するコンバーター"""

    def __init__(
        self,
        codec: Optional[ImageCodec] = None,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        work_dir: Optional[Union[str, Path]] = None,
        step_delay: float = 0.0,
    ) -> None:
        """
        Args:
            codec: デコード/エンコードに使うコーデック
            max_workers: 同時に変換するジョブ数の上限
            work_dir: 変換結果の中間ファイルを置くディレクトリ
            step_delay: 進捗表示用にチェックポイントで待機する秒数
        """
        if int(max_workers) < 1:
            raise ValueError(f"max_workers must be >= 1 (got {max_workers})")
        self.codec: ImageCodec = codec or PillowCodec()
        self.max_workers = int(max_workers)
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir())
        self.step_delay = max(0.0, float(step_delay))

        self._state_lock = threading.Lock()
        # 受け付け済み（実行中・待機中）のバッチごとのキャンセルフラグ
        self._batch_events: List[threading.Event] = []
        self._coordinator: Optional[ThreadPoolExecutor] = None

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return bool(self._batch_events)

    @property
    def cancel_requested(self) -> bool:
        with self._state_lock:
            return any(event.is_set() for event in self._batch_events)

    def cancel(self) -> None:
        """
        受け付け済みのバッチをすべてキャンセルします

        未開始のジョブは開始せず、処理中のジョブは次のチェックポイントで中断する。
        start() で待機中のバッチも対象で、cancel() 後に受け付けたバッチは影響を受けない。
        """
        with self._state_lock:
            events = [event for event in self._batch_events if not event.is_set()]
        if events:
            logger.warning(f"バッチのキャンセルが要求されました ({len(events)}件)")
        for event in events:
            event.set()

    def run(
        self,
        jobs: Iterable[ConversionJob],
        on_job_finished: Optional[Callable[[ConversionJob, JobOutcome], None]] = None,
    ) -> BatchResult:
        """
        未変換のジョブをすべて変換し、全ジョブが終了するまで待ちます

        Args:
            jobs: 変換対象（JobStore をそのまま渡せる）
            on_job_finished: 1件終わるごとに呼ばれるコールバック

        Returns:
            BatchResult: 集計結果
        """
        snapshot = list(jobs)
        return self._run_batch(snapshot, self._register_batch(), on_job_finished)

    def start(
        self,
        jobs: Iterable[ConversionJob],
        on_job_finished: Optional[Callable[[ConversionJob, JobOutcome], None]] = None,
    ) -> "Future[BatchResult]":
        """バックグラウンドで run() を実行し、呼び出し元をブロックしない。"""
        snapshot = list(jobs)
        # 待機中でも cancel() の対象になるよう、投入前に登録する
        cancel_event = self._register_batch()
        with self._state_lock:
            if self._coordinator is None:
                self._coordinator = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch")
            coordinator = self._coordinator
        try:
            return coordinator.submit(self._run_batch, snapshot, cancel_event, on_job_finished)
        except RuntimeError:
            self._unregister_batch(cancel_event)
            raise

    def shutdown(self, wait: bool = True) -> None:
        with self._state_lock:
            coordinator, self._coordinator = self._coordinator, None
        if coordinator is not None:
            coordinator.shutdown(wait=wait)

    def _register_batch(self) -> threading.Event:
        cancel_event = threading.Event()
        with self._state_lock:
            self._batch_events.append(cancel_event)
        return cancel_event

    def _unregister_batch(self, cancel_event: threading.Event) -> None:
        with self._state_lock:
            if cancel_event in self._batch_events:
                self._batch_events.remove(cancel_event)

    def _run_batch(
        self,
        snapshot: List[ConversionJob],
        cancel_event: threading.Event,
        on_job_finished: Optional[Callable[[ConversionJob, JobOutcome], None]],
    ) -> BatchResult:
        start_time = time.perf_counter()
        result = BatchResult()
        try:
            candidates = [job for job in snapshot if job.state is JobState.PENDING]
            result.skipped = len(snapshot) - len(candidates)
            result.submitted = len(candidates)
            logger.info(
                f"バッチ開始: {len(candidates)}件 (スキップ {result.skipped}件, 並列数 {self.max_workers})"
            )

            if candidates:
                self.work_dir.mkdir(parents=True, exist_ok=True)
                with ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="convert"
                ) as executor:
                    futures = {
                        executor.submit(self._convert_job, job, cancel_event): job for job in candidates
                    }
                    for future in as_completed(futures):
                        job = futures[future]
                        outcome = future.result()
                        self._tally(result, job, outcome)
                        if on_job_finished is not None:
                            try:
                                on_job_finished(job, outcome)
                            except Exception:
                                logger.opt(exception=True).warning(
                                    f"完了コールバックでエラーが発生しました ({job.file_name})"
                                )
        finally:
            result.elapsed_seconds = time.perf_counter() - start_time
            self._unregister_batch(cancel_event)

        if result.failed or result.cancelled:
            logger.warning(f"バッチ終了: {result.summary_text()}")
        else:
            logger.success(f"バッチ終了: {result.summary_text()}")
        return result

    # ------------------------------------------------------------------
    # 1ジョブ分の処理
    # ------------------------------------------------------------------
    def _convert_job(self, job: ConversionJob, cancel_event: threading.Event) -> JobOutcome:
        if cancel_event.is_set():
            return "cancelled"
        if not job.try_begin():
            logger.debug(f"処理中または完了済みのためスキップ: {job.file_name}")
            return "skipped"

        try:
            self._checkpoint(job, PROGRESS_LOAD_STARTED, cancel_event, pause=True)
            image = self._decode(job)
            self._checkpoint(job, PROGRESS_DECODED, cancel_event)

            target_format = parse_target_format(job.target_format)
            data = self._encode(job, image, target_format)
            self._checkpoint(job, PROGRESS_ENCODED, cancel_event, pause=True)

            output_path = self._persist(job, data, target_format)
            job.complete(output_path)
        except BatchCancelledError as e:
            job.fail(str(e), cancelled=True)
            logger.warning(f"中断: {job.file_name}")
            return "interrupted"
        except ConversionError as e:
            job.fail(str(e))
            logger.error(f"❌ {job.file_name}: {e}")
            return "failed"
        except Exception as e:
            job.fail(describe_error(e))
            logger.opt(exception=True).error(f"❌ {job.file_name}: 予期せぬエラー: {e}")
            return "failed"

        logger.info(f"✔ {job.file_name} → {job.output_location}")
        return "completed"

    def _checkpoint(
        self, job: ConversionJob, progress: int, cancel_event: threading.Event, pause: bool = False
    ) -> None:
        if cancel_event.is_set():
            raise BatchCancelledError(job.source_path)
        job.update_progress(progress)
        if pause and self.step_delay > 0:
            if cancel_event.wait(self.step_delay):
                raise BatchCancelledError(job.source_path)

    def _decode(self, job: ConversionJob) -> Any:
        try:
            return self.codec.decode(job.source_path)
        except ConversionError:
            raise
        except Exception as e:
            raise DecodeError(job.source_path, e) from e

    def _encode(self, job: ConversionJob, image: Any, target_format: TargetFormat) -> bytes:
        try:
            data = self.codec.encode(image, target_format)
        except ConversionError:
            raise
        except Exception as e:
            raise EncodeError(job.source_path, e) from e
        if not data:
            raise EncodeError(job.source_path, message="encoder produced no data")
        return data

    def _persist(self, job: ConversionJob, data: bytes, target_format: TargetFormat) -> Path:
        """中間ファイルを一時ファイル→置換で書き出す。"""
        final_path = self.work_dir / f"{OUTPUT_PREFIX}{uuid.uuid4().hex}{target_format.extension}"
        tmp_path = final_path.with_name(f".{final_path.name}.tmp")
        try:
            with tmp_path.open("wb") as fh:
                fh.write(data)
            os.replace(str(tmp_path), str(final_path))
        except OSError as e:
            raise PersistError(job.source_path, e) from e
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.warning(f"一時ファイルの削除に失敗: {tmp_path}")
        return final_path

    @staticmethod
    def _tally(result: BatchResult, job: ConversionJob, outcome: JobOutcome) -> None:
        if outcome == "completed":
            result.completed += 1
        elif outcome == "failed":
            result.failed += 1
            result.failed_jobs.append(job)
        elif outcome in ("cancelled", "interrupted"):
            result.cancelled += 1
        else:
            result.skipped += 1
            result.submitted -= 1
