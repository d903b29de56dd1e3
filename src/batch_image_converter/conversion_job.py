"""
変換ジョブの状態機械

1ファイル → 1フォーマットの変換を表し、状態・進捗の変更を
購読者へ通知します。状態は PENDING → CONVERTING → COMPLETED/FAILED
の一方向にしか進みません。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

from loguru import logger

from batch_image_converter.errors import JobStateError, UnsupportedFormatError
from batch_image_converter.image_formats import (
    DEFAULT_TARGET_FORMAT,
    TargetFormat,
    original_format_of,
    parse_target_format,
)


class JobState(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobChange:
    """ジョブのフィールド変更通知"""

    job: "ConversionJob"
    field: str
    value: Any


JobObserver = Callable[[JobChange], None]


def path_key(path: Union[str, Path]) -> str:
    """ストア内での一意キー（大文字小文字を区別しない）"""
    return str(Path(path)).lower()


class ConversionJob:
    """1ファイル分の変換ジョブ"""

    def __init__(
        self,
        source_path: Union[str, Path],
        target_format: Union[str, TargetFormat] = DEFAULT_TARGET_FORMAT,
    ) -> None:
        self.source_path = Path(source_path)
        self.file_name = self.source_path.name
        self.stem = self.source_path.stem
        self.original_format = original_format_of(self.source_path)

        self._lock = threading.RLock()
        self._observers: List[JobObserver] = []

        self._target_format: Union[TargetFormat, str] = _coerce_format(target_format)
        self._state = JobState.PENDING
        self._progress = 0
        self._progress_text = ""
        self._output_location: Optional[Path] = None
        self._error_detail: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"ConversionJob({str(self.source_path)!r}, target={self.target_format_name!r}, "
            f"state={self._state.value}, progress={self._progress})"
        )

    @property
    def key(self) -> str:
        return path_key(self.source_path)

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def progress_text(self) -> str:
        return self._progress_text

    @property
    def output_location(self) -> Optional[Path]:
        return self._output_location

    @property
    def error_detail(self) -> Optional[str]:
        return self._error_detail

    @property
    def is_active(self) -> bool:
        return self._state is JobState.CONVERTING

    @property
    def is_terminal(self) -> bool:
        return self._state in (JobState.COMPLETED, JobState.FAILED)

    @property
    def target_format(self) -> Union[TargetFormat, str]:
        return self._target_format

    @target_format.setter
    def target_format(self, value: Union[str, TargetFormat]) -> None:
        coerced = _coerce_format(value)
        with self._lock:
            if self._state is not JobState.PENDING:
                raise JobStateError(
                    f"target format can only change while pending ({self.file_name}: {self._state.value})"
                )
            if coerced == self._target_format:
                return
            self._target_format = coerced
        self._emit([("target_format", coerced)])

    @property
    def target_format_name(self) -> str:
        fmt = self._target_format
        return fmt.value if isinstance(fmt, TargetFormat) else fmt

    @property
    def elapsed_time(self) -> Optional[timedelta]:
        """変換の経過時間"""
        if not self.started_at:
            return None
        end = self.finished_at or datetime.now()
        return end - self.started_at

    # ------------------------------------------------------------------
    # 状態遷移
    # ------------------------------------------------------------------
    def try_begin(self) -> bool:
        """PENDING → CONVERTING。既に処理中/完了ならFalseを返す。"""
        with self._lock:
            if self._state is not JobState.PENDING:
                return False
            self._state = JobState.CONVERTING
            self._progress = 0
            self._progress_text = "0%"
            self.started_at = datetime.now()
        self._emit(
            [
                ("state", JobState.CONVERTING),
                ("progress", 0),
                ("progress_text", "0%"),
            ]
        )
        return True

    def update_progress(self, value: int) -> None:
        """進捗を更新する。現在値以下の値は無視する。"""
        with self._lock:
            if self._state is not JobState.CONVERTING:
                raise JobStateError(f"progress update outside conversion ({self.file_name}: {self._state.value})")
            value = max(0, min(100, int(value)))
            if value <= self._progress:
                return
            self._progress = value
            self._progress_text = _progress_label(value)
        self._emit([("progress", value), ("progress_text", _progress_label(value))])

    def complete(self, output_location: Union[str, Path]) -> None:
        with self._lock:
            if self._state is not JobState.CONVERTING:
                raise JobStateError(f"cannot complete a {self._state.value} job ({self.file_name})")
            location = Path(output_location)
            previous_progress = self._progress
            self._output_location = location
            self._progress = 100
            self._progress_text = "Completed"
            self._state = JobState.COMPLETED
            self.finished_at = datetime.now()

        changes: List[Tuple[str, Any]] = [("output_location", location)]
        if previous_progress != 100:
            changes.append(("progress", 100))
        changes += [("progress_text", "Completed"), ("state", JobState.COMPLETED)]
        self._emit(changes)

    def fail(self, detail: str, *, cancelled: bool = False) -> None:
        text = "Cancelled" if cancelled else "Error"
        with self._lock:
            if self._state is not JobState.CONVERTING:
                raise JobStateError(f"cannot fail a {self._state.value} job ({self.file_name})")
            self._error_detail = detail or "unknown error"
            self._output_location = None
            self._progress_text = text
            self._state = JobState.FAILED
            self.finished_at = datetime.now()
        self._emit(
            [
                ("error_detail", self._error_detail),
                ("progress_text", text),
                ("state", JobState.FAILED),
            ]
        )

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------
    def subscribe(self, observer: JobObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: JobObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _emit(self, changes: List[Tuple[str, Any]]) -> None:
        with self._lock:
            observers = list(self._observers)

        # ロックの外でコールバックを実行
        for field_name, value in changes:
            change = JobChange(job=self, field=field_name, value=value)
            for observer in observers:
                try:
                    observer(change)
                except Exception:
                    logger.opt(exception=True).warning(
                        f"通知コールバックでエラーが発生しました ({self.file_name}: {field_name})"
                    )

    def to_dict(self) -> dict[str, Any]:
        """summary JSON 向けの辞書表現"""
        return {
            "source": str(self.source_path),
            "original_format": self.original_format,
            "target_format": self.target_format_name,
            "state": self._state.value,
            "progress": self._progress,
            "output": str(self._output_location) if self._output_location else None,
            "error": self._error_detail,
        }


def _coerce_format(value: Union[str, TargetFormat]) -> Union[TargetFormat, str]:
    try:
        return parse_target_format(value)
    except UnsupportedFormatError:
        raw = str(value or "").strip().lower()
        logger.warning(f"未対応の出力形式が指定されました: {raw!r}（変換時にエラーになります）")
        return raw


def _progress_label(value: int) -> str:
    return "Completed" if value >= 100 else f"{value}%"
