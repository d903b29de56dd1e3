"""変換済みファイルをユーザー指定の保存先へ書き出す。"""

from __future__ import annotations

import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from loguru import logger

from batch_image_converter.conversion_job import ConversionJob, JobState
from batch_image_converter.errors import NotReadyError, PersistError


@dataclass
class SaveAllResult:
    saved: List[Path] = field(default_factory=list)
    skipped: int = 0
    failed: List[Tuple[ConversionJob, str]] = field(default_factory=list)

    @property
    def saved_count(self) -> int:
        return len(self.saved)


def default_file_name(job: ConversionJob) -> str:
    """保存ダイアログの初期ファイル名（<stem>.<format>）"""
    return f"{job.stem}.{job.target_format_name}"


def ensure_ready(job: ConversionJob) -> Path:
    """保存可能な中間ファイルのパスを返す。未完了なら NotReadyError。"""
    location = job.output_location
    if job.state is not JobState.COMPLETED or location is None:
        raise NotReadyError(job.source_path, job.state.value)
    if not location.exists():
        raise NotReadyError(job.source_path, "output missing")
    return location


def save_one(job: ConversionJob, destination: Union[str, Path]) -> Path:
    """
    1件を保存先へコピーします（既存ファイルは上書き）

    Raises:
        NotReadyError: ジョブが COMPLETED でない場合
        PersistError: コピーに失敗した場合
    """
    source = ensure_ready(job)
    dest_path = Path(destination)
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        _copy_with_atomic_replace(source, dest_path)
    except OSError as e:
        raise PersistError(dest_path, e) from e
    logger.info(f"保存完了: {job.file_name} → {dest_path}")
    return dest_path


def save_all(jobs: Iterable[ConversionJob], destination_dir: Union[str, Path]) -> SaveAllResult:
    """COMPLETED のジョブをすべてフォルダへ保存する。未完了は数えるだけでスキップ。"""
    folder = Path(destination_dir)
    result = SaveAllResult()
    for job in jobs:
        if job.state is not JobState.COMPLETED:
            result.skipped += 1
            continue
        try:
            result.saved.append(save_one(job, folder / default_file_name(job)))
        except (NotReadyError, PersistError) as e:
            logger.error(f"保存に失敗しました: {e}")
            result.failed.append((job, str(e)))

    logger.info(
        f"一括保存: {result.saved_count}件保存, {result.skipped}件スキップ, {len(result.failed)}件失敗 → {folder}"
    )
    return result


def _copy_with_atomic_replace(source: Path, final_path: Path) -> None:
    """コピーを一時ファイル→置換で実行し、壊れた最終ファイルを防ぐ。"""
    token = f"{os.getpid()}_{time.time_ns()}_{uuid.uuid4().hex[:10]}"
    tmp_path = final_path.with_name(f".{final_path.name}.{token}.tmp")
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(str(tmp_path), str(final_path))
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.warning(f"一時保存ファイルの削除に失敗: {tmp_path}")
