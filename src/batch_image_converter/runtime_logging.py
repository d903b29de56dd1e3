"""ログ出力の設定と、実行ごとのログ/summaryファイルの管理。"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger

APP_NAME = "BatchImageConverter"
LOG_DIR_ENV = "BATCH_IMAGE_CONVERTER_LOG_DIR"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_MAX_RUNS = 50
_RUN_PREFIX = "run_"
_RUN_LOG_SUFFIX = ".log"
_RUN_SUMMARY_SUFFIX = "_summary.json"
_RUN_ID_FORMAT = "%Y%m%d_%H%M%S"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{function}</cyan>: <white>{message}</white>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {thread.name} | {module}:{function}:{line} - {message}"


@dataclass(frozen=True)
class RunLogArtifacts:
    run_id: str
    log_dir: Path
    run_log_path: Path
    summary_path: Path


def setup_logging(
    console_level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    file_level: str = "DEBUG",
) -> None:
    """ロギングの設定を行います"""
    logger.remove()  # デフォルト設定を削除
    logger.add(sys.stderr, format=CONSOLE_FORMAT, colorize=True, level=console_level)
    if log_file is not None:
        logger.add(
            str(log_file),
            format=FILE_FORMAT,
            level=file_level,
            rotation="10 MB",
            encoding="utf-8",
            enqueue=True,
        )


def get_default_log_dir(
    app_name: str = APP_NAME,
    *,
    os_name: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """
    実行ログの保存先を返します

    BATCH_IMAGE_CONVERTER_LOG_DIR が設定されていればそれを使い、
    無ければ Windows は LOCALAPPDATA、それ以外は XDG_STATE_HOME 配下。
    """
    environ = os.environ if env is None else env
    if environ.get(LOG_DIR_ENV):
        return Path(environ[LOG_DIR_ENV])

    folder = app_name.replace(" ", "")
    base_home = home or Path.home()
    if (os_name or os.name) == "nt":
        base = environ.get("LOCALAPPDATA") or environ.get("APPDATA")
        return Path(base) / folder / "logs" if base else base_home / f".{folder.lower()}" / "logs"

    state_home = environ.get("XDG_STATE_HOME")
    base_dir = Path(state_home) if state_home else base_home / ".local" / "state"
    return base_dir / folder.lower() / "logs"


def create_run_log_artifacts(
    app_name: str = APP_NAME,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    max_runs: int = DEFAULT_MAX_RUNS,
    now: Optional[datetime] = None,
) -> RunLogArtifacts:
    """今回の実行用のログ/summaryパスを決め、古い実行分を整理する。"""
    started = now or datetime.now()
    run_id = started.strftime(_RUN_ID_FORMAT)
    log_dir = get_default_log_dir(app_name)
    log_dir.mkdir(parents=True, exist_ok=True)
    prune_run_files(log_dir, retention_days=retention_days, max_runs=max_runs, now=started)
    stem = f"{_RUN_PREFIX}{run_id}"
    return RunLogArtifacts(
        run_id=run_id,
        log_dir=log_dir,
        run_log_path=log_dir / f"{stem}{_RUN_LOG_SUFFIX}",
        summary_path=log_dir / f"{stem}{_RUN_SUMMARY_SUFFIX}",
    )


def prune_run_files(
    log_dir: Path,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    max_runs: int = DEFAULT_MAX_RUNS,
    now: Optional[datetime] = None,
) -> list[Path]:
    """
    古い実行のログとsummaryをまとめて削除します

    実行日時はファイル名の run id から読み取り、保持日数を過ぎた実行と、
    新しい順に max_runs 件を超えた実行を対象にする（0以下なら件数制限なし）。
    """
    runs = _collect_runs(log_dir)
    cutoff = (now or datetime.now()) - timedelta(days=max(0, retention_days))
    newest_first = sorted(runs, reverse=True)
    kept_by_count = newest_first if max_runs <= 0 else newest_first[:max_runs]
    keep = {run_id for run_id in kept_by_count if _run_started(run_id) >= cutoff}

    removed: list[Path] = []
    for run_id in newest_first:
        if run_id in keep:
            continue
        for path in runs[run_id]:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"古い実行ログを削除できません ({path}): {e}")
                continue
            removed.append(path)

    if removed:
        logger.debug(f"古い実行ログを{len(removed)}件削除しました: {log_dir}")
    return removed


def write_run_summary(artifacts: RunLogArtifacts, payload: Mapping[str, Any]) -> Path:
    """実行 summary に run id とログファイルを添えて保存する。"""
    document = {"run_id": artifacts.run_id, "log_file": str(artifacts.run_log_path), **payload}
    target = artifacts.summary_path
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(f".{target.name}.partial")
    partial.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(partial, target)
    return target


def _collect_runs(log_dir: Path) -> Dict[str, List[Path]]:
    runs: Dict[str, List[Path]] = {}
    if not log_dir.is_dir():
        return runs
    for path in log_dir.iterdir():
        run_id = _run_id_of(path.name)
        if run_id is not None and path.is_file():
            runs.setdefault(run_id, []).append(path)
    return runs


def _run_id_of(name: str) -> Optional[str]:
    """run_<YYYYmmdd_HHMMSS>.log / _summary.json 以外は None"""
    if not name.startswith(_RUN_PREFIX):
        return None
    body = name[len(_RUN_PREFIX) :]
    for suffix in (_RUN_SUMMARY_SUFFIX, _RUN_LOG_SUFFIX):
        if body.endswith(suffix):
            run_id = body[: -len(suffix)]
            try:
                _run_started(run_id)
            except ValueError:
                return None
            return run_id
    return None


def _run_started(run_id: str) -> datetime:
    return datetime.strptime(run_id, _RUN_ID_FORMAT)
