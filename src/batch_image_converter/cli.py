#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
画像フォーマット一括変換のコマンドラインインターフェース

指定されたファイル/フォルダの画像を変換先フォーマットへ変換し、
出力フォルダへまとめて保存します。
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Optional, Sequence

from loguru import logger
from tqdm import tqdm

from batch_image_converter.batch_converter import BatchResult
from batch_image_converter.image_formats import available_target_formats
from batch_image_converter.runtime_logging import (
    RunLogArtifacts,
    create_run_log_artifacts,
    setup_logging,
    write_run_summary,
)
from batch_image_converter.session import ConverterSession
from batch_image_converter.settings_store import ConverterSettings, SettingsStore

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_NO_INPUT = 2


def _build_arg_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI use."""
    p = argparse.ArgumentParser(
        prog="batch-image-convert",
        description="画像ファイルを指定フォーマットへ一括変換するコマンドラインツール",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("inputs", nargs="*", help="入力ファイルまたはフォルダー")
    p.add_argument(
        "--stdin",
        action="store_true",
        help="標準入力から1行1件のパス/file:// URIを読み込む",
    )
    p.add_argument("-o", "--output", required=True, help="出力フォルダー")
    p.add_argument(
        "-f",
        "--format",
        choices=available_target_formats(),
        default=None,
        help="変換先フォーマット (省略時は設定の既定値)",
    )
    p.add_argument("-w", "--workers", type=int, default=None, help="同時に変換する最大数")
    p.add_argument("-r", "--recursive", action="store_true", help="フォルダーを再帰的に探索する")
    p.add_argument("--settings", default=None, help="設定ファイルのパス")
    p.add_argument("--json", action="store_true", help="結果のsummaryをJSONで標準出力へ書く")
    p.add_argument("--no-progress", action="store_true", help="進捗バーを表示しない")
    p.add_argument("--verbose", "-v", action="count", default=0, help="詳細ログを増やす (重ね掛け可)")
    return p


def _console_level(verbose: int, settings: ConverterSettings) -> str:
    """-v の回数（無ければ設定の verbose_logging）からコンソールのログレベルを決める。"""
    if verbose >= 2:
        return "TRACE"
    if verbose == 1 or settings.verbose_logging:
        return "DEBUG"
    return "INFO"


def _install_cancel_handler(session: ConverterSession) -> Any:
    """Ctrl+C を処理中バッチのキャンセルとして扱う。メインスレッド以外では何もしない。"""
    if threading.current_thread() is not threading.main_thread():
        logger.debug("メインスレッド外のため Ctrl+C ハンドラは設定しません")
        return None
    return signal.signal(signal.SIGINT, lambda _sig, _frame: session.cancel())


def _resolve_settings(args: argparse.Namespace) -> ConverterSettings:
    store = SettingsStore(Path(args.settings)) if args.settings else SettingsStore()
    values = store.load()
    if args.format:
        values["default_target_format"] = args.format
    if args.workers is not None:
        values["max_workers"] = args.workers
    if args.recursive:
        values["recursive_folders"] = True
    return ConverterSettings.from_mapping(values)


def _build_cli_summary(
    *,
    status: str,
    output_dir: Path,
    target_format: str,
    max_workers: int,
    result: Optional[BatchResult],
    saved_count: int,
    rejected: Sequence[Path],
    jobs: Sequence[Any],
    message: str,
) -> dict[str, Any]:
    return {
        "status": status,
        "output": str(output_dir),
        "options": {"format": target_format, "workers": max_workers},
        "batch": result.to_dict() if result is not None else None,
        "saved": saved_count,
        "rejected": [str(p) for p in rejected],
        "jobs": [job.to_dict() for job in jobs],
        "message": message,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI のエントリーポイント"""
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    if not args.inputs and not args.stdin:
        parser.error("入力ファイルまたは --stdin を指定してください")

    settings = _resolve_settings(args)
    artifacts = create_run_log_artifacts()
    setup_logging(console_level=_console_level(args.verbose, settings), log_file=artifacts.run_log_path)
    output_dir = Path(args.output)

    with ConverterSession(settings, notify=lambda message: logger.info(message)) as session:
        previous_handler = _install_cancel_handler(session)
        try:
            added = session.add_files(args.inputs)
            if args.stdin:
                dropped = session.add_dropped(sys.stdin.read())
                added.rejected.extend(dropped.rejected)
            if len(session.store) == 0:
                logger.error("変換できる画像が見つかりませんでした")
                summary = _build_cli_summary(
                    status="no_input",
                    output_dir=output_dir,
                    target_format=settings.default_target_format.value,
                    max_workers=settings.max_workers,
                    result=None,
                    saved_count=0,
                    rejected=added.rejected,
                    jobs=[],
                    message="no input files",
                )
                _emit_summary(summary, artifacts, args.json)
                return EXIT_NO_INPUT

            with tqdm(
                total=len(session.store),
                desc="Converting",
                unit="img",
                disable=args.no_progress,
            ) as bar:
                result = session.convert_all(on_job_finished=lambda _job, _outcome: bar.update(1))
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)

        saved = session.save_all(output_dir)
        saved_count = saved.saved_count if saved is not None else 0

        if result is not None and result.all_succeeded:
            status, exit_code = "success", EXIT_OK
            logger.success("すべての画像を変換しました！")
        else:
            status, exit_code = "partial", EXIT_FAILURES
            for job in session.store.failed():
                logger.warning(f"{job.file_name}: {job.error_detail}")

        summary = _build_cli_summary(
            status=status,
            output_dir=output_dir,
            target_format=settings.default_target_format.value,
            max_workers=settings.max_workers,
            result=result,
            saved_count=saved_count,
            rejected=added.rejected,
            jobs=session.jobs,
            message=result.summary_text() if result is not None else "",
        )
        _emit_summary(summary, artifacts, args.json)
        return exit_code


def _emit_summary(summary: dict[str, Any], artifacts: RunLogArtifacts, as_json: bool) -> None:
    try:
        write_run_summary(artifacts, summary)
    except OSError as e:
        logger.warning(f"summaryの保存に失敗しました ({artifacts.summary_path}): {e}")
    if as_json:
        print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    sys.exit(main())
