"""
変換パイプラインの例外クラスとエラーメッセージ生成

ジョブ単位の失敗はすべて ConversionError の派生クラスで表し、
error_detail に載せる文字列は describe_error() で組み立てます。
"""

from __future__ import annotations

from typing import Any, Optional

from PIL import UnidentifiedImageError


class ConversionError(Exception):
    """変換処理に関するエラーの基底クラス"""


class ValidationError(ConversionError):
    """追加時の検証に失敗した（存在しない・画像として読めない等）"""

    def __init__(self, path: Any, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid input {path}: {reason}")


class UnsupportedFormatError(ConversionError):
    """列挙外のフォーマットが指定された"""

    def __init__(self, requested: Any) -> None:
        self.requested = requested
        super().__init__(f"Unsupported format: {requested!r}")


class _StageError(ConversionError):
    stage = "conversion"

    def __init__(self, path: Any, cause: Optional[BaseException] = None, message: str = "") -> None:
        self.path = path
        self.cause = cause
        detail = message or (describe_error(cause) if cause is not None else "unknown error")
        super().__init__(f"{self.stage.capitalize()} failed for {path}: {detail}")


class DecodeError(_StageError):
    """ソース画像のデコードに失敗した"""

    stage = "decode"


class EncodeError(_StageError):
    """変換先フォーマットへのエンコードに失敗した"""

    stage = "encode"


class PersistError(_StageError):
    """中間ファイルの書き込みに失敗した"""

    stage = "persist"


class NotReadyError(ConversionError):
    """変換が完了していないジョブを保存しようとした"""

    def __init__(self, path: Any, state: Any) -> None:
        self.path = path
        self.state = state
        super().__init__(f"File not yet converted: {path} (state={state})")


class BatchCancelledError(ConversionError):
    """バッチのキャンセルで処理中のジョブが中断された"""

    def __init__(self, path: Any) -> None:
        self.path = path
        super().__init__(f"Conversion cancelled: {path}")


class JobStateError(RuntimeError):
    """許可されていない状態遷移"""


def describe_error(error: BaseException) -> str:
    """
    例外から人が読めるエラーメッセージを生成します

    Args:
        error: 例外オブジェクト

    Returns:
        str: エラーメッセージ
    """
    error_type = type(error).__name__
    error_msg = str(error)

    if isinstance(error, ConversionError):
        return error_msg

    # ファイル関連エラー
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error_msg}"
    elif isinstance(error, PermissionError):
        return f"Permission denied: {error_msg}"
    elif isinstance(error, IsADirectoryError):
        return f"Is a directory, not a file: {error_msg}"

    # 画像関連エラー
    elif isinstance(error, UnidentifiedImageError):
        return f"Not a recognised image: {error_msg}"
    elif error_type == "DecompressionBombError":
        return f"Image is too large (possible decompression bomb): {error_msg}"

    # OS関連エラー
    elif isinstance(error, OSError):
        if error.errno == 28:  # ENOSPC
            return "No space left on device"
        elif error.errno == 36:  # ENAMETOOLONG
            return "File name too long"
        return f"System error: {error_msg}"

    elif isinstance(error, MemoryError):
        return "Out of memory while processing the image"

    return f"{error_type}: {error_msg}"
