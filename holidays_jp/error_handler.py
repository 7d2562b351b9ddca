"""Error handling framework module.

祝日データ取得・キャッシュ処理のエラーハンドリング
- エラー種別ごとの例外クラス（重要度・カテゴリ・回復のヒントをクラス属性で定義）
- ErrorHandler によるエラー履歴と JSONL ファイルへの記録
- with_error_handling デコレータ
"""

import functools
import json
import logging
import sys
import traceback
from collections import Counter
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union


class ErrorSeverity(Enum):
    """エラー重要度レベル"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ErrorCategory(Enum):
    """エラーカテゴリ"""
    NETWORK = "network"
    DATA = "data"
    FILE_SYSTEM = "file_system"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    ENCODING = "encoding"
    PARSING = "parsing"
    STATE = "state"
    UNKNOWN = "unknown"


SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.INFO: logging.INFO,
}


@dataclass
class ErrorContext:
    """1件のエラーの記録"""
    timestamp: datetime
    severity: ErrorSeverity
    category: ErrorCategory
    operation: str
    user_message: str
    technical_message: str
    recovery_suggestions: List[str]
    context_data: Dict[str, Any]
    stack_trace: Optional[str] = None

    def to_log_entry(self) -> Dict[str, Any]:
        entry = asdict(self)
        entry['timestamp'] = self.timestamp.isoformat()
        entry['severity'] = self.severity.value
        entry['category'] = self.category.value
        return entry


class BaseApplicationError(Exception):
    """アプリケーション基底例外クラス

    サブクラスは default_severity / default_category / default_suggestions
    を上書きする。コンストラクタ引数が指定された場合はそちらが優先。
    """

    default_severity = ErrorSeverity.MEDIUM
    default_category = ErrorCategory.UNKNOWN
    default_suggestions: Tuple[str, ...] = ()

    def __init__(
        self,
        message: str,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        operation: str = "",
        recovery_suggestions: Optional[Sequence[str]] = None,
        context_data: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.severity = severity or self.default_severity
        self.category = category or self.default_category
        self.operation = operation
        self.recovery_suggestions = list(
            self.default_suggestions if recovery_suggestions is None else recovery_suggestions
        )
        self.context_data = dict(context_data or {})
        self.cause = cause
        self.timestamp = datetime.now()

    def get_user_message(self) -> str:
        return str(self)

    def get_technical_message(self) -> str:
        """クラス名と原因例外を含む詳細メッセージ"""
        message = f"{type(self).__name__}: {self}"
        if self.cause is not None:
            message += f" (Caused by: {type(self.cause).__name__}: {self.cause})"
        return message

    def to_error_context(self) -> ErrorContext:
        return ErrorContext(
            timestamp=self.timestamp,
            severity=self.severity,
            category=self.category,
            operation=self.operation,
            user_message=self.get_user_message(),
            technical_message=self.get_technical_message(),
            recovery_suggestions=list(self.recovery_suggestions),
            context_data=dict(self.context_data),
            stack_trace=traceback.format_exc() if sys.exc_info()[0] else None
        )


# ネットワーク関連エラー
class NetworkError(BaseApplicationError):
    """祝日CSVの取得失敗（接続失敗・タイムアウト・非2xx応答）"""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.NETWORK
    default_suggestions = (
        "インターネット接続を確認してください",
        "プロキシ設定を確認してください",
        "設定ファイルの holiday_data.source_url を確認してください",
    )

    def __init__(self, message: str, url: str = "", timeout: float = 0,
                 status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("context_data", {"url": url, "timeout": timeout, "status_code": status_code})
        super().__init__(message, **kwargs)
        self.url = url
        self.status_code = status_code


class ConnectionTimeoutError(NetworkError):
    """接続タイムアウト"""

    def __init__(self, url: str, timeout: float, **kwargs):
        kwargs.setdefault("recovery_suggestions", [
            f"network.download_timeout を{timeout * 2}秒以上に増やしてください",
            "ネットワーク接続の安定性を確認してください",
        ])
        super().__init__(
            f"接続がタイムアウトしました: {url} (タイムアウト: {timeout}秒)",
            url=url, timeout=timeout, **kwargs
        )


# 解析関連エラー
class ParseError(BaseApplicationError):
    """CSV・日付の解析エラー"""

    default_category = ErrorCategory.PARSING
    default_suggestions = (
        "入力データの形式を確認してください",
        "祝日データを再取得してください",
    )


class DateFormatError(ParseError):
    """サポート外の日付形式"""

    default_suggestions = (
        "日付の形式を確認してください",
        "例: 2023-01-01, 2023/01/01, 2023年1月1日, 20230101",
    )

    def __init__(self, value: str, accepted_formats: List[str], **kwargs):
        super().__init__(
            f"Invalid date format: '{value}'. "
            f"Please use one of these formats: {', '.join(accepted_formats)}",
            context_data={"value": value, "accepted_formats": list(accepted_formats)},
            **kwargs
        )
        self.value = value


class EncodingError(ParseError):
    """文字エンコーディングエラー"""

    default_category = ErrorCategory.ENCODING
    default_suggestions = (
        "データソースの文字エンコーディングを確認してください",
        "holiday_data.source_url が内閣府の祝日CSVを指しているか確認してください",
    )

    def __init__(self, message: str, encoding: str = "", **kwargs):
        super().__init__(message, context_data={"encoding": encoding}, **kwargs)
        self.encoding = encoding


# ファイルシステム関連エラー
class FileSystemError(BaseApplicationError):
    default_category = ErrorCategory.FILE_SYSTEM
    default_suggestions = (
        "ファイルパスと権限を確認してください",
        "ディスク容量を確認してください",
    )

    def __init__(self, message: str, file_path: str = "", **kwargs):
        super().__init__(message, context_data={"file_path": file_path}, **kwargs)
        self.file_path = file_path


class CacheIOError(FileSystemError):
    """キャッシュファイルの読み書きエラー（未存在・読み取り不可・書き込み不可・破損）"""

    default_suggestions = (
        "キャッシュファイルのディレクトリに書き込み権限があるか確認してください",
        "キャッシュファイルを削除して 'holidays-jp update' を実行してください",
    )


# 設定関連エラー
class ConfigurationError(BaseApplicationError):
    default_category = ErrorCategory.CONFIGURATION
    default_suggestions = (
        "設定ファイルを確認してください",
        "HOLIDAYS_JP_* 環境変数を確認してください",
    )

    def __init__(self, message: str, config_key: str = "", **kwargs):
        super().__init__(message, context_data={"config_key": config_key}, **kwargs)
        self.config_key = config_key


# 検証関連エラー
class ValidationError(BaseApplicationError):
    """入力検証エラー"""

    default_category = ErrorCategory.VALIDATION
    default_suggestions = ("入力値を確認してください",)

    def __init__(self, message: str, field: str = "", value: Any = None, **kwargs):
        super().__init__(message, context_data={"field": field, "value": value}, **kwargs)
        self.field = field
        self.value = value


class InvalidRangeError(ValidationError):
    """開始日 > 終了日"""

    default_suggestions = ("開始日と終了日を入れ替えてください",)

    def __init__(self, start: str, end: str, **kwargs):
        super().__init__(
            f"Start date must be before or equal to end date: {start} > {end}",
            field="range", value=(start, end), **kwargs
        )


class NotInitializedError(BaseApplicationError):
    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.STATE
    default_suggestions = ("照会の前に initialize() を呼び出してください",)

    def __init__(self, message: str = "Holiday service not initialized", **kwargs):
        super().__init__(message, **kwargs)


# 標準例外 → アプリケーション例外（先に一致したものを使用）
_STANDARD_CONVERSIONS: Tuple[Tuple[Type[Exception], Callable[[Exception], BaseApplicationError]], ...] = (
    (UnicodeDecodeError, lambda e: EncodingError(str(e), encoding=e.encoding, cause=e)),
    (TimeoutError, lambda e: NetworkError(str(e), cause=e)),
    (ConnectionError, lambda e: NetworkError(str(e), cause=e)),
    (OSError, lambda e: FileSystemError(str(e), file_path=e.filename or "", cause=e)),
)


class ErrorHandler:
    """エラーの記録（ログ出力・履歴・JSONLファイル）"""

    def __init__(self, log_file: Optional[str] = None, history_limit: int = 100):
        self.logger = logging.getLogger(__name__)
        self.error_history: List[ErrorContext] = []
        self.history_limit = history_limit
        self.log_file = log_file

    def handle_error(
        self,
        error: Union[BaseApplicationError, Exception],
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """エラーを記録し ErrorContext を返す

        Args:
            error: 処理するエラー（標準例外は変換される）
            context: context_data に追加する情報
        """
        if not isinstance(error, BaseApplicationError):
            error = self._convert_to_application_error(error)

        error_context = error.to_error_context()
        error_context.context_data.update(context or {})

        self.error_history.append(error_context)
        del self.error_history[:-self.history_limit]

        self.logger.log(
            SEVERITY_LOG_LEVELS.get(error_context.severity, logging.ERROR),
            f"[{error_context.category.value.upper()}] {error_context.user_message}",
            extra={'error_context': error_context.to_log_entry(), 'operation': error_context.operation}
        )
        if self.log_file:
            self._append_to_log_file(error_context)

        return error_context

    def _convert_to_application_error(self, error: Exception) -> BaseApplicationError:
        for error_type, convert in _STANDARD_CONVERSIONS:
            if isinstance(error, error_type):
                return convert(error)
        return BaseApplicationError(str(error), cause=error)

    def _append_to_log_file(self, error_context: ErrorContext):
        log_path = Path(self.log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open('a', encoding='utf-8') as f:
                f.write(json.dumps(error_context.to_log_entry(), ensure_ascii=False, default=str) + '\n')
        except OSError as e:
            # 記録の失敗で本来のエラーを隠さない
            self.logger.error(f"Failed to write error to file: {e}")

    def get_error_statistics(self) -> Dict[str, Any]:
        """カテゴリ別・重要度別の件数と直近10件"""
        if not self.error_history:
            return {'total_errors': 0}

        return {
            'total_errors': len(self.error_history),
            'category_distribution': dict(Counter(ec.category.value for ec in self.error_history)),
            'severity_distribution': dict(Counter(ec.severity.value for ec in self.error_history)),
            'recent_errors': [
                {
                    'timestamp': ec.timestamp.isoformat(),
                    'category': ec.category.value,
                    'severity': ec.severity.value,
                    'message': ec.user_message,
                }
                for ec in self.error_history[-10:]
            ],
        }

    def clear_error_history(self):
        self.error_history.clear()
        self.logger.info("Error history cleared")


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """グローバルエラーハンドラー

    ファイルへの記録は configure_error_log() 以降のみ（setup_logging が設定する）。
    ライブラリとして使う場合はログ出力と履歴のみ。
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def configure_error_log(log_file: Optional[str]):
    """グローバルエラーハンドラーの JSONL 出力先を設定（None で無効）"""
    get_error_handler().log_file = log_file


def handle_error(
    error: Union[BaseApplicationError, Exception],
    context: Optional[Dict[str, Any]] = None
) -> ErrorContext:
    return get_error_handler().handle_error(error, context)


def with_error_handling(
    operation_name: str = "",
    category: ErrorCategory = ErrorCategory.UNKNOWN
):
    """エラーハンドリングデコレータ

    BaseApplicationError は operation を補って記録し、そのまま再送出する。
    それ以外の例外は指定カテゴリの BaseApplicationError に包んで送出する。
    """
    def decorator(func):
        operation = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except BaseApplicationError as e:
                e.operation = e.operation or operation
                handle_error(e)
                raise
            except Exception as e:
                app_error = BaseApplicationError(str(e), category=category, operation=operation, cause=e)
                handle_error(app_error)
                raise app_error from e
        return wrapper
    return decorator
