"""Logging and monitoring configuration module.

ログとモニタリング
- simple / detailed / json / structured の4形式
- ~/.holidays-jp/logs 配下のローテーションログ（application / errors / performance）
- 操作単位の処理時間とメモリ使用量の計測（psutil）
- デバッグモード
"""

import functools
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional

import psutil

from .error_handler import configure_error_log


DEFAULT_LOG_DIR = Path('~') / '.holidays-jp' / 'logs'


class LogLevel(Enum):
    """ログレベル"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogFormat(Enum):
    """ログフォーマット"""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"
    STRUCTURED = "structured"


@dataclass
class PerformanceMetric:
    """1操作分の計測結果"""
    operation: str
    started_at: float
    duration: float
    rss_before_mb: float
    rss_after_mb: float
    thread_id: int
    success: bool
    error_message: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    @property
    def rss_delta_mb(self) -> float:
        return self.rss_after_mb - self.rss_before_mb

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['rss_delta_mb'] = self.rss_delta_mb
        return data


class StructuredFormatter(logging.Formatter):
    """Formatter for the four LogFormat styles.

    Cache-related ``extra`` fields (strategy, cache file, source URL) are
    carried into the json and structured outputs.
    """

    EXTRA_FIELDS = ('operation', 'strategy', 'cache_file', 'source_url',
                    'performance_metric', 'error_context')

    def __init__(self, format_type: LogFormat = LogFormat.STRUCTURED):
        super().__init__()
        self.format_type = format_type
        self._renderers: Dict[LogFormat, Callable[[Dict[str, Any]], str]] = {
            LogFormat.SIMPLE: lambda d: f"{d['timestamp']} [{d['level']}] {d['message']}",
            LogFormat.DETAILED: lambda d: (f"{d['timestamp']} [{d['level']}] "
                                           f"{d['logger']}:{d['function']}:{d['line']} - {d['message']}"),
            LogFormat.JSON: lambda d: json.dumps(d, ensure_ascii=False, default=str),
            LogFormat.STRUCTURED: lambda d: json.dumps(d, ensure_ascii=False, default=str, indent=2),
        }

    def format(self, record: logging.LogRecord) -> str:
        return self._renderers[self.format_type](self._record_to_dict(record))

    def _record_to_dict(self, record: logging.LogRecord) -> Dict[str, Any]:
        data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(timespec='milliseconds'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
            'thread_name': record.threadName,
            'process_id': record.process,
        }

        data.update({name: getattr(record, name) for name in self.EXTRA_FIELDS if hasattr(record, name)})

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, exc_tb = record.exc_info
            data['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb),
            }
        return data


class PerformanceMonitor:
    """操作ごとの処理時間・メモリを記録する（直近 max_metrics 件を保持）"""

    def __init__(self, max_metrics: int = 1000):
        self.metrics: Deque[PerformanceMetric] = deque(maxlen=max_metrics)
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)
        self._process = psutil.Process()

    def _rss_mb(self) -> float:
        return self._process.memory_info().rss / (1024 * 1024)

    @contextmanager
    def monitor_operation(self, operation_name: str, context: Optional[Dict[str, Any]] = None):
        """Record duration and RSS around the block; exceptions propagate."""
        started_at = time.time()
        start = time.perf_counter()
        rss_before = self._rss_mb()
        error_message = None

        try:
            yield operation_name
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            metric = PerformanceMetric(
                operation=operation_name,
                started_at=started_at,
                duration=time.perf_counter() - start,
                rss_before_mb=rss_before,
                rss_after_mb=self._rss_mb(),
                thread_id=threading.get_ident(),
                success=error_message is None,
                error_message=error_message,
                context=context
            )
            with self.lock:
                self.metrics.append(metric)
            self._log_metric(metric)

    def _log_metric(self, metric: PerformanceMetric):
        # 失敗した操作のみ WARNING
        self.logger.log(
            logging.DEBUG if metric.success else logging.WARNING,
            f"Operation '{metric.operation}' {'completed' if metric.success else 'failed'} "
            f"in {metric.duration:.3f}s (RSS {metric.rss_delta_mb:+.2f}MB)",
            extra={'performance_metric': metric.to_dict(), 'operation': metric.operation}
        )

    def get_metrics_summary(self, operation: Optional[str] = None,
                            time_window: Optional[timedelta] = None) -> Dict[str, Any]:
        """件数・成功率・処理時間の集計"""
        with self.lock:
            selected = list(self.metrics)

        if operation:
            selected = [m for m in selected if m.operation == operation]
        if time_window:
            cutoff = time.time() - time_window.total_seconds()
            selected = [m for m in selected if m.started_at >= cutoff]

        if not selected:
            return {'total_operations': 0}

        durations = sorted(m.duration for m in selected)
        succeeded = sum(1 for m in selected if m.success)
        return {
            'total_operations': len(selected),
            'success_count': succeeded,
            'error_count': len(selected) - succeeded,
            'success_rate': succeeded / len(selected) * 100,
            'duration_stats': {
                'min': durations[0],
                'max': durations[-1],
                'avg': sum(durations) / len(durations),
                'total': sum(durations),
            },
        }

    def clear_metrics(self, older_than: Optional[timedelta] = None):
        with self.lock:
            if older_than is None:
                self.metrics.clear()
                return
            cutoff = time.time() - older_than.total_seconds()
            kept = [m for m in self.metrics if m.started_at >= cutoff]
            self.metrics.clear()
            self.metrics.extend(kept)


class LoggingManager:
    """Root logger configuration and the shared PerformanceMonitor.

    With ``configure_root=False`` no handlers are installed; the manager
    only measures operations. This is the mode used when holidays_jp is
    imported as a library.
    """

    def __init__(self,
                 log_dir: Optional[str] = None,
                 log_level: LogLevel = LogLevel.WARNING,
                 log_format: LogFormat = LogFormat.SIMPLE,
                 enable_console: bool = True,
                 enable_file: bool = True,
                 enable_performance_monitoring: bool = True,
                 configure_root: bool = True,
                 max_log_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5):

        self.log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR.expanduser()
        self.log_level = log_level
        self.log_format = log_format
        self.enable_console = enable_console
        self.enable_file = enable_file
        self.max_log_size = max_log_size
        self.backup_count = backup_count
        self._pinned_handlers = []

        self.performance_monitor = PerformanceMonitor() if enable_performance_monitoring else None

        if configure_root:
            self._configure_root_logger()

    def _rotating_handler(self, filename: str, level: int,
                          formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _configure_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level.value)
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        formatter = StructuredFormatter(self.log_format)
        handlers = []

        if self.enable_console:
            # 標準出力はコマンドの結果用
            console = logging.StreamHandler(sys.stderr)
            console.setLevel(self.log_level.value)
            console.setFormatter(formatter)
            handlers.append(console)

        if self.enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(self._rotating_handler('application.log', self.log_level.value, formatter))

            errors = self._rotating_handler('errors.log', logging.ERROR, formatter)
            self._pinned_handlers.append(errors)
            handlers.append(errors)

            if self.performance_monitor:
                perf = self._rotating_handler('performance.log', logging.DEBUG,
                                              StructuredFormatter(LogFormat.JSON))
                perf.addFilter(lambda record: hasattr(record, 'performance_metric'))
                self._pinned_handlers.append(perf)
                handlers.append(perf)

        for handler in handlers:
            root_logger.addHandler(handler)

    def set_debug_mode(self, enabled: bool):
        """DEBUG と INFO を切り替える（errors.log / performance.log は固定）"""
        self.log_level = LogLevel.DEBUG if enabled else LogLevel.INFO

        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level.value)
        for handler in root_logger.handlers:
            if handler not in self._pinned_handlers:
                handler.setLevel(self.log_level.value)

        logging.getLogger(__name__).info(f"Debug mode {'enabled' if enabled else 'disabled'}")

    def monitor_operation(self, operation_name: str, context: Optional[Dict[str, Any]] = None):
        """PerformanceMonitor の監視コンテキスト（無効時は何もしない）"""
        if self.performance_monitor:
            return self.performance_monitor.monitor_operation(operation_name, context)
        return self._unmonitored()

    @contextmanager
    def _unmonitored(self):
        yield None

    def get_performance_summary(self, operation: Optional[str] = None,
                                time_window: Optional[timedelta] = None) -> Dict[str, Any]:
        if self.performance_monitor:
            return self.performance_monitor.get_metrics_summary(operation, time_window)
        return {'performance_monitoring': 'disabled'}

    def cleanup(self):
        if self.performance_monitor:
            self.performance_monitor.clear_metrics(older_than=timedelta(hours=1))
        for handler in logging.getLogger().handlers:
            handler.flush()


def log_performance(operation_name: Optional[str] = None,
                    context: Optional[Dict[str, Any]] = None):
    """Measure the decorated call with the global LoggingManager."""
    def decorator(func):
        name = operation_name or f"{func.__module__}.{func.__name__}"

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with get_logging_manager().monitor_operation(name, context):
                return func(*args, **kwargs)

        return wrapper
    return decorator


def log_function_call(log_args: bool = False, log_result: bool = False):
    """関数の開始・終了・失敗を DEBUG で記録するデコレータ"""
    def decorator(func):
        name = f"{func.__module__}.{func.__name__}"
        logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            started = {'operation': name}
            if log_args:
                started.update(call_args=repr(args), call_kwargs=repr(kwargs))
            logger.debug(f"Function call started: {name}", extra=started)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.debug(f"Function call failed: {name} ({type(e).__name__}: {e})",
                             extra={'operation': name})
                raise

            finished = {'operation': name}
            if log_result:
                finished['result'] = repr(result)
            logger.debug(f"Function call completed: {name}", extra=finished)
            return result

        return wrapper
    return decorator


# グローバルロギングマネージャー
_global_logging_manager: Optional[LoggingManager] = None


def get_logging_manager() -> LoggingManager:
    """グローバルロギングマネージャーを取得

    setup_logging() 前はハンドラーを追加せず、計測のみ行う。
    """
    global _global_logging_manager
    if _global_logging_manager is None:
        _global_logging_manager = LoggingManager(enable_file=False, configure_root=False)
    return _global_logging_manager


def setup_logging(log_dir: Optional[str] = None,
                  log_level: LogLevel = LogLevel.WARNING,
                  log_format: LogFormat = LogFormat.SIMPLE,
                  enable_console: bool = True,
                  enable_file: bool = True,
                  enable_performance_monitoring: bool = True,
                  debug_mode: bool = False) -> LoggingManager:
    """Configure the root logger and replace the global LoggingManager.

    With file logging enabled, handled errors are also appended to
    ``errors.jsonl`` in the same log directory.
    """
    global _global_logging_manager

    _global_logging_manager = LoggingManager(
        log_dir=log_dir,
        log_level=LogLevel.DEBUG if debug_mode else log_level,
        log_format=log_format,
        enable_console=enable_console,
        enable_file=enable_file,
        enable_performance_monitoring=enable_performance_monitoring
    )
    configure_error_log(str(_global_logging_manager.log_dir / 'errors.jsonl') if enable_file else None)
    return _global_logging_manager


def set_debug_mode(enabled: bool):
    get_logging_manager().set_debug_mode(enabled)


def cleanup_logging():
    if _global_logging_manager:
        _global_logging_manager.cleanup()
