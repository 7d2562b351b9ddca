"""
Unit tests for the error handling framework.
"""

import json
import pytest

from holidays_jp.logging_config import setup_logging
from holidays_jp.error_handler import (
    BaseApplicationError, CacheIOError, ConfigurationError, ConnectionTimeoutError,
    DateFormatError, EncodingError, ErrorCategory, ErrorHandler, ErrorSeverity,
    FileSystemError, InvalidRangeError, NetworkError, NotInitializedError, ParseError,
    ValidationError, configure_error_log, get_error_handler, handle_error, with_error_handling
)


class TestErrorHierarchy:
    """Error classes and their categories."""

    @pytest.mark.parametrize("error,base,category", [
        (NetworkError("down"), BaseApplicationError, ErrorCategory.NETWORK),
        (ConnectionTimeoutError("https://example.jp", 10), NetworkError, ErrorCategory.NETWORK),
        (DateFormatError("x", ["YYYY-MM-DD"]), ParseError, ErrorCategory.PARSING),
        (EncodingError("bad bytes", encoding="cp932"), ParseError, ErrorCategory.ENCODING),
        (CacheIOError("broken", file_path="/tmp/h.json"), FileSystemError, ErrorCategory.FILE_SYSTEM),
        (InvalidRangeError("2023-12-31", "2023-01-01"), ValidationError, ErrorCategory.VALIDATION),
        (ConfigurationError("bad"), BaseApplicationError, ErrorCategory.CONFIGURATION),
        (NotInitializedError(), BaseApplicationError, ErrorCategory.STATE),
    ])
    def test_hierarchy(self, error, base, category):
        assert isinstance(error, base)
        assert error.category is category
        assert error.recovery_suggestions

    def test_network_error_attributes(self):
        error = NetworkError("HTTP error", url="https://example.jp/a.csv", status_code=404)

        assert error.url == "https://example.jp/a.csv"
        assert error.status_code == 404
        assert error.severity is ErrorSeverity.HIGH
        assert error.context_data["status_code"] == 404

    def test_date_format_error_lists_formats(self):
        error = DateFormatError("tomorrow", ["YYYYMMDD", "YYYY-MM-DD"])

        assert str(error) == ("Invalid date format: 'tomorrow'. "
                              "Please use one of these formats: YYYYMMDD, YYYY-MM-DD")
        assert error.value == "tomorrow"

    def test_technical_message_includes_cause(self):
        cause = OSError("No space left on device")
        error = CacheIOError("Failed to write cache file", cause=cause)

        assert "Caused by: OSError" in error.get_technical_message()
        assert error.get_user_message() == "Failed to write cache file"

    def test_timeout_message(self):
        error = ConnectionTimeoutError("https://example.jp/a.csv", 30)
        assert "30" in str(error)
        assert error.url == "https://example.jp/a.csv"


class TestErrorHandler:
    """Test cases for ErrorHandler class."""

    def test_handle_error_records_history(self):
        handler = ErrorHandler()

        context = handler.handle_error(NetworkError("down"), {"attempt": 1})

        assert context.category is ErrorCategory.NETWORK
        assert context.context_data["attempt"] == 1
        assert handler.get_error_statistics()["total_errors"] == 1

    @pytest.mark.parametrize("error,expected", [
        (TimeoutError("timed out"), NetworkError),
        (ConnectionResetError("reset"), NetworkError),
        (PermissionError("denied"), FileSystemError),
        (ValueError("boom"), BaseApplicationError),
    ])
    def test_standard_exceptions_are_converted(self, error, expected):
        handler = ErrorHandler()
        handler.handle_error(error)
        converted = handler._convert_to_application_error(error)
        assert isinstance(converted, expected)
        assert converted.cause is error

    def test_errors_written_as_jsonl(self, temp_dir):
        log_file = temp_dir / "logs" / "errors.jsonl"
        handler = ErrorHandler(str(log_file))

        handler.handle_error(CacheIOError("broken", file_path="/data/holidays.json"))
        handler.handle_error(DateFormatError("x", ["YYYY-MM-DD"]))

        entries = [json.loads(line) for line in log_file.read_text(encoding='utf-8').splitlines()]
        assert [e["category"] for e in entries] == ["file_system", "parsing"]
        assert entries[0]["context_data"]["file_path"] == "/data/holidays.json"

    def test_statistics_and_clear(self):
        handler = ErrorHandler()
        handler.handle_error(NetworkError("a"))
        handler.handle_error(NetworkError("b"))
        handler.handle_error(ConfigurationError("c"))

        stats = handler.get_error_statistics()
        assert stats["category_distribution"] == {"network": 2, "configuration": 1}
        assert len(stats["recent_errors"]) == 3

        handler.clear_error_history()
        assert handler.get_error_statistics() == {"total_errors": 0}

    def test_global_handler_writes_no_file_by_default(self, temp_dir):
        handle_error(NetworkError("down"))

        assert get_error_handler().log_file is None
        assert get_error_handler().get_error_statistics()["total_errors"] == 1
        assert not (temp_dir / ".holidays-jp").exists()

    def test_configure_error_log(self, temp_dir):
        log_file = temp_dir / "logs" / "errors.jsonl"

        configure_error_log(str(log_file))
        handle_error(NetworkError("down"))

        assert get_error_handler().log_file == str(log_file)
        assert json.loads(log_file.read_text(encoding='utf-8'))["category"] == "network"

    def test_setup_logging_enables_error_file(self, temp_dir):
        setup_logging(log_dir=str(temp_dir / "logs"), enable_console=False)

        handle_error(ConfigurationError("bad"))

        assert (temp_dir / "logs" / "errors.jsonl").exists()

    def test_setup_logging_without_files_keeps_error_file_off(self, temp_dir):
        setup_logging(log_dir=str(temp_dir / "logs"), enable_console=False, enable_file=False)

        handle_error(ConfigurationError("bad"))

        assert get_error_handler().log_file is None
        assert not (temp_dir / "logs").exists()


class TestWithErrorHandling:
    """Test cases for the with_error_handling decorator."""

    def test_application_errors_propagate_unchanged(self):
        @with_error_handling("load_holidays", ErrorCategory.DATA)
        def load():
            raise NetworkError("down")

        with pytest.raises(NetworkError) as exc_info:
            load()

        assert exc_info.value.operation == "load_holidays"

    def test_other_errors_are_wrapped(self):
        @with_error_handling("load_holidays", ErrorCategory.DATA)
        def load():
            raise KeyError("holidays")

        with pytest.raises(BaseApplicationError) as exc_info:
            load()

        assert exc_info.value.category is ErrorCategory.DATA
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_return_value_passes_through(self):
        @with_error_handling("load_holidays")
        def load():
            return {"2023-01-01": "元日"}

        assert load() == {"2023-01-01": "元日"}
        assert load.__name__ == "load"
