"""
Pytest configuration and shared fixtures for the test suite.
"""

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from requests.structures import CaseInsensitiveDict

from holidays_jp import error_handler, logging_config
from holidays_jp.config import CacheSettings
from holidays_jp.refresh_policy import RefreshStrategy
from holidays_jp.remote_source import FetchResult, RemoteSourceClient

# 内閣府CSVと同じ形式（Shift_JIS、YYYY/M/D）
TEST_HOLIDAYS_CSV = """国民の祝日・休日月日,国民の祝日・休日名称
2023/1/1,元日
2023/1/2,休日
2023/1/9,成人の日
2023/2/11,建国記念の日
2023/2/23,天皇誕生日
2023/3/21,春分の日
2023/4/29,昭和の日
2023/5/3,憲法記念日
2023/5/4,みどりの日
2023/5/5,こどもの日
2023/7/17,海の日
2023/8/11,山の日
2023/9/18,敬老の日
2023/9/23,秋分の日
2023/10/9,スポーツの日
2023/11/3,文化の日
2023/11/23,勤労感謝の日
2024/1/1,元日
2024/1/8,成人の日
2024/2/11,建国記念の日
2024/2/12,休日
"""

TEST_ETAG = '"5f3a-61b0c2d9e7a40"'
TEST_LAST_MODIFIED = 'Mon, 06 Feb 2023 01:00:00 GMT'

FROZEN_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock for HolidayCache / RefreshPolicy tests."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, temp_dir):
    """Setup test environment with temporary directories."""
    # Mock home directory to use temp directory
    monkeypatch.setenv("HOME", str(temp_dir))

    # Ensure clean environment
    for env_name in ("HOLIDAYS_JP_SOURCE_URL", "HOLIDAYS_JP_CACHE_FILE", "HOLIDAYS_JP_CACHE_STRATEGY"):
        monkeypatch.delenv(env_name, raising=False)

    # グローバルなマネージャーはテストごとに作り直す
    monkeypatch.setattr(logging_config, "_global_logging_manager", None)
    monkeypatch.setattr(error_handler, "_global_error_handler", None)

    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level

    yield temp_dir

    for handler in root_logger.handlers[:]:
        if handler not in saved_handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(saved_level)


@pytest.fixture
def sample_csv_bytes():
    """Holiday CSV as served by the Cabinet Office."""
    return TEST_HOLIDAYS_CSV.encode('shift_jis')


@pytest.fixture
def cache_file(temp_dir):
    """Cache file path inside the temp directory (not created)."""
    return str(temp_dir / "data" / "holidays.json")


@pytest.fixture
def settings(cache_file):
    """Default cache settings pointing at the temp cache file."""
    return CacheSettings(cache_file=cache_file, strategy=RefreshStrategy.TIME_BASED)


@pytest.fixture
def frozen_clock():
    return FrozenClock()


@pytest.fixture
def mock_client(sample_csv_bytes):
    """RemoteSourceClient mock serving the sample CSV."""
    client = Mock(spec=RemoteSourceClient)
    client.fetch.return_value = FetchResult(
        content=sample_csv_bytes,
        etag=TEST_ETAG,
        last_modified=TEST_LAST_MODIFIED,
        status_code=200
    )
    client.probe.return_value = TEST_ETAG
    return client


def make_response(status_code=200, content=b'', headers=None, reason='OK'):
    """Build a requests.Response-like mock."""
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.content = content
    response.headers = CaseInsensitiveDict(headers or {})
    return response


@pytest.fixture
def mock_network_requests(sample_csv_bytes):
    """Mock network requests for testing.

    GET returns the sample CSV and HEAD returns only the headers.
    """
    headers = {'ETag': TEST_ETAG, 'Last-Modified': TEST_LAST_MODIFIED}

    def respond(method, url, **kwargs):
        if method == 'HEAD':
            return make_response(headers=headers)
        return make_response(content=sample_csv_bytes, headers=headers)

    with patch('requests.Session.request', side_effect=respond) as mock_request:
        yield mock_request


@pytest.fixture
def response_factory():
    """Factory for requests.Response-like mocks."""
    return make_response
