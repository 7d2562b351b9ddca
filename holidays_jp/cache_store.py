"""Cache store for holiday snapshots.

メタデータと祝日マップを1つのJSON文書として保存・読み込みする。
書き込みは一時ファイル経由の置き換えで、途中までの書き込みが残らない。
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .error_handler import CacheIOError, FileSystemError, ValidationError
from .holiday_parser import HolidayMap
from .security import SecureFileHandler


# キャッシュファイルの実パスごとに1つのロック（プロセス内で共有）
_path_locks: Dict[str, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def lock_for_path(cache_file: str) -> threading.RLock:
    """Return the process-wide lock for ``cache_file``.

    Every CacheStore and HolidayCache that points at the same file gets the
    same re-entrant lock, whatever spelling of the path was used.
    """
    key = os.path.realpath(os.path.expanduser(str(cache_file)))
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.RLock())


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    # タイムゾーン無しの値はUTCとみなす
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CacheMetadata:
    """Metadata stored alongside the cached holidays.

    ``last_updated`` is the time of the last successful full download.
    ``last_etag_check`` is the time of the last completed ETag probe.
    """
    last_updated: datetime
    source_url: str
    cache_duration_hours: int
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    last_etag_check: Optional[datetime] = None

    def with_etag_check(self, checked_at: datetime) -> 'CacheMetadata':
        """Copy with a new probe timestamp; last_updated is kept."""
        return replace(self, last_etag_check=checked_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_updated': _format_timestamp(self.last_updated),
            'etag': self.etag,
            'last_modified': self.last_modified,
            'last_etag_check': _format_timestamp(self.last_etag_check),
            'source_url': self.source_url,
            'cache_duration_hours': self.cache_duration_hours,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheMetadata':
        last_updated = _parse_timestamp(data['last_updated'])
        if last_updated is None:
            raise ValueError("metadata.last_updated is required")
        return cls(
            last_updated=last_updated,
            etag=data.get('etag'),
            last_modified=data.get('last_modified'),
            last_etag_check=_parse_timestamp(data.get('last_etag_check')),
            source_url=data.get('source_url', ''),
            cache_duration_hours=int(data.get('cache_duration_hours', 0)),
        )


@dataclass
class CacheSnapshot:
    """The unit of persistence: metadata plus the full holiday map."""
    metadata: CacheMetadata
    holidays: HolidayMap = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metadata': self.metadata.to_dict(),
            'holidays': dict(sorted(self.holidays.items())),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheSnapshot':
        holidays = data['holidays']
        if not isinstance(holidays, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in holidays.items()):
            raise ValueError("holidays must be a mapping of date string to name")
        return cls(metadata=CacheMetadata.from_dict(data['metadata']), holidays=dict(holidays))


class CacheStore:
    """JSON file store for a single CacheSnapshot."""

    def __init__(self, cache_file: str):
        self.cache_file = str(Path(cache_file).expanduser())
        self.lock = lock_for_path(self.cache_file)
        self.logger = logging.getLogger(__name__)

    def exists(self) -> bool:
        return os.path.isfile(self.cache_file)

    def load(self) -> CacheSnapshot:
        """Read the snapshot.

        Raises:
            CacheIOError: the file is missing, unreadable or not a valid snapshot
        """
        if not self.exists():
            raise CacheIOError(f"Cache file not found: {self.cache_file}", file_path=self.cache_file)

        try:
            content = SecureFileHandler.read_secure_file(self.cache_file)
        except (ValidationError, FileSystemError) as e:
            raise CacheIOError(f"Failed to read cache file: {e}", file_path=self.cache_file, cause=e)

        try:
            snapshot = CacheSnapshot.from_dict(json.loads(content))
        except (ValueError, KeyError, TypeError) as e:
            # json.JSONDecodeError は ValueError のサブクラス
            raise CacheIOError(f"Failed to parse cache file: {e}", file_path=self.cache_file, cause=e)

        self.logger.info(f"キャッシュから読み込み完了: {len(snapshot.holidays)} 件")
        return snapshot

    def save(self, snapshot: CacheSnapshot) -> None:
        """Write the snapshot atomically, creating parent directories.

        Raises:
            CacheIOError: the file cannot be written
        """
        content = json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)
        try:
            with self.lock:
                written = SecureFileHandler.write_secure_file(
                    self.cache_file,
                    content,
                    permissions=SecureFileHandler.READABLE_FILE_PERMISSIONS
                )
        except (ValidationError, FileSystemError) as e:
            raise CacheIOError(f"Failed to write cache file: {e}", file_path=self.cache_file, cause=e)

        self.logger.info(f"キャッシュ保存完了: {written} ({len(snapshot.holidays)} 件)")

    def delete(self) -> bool:
        """Remove the cache file. Returns True if a file was removed."""
        try:
            with self.lock:
                os.remove(self.cache_file)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheIOError(f"Failed to delete cache file: {e}", file_path=self.cache_file, cause=e)
        self.logger.info(f"キャッシュを削除しました: {self.cache_file}")
        return True
