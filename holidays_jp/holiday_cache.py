"""Holiday cache orchestration.

キャッシュ読み込み → 鮮度判定 → 必要なら取得・解析・保存 の一連の流れ。
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .cache_store import CacheMetadata, CacheSnapshot, CacheStore, lock_for_path
from .error_handler import CacheIOError, ErrorCategory, with_error_handling
from .holiday_parser import HolidayMap, HolidayRecordParser
from .logging_config import get_logging_manager
from .refresh_policy import RefreshPolicy
from .remote_source import RemoteSourceClient


class HolidayCache:
    """Serve holidays from the local snapshot, downloading when the policy says so."""

    def __init__(self, settings, client: Optional[RemoteSourceClient] = None,
                 store: Optional[CacheStore] = None,
                 parser: Optional[HolidayRecordParser] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            settings: CacheSettings
            client: Remote source client (default: built from settings)
            store: Cache store (default: settings.cache_file)
            parser: CSV parser
            clock: Returns the current aware UTC time
        """
        self.settings = settings
        self.client = client or RemoteSourceClient(
            settings.source_url,
            download_timeout=settings.download_timeout,
            probe_timeout=settings.probe_timeout,
            require_https=not settings.allow_insecure_http
        )
        self.store = store or CacheStore(settings.cache_file)
        self.parser = parser or HolidayRecordParser()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.policy = RefreshPolicy.from_settings(settings, client=self.client, clock=self.clock)
        self.logger = logging.getLogger(__name__)
        self.logging_manager = get_logging_manager()
        # 同じキャッシュファイルを指す全インスタンスで更新と書き込みを直列化する
        self._refresh_lock = lock_for_path(self.store.cache_file)

    def get_holidays(self) -> HolidayMap:
        """Return the holiday map, refreshing the snapshot if needed.

        Raises:
            NetworkError: a required download failed
            ParseError: the downloaded data could not be decoded
            CacheIOError: the new snapshot could not be written
        """
        with self.logging_manager.monitor_operation("get_holidays", {"strategy": self.settings.strategy.value}):
            if self.settings.force_refresh_on_startup:
                self.logger.info("force_refresh_on_startup が有効なため再取得します")
                return self.refresh()

            if not self.store.exists():
                self.logger.info("キャッシュが存在しないため取得します")
                return self.refresh()

            try:
                snapshot = self.store.load()
            except CacheIOError as e:
                self.logger.warning(f"キャッシュが読み込めないため再取得します: {e}")
                return self.refresh()

            decision = self.policy.evaluate(snapshot.metadata)
            if decision.refresh:
                return self.refresh()

            if decision.etag_checked_at is not None:
                self._record_etag_check(snapshot, decision.etag_checked_at)

            return snapshot.holidays

    @with_error_handling(operation_name="refresh_holidays", category=ErrorCategory.DATA)
    def refresh(self) -> HolidayMap:
        """Download, parse and persist a fresh snapshot.

        On failure the existing cache file is left as it was.
        """
        with self._refresh_lock:
            result = self.client.fetch()
            holidays = self.parser.parse(result.content)
            if not holidays:
                self.logger.warning("取得した祝日データが空です")

            now = self.clock()
            snapshot = CacheSnapshot(
                metadata=CacheMetadata(
                    last_updated=now,
                    etag=result.etag,
                    last_modified=result.last_modified,
                    last_etag_check=now,
                    source_url=self.settings.source_url,
                    cache_duration_hours=self.settings.max_age_hours
                ),
                holidays=holidays
            )
            self.store.save(snapshot)
            self.logger.info(f"祝日データ更新完了: {len(holidays)} 件")
            return holidays

    def _record_etag_check(self, snapshot: CacheSnapshot, checked_at: datetime):
        """Persist the probe time; the holidays and last_updated are unchanged."""
        updated = CacheSnapshot(metadata=snapshot.metadata.with_etag_check(checked_at),
                                holidays=snapshot.holidays)
        with self._refresh_lock:
            try:
                self.store.save(updated)
            except CacheIOError as e:
                # 判定結果には影響しないため記録のみ
                self.logger.warning(f"ETag確認時刻の保存に失敗: {e}")
