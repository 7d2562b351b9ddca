"""Japanese holiday lookup service.

祝日判定サービス
- 初期化時にキャッシュ（または内閣府CSV）から祝日データを読み込む
- 複数の日付形式を受け付ける日付判定
- 期間内の祝日一覧（昇順）
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytz

from .error_handler import DateFormatError, InvalidRangeError, NotInitializedError
from .holiday_cache import HolidayCache
from .holiday_parser import CANONICAL_DATE_FORMAT, HolidayMap
from .logging_config import log_performance


# 先に一致した形式を採用する（01/02/2023 は MM/DD/YYYY として解釈）
SUPPORTED_DATE_FORMATS = [
    '%Y%m%d',        # 20230101
    '%Y-%m-%d',      # 2023-01-01
    '%Y/%m/%d',      # 2023/01/01
    '%Y年%m月%d日',   # 2023年1月1日
    '%m/%d/%Y',      # 01/01/2023
    '%d/%m/%Y',      # 01/01/2023 (European format)
    '%Y.%m.%d',      # 2023.01.01
]

FORMAT_LABELS = ['YYYYMMDD', 'YYYY-MM-DD', 'YYYY/MM/DD', 'YYYY年MM月DD日',
                 'MM/DD/YYYY', 'DD/MM/YYYY', 'YYYY.MM.DD']

JAPAN_TIMEZONE = pytz.timezone('Asia/Tokyo')


def parse_date_flexible(date_str: str) -> date:
    """Parse a date string with the first matching supported format.

    Raises:
        DateFormatError: no supported format matches
    """
    if isinstance(date_str, date):
        return date_str if not isinstance(date_str, datetime) else date_str.date()

    value = str(date_str).strip()
    for date_format in SUPPORTED_DATE_FORMATS:
        try:
            return datetime.strptime(value, date_format).date()
        except ValueError:
            continue

    raise DateFormatError(str(date_str), FORMAT_LABELS)


class HolidayService:
    """Point and range queries over the loaded holiday map."""

    def __init__(self, settings, cache: Optional[HolidayCache] = None):
        """Initialize the service.

        Args:
            settings: CacheSettings (see Config.get_cache_settings)
            cache: HolidayCache to load from (default: built from settings)
        """
        self.settings = settings
        self.cache = cache or HolidayCache(settings)
        self.holidays: Optional[HolidayMap] = None
        self.logger = logging.getLogger(__name__)

    @log_performance("holiday_service_initialize")
    def initialize(self):
        """Load or refresh holidays and populate the in-memory map."""
        self.holidays = self.cache.get_holidays()
        self.logger.info(f"祝日サービス初期化完了: {len(self.holidays)} 件")

    def update(self) -> HolidayMap:
        """Force a download and replace the in-memory map.

        The current map is kept if the download fails.
        """
        holidays = self.cache.refresh()
        self.holidays = holidays
        return holidays

    def _get_holidays(self) -> HolidayMap:
        if self.holidays is None:
            raise NotInitializedError()
        return self.holidays

    def get_holiday(self, date_str: str) -> Tuple[bool, Optional[str]]:
        """Check if a date is a Japanese holiday.

        Args:
            date_str: Date in any supported format

        Returns:
            (is_holiday, holiday_name)
        """
        holidays = self._get_holidays()
        key = parse_date_flexible(date_str).strftime(CANONICAL_DATE_FORMAT)

        name = holidays.get(key)
        if name is not None:
            return True, name
        return False, None

    def get_holidays_in_range(self, start_date: str, end_date: str) -> List[Tuple[str, str]]:
        """Get all holidays in a date range.

        Args:
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            List of (YYYY-MM-DD, holiday_name) tuples in ascending date order
        """
        holidays = self._get_holidays()

        start = parse_date_flexible(start_date)
        end = parse_date_flexible(end_date)
        if start > end:
            raise InvalidRangeError(str(start_date), str(end_date))

        result = []
        current = start
        while current <= end:
            key = current.strftime(CANONICAL_DATE_FORMAT)
            name = holidays.get(key)
            if name is not None:
                result.append((key, name))
            if current == date.max:
                break
            current += timedelta(days=1)

        return result

    def get_holidays_by_year(self, year: int) -> List[Tuple[str, str]]:
        """Get all holidays for a specific year."""
        return self.get_holidays_in_range(date(year, 1, 1), date(year, 12, 31))

    def get_next_holiday(self, from_date: Optional[str] = None) -> Optional[Tuple[str, str]]:
        """Get the first holiday strictly after a given date.

        Args:
            from_date: Date to search from (default: today in Japan)

        Returns:
            (YYYY-MM-DD, holiday_name) or None if the data has no later holiday
        """
        holidays = self._get_holidays()
        start = parse_date_flexible(from_date or self.get_today_date())
        key = start.strftime(CANONICAL_DATE_FORMAT)

        # 正規化済みのキーは文字列順が日付順と一致する
        later = sorted(k for k in holidays if k > key)
        if not later:
            return None
        return later[0], holidays[later[0]]

    def get_stats(self) -> Dict[str, Optional[int]]:
        """Get holiday statistics.

        Returns:
            total, years, min_year, max_year
        """
        holidays = self._get_holidays()
        years = {int(k[:4]) for k in holidays}
        return {
            'total': len(holidays),
            'years': len(years),
            'min_year': min(years) if years else None,
            'max_year': max(years) if years else None,
        }

    @staticmethod
    def get_today_date() -> str:
        """Today in Japan as YYYYMMDD."""
        return datetime.now(JAPAN_TIMEZONE).strftime('%Y%m%d')
