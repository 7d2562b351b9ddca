"""Holiday record parser.

内閣府CSVの解析
- 文字エンコーディング検出（CP932 → Shift_JIS → UTF-8 → chardet）
- CSV行を (YYYY-MM-DD, 祝日名) に変換
- 日付として解析できない行（ヘッダー行など）は読み飛ばす
"""

import csv
import io
import logging
from datetime import datetime
from typing import Dict

import chardet

from .error_handler import EncodingError, ParseError


HolidayMap = Dict[str, str]

SOURCE_DATE_FORMAT = '%Y/%m/%d'
CANONICAL_DATE_FORMAT = '%Y-%m-%d'


class HolidayRecordParser:
    """Parser for the Cabinet Office holiday CSV."""

    # 優先順序での検出（CP932はShift_JISの上位互換）
    PRIORITY_ENCODINGS = ['cp932', 'shift_jis', 'utf-8']
    CHARDET_MIN_CONFIDENCE = 0.8

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def parse(self, raw_data: bytes) -> HolidayMap:
        """Parse raw CSV bytes into a holiday map.

        Args:
            raw_data: CSV as downloaded from the source

        Returns:
            Mapping of canonical date (YYYY-MM-DD) to holiday name

        Raises:
            EncodingError: the byte stream cannot be decoded
            ParseError: the CSV structure is malformed
        """
        if not raw_data:
            return {}

        content = self.decode(raw_data)
        holidays: HolidayMap = {}
        skipped = 0

        try:
            reader = csv.reader(io.StringIO(content, newline=''), strict=True)
            for row in reader:
                if len(row) < 2:
                    continue
                try:
                    holiday_date = datetime.strptime(row[0].strip(), SOURCE_DATE_FORMAT).date()
                except ValueError:
                    skipped += 1
                    self.logger.debug(f"行 {reader.line_num} の解析をスキップ: {row[0]!r}")
                    continue
                holidays[holiday_date.strftime(CANONICAL_DATE_FORMAT)] = row[1].strip()
        except csv.Error as e:
            raise ParseError(f"Malformed holiday CSV: {e}", cause=e)

        self.logger.info(f"祝日データ解析完了: {len(holidays)} 件 (スキップ: {skipped} 行)")
        return holidays

    def decode(self, raw_data: bytes) -> str:
        """Decode the source bytes to text."""
        encoding = self.detect_encoding(raw_data)
        try:
            content = raw_data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise EncodingError(f"Failed to decode holiday data as {encoding}: {e}",
                                encoding=encoding, cause=e)
        # UTF-8 BOM
        return content.lstrip('\ufeff')

    def detect_encoding(self, raw_data: bytes) -> str:
        """エンコーディング自動検出.

        Returns:
            Detected encoding name

        Raises:
            EncodingError: エンコーディング検出失敗
        """
        for encoding in self.PRIORITY_ENCODINGS:
            try:
                raw_data.decode(encoding)
                self.logger.debug(f"エンコーディング検出: {encoding}")
                return encoding
            except UnicodeDecodeError:
                continue

        detected = chardet.detect(raw_data)
        if detected['encoding'] and detected['confidence'] > self.CHARDET_MIN_CONFIDENCE:
            self.logger.info(f"chardetによる検出: {detected['encoding']} (信頼度: {detected['confidence']})")
            return detected['encoding']

        raise EncodingError("文字エンコーディングの検出に失敗", encoding=str(detected.get('encoding')))
