"""Refresh policy engine.

キャッシュのメタデータと設定された戦略から「今再取得すべきか」を判定する。
判定のみを行い、ダウンロード自体は呼び出し側（HolidayCache）が行う。

戦略:
- AlwaysRefresh: 常に再取得
- NeverRefresh:  再取得しない
- TimeBased:     経過時間が max_age_hours を超えたら再取得
- EtagBased:     HEADで取得したETagが異なれば再取得。ETag無し・確認失敗時は TimeBased
- Hybrid:        max_age_hours 超過で再取得。それ以外は etag_check_interval_hours ごとに EtagBased
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, NamedTuple, Optional

from .error_handler import NetworkError


class RefreshStrategy(Enum):
    """Cache refresh strategies, ordered from least to most network traffic."""
    NEVER_REFRESH = "NeverRefresh"
    TIME_BASED = "TimeBased"
    HYBRID = "Hybrid"
    ETAG_BASED = "EtagBased"
    ALWAYS_REFRESH = "AlwaysRefresh"

    @classmethod
    def from_name(cls, name) -> 'RefreshStrategy':
        """Look up a strategy by its configuration name ("Hybrid", "TimeBased", ...)."""
        if isinstance(name, cls):
            return name
        for strategy in cls:
            if strategy.value == name:
                return strategy
        valid = ', '.join(s.value for s in cls)
        raise ValueError(f"Invalid cache strategy: {name!r} (valid: {valid})")


class EtagProbe(NamedTuple):
    """Outcome of a HEAD round-trip.

    ``completed`` is False when the request failed. A completed probe may
    still carry no ETag.
    """
    completed: bool
    etag: Optional[str] = None
    checked_at: Optional[datetime] = None


class RefreshDecision(NamedTuple):
    refresh: bool
    reason: str
    etag_checked_at: Optional[datetime] = None


def hours_between(earlier: datetime, later: datetime) -> int:
    """Whole hours from earlier to later, floored; negative spans count as 0."""
    return max(0, (later - earlier) // timedelta(hours=1))


class RefreshPolicy:
    """Decide whether cached holidays must be downloaded again."""

    def __init__(self, strategy: RefreshStrategy, max_age_hours: int,
                 etag_check_interval_hours: int, client=None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            strategy: Configured refresh strategy
            max_age_hours: Age above which the cache is stale
            etag_check_interval_hours: Minimum hours between ETag probes (Hybrid)
            client: Object with ``probe() -> Optional[str]``; required for EtagBased/Hybrid
            clock: Returns the current aware UTC time
        """
        self.strategy = strategy
        self.max_age_hours = max_age_hours
        self.etag_check_interval_hours = etag_check_interval_hours
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

        self._rules: Dict[RefreshStrategy, Callable] = {
            RefreshStrategy.ALWAYS_REFRESH: self._always_refresh,
            RefreshStrategy.NEVER_REFRESH: self._never_refresh,
            RefreshStrategy.TIME_BASED: self._time_based,
            RefreshStrategy.ETAG_BASED: self._etag_based,
            RefreshStrategy.HYBRID: self._hybrid,
        }

    @classmethod
    def from_settings(cls, settings, client=None,
                      clock: Optional[Callable[[], datetime]] = None) -> 'RefreshPolicy':
        return cls(
            strategy=settings.strategy,
            max_age_hours=settings.max_age_hours,
            etag_check_interval_hours=settings.etag_check_interval_hours,
            client=client,
            clock=clock
        )

    def should_refresh(self, metadata, now: Optional[datetime] = None) -> bool:
        """Return True if the cache described by ``metadata`` must be re-downloaded."""
        return self.evaluate(metadata, now).refresh

    def evaluate(self, metadata, now: Optional[datetime] = None) -> RefreshDecision:
        """Evaluate the configured strategy.

        ETag probe failures never propagate; they fall back to the time rule.
        """
        now = now or self.clock()
        if metadata.last_updated > now:
            # 経過時間は0時間として扱う
            self.logger.warning(
                f"キャッシュの最終更新時刻が現在時刻より未来です（時計のずれ）: "
                f"last_updated={metadata.last_updated.isoformat()}, now={now.isoformat()}"
            )
        decision = self._rules[self.strategy](metadata, now)
        self.logger.info(
            f"キャッシュ判定 [{self.strategy.value}]: "
            f"{'再取得' if decision.refresh else '有効'} ({decision.reason})"
        )
        return decision

    def _always_refresh(self, metadata, now: datetime) -> RefreshDecision:
        return RefreshDecision(True, "strategy is AlwaysRefresh")

    def _never_refresh(self, metadata, now: datetime) -> RefreshDecision:
        return RefreshDecision(False, "strategy is NeverRefresh")

    def _time_based(self, metadata, now: datetime) -> RefreshDecision:
        age_hours = hours_between(metadata.last_updated, now)
        if age_hours > self.max_age_hours:
            return RefreshDecision(True, f"cache age {age_hours}h exceeds {self.max_age_hours}h")
        return RefreshDecision(False, f"cache age {age_hours}h within {self.max_age_hours}h")

    def _etag_based(self, metadata, now: datetime) -> RefreshDecision:
        if not metadata.etag:
            fallback = self._time_based(metadata, now)
            return fallback._replace(reason=f"no cached ETag; {fallback.reason}")

        probe = self._probe_remote_etag(now)
        return self._compare_etag(metadata, probe, now)

    def _compare_etag(self, metadata, probe: EtagProbe, now: datetime) -> RefreshDecision:
        if probe.completed and probe.etag is not None:
            changed = probe.etag != metadata.etag
            reason = "remote ETag changed" if changed else "remote ETag unchanged"
            return RefreshDecision(changed, reason, probe.checked_at)

        fallback = self._time_based(metadata, now)
        why = "remote sent no ETag" if probe.completed else "ETag probe failed"
        return RefreshDecision(fallback.refresh, f"{why}; {fallback.reason}", probe.checked_at)

    def _hybrid(self, metadata, now: datetime) -> RefreshDecision:
        time_rule = self._time_based(metadata, now)
        if time_rule.refresh:
            return time_rule

        if not self._etag_check_due(metadata, now):
            return RefreshDecision(False, f"ETag check not due; {time_rule.reason}")

        return self._etag_based(metadata, now)

    def _etag_check_due(self, metadata, now: datetime) -> bool:
        if metadata.last_etag_check is None:
            return True
        return hours_between(metadata.last_etag_check, now) > self.etag_check_interval_hours

    def _probe_remote_etag(self, now: datetime) -> EtagProbe:
        if self.client is None:
            self.logger.warning("ETag確認用のクライアントが未設定のため時間ベースで判定します")
            return EtagProbe(completed=False)
        try:
            etag = self.client.probe()
        except NetworkError as e:
            self.logger.warning(f"ETag確認に失敗したため時間ベースで判定します: {e}")
            return EtagProbe(completed=False)
        return EtagProbe(completed=True, etag=etag, checked_at=now)
