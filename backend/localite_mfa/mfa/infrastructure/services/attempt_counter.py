"""
Attempt Counter

Short-window and daily verification attempt counters kept in the key-value
store. Reads fail open, writes fail closed.
"""

from localite_mfa.core.config import (
    AttemptLimitConfig,
    BackupCodeConfig,
    SMSConfig,
    TOTPConfig,
)
from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.enums import CounterWindow, MFAMethod
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore
from localite_mfa.mfa.domain.value_objects import AttemptCounts
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder

logger = get_logger(__name__)


class AttemptCounter:
    """Per-user, per-method attempt limiting."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        clock: IClock,
        limits: AttemptLimitConfig,
        totp_config: TOTPConfig,
        sms_config: SMSConfig,
        backup_config: BackupCodeConfig,
    ):
        self._store = store
        self._keys = keys
        self._clock = clock
        self._limits = limits
        self._rules = {
            MFAMethod.TOTP: {
                "max": totp_config.max_attempts,
                "daily": limits.default_daily_limit,
            },
            MFAMethod.SMS: {
                "max": sms_config.max_attempts,
                "daily": limits.sms_daily_limit,
            },
            MFAMethod.BACKUP_CODE: {
                "max": backup_config.usage_limit,
                "daily": limits.default_daily_limit,
            },
        }

    def max_attempts(self, method: MFAMethod) -> int:
        return self._rules[method]["max"]

    def daily_limit(self, method: MFAMethod) -> int:
        return self._rules[method]["daily"]

    def _window_key(self, uid: str, method: MFAMethod, window: CounterWindow) -> str:
        if window == CounterWindow.SHORT:
            return self._keys.attempts(uid, method)
        return self._keys.daily_attempts(uid, method, self._clock.now())

    def _window_ttl(self, window: CounterWindow) -> int:
        if window == CounterWindow.SHORT:
            return self._limits.short_window_ttl
        return self._limits.daily_window_ttl

    async def increment(self, uid: str, method: MFAMethod, window: CounterWindow) -> int:
        """Increment one window and refresh its TTL atomically.

        Raises:
            StoreUnavailableError: The attempt could not be counted
        """
        return await self._store.increment_with_ttl(
            self._window_key(uid, method, window), self._window_ttl(window)
        )

    async def increment_all(self, uid: str, method: MFAMethod) -> AttemptCounts:
        """Count one attempt in both windows."""
        short = await self.increment(uid, method, CounterWindow.SHORT)
        daily = await self.increment(uid, method, CounterWindow.DAILY)
        logger.debug(
            "Attempt counted", uid=uid, method=method.value, short=short, daily=daily
        )
        return AttemptCounts(short=short, daily=daily)

    async def get_counts(self, uid: str, method: MFAMethod) -> AttemptCounts:
        """Current counts, zero for anything unreadable."""
        counts = {}
        for window in CounterWindow:
            try:
                raw = await self._store.get(self._window_key(uid, method, window))
                counts[window] = int(raw) if raw else 0
            except (StoreUnavailableError, ValueError) as e:
                logger.warning(
                    "Attempt counter unreadable, assuming zero",
                    uid=uid,
                    method=method.value,
                    window=window.value,
                    error=str(e),
                )
                counts[window] = 0
        return AttemptCounts(
            short=counts[CounterWindow.SHORT], daily=counts[CounterWindow.DAILY]
        )

    async def is_exceeded(self, uid: str, method: MFAMethod) -> bool:
        counts = await self.get_counts(uid, method)
        exceeded = (
            counts.short >= self.max_attempts(method)
            or counts.daily >= self.daily_limit(method)
        )
        if exceeded:
            logger.info(
                "Attempt limit exceeded",
                uid=uid,
                method=method.value,
                short=counts.short,
                daily=counts.daily,
            )
        return exceeded

    async def reset(self, uid: str, method: MFAMethod) -> None:
        """Delete the short-window counter. The daily counter is kept."""
        await self._store.delete(self._keys.attempts(uid, method))

    async def daily_sends(self, uid: str) -> int:
        """SMS deliveries today, zero when unreadable."""
        try:
            raw = await self._store.get(self._keys.daily_sends(uid, self._clock.now()))
            return int(raw) if raw else 0
        except (StoreUnavailableError, ValueError) as e:
            logger.warning("Daily send counter unreadable", uid=uid, error=str(e))
            return 0

    async def increment_daily_sends(self, uid: str) -> int:
        return await self._store.increment_with_ttl(
            self._keys.daily_sends(uid, self._clock.now()),
            self._limits.daily_window_ttl,
        )
