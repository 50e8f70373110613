"""Per-user daily generation quota, cached over the remote counter service"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from errors import QuotaUnavailable, TryOnError, Unauthenticated
from models.generation import QuotaState

logger = logging.getLogger("TryOn_MCP")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_key_for(moment: datetime) -> str:
    """Quota period bucket: one calendar day (UTC)"""
    return moment.astimezone(timezone.utc).date().isoformat()


class QuotaTracker:
    """Read-through, write-through cache of one counter per user per period.

    A user whose counter could not be fetched has *unknown* state (no cache
    entry), which is distinct from zero remaining.
    """

    def __init__(
        self,
        client,
        limit: int,
        staleness_seconds: float = 60,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.limit = limit
        self.staleness_seconds = staleness_seconds
        self._clock = clock
        self._states: Dict[str, QuotaState] = {}

    def period_key(self) -> str:
        return period_key_for(self._clock())

    def cached(self, user_id: str) -> Optional[QuotaState]:
        """Cached state for the current period, or None when unknown"""
        state = self._states.get(user_id)
        if state is None or state.period_key != self.period_key():
            return None
        return state

    def _is_fresh(self, state: QuotaState) -> bool:
        age = (self._clock() - state.fetched_at).total_seconds()
        return age <= self.staleness_seconds

    async def current(self, user_id: str) -> QuotaState:
        """Cached state if fresh and in the current period, otherwise fetched"""
        state = self.cached(user_id)
        if state is not None and self._is_fresh(state):
            return state
        return await self.refresh(user_id)

    async def refresh(self, user_id: str) -> QuotaState:
        """Fetch the authoritative counter.

        Raises:
            Unauthenticated: The service rejected the credential; state becomes unknown
            QuotaUnavailable: The counter could not be read; state becomes unknown
        """
        period_key = self.period_key()
        try:
            count = await self.client.get_count(user_id, period_key)
        except Unauthenticated:
            self._states.pop(user_id, None)
            raise
        except TryOnError as e:
            self._states.pop(user_id, None)
            logger.warning(f"Quota fetch for {user_id} failed: {e}")
            raise QuotaUnavailable(f"Could not check your generation quota: {e.message}") from e
        state = QuotaState(count=count, limit=self.limit, period_key=period_key, fetched_at=self._clock())
        self._states[user_id] = state
        logger.info(f"Quota for {user_id} ({period_key}): {count}/{self.limit}")
        return state

    async def increment(self, user_id: str, period_key: Optional[str] = None) -> QuotaState:
        """Increment remotely, then adopt the counter's post-increment value.

        Raises:
            Unauthenticated: The service rejected the credential; state becomes unknown
            QuotaUnavailable: The increment could not be confirmed; state becomes unknown
        """
        period_key = period_key or self.period_key()
        try:
            count = await self.client.increment(user_id, period_key)
        except Unauthenticated:
            self._states.pop(user_id, None)
            raise
        except TryOnError as e:
            self._states.pop(user_id, None)
            logger.warning(f"Quota increment for {user_id} failed: {e}")
            raise QuotaUnavailable(f"Could not record generation against quota: {e.message}") from e
        state = QuotaState(count=count, limit=self.limit, period_key=period_key, fetched_at=self._clock())
        self._states[user_id] = state
        logger.info(f"Quota for {user_id} ({period_key}) now {count}/{self.limit}")
        return state

    def remaining(self, user_id: str) -> Optional[int]:
        """max(0, limit - count), or None when the state is unknown"""
        state = self.cached(user_id)
        return None if state is None else state.remaining

    def forget(self, user_id: str):
        self._states.pop(user_id, None)
