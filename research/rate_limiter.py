# research/rate_limiter.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from research.models import RateLimitResult, UsageStats
from server_config import AccuracyLevel, Settings

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS
RETENTION_SECONDS = 48 * HOUR_SECONDS


@dataclass
class ClientUsage:
    """Per-client counters keyed by time bucket: `hour:<n>`, `day:<n>:<level>`, `cost:<n>`, `tokens:<n>`."""
    request_counts: Dict[str, float] = field(default_factory=dict)
    total_cost: float = 0.0
    last_request_time: float = 0.0


class ResearchRateLimiter:
    """
    In-memory, per-client request and cost accounting.

    State lives only in this process and is lost on restart. Checks and records
    are separate calls, so two concurrent requests from one client can both pass
    a check before either is recorded; the limits are advisory, not a hard cap.
    All methods are synchronous and run on the event loop thread, which is the
    only writer of `_usage`.
    """
    def __init__(self, settings: Settings, logger: logging.LoggerAdapter, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.logger = logger
        self.clock = clock
        self._usage: Dict[str, ClientUsage] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self.logger.info(f"Rate limiter initialized with in-memory storage (max_requests_per_hour={settings.requests_per_hour}, max_daily_cost={settings.daily_cost_limit_usd})")

    @property
    def active_clients(self) -> List[str]:
        return list(self._usage)

    def _buckets(self, now: float):
        return int(now // HOUR_SECONDS), int(now // DAY_SECONDS)

    def check_rate_limit(self, client_id: str, accuracy_level: AccuracyLevel, estimated_cost: Optional[float] = None) -> RateLimitResult:
        """
        Decides whether `client_id` may issue another request right now.

        Hourly count, projected daily cost and per-level daily count are checked in
        that order; the first exceeded limit denies the request. Any internal error
        allows the request (fail-open) and is logged.
        """
        try:
            now = self.clock()
            current_hour, current_day = self._buckets(now)
            usage = self._usage.get(client_id) or ClientUsage()
            cost_limit = self.settings.daily_cost_limit_usd

            hourly_requests = int(usage.request_counts.get(f"hour:{current_hour}", 0))
            hourly_limit = self.settings.hourly_limit(accuracy_level)
            if hourly_requests >= hourly_limit:
                self.logger.warning(f"Hourly rate limit exceeded for client '{client_id}' ({hourly_requests}/{hourly_limit}, accuracy_level={accuracy_level})")
                return RateLimitResult(
                    allowed=False, reason="hourly_limit", remaining=0,
                    retry_after=float((current_hour + 1) * HOUR_SECONDS),
                    cost_remaining=max(0.0, cost_limit - usage.request_counts.get(f"cost:{current_day}", 0.0)),
                )

            daily_cost = usage.request_counts.get(f"cost:{current_day}", 0.0)
            if estimated_cost and daily_cost + estimated_cost > cost_limit:
                self.logger.warning(f"Daily cost limit would be exceeded for client '{client_id}' (current={daily_cost:.4f}, estimated={estimated_cost:.4f}, limit={cost_limit})")
                return RateLimitResult(
                    allowed=False, reason="cost_limit", remaining=hourly_limit - hourly_requests,
                    retry_after=float((current_day + 1) * DAY_SECONDS),
                    cost_remaining=max(0.0, cost_limit - daily_cost),
                )

            daily_requests = int(usage.request_counts.get(f"day:{current_day}:{accuracy_level}", 0))
            daily_limit = self.settings.daily_limit(accuracy_level)
            if daily_requests >= daily_limit:
                self.logger.warning(f"Daily request limit exceeded for client '{client_id}' ({daily_requests}/{daily_limit}, accuracy_level={accuracy_level})")
                return RateLimitResult(
                    allowed=False, reason="daily_limit", remaining=0,
                    retry_after=float((current_day + 1) * DAY_SECONDS),
                    cost_remaining=max(0.0, cost_limit - daily_cost),
                )

            return RateLimitResult(
                allowed=True,
                remaining=min(hourly_limit - hourly_requests, daily_limit - daily_requests) - 1,
                retry_after=float((current_hour + 1) * HOUR_SECONDS),
                cost_remaining=max(0.0, cost_limit - daily_cost),
            )
        except Exception as e:
            self.logger.error(f"Rate limit check failed for client '{client_id}', allowing request: {e}", exc_info=True)
            return RateLimitResult(
                allowed=True, remaining=0,
                retry_after=time.time() + HOUR_SECONDS,
                cost_remaining=self.settings.daily_cost_limit_usd,
            )

    def record_request(self, client_id: str, accuracy_level: AccuracyLevel, actual_cost: float, tokens_used: int) -> None:
        """Counts one downstream call (successful or billed) against the client's current buckets."""
        try:
            now = self.clock()
            current_hour, current_day = self._buckets(now)
            usage = self._usage.setdefault(client_id, ClientUsage(last_request_time=now))
            counts = usage.request_counts

            hour_key = f"hour:{current_hour}"
            day_key = f"day:{current_day}:{accuracy_level}"
            counts[hour_key] = counts.get(hour_key, 0) + 1
            counts[day_key] = counts.get(day_key, 0) + 1
            counts[f"cost:{current_day}"] = counts.get(f"cost:{current_day}", 0.0) + actual_cost
            counts[f"tokens:{current_day}"] = counts.get(f"tokens:{current_day}", 0) + tokens_used
            usage.total_cost += actual_cost
            usage.last_request_time = now

            self.logger.debug(f"Request recorded for client '{client_id}' (accuracy_level={accuracy_level}, cost={actual_cost}, tokens={tokens_used}, hourly={int(counts[hour_key])}, daily={int(counts[day_key])})")
        except Exception as e:
            self.logger.error(f"Failed to record request for client '{client_id}': {e}", exc_info=True)

    def get_usage_stats(self, client_id: str) -> UsageStats:
        usage = self._usage.get(client_id)
        if usage is None:
            return UsageStats()
        current_hour, current_day = self._buckets(self.clock())
        counts = usage.request_counts
        return UsageStats(
            hourly_requests=int(counts.get(f"hour:{current_hour}", 0)),
            daily_cost=counts.get(f"cost:{current_day}", 0.0),
            high_accuracy_requests=int(counts.get(f"day:{current_day}:high", 0)),
            medium_accuracy_requests=int(counts.get(f"day:{current_day}:medium", 0)),
            daily_tokens=int(counts.get(f"tokens:{current_day}", 0)),
        )

    def sweep(self) -> int:
        """
        Drops clients idle for more than 48 hours and, for the rest, buckets older
        than the previous hour/day. Returns the number of clients removed.
        """
        now = self.clock()
        current_hour, current_day = self._buckets(now)
        cutoff = now - RETENTION_SECONDS
        removed = 0

        for client_id in list(self._usage):
            usage = self._usage[client_id]
            if usage.last_request_time < cutoff:
                del self._usage[client_id]
                removed += 1
                continue
            for key in list(usage.request_counts):
                kind, _, rest = key.partition(":")
                bucket = int(rest.split(":")[0])
                if kind == "hour" and bucket < current_hour - 1:
                    del usage.request_counts[key]
                elif kind in ("day", "cost", "tokens") and bucket < current_day - 1:
                    del usage.request_counts[key]

        self.logger.debug(f"Cleaned up old rate limiting entries (removed={removed}, active_clients={len(self._usage)})")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                self.logger.error(f"Rate limiter sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        """Schedules the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        self._usage.clear()
        self.logger.info("Rate limiter cleaned up")
