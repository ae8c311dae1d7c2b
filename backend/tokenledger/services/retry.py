"""
Retry policy and backoff for calls against a rate-limited ledger node.

Detection of retryable errors is a pure predicate held by the policy, so call
sites only decide *what* to retry, never *how*.
"""
import asyncio
import random
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp
import structlog

from tokenledger.config import Settings, get_settings

logger = structlog.get_logger()

T = TypeVar("T")

RATE_LIMIT_CODES = {-32002, -32005, 429}
RATE_LIMIT_MARKERS = (
    "too many errors",
    "too many requests",
    "rate limit",
    "-32002",
    "retrying in",
)
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "connection reset",
)
RETRY_IN_RE = re.compile(r"retrying in ([\d.]+) minutes?", re.IGNORECASE)
# Buffer added on top of a server-suggested wait
SUGGESTED_DELAY_BUFFER = 5.0


def _error_code(error: BaseException) -> Optional[int]:
    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    # web3 wraps JSON-RPC errors as a dict in args[0]
    if error.args and isinstance(error.args[0], dict):
        value = error.args[0].get("code")
        if isinstance(value, int):
            return value
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    """Detect a rate-limit / backoff signal from the node"""
    if _error_code(error) in RATE_LIMIT_CODES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_retryable_error(error: BaseException) -> bool:
    """Rate limits, dropped connections and timeouts are worth retrying"""
    if is_rate_limit_error(error):
        return True
    if isinstance(error, (
        ConnectionError,
        asyncio.TimeoutError,
        TimeoutError,
        aiohttp.ClientConnectionError,
        aiohttp.ServerTimeoutError,
    )):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def suggested_delay(error: BaseException) -> Optional[float]:
    """Server-suggested wait in seconds, if the error carries one"""
    match = RETRY_IN_RE.search(str(error))
    if match:
        return float(match.group(1)) * 60 + SUGGESTED_DELAY_BUFFER
    retry_after = getattr(error, "retry_after", None)
    if isinstance(retry_after, (int, float)) and retry_after > 0:
        return float(retry_after)
    headers = getattr(error, "headers", None)
    if headers is not None:
        value = headers.get("Retry-After")
        if isinstance(value, str) and value.strip().isdigit():
            return float(value.strip())
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how long to wait between attempts."""
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 300.0
    jitter: float = 0.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error, compare=False)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )


def compute_delay(policy: RetryPolicy, attempt: int, error: BaseException) -> float:
    """Delay before the next attempt (attempt is 0-based)"""
    hinted = suggested_delay(error)
    if hinted is not None:
        delay = hinted
    else:
        delay = policy.base_delay * (2 ** attempt)
    delay = min(delay, policy.max_delay)
    if policy.jitter:
        delay *= 1 + random.uniform(-policy.jitter, policy.jitter)
    return max(delay, 0.0)


class RetryExhausted(Exception):
    """All attempts failed; the last error is chained as __cause__"""

    def __init__(self, attempts: int, last_delay: Optional[float] = None):
        super().__init__(f"Failed after {attempts} attempts")
        self.attempts = attempts
        self.last_delay = last_delay


async def with_retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "ledger query",
) -> T:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    Errors the policy does not consider retryable are re-raised immediately.
    When the last attempt fails, RetryExhausted is raised from the last error.
    """
    attempts = max(policy.max_attempts, 1)
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if not policy.is_retryable(e):
                raise
            if attempt == attempts - 1:
                raise RetryExhausted(attempts, suggested_delay(e)) from e
            delay = compute_delay(policy, attempt, e)
            logger.warning(
                "Retrying after backoff",
                operation=description,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay=round(delay, 2),
                rate_limited=is_rate_limit_error(e),
                error=str(e),
            )
            await sleep(delay)
    raise RuntimeError("unreachable")
