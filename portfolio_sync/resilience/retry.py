"""
Retry executor with exponential backoff, jitter and optional breaker.

``with_retry`` runs a coroutine-producing callable up to ``max_attempts``
times. Between attempts it sleeps ``min(base * factor^(attempt-1), max)``
milliseconds, optionally spread by up to +/-10% jitter and never less than
100ms. A breaker attached to the config is consulted before every attempt
and told about every outcome.
"""

import asyncio
import errno
import inspect
import random
import re
import socket
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable

import httpx

from portfolio_sync.core.exceptions import CircuitOpenError
from portfolio_sync.observability.logger import get_logger
from portfolio_sync.observability.metrics import increment_counter, retry_attempts_total

from .circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

MIN_DELAY_MS = 100
JITTER_RATIO = 0.1

RETRYABLE_NETWORK_CODES = frozenset({
    "ENOTFOUND",
    "ECONNREFUSED",
    "ECONNRESET",
    "ETIMEDOUT",
    "ENETUNREACH",
    "EHOSTUNREACH",
    "EPIPE",
})

RETRYABLE_STATUS_CODES = frozenset({408, 429})

RETRYABLE_MESSAGE_PATTERNS = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "temporary",
    "rate limit",
    "service unavailable",
    "temporarily unavailable",
    "internal server error",
    "bad gateway",
)

NON_RETRYABLE_MESSAGE_PATTERNS = (
    "invalid",
    "malformed",
    "validation",
)


def error_code(error: BaseException) -> str | None:
    """Extract an errno-style code (ECONNREFUSED, ETIMEDOUT) from an error."""
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    errno_value = getattr(error, "errno", None)
    if isinstance(errno_value, int):
        return errno.errorcode.get(errno_value)
    return None


def error_status_code(error: BaseException) -> int | None:
    """Extract an HTTP status from our own errors or httpx errors."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Default retry predicate.

    Retryable: network errno codes, connection and timeout failures,
    HTTP 5xx/429/408 and transient-sounding messages. Everything else,
    including other 4xx and invalid/malformed input, is not.
    """
    if isinstance(error, CircuitOpenError):
        return False

    code = error_code(error)
    if code in RETRYABLE_NETWORK_CODES:
        return True

    status = error_status_code(error)
    if status is not None:
        return status >= 500 or status in RETRYABLE_STATUS_CODES

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, socket.gaierror, httpx.TransportError)):
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in NON_RETRYABLE_MESSAGE_PATTERNS):
        return False
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


def create_retry_condition(
    retryable_patterns: Iterable[str] = (),
    non_retryable_patterns: Iterable[str] = (),
) -> Callable[[BaseException], bool]:
    """
    Build a predicate from message patterns layered over the default one.

    Non-retryable patterns are checked first and always win.
    """
    retryable = [re.compile(p, re.IGNORECASE) for p in retryable_patterns]
    non_retryable = [re.compile(p, re.IGNORECASE) for p in non_retryable_patterns]

    def condition(error: BaseException) -> bool:
        message = str(error)
        if any(p.search(message) for p in non_retryable):
            return False
        if any(p.search(message) for p in retryable):
            return True
        return is_retryable_error(error)

    return condition


@dataclass
class RetryConfig:
    """
    Retry settings.

    Attributes:
        max_attempts: Total attempts including the first
        base_delay_ms: Delay before the second attempt
        max_delay_ms: Cap applied before jitter
        backoff_factor: Multiplier per attempt
        jitter: Spread delays by up to +/-10%
        retry_predicate: Decides whether an error is worth retrying
        on_retry: Called with (error, attempt, delay_ms) before sleeping;
            may be sync or async, failures are logged and ignored
        circuit_breaker: Breaker consulted before and after each attempt
        timeout_ms: Per-attempt timeout, None for no timeout
        sleep: Coroutine used to wait, receives seconds
        operation_name: Label used in logs and metrics
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_factor: float = 2
    jitter: bool = True
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error
    on_retry: Callable[[BaseException, int, int], Any] | None = None
    circuit_breaker: CircuitBreaker | None = None
    timeout_ms: int | None = None
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    operation_name: str = "operation"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("Delays must be non-negative")

    def with_overrides(self, **changes) -> "RetryConfig":
        return replace(self, **changes)

    @classmethod
    def for_operation(cls, operation_type: str, **overrides) -> "RetryConfig":
        """
        Preset configuration per operation type.

        Known types: mutual_fund_sync, epf_sync, stock_sync, database, api_call.
        Unknown types get the defaults.
        """
        preset = OPERATION_PRESETS.get(operation_type)
        if preset is None:
            return cls(operation_name=operation_type, **overrides)

        settings = dict(preset)
        non_retryable = settings.pop("non_retryable", ())
        settings["retry_predicate"] = create_retry_condition(non_retryable_patterns=non_retryable)
        settings["operation_name"] = operation_type
        settings.update(overrides)
        return cls(**settings)


OPERATION_PRESETS: dict[str, dict[str, Any]] = {
    "mutual_fund_sync": {
        "max_attempts": 3,
        "base_delay_ms": 2000,
        "max_delay_ms": 30000,
        "backoff_factor": 2,
        "non_retryable": ("authentication", "invalid", "malformed"),
    },
    "epf_sync": {
        "max_attempts": 2,
        "base_delay_ms": 5000,
        "max_delay_ms": 60000,
        "backoff_factor": 3,
        "non_retryable": ("authentication", "credential", "login", "captcha"),
    },
    "stock_sync": {
        "max_attempts": 2,
        "base_delay_ms": 1000,
        "max_delay_ms": 10000,
        "backoff_factor": 2,
        "non_retryable": ("authentication", "invalid symbol", "not found"),
    },
    "database": {
        "max_attempts": 2,
        "base_delay_ms": 500,
        "max_delay_ms": 5000,
        "backoff_factor": 2,
    },
    "api_call": {
        "max_attempts": 3,
        "base_delay_ms": 1000,
        "max_delay_ms": 15000,
        "backoff_factor": 2,
    },
}


def compute_delay(attempt: int, config: RetryConfig, rng: random.Random | None = None) -> int:
    """
    Delay in milliseconds to wait after failed ``attempt`` (1-based).

    Args:
        attempt: The attempt that just failed
        config: Retry settings
        rng: Random source for jitter

    Returns:
        Delay in milliseconds, at least 100
    """
    delay = min(config.base_delay_ms * (config.backoff_factor ** (attempt - 1)), config.max_delay_ms)

    if config.jitter:
        spread = delay * JITTER_RATIO
        delay += (rng or random).uniform(-spread, spread)

    return max(MIN_DELAY_MS, int(round(delay)))


async def _notify_retry(config: RetryConfig, error: BaseException, attempt: int, delay_ms: int) -> None:
    if config.on_retry is None:
        return
    try:
        outcome = config.on_retry(error, attempt, delay_ms)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as callback_error:
        logger.warning(f"on_retry callback failed for {config.operation_name}: {callback_error}")


async def with_retry(operation: Callable[[], Awaitable[Any]], config: RetryConfig | None = None) -> Any:
    """
    Execute ``operation`` with retries.

    Args:
        operation: Zero-argument callable returning an awaitable
        config: Retry settings, defaults to RetryConfig()

    Returns:
        The operation's result

    Raises:
        CircuitOpenError: If the attached breaker rejects an attempt
        Exception: The last error once retries are exhausted or the
            predicate declines to retry
    """
    config = config or RetryConfig()
    breaker = config.circuit_breaker

    for attempt in range(1, config.max_attempts + 1):
        if breaker is not None and not breaker.allow_request():
            logger.warning(f"{config.operation_name}: circuit open for {breaker.name}, aborting")
            raise CircuitOpenError(breaker.name, breaker.retry_in_ms())

        try:
            if config.timeout_ms is not None:
                result = await asyncio.wait_for(operation(), timeout=config.timeout_ms / 1000)
            else:
                result = await operation()
        except Exception as e:
            if breaker is not None:
                breaker.record_failure(e)

            if attempt >= config.max_attempts or not config.retry_predicate(e):
                outcome = "exhausted" if attempt >= config.max_attempts else "non_retryable"
                increment_counter(retry_attempts_total, operation=config.operation_name, outcome=outcome)
                logger.warning(
                    f"{config.operation_name} failed on attempt {attempt}/{config.max_attempts} "
                    f"({outcome}): {e}"
                )
                raise

            delay_ms = compute_delay(attempt, config)
            increment_counter(retry_attempts_total, operation=config.operation_name, outcome="retry")
            logger.warning(
                f"{config.operation_name} attempt {attempt}/{config.max_attempts} failed, "
                f"retrying in {delay_ms}ms: {e}"
            )
            await _notify_retry(config, e, attempt, delay_ms)
            await config.sleep(delay_ms / 1000)
            continue

        if breaker is not None:
            breaker.record_success()
        if attempt > 1:
            increment_counter(retry_attempts_total, operation=config.operation_name, outcome="success")
        return result

    # Unreachable: the loop either returns or raises
    raise RuntimeError("with_retry exited without a result")


async def batch_retry(
    operations: list[Callable[[], Awaitable[Any]]],
    config: RetryConfig | None = None,
    concurrency: int = 3,
) -> list[dict[str, Any]]:
    """
    Run several operations with retries, at most ``concurrency`` at a time.

    Returns:
        One dict per operation in input order: ``{"index", "success",
        "result"}`` or ``{"index", "success", "error"}``
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run(index: int, operation):
        async with semaphore:
            try:
                result = await with_retry(operation, config)
            except Exception as e:
                return {"index": index, "success": False, "error": e}
            return {"index": index, "success": True, "result": result}

    return list(await asyncio.gather(*(run(i, op) for i, op in enumerate(operations))))
