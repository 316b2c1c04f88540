from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import NoReturn

import anyio
import httpx


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_backoff: float = 0.5
    max_backoff: float = 8.0

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ValueError("max_attempts must be an integer")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff delays must not be negative")


def structured_log(
    logger: logging.Logger,
    level: int,
    *,
    event: str,
    adapter: str,
    correlation_id: str,
    **extra: object,
) -> None:
    """Emit one compact JSON line so store telemetry can be grepped by event."""

    payload = {
        "event": event,
        "adapter": adapter,
        "correlation_id": correlation_id,
        **extra,
    }
    logger.log(level, json.dumps(payload, separators=(",", ":")))


def retry_after_seconds(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(0.0, (parsed - datetime.now(timezone.utc)).total_seconds())


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    return min(config.base_backoff * (2 ** (attempt - 1)), config.max_backoff)


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def _raise_for(response: httpx.Response | None, error: httpx.RequestError | None) -> NoReturn:
    if response is not None:
        raise httpx.HTTPStatusError(
            f"document store answered {response.status_code}",
            request=response.request,
            response=response,
        )
    assert error is not None
    raise error


async def request_with_retry(
    *,
    adapter: str,
    correlation_id: str,
    target: str,
    attempt: Callable[[], Awaitable[httpx.Response]],
    retry_config: RetryConfig,
    logger: logging.Logger,
    expected_statuses: Collection[int] = (),
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> httpx.Response:
    """Run ``attempt`` until it succeeds, fails permanently or retries run out.

    2xx responses and any status in ``expected_statuses`` are returned to the
    caller; 429, 5xx and transport errors are retried with exponential backoff.
    """
    for current in range(1, retry_config.max_attempts + 1):
        response: httpx.Response | None = None
        error: httpx.RequestError | None = None
        status_code: int | None = None
        try:
            response = await attempt()
        except httpx.RequestError as exc:
            error = exc
        else:
            status_code = response.status_code
            if 200 <= status_code < 300 or status_code in expected_statuses:
                structured_log(
                    logger,
                    logging.DEBUG,
                    event="store_request_ok",
                    adapter=adapter,
                    correlation_id=correlation_id,
                    attempt=current,
                    status_code=status_code,
                    target=target,
                )
                return response
            if not _is_retryable(status_code):
                structured_log(
                    logger,
                    logging.ERROR,
                    event="store_request_failed",
                    adapter=adapter,
                    correlation_id=correlation_id,
                    attempt=current,
                    status_code=status_code,
                    target=target,
                )
                _raise_for(response, None)

        if current == retry_config.max_attempts:
            structured_log(
                logger,
                logging.ERROR,
                event="retry_exhausted",
                adapter=adapter,
                correlation_id=correlation_id,
                attempt=current,
                max_attempts=retry_config.max_attempts,
                status_code=status_code,
                target=target,
                error=str(error) if error is not None else None,
            )
            _raise_for(response, error)

        delay = None
        if status_code == 429 and response is not None:
            delay = retry_after_seconds(response.headers.get("Retry-After"))
        if delay is None:
            delay = backoff_delay(current, retry_config)
        structured_log(
            logger,
            logging.WARNING,
            event="retry_scheduled",
            adapter=adapter,
            correlation_id=correlation_id,
            attempt=current,
            max_attempts=retry_config.max_attempts,
            status_code=status_code,
            target=target,
            retry_in=delay,
            error=str(error) if error is not None else None,
        )
        await sleep(delay)

    raise RuntimeError("retry loop exited unexpectedly")


__all__ = [
    "RetryConfig",
    "backoff_delay",
    "request_with_retry",
    "retry_after_seconds",
    "structured_log",
]
