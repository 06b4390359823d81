"""
Bounded poll / retry primitives for cluster convergence.

The API server is eventually consistent: a namespace that was just created
may not be Active yet, a quota cannot be created until the namespace is
visible, and a new service shows up in list results a little after it can be
read individually. Every wait in the orchestrator goes through one of the
helpers below, all built on tenacity with a fixed interval and a hard bound:

- poll_until: call a probe until it returns a truthy value, fail on timeout
- retry_on_exceptions: retry an operation on selected errors, fail after N attempts
- retry_until: re-run an operation until its result satisfies a predicate,
  then hand back the last result either way
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from .errors import ProvisioningTimeoutError

logger = logging.getLogger(__name__)


def _as_coroutine_function(operation: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[Any]]:
    """
    Wrap a callable returning an awaitable (e.g. a lambda) in a real coroutine
    function, so AsyncRetrying awaits every attempt.
    """
    async def _attempt() -> Any:
        return await operation()
    return _attempt


async def poll_until(
    probe: Callable[[], Awaitable[Any]],
    timeout: float,
    interval: float,
    description: str,
    namespace: Optional[str] = None,
    resource: Optional[str] = None,
) -> Any:
    """
    Poll an async probe until it reports readiness.

    Args:
        probe: Async callable; a truthy return value means "ready"
        timeout: Overall bound in seconds
        interval: Fixed delay between probes in seconds
        description: Human-readable name of what is being waited for

    Returns:
        The first truthy value returned by the probe

    Raises:
        ProvisioningTimeoutError: probe never became truthy within the timeout
        Any exception raised by the probe itself (probes decide what is fatal)
    """
    retrying = AsyncRetrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not result),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    )
    try:
        return await retrying(_as_coroutine_function(probe))
    except RetryError as e:
        raise ProvisioningTimeoutError(
            f"Timed out after {timeout}s waiting for {description}",
            namespace=namespace,
            resource=resource,
        ) from e


async def retry_on_exceptions(
    operation: Callable[[], Awaitable[Any]],
    exceptions: Tuple[Type[BaseException], ...],
    attempts: int,
    delay: float,
    description: str,
    namespace: Optional[str] = None,
    resource: Optional[str] = None,
) -> Any:
    """
    Run an operation, retrying on the given exception types.

    Raises:
        ProvisioningTimeoutError: every attempt failed with a retryable error
            (the last one is chained as the cause)
        Any non-retryable exception, immediately
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.INFO),
    )
    try:
        return await retrying(_as_coroutine_function(operation))
    except RetryError as e:
        last_error = e.last_attempt.exception()
        raise ProvisioningTimeoutError(
            f"Gave up on {description} after {attempts} attempts: {last_error}",
            namespace=namespace,
            resource=resource,
            cause=last_error,
        ) from last_error


async def retry_until(
    operation: Callable[[], Awaitable[Any]],
    predicate: Callable[[Any], bool],
    attempts: int,
    delay: float,
) -> Any:
    """
    Re-run an operation until `predicate(result)` holds.

    Unlike the helpers above this never fails on exhaustion: the last result
    is returned and the caller proceeds with whatever it saw.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_result(lambda result: not predicate(result)),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    )
    return await retrying(_as_coroutine_function(operation))
