"""
Bounded collaborator calls: every store, directory and gateway call runs
under a timeout, and reads are retried with exponential backoff on
ServerFailure. ValidationFailure and NotFoundFailure pass straight through.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from carenow.lib.logging import get_logger
from carenow.lib.settings import settings
from carenow.services.errors import CareNowError, ServerFailure

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CallPolicy:
    timeout_seconds: float = field(default_factory=lambda: settings.collaborator_timeout_seconds)
    attempts: int = field(default_factory=lambda: settings.retry_attempts)
    backoff_seconds: float = field(default_factory=lambda: settings.retry_backoff_seconds)


async def _call_once(
    operation: str,
    fn: Callable[..., Awaitable[T]],
    args: tuple,
    kwargs: dict,
    timeout: float,
    failure_cls: Type[ServerFailure],
) -> T:
    try:
        return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout)
    except CareNowError:
        raise
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} timed out", extra={"operation": operation, "timeout": timeout})
        raise failure_cls(f"{operation} timed out after {timeout}s") from e
    except Exception as e:
        logger.warning(f"{operation} failed: {e}", extra={"operation": operation})
        raise failure_cls(f"{operation} failed: {e}") from e


async def call_collaborator(
    operation: str,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[CallPolicy] = None,
    retry: bool = False,
    failure_cls: Type[ServerFailure] = ServerFailure,
    **kwargs: Any,
) -> T:
    """
    Await `fn(*args, **kwargs)` under the policy timeout.

    Args:
        operation: Name used in logs and failure messages
        fn: Collaborator coroutine function
        policy: Timeout/retry policy (defaults from settings)
        retry: Retry transient ServerFailures; only for idempotent calls
        failure_cls: ServerFailure subclass raised on I/O errors

    Raises:
        ServerFailure (or failure_cls) after the last attempt
    """
    policy = policy or CallPolicy()
    if not retry or policy.attempts <= 1:
        return await _call_once(operation, fn, args, kwargs, policy.timeout_seconds, failure_cls)

    result = None
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.backoff_seconds, max=10 * max(policy.backoff_seconds, 0.1)),
        retry=retry_if_exception_type(ServerFailure),
        reraise=True,
    ):
        with attempt:
            result = await _call_once(operation, fn, args, kwargs, policy.timeout_seconds, failure_cls)
    return result
