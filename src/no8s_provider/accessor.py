"""
Remote State Accessor - Read remote objects and run SDK calls with retries.

SDK clients are synchronous, so every call runs in a worker thread. This
keeps one resource's polling from blocking others reconciled on the same
event loop.
"""

import asyncio
import logging
import random
from typing import Any, Callable, Optional

from no8s_provider.config import RetryConfig
from no8s_provider.errors import NotFoundError, RetryableError, RetryExhaustedError
from no8s_provider.resources.base import ObservedState, ResourceDescriptor

logger = logging.getLogger(__name__)


def compute_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter_factor: float,
) -> float:
    """
    Delay before the next attempt: exponential, capped, with ±jitter.

    Args:
        attempt: 1-based number of the attempt that just failed.
        base_delay: Delay after the first failure, in seconds.
        max_delay: Upper bound before jitter, in seconds.
        jitter_factor: Jitter of ±jitter_factor (0.1 = ±10%).

    Returns:
        Delay in seconds (never negative).
    """
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    delay *= 1 + (random.random() * 2 - 1) * jitter_factor
    return max(delay, 0.0)


class RemoteStateAccessor:
    """
    Fetches observed state for one resource type through an injected client.

    Not-found is terminal and raised immediately; throttling and transport
    errors are retried with exponential backoff.
    """

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        client: Any,
        retry: Optional[RetryConfig] = None,
    ):
        self.descriptor = descriptor
        self.client = client
        self.retry = retry or RetryConfig()

    async def call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run an SDK closure with the injected client, retrying transient errors.

        Args:
            operation: Name used in log messages.
            fn: Closure taking the client as its first argument.
            *args: Remaining closure arguments.

        Returns:
            Whatever the closure returns.

        Raises:
            RetryExhaustedError: If retryable errors outlast max_attempts.
            ProviderError: Any non-retryable error, unchanged.
        """
        type_name = self.descriptor.type_name
        last_error: Optional[RetryableError] = None

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await asyncio.to_thread(fn, self.client, *args)
            except RetryableError as e:
                last_error = e
                if attempt == self.retry.max_attempts:
                    break
                delay = compute_backoff(
                    attempt,
                    self.retry.backoff_base_delay,
                    self.retry.backoff_max_delay,
                    self.retry.backoff_jitter_factor,
                )
                logger.warning(
                    f"{type_name} {operation} attempt {attempt}/"
                    f"{self.retry.max_attempts} failed: {e}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise RetryExhaustedError(
            f"{type_name} {operation} failed after {self.retry.max_attempts} "
            f"attempts: {last_error}",
            last_error=last_error,
        ) from last_error

    async def find(self, identifier: str) -> ObservedState:
        """
        Read the current state of a remote object.

        Args:
            identifier: The service-assigned identifier.

        Returns:
            Freshly built observed state.

        Raises:
            NotFoundError: If the object does not exist.
        """
        observed = await self.call("read", self.descriptor.find, identifier)
        return dict(observed)

    async def exists(self, identifier: str) -> bool:
        """Check whether a remote object exists."""
        try:
            await self.find(identifier)
        except NotFoundError:
            return False
        return True
