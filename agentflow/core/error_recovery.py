"""Retry with exponential backoff for agent and tool steps."""

import asyncio
import random
from typing import Any, Awaitable, Callable, List, Optional

from ..models.core import RetryPolicy
from .exceptions import ExecutionInterruptedError, UnresolvedVariableError
from .logging import get_logger, RetryLogger


logger = get_logger(__name__)

# Errors that describe the execution rather than the collaborator call;
# repeating the call cannot fix them.
NEVER_RETRIED = (ExecutionInterruptedError, UnresolvedVariableError)


class RetryConfig:
    """Configuration for retry behavior. Delays are in seconds."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
        retryable_errors: Optional[List[str]] = None
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_errors = retryable_errors

    @classmethod
    def from_policy(cls, policy: RetryPolicy) -> "RetryConfig":
        """Build a config from a step's declared retry policy."""
        return cls(
            max_retries=policy.max_retries,
            base_delay=policy.initial_delay / 1000.0,
            max_delay=policy.max_delay / 1000.0,
            exponential_base=policy.backoff_multiplier,
            retryable_errors=policy.retryable_errors,
        )

    def should_retry(self, exception: Exception, retries_used: int) -> bool:
        """Determine if an exception should be retried."""
        if retries_used >= self.max_retries:
            return False
        if isinstance(exception, NEVER_RETRIED):
            return False
        if self.retryable_errors is None:
            return True
        names = {klass.__name__ for klass in type(exception).__mro__}
        return any(name in names for name in self.retryable_errors)

    def get_delay(self, retry: int) -> float:
        """Delay before the ``retry``-th retry (1-based)."""
        delay = self.base_delay * (self.exponential_base ** (retry - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


class RetryingCall:
    """
    Runs an async operation under a RetryConfig.

    ``retries_used`` reports how many retries the last ``run`` needed, whether
    it ultimately succeeded or not.
    """

    def __init__(self, config: RetryConfig, operation: str):
        self.config = config
        self.operation = operation
        self.retries_used = 0
        self.retry_logger = RetryLogger("step_retry")

    async def run(self, func: Callable[[], Awaitable[Any]]) -> Any:
        self.retries_used = 0

        while True:
            try:
                result = await func()
            except Exception as e:
                if not self.config.should_retry(e, self.retries_used):
                    if self.retries_used:
                        self.retry_logger.log_retry_exhausted(self.operation, e, self.retries_used)
                    raise

                self.retries_used += 1
                delay = self.config.get_delay(self.retries_used)
                self.retry_logger.log_retry_attempt(
                    self.operation, e, self.retries_used, self.config.max_retries, delay
                )
                await asyncio.sleep(delay)
                continue

            if self.retries_used:
                self.retry_logger.log_retry_success(self.operation, self.retries_used)
            return result
