"""
Retry Policy Module
===================

Bounded retries with exponential backoff around fallible remote calls,
plus the error classification that decides what is worth retrying.

Classes
-------
ErrorKind
    Coarse category of a remote call failure.
RetryPolicy
    Invokes an operation up to ``max_attempts`` times.

Functions
---------
default_classifier
    Classifies this package's own exception types.

Example
-------
>>> policy = RetryPolicy(max_attempts=3, base_delay=1.0)
>>> count = policy.call(provider.count_resources, scope, "us-east-1", "compute")

Notes
-----
The wait after a failed attempt ``n`` (counted from 0) is
``base_delay * 2**n`` seconds. Attempts, waits and the retry decision
are driven by a ``tenacity.Retrying`` controller built per call. Waiting
happens on the calling worker thread, so sibling tasks in the same pool
keep running.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from posture_estimator.core.exceptions import (
    CredentialsError,
    NotSupportedError,
    PermissionDeniedError,
    ScopeUnavailableError,
    TransientError,
)

# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Coarse category of a remote call failure."""

    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"
    NOT_SUPPORTED = "not_supported"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.UNKNOWN)


def default_classifier(exc: BaseException) -> ErrorKind:
    """
    Classify this package's exception types.

    Provider adapters extend this with their SDK's error codes.
    """
    if isinstance(exc, (CredentialsError, PermissionDeniedError, ScopeUnavailableError)):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, NotSupportedError):
        return ErrorKind.NOT_SUPPORTED
    if isinstance(exc, (TransientError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


class RetryPolicy:
    """
    Invoke an operation with bounded retries and exponential backoff.

    Parameters
    ----------
    max_attempts : int, default=3
        Total attempts, including the first one.
    base_delay : float, default=1.0
        Seconds; multiplied by ``2**attempt`` between attempts.
    classifier : callable, optional
        Maps an exception to an :class:`ErrorKind`. Only retryable kinds
        (transient, unknown) are retried; the rest propagate at once.
    sleep : callable, optional
        Waiting function, ``time.sleep`` by default.

    Examples
    --------
    >>> policy = RetryPolicy(max_attempts=3, base_delay=0.5)
    >>> policy.delay_for(0), policy.delay_for(1)
    (0.5, 1.0)

    Operations that keep failing surface their last error:

    >>> policy.call(always_fails)
    Traceback (most recent call last):
    ...
    TransientError: ...
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        classifier: Optional[Callable[[BaseException], ErrorKind]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.classifier = classifier or default_classifier
        self._sleep = sleep or time.sleep

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (from 0)."""
        return self.base_delay * (2 ** attempt)

    def call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Invoke ``operation(*args, **kwargs)`` until it succeeds.

        Returns
        -------
        Any
            The operation's return value.

        Raises
        ------
        Exception
            The final failure once attempts are exhausted, or the first
            non-retryable failure.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay),
            retry=retry_if_exception(lambda e: self.classifier(e).retryable),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        try:
            return retrying(operation, *args, **kwargs)
        except Exception as e:
            if self.classifier(e).retryable:
                name = getattr(operation, "__name__", repr(operation))
                logger.debug(
                    f"{name} failed after {self.max_attempts} attempts: {e}"
                )
            raise

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"base_delay={self.base_delay})"
        )
