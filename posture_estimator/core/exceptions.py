"""
Custom Exceptions for Posture Estimator
=======================================

This module defines a hierarchy of custom exceptions used throughout
the application for consistent error handling and reporting.

Exception Hierarchy
-------------------
::

    EstimatorError (base)
    ├── ProviderError
    │   ├── CredentialsError
    │   ├── ScopeUnavailableError
    │   ├── PermissionDeniedError
    │   ├── NotSupportedError
    │   └── TransientError
    ├── CountingError
    └── ConfigurationError

Example
-------
>>> from posture_estimator.core.exceptions import ScopeUnavailableError
>>>
>>> try:
...     bound = provider.connect(scope)
... except ScopeUnavailableError as e:
...     print(f"Skipping {scope.id}: {e}")
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EstimatorError(Exception):
    """
    Base exception for all Posture Estimator errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    details : dict, optional
        Additional context about the error.

    Example
    -------
    >>> raise EstimatorError("Something went wrong", details={"code": 500})
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for serialization.

        Returns
        -------
        dict
            Dictionary representation of the error.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(EstimatorError):
    """
    Base exception for cloud provider errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    provider : str, optional
        The provider that raised the error ('AWS', 'Azure', 'GCP').
    scope_id : str, optional
        The scope unit (account/subscription/project) involved.
    details : dict, optional
        Additional context about the error.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        scope_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.provider = provider
        self.scope_id = scope_id
        full_details = details or {}
        if provider:
            full_details["provider"] = provider
        if scope_id:
            full_details["scope_id"] = scope_id
        super().__init__(message, full_details)


class CredentialsError(ProviderError):
    """
    Raised when base credentials are invalid, missing, or expired.

    Example
    -------
    >>> raise CredentialsError(
    ...     "AWS credentials not found",
    ...     provider="AWS",
    ...     details={"hint": "Run 'aws configure' to set up credentials"}
    ... )
    """

    pass


class ScopeUnavailableError(ProviderError):
    """
    Raised when a single scope unit cannot be accessed.

    Typical causes are a role that cannot be assumed or a subscription
    the caller has no credentials for. Only the affected scope unit is
    skipped.
    """

    pass


class PermissionDeniedError(ProviderError):
    """Raised when the caller lacks permission for one listing call."""

    pass


class NotSupportedError(ProviderError):
    """
    Raised when a provider does not offer a capability.

    Example
    -------
    >>> raise NotSupportedError(
    ...     "Azure has no per-pool instance count metric",
    ...     provider="Azure",
    ... )
    """

    pass


class TransientError(ProviderError):
    """Raised for throttling, timeouts and other retryable failures."""

    pass


# =============================================================================
# Engine Exceptions
# =============================================================================


class CountingError(EstimatorError):
    """
    Raised when a resource category cannot be counted.

    Parameters
    ----------
    message : str
        Human-readable error message.
    category : str, optional
        The resource category being counted.
    partition : str, optional
        The region being counted.
    details : dict, optional
        Additional context about the error.
    """

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        partition: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.category = category
        self.partition = partition
        full_details = details or {}
        if category:
            full_details["category"] = category
        if partition:
            full_details["partition"] = partition
        super().__init__(message, full_details)


class ConfigurationError(EstimatorError):
    """
    Raised for fatal configuration problems.

    Covers invalid run settings and the case where no scope unit can
    be discovered at all, which aborts the whole run.
    """

    pass
