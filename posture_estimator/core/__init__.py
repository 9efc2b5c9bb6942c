"""
Core Components
===============

Provider-agnostic building blocks of an estimation run:

- :class:`RunConfig` - Immutable run settings
- :class:`RetryPolicy` - Exponential backoff around remote calls
- :class:`ConcurrencyController` / :class:`TaskPool` - Bounded worker pools
- :class:`RegionFanOut` - Per-region parallel counting of one scope unit
- :class:`ResourceCounter` - Per-category counting with degradation to 0
- :class:`CoreEstimator` - Time-averaged container core estimation
- :class:`PlanMapper` - Table-driven mapping of counts to plan line items
- :class:`ResultAggregator` - Thread-safe collection of line items
- Exception hierarchy for error handling

The orchestrating :class:`~posture_estimator.core.engine.EstimationEngine`
lives in :mod:`posture_estimator.core.engine`.

Example
-------
>>> from posture_estimator.core import RetryPolicy, PlanMapper
>>> from posture_estimator.core.models import EnvironmentType
>>>
>>> policy = RetryPolicy(max_attempts=3, base_delay=1.0)
>>> mapper = PlanMapper(EnvironmentType.GCP)

See Also
--------
posture_estimator.providers : Cloud adapters.
posture_estimator.reporters : Output formatters.
"""

from posture_estimator.core.config import MetricErrorPolicy, RunConfig
from posture_estimator.core.core_estimator import CoreEstimator, InstanceTypeCoreCache
from posture_estimator.core.exceptions import (
    ConfigurationError,
    CountingError,
    CredentialsError,
    EstimatorError,
    NotSupportedError,
    PermissionDeniedError,
    ProviderError,
    ScopeUnavailableError,
    TransientError,
)
from posture_estimator.core.plan_mapper import PLAN_TABLES, Billing, PlanMapper, PlanRule
from posture_estimator.core.pool import ConcurrencyController, TaskOutcome, TaskPool
from posture_estimator.core.region_manager import RegionFanOut
from posture_estimator.core.resource_counter import ResourceCounter
from posture_estimator.core.results import ResultAggregator, RunSummary, ScopeReport
from posture_estimator.core.retry import ErrorKind, RetryPolicy, default_classifier

__all__ = [
    # Configuration
    "RunConfig",
    "MetricErrorPolicy",
    # Retry
    "RetryPolicy",
    "ErrorKind",
    "default_classifier",
    # Concurrency
    "TaskPool",
    "TaskOutcome",
    "ConcurrencyController",
    "RegionFanOut",
    # Counting and estimation
    "ResourceCounter",
    "CoreEstimator",
    "InstanceTypeCoreCache",
    # Plans and results
    "PLAN_TABLES",
    "Billing",
    "PlanRule",
    "PlanMapper",
    "ResultAggregator",
    "ScopeReport",
    "RunSummary",
    # Exceptions - Base
    "EstimatorError",
    # Exceptions - Provider
    "ProviderError",
    "CredentialsError",
    "ScopeUnavailableError",
    "PermissionDeniedError",
    "NotSupportedError",
    "TransientError",
    # Exceptions - Counting / configuration
    "CountingError",
    "ConfigurationError",
]
