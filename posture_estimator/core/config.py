"""
Run Configuration Module
========================

Explicit, immutable configuration for one estimation run.

A single :class:`RunConfig` is built by the CLI and handed to the
provider, the engine and the concurrency controller. Nothing reads
process-wide settings after it is built.

Example
-------
>>> from posture_estimator.core.config import RunConfig
>>> from posture_estimator.core.models import EnvironmentType
>>>
>>> config = RunConfig(environment=EnvironmentType.AWS, max_workers=5)
>>> config.metric_window_days
30
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from posture_estimator.core.exceptions import ConfigurationError
from posture_estimator.core.models import EnvironmentType


class MetricErrorPolicy(str, Enum):
    """
    What the core estimator does when a metric query fails.

    FALLBACK
        Use unscaled cores immediately.
    RETRY
        Run the query through the retry policy, then fall back.
    """

    FALLBACK = "fallback"
    RETRY = "retry"


@dataclass(frozen=True)
class RunConfig:
    """
    Settings for one estimation run.

    Parameters
    ----------
    environment : EnvironmentType
        Cloud being inventoried.
    max_workers : int, default=10
        Scope units processed simultaneously.
    max_region_workers : int, optional
        Cap on regions counted simultaneously within one scope unit.
        None means one worker per region.
    retry_attempts : int, default=3
        Attempts per remote call.
    retry_base_delay : float, default=1.0
        Seconds; the wait after attempt ``n`` is ``base * 2**n``.
    metric_window_days : int, default=30
        Trailing window for the scaling group size metric.
    metric_period_seconds : int, default=86400
        Metric granularity (daily).
    metric_error_policy : MetricErrorPolicy, default=FALLBACK
        Behaviour on metric query errors.
    regions : tuple of str, optional
        Region allow-list. None counts every discovered region.
    profile : str, optional
        Named credentials profile (AWS).
    role_name : str, default="OrganizationAccountAccessRole"
        Role assumed in member accounts (AWS organizations).
    use_organization : bool, default=True
        Enumerate organization members instead of the caller only.
    request_timeout : int, default=30
        Per-request SDK timeout in seconds.
    """

    environment: EnvironmentType
    max_workers: int = 10
    max_region_workers: Optional[int] = None
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    metric_window_days: int = 30
    metric_period_seconds: int = 86400
    metric_error_policy: MetricErrorPolicy = MetricErrorPolicy.FALLBACK
    regions: Optional[Tuple[str, ...]] = None
    profile: Optional[str] = None
    role_name: str = "OrganizationAccountAccessRole"
    use_organization: bool = True
    request_timeout: int = 30
    extra: Tuple[Tuple[str, str], ...] = field(default=())

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if self.max_workers < 1:
            raise ConfigurationError(
                "max_workers must be at least 1",
                details={"max_workers": self.max_workers},
            )
        if self.max_region_workers is not None and self.max_region_workers < 1:
            raise ConfigurationError(
                "max_region_workers must be at least 1",
                details={"max_region_workers": self.max_region_workers},
            )
        if self.retry_attempts < 1:
            raise ConfigurationError(
                "retry_attempts must be at least 1",
                details={"retry_attempts": self.retry_attempts},
            )
        if self.retry_base_delay < 0:
            raise ConfigurationError("retry_base_delay must be >= 0")
        if self.metric_window_days < 1 or self.metric_period_seconds < 1:
            raise ConfigurationError(
                "Metric window and period must be positive",
                details={
                    "metric_window_days": self.metric_window_days,
                    "metric_period_seconds": self.metric_period_seconds,
                },
            )

    def option(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a provider-specific ``extra`` setting."""
        for name, value in self.extra:
            if name == key:
                return value
        return default
