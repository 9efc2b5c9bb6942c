"""
Cloud provider adapters.

Each adapter implements :class:`CloudProvider` for one cloud. The
Azure and GCP SDKs are optional extras imported on first use.
"""

from posture_estimator.core.config import RunConfig
from posture_estimator.core.models import EnvironmentType
from posture_estimator.providers.aws import AWSClient, AWSProvider
from posture_estimator.providers.azure import AzureProvider
from posture_estimator.providers.base import CloudProvider, ScopeEnumerator
from posture_estimator.providers.gcp import GCPProvider

PROVIDERS = {
    EnvironmentType.AWS: AWSProvider,
    EnvironmentType.AZURE: AzureProvider,
    EnvironmentType.GCP: GCPProvider,
}


def build_provider(config: RunConfig) -> CloudProvider:
    """Instantiate the adapter for ``config.environment``."""
    return PROVIDERS[config.environment](config)


__all__ = [
    "AWSClient",
    "AWSProvider",
    "AzureProvider",
    "CloudProvider",
    "GCPProvider",
    "PROVIDERS",
    "ScopeEnumerator",
    "build_provider",
]
