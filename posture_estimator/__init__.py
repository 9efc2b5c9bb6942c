"""
Posture Estimator: Multi-Cloud Resource Inventory & Billable-Unit Estimation
============================================================================

Inventories every account (AWS), subscription (Azure) or project (GCP)
reachable from one set of credentials, counts the billable resources in
each region, estimates container cores from scaling group history and
maps the totals to billing plan line items.

Modules
-------
core
    Engine components (retry, worker pools, counting, core estimation,
    plan mapping)
providers
    Cloud adapters (AWS, Azure, GCP)
reporters
    Output formatters (CLI, CSV, JSON)

Example
-------
>>> from posture_estimator import EstimationEngine, RunConfig
>>> from posture_estimator.core.models import EnvironmentType
>>> from posture_estimator.providers import build_provider
>>> from posture_estimator.reporters import CSVReporter
>>>
>>> config = RunConfig(environment=EnvironmentType.AWS, max_workers=10)
>>> summary = EstimationEngine(build_provider(config), config).run()
>>> CSVReporter("estimate.csv").report(summary)

Notes
-----
AWS credentials are resolved by boto3 (environment variables,
~/.aws/credentials, instance role). Azure uses DefaultAzureCredential
and GCP the application default credentials.
"""

__version__ = "0.1.0"
__author__ = "Posture Estimator Team"
__license__ = "MIT"

# Public API
from posture_estimator.core.config import RunConfig
from posture_estimator.core.engine import EstimationEngine
from posture_estimator.core.exceptions import EstimatorError
from posture_estimator.core.results import RunSummary

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Core classes
    "EstimationEngine",
    "EstimatorError",
    "RunConfig",
    "RunSummary",
]
