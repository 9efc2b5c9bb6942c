"""
Posture Estimator CLI - Multi-Cloud Billable Unit Estimation

Main entry point for the command-line interface.
"""

import logging
import sys
from typing import Optional, Tuple

import click
from rich.console import Console

from .core.config import MetricErrorPolicy, RunConfig
from .core.engine import EstimationEngine
from .core.exceptions import ConfigurationError, EstimatorError
from .core.logging import sdk_logging, setup_logging
from .core.models import EnvironmentType
from .core.plan_mapper import PLAN_TABLES
from .core.results import RunSummary
from .core.retry import RetryPolicy
from .providers import ScopeEnumerator, build_provider
from .reporters.cli_reporter import CLIReporter
from .reporters.csv_reporter import CSVReporter
from .reporters.json_reporter import JSONReporter


console = Console()

# Module logger
logger = logging.getLogger(__name__)

ENVIRONMENTS = {
    "aws": EnvironmentType.AWS,
    "azure": EnvironmentType.AZURE,
    "gcp": EnvironmentType.GCP,
}

environment_argument = click.argument(
    "environment",
    type=click.Choice(sorted(ENVIRONMENTS), case_sensitive=False),
)


def validate_regions(ctx, param, value: Optional[str]) -> Optional[Tuple[str, ...]]:
    """Validate and parse comma-separated region list."""
    if value is None:
        return None
    regions = [r.strip() for r in value.split(",") if r.strip()]
    if not regions:
        raise click.BadParameter("No valid regions specified")
    return tuple(regions)


def provider_options(func):
    """Credential and enumeration options shared by ``estimate`` and ``scopes``."""
    options = [
        click.option(
            "--profile",
            "-p",
            default=None,
            help="AWS profile name from ~/.aws/credentials",
        ),
        click.option(
            "--role-name",
            default="OrganizationAccountAccessRole",
            show_default=True,
            help="AWS role assumed in organization member accounts",
        ),
        click.option(
            "--organization/--single-account",
            default=True,
            help="AWS: enumerate organization accounts or only the caller's account",
        ),
        click.option(
            "--tenant-id",
            default=None,
            help="Azure tenant to authenticate against",
        ),
        click.option(
            "--parent",
            default=None,
            help="GCP: only projects under this node (organizations/ID or folders/ID)",
        ),
        click.option(
            "--timeout",
            default=30,
            type=int,
            show_default=True,
            help="Per-request SDK timeout in seconds",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="posture-estimator")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Console and file log level",
)
@click.option("--log-file", default=None, help="Also write logs to this file")
def cli(log_level: str, log_file: Optional[str]):
    """
    Posture Estimator: Multi-Cloud Billable Unit Estimation

    Inventories every AWS account, Azure subscription or GCP project
    reachable from your credentials and estimates the billable units of
    each security plan.
    """
    setup_logging(level=log_level, log_file=log_file)


@cli.command("estimate")
@environment_argument
@provider_options
@click.option(
    "--max-workers",
    default=10,
    type=int,
    show_default=True,
    help="Scope units processed in parallel",
)
@click.option(
    "--region-workers",
    default=None,
    type=int,
    help="Cap on regions counted in parallel per scope unit (default: all)",
)
@click.option(
    "--regions",
    callback=validate_regions,
    help="Comma-separated list of regions to count (e.g., us-east-1,us-west-2)",
)
@click.option(
    "--metric-errors",
    type=click.Choice([p.value for p in MetricErrorPolicy]),
    default=MetricErrorPolicy.FALLBACK.value,
    show_default=True,
    help="On metric query errors, fall back to unscaled cores or retry first",
)
@click.option(
    "--metric-window-days",
    default=30,
    type=int,
    show_default=True,
    help="Trailing window for the scaling group size average",
)
@click.option(
    "--output",
    "-o",
    default=None,
    help="Output file path (auto-detects format from extension)",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["cli", "csv", "json"]),
    default="csv",
    show_default=True,
    help="Output format",
)
@click.option(
    "--sdk-debug",
    is_flag=True,
    help="Log the cloud SDK's requests at DEBUG level",
)
def estimate(
    environment: str,
    profile: Optional[str],
    role_name: str,
    organization: bool,
    tenant_id: Optional[str],
    parent: Optional[str],
    timeout: int,
    max_workers: int,
    region_workers: Optional[int],
    regions: Optional[Tuple[str, ...]],
    metric_errors: str,
    metric_window_days: int,
    output: Optional[str],
    output_format: str,
    sdk_debug: bool,
):
    """
    Estimate billable units for every scope unit of a cloud.

    Examples:

        # All accounts of the AWS organization, CSV with a generated name
        posture-estimator estimate aws

        # Only the caller's account, two regions
        posture-estimator estimate aws --single-account --regions us-east-1,eu-west-1

        # Azure subscriptions of one tenant, to a given file
        posture-estimator estimate azure --tenant-id <tenant> -o azure.csv

        # GCP projects of a folder, JSON output
        posture-estimator estimate gcp --parent folders/123 -f json -o gcp.json

        # Terminal summary only
        posture-estimator estimate gcp --format cli
    """
    cli_reporter = CLIReporter(console)

    try:
        config = _build_config(
            environment,
            profile=profile,
            role_name=role_name,
            organization=organization,
            tenant_id=tenant_id,
            parent=parent,
            timeout=timeout,
            max_workers=max_workers,
            region_workers=region_workers,
            regions=regions,
            metric_errors=metric_errors,
            metric_window_days=metric_window_days,
        )
        provider = build_provider(config)
        engine = EstimationEngine(provider, config)

        cli_reporter.print_scanning_message(config.environment)

        with sdk_logging(config.environment, debug=sdk_debug):
            with cli_reporter.create_progress() as progress:
                summary = engine.run(
                    progress_callback=cli_reporter.progress_callback(progress)
                )

        _output_result(summary, cli_reporter, output, output_format)

    except ConfigurationError as e:
        cli_reporter.print_error(f"Configuration error: {e}")
        sys.exit(1)
    except EstimatorError as e:
        cli_reporter.print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Estimate cancelled by user.[/yellow]")
        sys.exit(130)
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        cli_reporter.print_error(str(e))
        sys.exit(1)


def _build_config(
    environment: str,
    profile: Optional[str] = None,
    role_name: str = "OrganizationAccountAccessRole",
    organization: bool = True,
    tenant_id: Optional[str] = None,
    parent: Optional[str] = None,
    timeout: int = 30,
    max_workers: int = 10,
    region_workers: Optional[int] = None,
    regions: Optional[Tuple[str, ...]] = None,
    metric_errors: str = MetricErrorPolicy.FALLBACK.value,
    metric_window_days: int = 30,
) -> RunConfig:
    """Translate CLI options into a :class:`RunConfig`."""
    extra = []
    if tenant_id:
        extra.append(("tenant_id", tenant_id))
    if parent:
        extra.append(("parent", parent))

    return RunConfig(
        environment=ENVIRONMENTS[environment.lower()],
        max_workers=max_workers,
        max_region_workers=region_workers,
        metric_window_days=metric_window_days,
        metric_error_policy=MetricErrorPolicy(metric_errors),
        regions=regions,
        profile=profile,
        role_name=role_name,
        use_organization=organization,
        request_timeout=timeout,
        extra=tuple(extra),
    )


def _output_result(
    summary: RunSummary,
    cli_reporter: CLIReporter,
    output: Optional[str],
    output_format: str,
) -> None:
    """Write the run results in the requested format."""
    output_file = None

    if output_format == "cli" and not output:
        cli_reporter.report(summary)
    elif output_format == "json" or (output and output.endswith(".json")):
        output_file = JSONReporter(output_path=output).report(summary)
        cli_reporter.report(summary)
    else:
        output_file = CSVReporter(output_path=output).report(summary)
        cli_reporter.report(summary)

    if summary.has_errors:
        cli_reporter.print_warning(
            "Some scope units or resource categories could not be counted; "
            "see above and the log for details."
        )
    cli_reporter.print_completion_message(output_file)


@cli.command("scopes")
@environment_argument
@provider_options
def list_scopes(
    environment: str,
    profile: Optional[str],
    role_name: str,
    organization: bool,
    tenant_id: Optional[str],
    parent: Optional[str],
    timeout: int,
):
    """List the accounts, subscriptions or projects that would be estimated."""
    cli_reporter = CLIReporter(console)
    try:
        config = _build_config(
            environment,
            profile=profile,
            role_name=role_name,
            organization=organization,
            tenant_id=tenant_id,
            parent=parent,
            timeout=timeout,
        )
        provider = build_provider(config)
        scopes = ScopeEnumerator(
            provider,
            RetryPolicy(
                max_attempts=config.retry_attempts,
                base_delay=config.retry_base_delay,
                classifier=provider.classify_error,
            ),
        ).enumerate()

        cli_reporter.print_scopes(config.environment, scopes)
        console.print(f"\n[bold]{len(scopes)} scope unit(s)[/bold]\n")

    except EstimatorError as e:
        cli_reporter.print_error(str(e))
        sys.exit(1)


@cli.command("plans")
@click.argument(
    "environment",
    required=False,
    type=click.Choice(sorted(ENVIRONMENTS), case_sensitive=False),
)
def list_plans(environment: Optional[str]):
    """Show which resource categories feed which plan."""
    cli_reporter = CLIReporter(console)
    if environment:
        targets = [ENVIRONMENTS[environment.lower()]]
    else:
        targets = list(PLAN_TABLES)

    for target in targets:
        cli_reporter.print_plan_table(target, PLAN_TABLES[target])
    console.print()


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
