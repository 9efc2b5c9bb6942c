"""
CSV Reporter Module
===================

Exports plan line items to the CSV consumed by the billing system.

Classes
-------
CSVReporter
    Main reporter class for CSV export.

Example
-------
>>> from posture_estimator.reporters import CSVReporter
>>>
>>> reporter = CSVReporter(output_path="estimate.csv")
>>> filepath = reporter.report(summary)
>>> print(f"Results saved to: {filepath}")

Output Format
-------------
One header row followed by one row per line item. The header is fixed
and no metadata rows are written, so the file can be loaded as is.

Example output::

    ScopeId,EnvironmentName,ResourcesCount,BillableUnits,PlanName,EnvironmentType
    123456789012,,12,730,cloudposture,AWS
    123456789012,,4,730,virtualmachines,AWS
    123456789012,,1,12.5,containers,AWS

See Also
--------
CLIReporter : For terminal display.
JSONReporter : For programmatic access.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional

from posture_estimator.core.models import PlanLineItem
from posture_estimator.core.results import RunSummary

# Module logger
logger = logging.getLogger(__name__)


class CSVReporter:
    """
    Reporter for exporting plan line items to CSV.

    Parameters
    ----------
    output_path : str, optional
        Path for the output file. If not provided, generates a
        timestamped filename in the current directory.

    Examples
    --------
    Export to specific file:

    >>> reporter = CSVReporter(output_path="./reports/aws.csv")
    >>> filepath = reporter.report(summary)

    Auto-generate filename:

    >>> reporter = CSVReporter()
    >>> filepath = reporter.report(summary)
    >>> print(filepath)  # e.g., 'aws_estimate_20240115_103000.csv'
    """

    COLUMNS = [
        "ScopeId",
        "EnvironmentName",
        "ResourcesCount",
        "BillableUnits",
        "PlanName",
        "EnvironmentType",
    ]

    def __init__(self, output_path: Optional[str] = None) -> None:
        """Initialize the CSV reporter with an optional output path."""
        self.output_path = output_path
        logger.debug(f"Initialized CSVReporter (output_path={output_path})")

    def _get_output_path(self, environment: str) -> Path:
        if self.output_path:
            return Path(self.output_path)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return Path(f"{environment.lower()}_estimate_{timestamp}.csv")

    def report(self, summary: RunSummary) -> str:
        """
        Write every line item of a run.

        Parameters
        ----------
        summary : RunSummary
            Results of the run.

        Returns
        -------
        str
            Path to the created CSV file.
        """
        output_path = self._get_output_path(summary.environment.value)
        if output_path.parent != Path("."):
            output_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Exporting {len(summary.line_items)} line items to {output_path}")

        with open(output_path, "w", newline="", encoding="utf-8") as csvfile:
            self.write(csvfile, summary.line_items)

        logger.info(f"CSV export complete: {output_path}")
        return str(output_path)

    def write(self, stream: Any, line_items: Iterable[PlanLineItem]) -> None:
        """Write the header and rows to an open text stream."""
        writer = csv.writer(stream, quoting=csv.QUOTE_MINIMAL)
        writer.writerow(self.COLUMNS)
        for item in line_items:
            writer.writerow(self._format_row(item))

    def _format_row(self, item: PlanLineItem) -> List[Any]:
        row = item.to_dict()
        row["BillableUnits"] = self._format_units(item.billable_units)
        return [row[column] for column in self.COLUMNS]

    @staticmethod
    def _format_units(value: float) -> str:
        """
        Render billable units without a trailing ``.0``.

        >>> CSVReporter._format_units(730)
        '730'
        >>> CSVReporter._format_units(12.5)
        '12.5'
        """
        if float(value).is_integer():
            return str(int(value))
        return f"{value:.2f}".rstrip("0")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"CSVReporter(output_path={self.output_path!r})"
