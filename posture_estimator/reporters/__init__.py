"""
Report Generators
=================

This module provides output formatters for estimation runs.

Each reporter transforms a RunSummary into a specific format suitable
for different use cases (terminal display, data export, API responses).

Available Reporters
-------------------
CLIReporter
    Rich terminal output with formatted tables and progress indicators.
CSVReporter
    CSV export for spreadsheet analysis and data processing.
JSONReporter
    JSON export for API integration and programmatic access.

Example
-------
>>> from posture_estimator.reporters import CLIReporter, CSVReporter, JSONReporter
>>>
>>> # Display in terminal
>>> CLIReporter().report(summary)
>>>
>>> # Billing CSV
>>> filepath = CSVReporter(output_path="./reports/aws.csv").report(summary)
>>>
>>> # Get as JSON
>>> json_str = JSONReporter().to_string(summary)

Output Formats
--------------
**CLI (Terminal)**
    - Run summary and skipped scope units
    - Line item table per scope unit
    - Totals per plan

**CSV**
    - Fixed header expected by the billing import
    - One row per plan line item

**JSON**
    - Line items plus run metadata
    - Per-scope counts, degraded categories and scaling group samples

See Also
--------
posture_estimator.core.results.RunSummary : Input data structure.
"""

from posture_estimator.reporters.cli_reporter import CLIReporter
from posture_estimator.reporters.csv_reporter import CSVReporter
from posture_estimator.reporters.json_reporter import JSONReporter

__all__ = [
    "CLIReporter",
    "CSVReporter",
    "JSONReporter",
]
