"""
JSON Reporter Module
====================

Exports run results to JSON for programmatic access.

The JSON document carries the same line items as the CSV plus run
metadata and per-scope detail (counts per category, degraded
categories, scaling group samples).

Classes
-------
JSONReporter
    Main reporter class for JSON export.

Example
-------
>>> from posture_estimator.reporters import JSONReporter
>>>
>>> reporter = JSONReporter(output_path="estimate.json")
>>> filepath = reporter.report(summary)
>>>
>>> # Or get as string
>>> json_str = reporter.to_string(summary)

Output Structure
----------------
::

    {
      "metadata": {
        "environment_type": "AWS",
        "started_at": "2024-01-15T10:30:00+00:00",
        "scopes_discovered": 3,
        "scopes_processed": 2,
        "failed_scopes": {"222222222222": "Cannot assume ..."}
      },
      "totals_by_plan": {"cloudposture": 40, ...},
      "line_items": [
        {"ScopeId": "111111111111", "PlanName": "cloudposture", ...}
      ],
      "scopes": [
        {"scope_id": "111111111111", "counts": {...}, "core_estimate": 8.0, ...}
      ]
    }

See Also
--------
CLIReporter : For terminal display.
CSVReporter : For the billing CSV.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from posture_estimator.core.results import RunSummary

# Module logger
logger = logging.getLogger(__name__)


class JSONReporter:
    """
    Reporter for exporting run results to JSON.

    Parameters
    ----------
    output_path : str, optional
        Path for the output file. If not provided, generates a
        timestamped filename in the current directory.
    indent : int, default=2
        JSON indentation level. None gives compact output.

    Examples
    --------
    >>> reporter = JSONReporter(output_path="estimate.json")
    >>> filepath = reporter.report(summary)

    Compact output:

    >>> JSONReporter(indent=None).to_string(summary)
    """

    def __init__(
        self,
        output_path: Optional[str] = None,
        indent: Optional[int] = 2,
    ) -> None:
        """Initialize the JSON reporter with optional output path and indentation."""
        self.output_path = output_path
        self.indent = indent
        logger.debug(f"Initialized JSONReporter (output_path={output_path})")

    def _get_output_path(self, environment: str) -> Path:
        if self.output_path:
            return Path(self.output_path)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return Path(f"{environment.lower()}_estimate_{timestamp}.json")

    def report(self, summary: RunSummary) -> str:
        """
        Export run results to a JSON file.

        Returns
        -------
        str
            Path to the created JSON file.
        """
        output_path = self._get_output_path(summary.environment.value)
        if output_path.parent != Path("."):
            output_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Exporting {len(summary.line_items)} line items to {output_path}")

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(summary), f, indent=self.indent, default=str)

        logger.info(f"JSON export complete: {output_path}")
        return str(output_path)

    def to_string(self, summary: RunSummary) -> str:
        """Convert run results to a JSON string without writing a file."""
        return json.dumps(self.to_dict(summary), indent=self.indent, default=str)

    def to_dict(self, summary: RunSummary) -> Dict[str, Any]:
        """
        Convert run results to a Python dictionary.

        Example
        -------
        >>> data = JSONReporter().to_dict(summary)
        >>> data["metadata"]["scopes_processed"]
        2
        """
        data = summary.to_dict()
        return {
            "metadata": {
                "environment_type": data["environment_type"],
                "started_at": data["started_at"],
                "scopes_discovered": data["scopes_discovered"],
                "scopes_processed": data["scopes_processed"],
                "failed_scopes": data["failed_scopes"],
                "total_core_estimate": round(summary.total_core_estimate, 2),
            },
            "totals_by_plan": data["totals_by_plan"],
            "line_items": data["line_items"],
            "scopes": data["scopes"],
        }

    def __repr__(self) -> str:
        """Return string representation."""
        return f"JSONReporter(output_path={self.output_path!r}, indent={self.indent})"
