"""
Per-row result tracking and the CSV result report.
"""

import os
import csv
import logging
from datetime import datetime
from typing import Dict, List, Any

logger = logging.getLogger(__name__)

REPORT_FIELDS = ['timestamp', 'category', 'file', 'line', 'target', 'outcome', 'message']

SUCCESS_OUTCOMES = ('created', 'exists', 'applied', 'planned')


class RowResult:
    """Outcome of provisioning one CSV row."""

    def __init__(self, category: str, file: str, line: int, target: str, outcome: str, message: str = ''):
        self.timestamp = datetime.now()
        self.category = category
        self.file = file
        self.line = line
        self.target = target
        self.outcome = outcome
        self.message = message

    @property
    def failed(self) -> bool:
        return self.outcome not in SUCCESS_OUTCOMES

    def as_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'category': self.category,
            'file': self.file,
            'line': self.line,
            'target': self.target,
            'outcome': self.outcome,
            'message': self.message,
        }

    def __repr__(self):
        return f"RowResult({self.category!r}, line={self.line}, target={self.target!r}, outcome={self.outcome!r})"


class RunReport:
    """Collects row results for a run and writes them as CSV."""

    def __init__(self):
        self.results: List[RowResult] = []

    def add(self, result: RowResult) -> RowResult:
        self.results.append(result)
        return result

    def failures(self) -> List[RowResult]:
        return [result for result in self.results if result.failed]

    def outcome_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            counts[result.outcome] = counts.get(result.outcome, 0) + 1
        return counts

    def write_csv(self, path: str) -> str:
        """
        Write all results to a CSV file, creating the parent directory.

        Returns:
            The path written
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
            writer.writeheader()
            for result in self.results:
                writer.writerow(result.as_dict())

        logger.info(f"Wrote result report with {len(self.results)} rows to {path}")
        return path
