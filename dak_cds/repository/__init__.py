"""Rule Repository: versioned DAK rules, CSV ingestion, integrity and compliance."""

from .csv_import import DAK_CSV_COLUMNS, REQUIRED_HEADERS, RowRejected, iter_csv_rows, open_csv, parse_rule_row
from .integrity import IntegrityChecker, IntegrityIssue, IntegrityReport, IssueSeverity, IssueType
from .repository import ImportResult, ImportRowError, RuleRepository

__all__ = [
    "RuleRepository",
    "ImportResult",
    "ImportRowError",
    "IntegrityChecker",
    "IntegrityReport",
    "IntegrityIssue",
    "IssueSeverity",
    "IssueType",
    "DAK_CSV_COLUMNS",
    "REQUIRED_HEADERS",
    "RowRejected",
    "iter_csv_rows",
    "open_csv",
    "parse_rule_row",
]
