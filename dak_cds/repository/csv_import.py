"""DAK rule CSV parsing.

Rule sheets are exported from the DAK authoring spreadsheets. Five
columns carry JSON inside the CSV cell (recommendations,
trigger_conditions, clinical_thresholds, and their quoted quotes); those
are parsed into DecisionRule structures here and never passed on as text.

Rows are read lazily so a large sheet is never held in memory at once.
"""

import csv
import json
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, TextIO

from ..exceptions import ImportAbortedError, ValidationError
from ..models import (
    EVIDENCE_RATINGS,
    MODULE_CODE_PATTERN,
    AlertSeverity,
    DecisionRule,
    RuleStatus,
    parse_trigger_conditions,
    parse_version,
)

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("rule_identifier", "display_to_health_worker", "applicable_module")

DAK_CSV_COLUMNS = (
    "rule_identifier",
    "dak_source_id",
    "guideline_doc_version",
    "evidence_rating",
    "display_to_health_worker",
    "applicable_module",
    "is_rule_active",
    "rule_name",
    "rule_description",
    "alert_severity",
    "alert_title",
    "alert_message",
    "recommendations",
    "trigger_conditions",
    "who_guideline_ref",
    "clinical_thresholds",
    "version",
)


class RowRejected(ValidationError):
    """A single CSV row cannot become a rule. The batch continues."""

    def __init__(self, reason: str, message: str, rule_code: str | None = None):
        super().__init__(message, details={"reason": reason})
        self.reason = reason
        self.rule_code = rule_code


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_json_cell(row: Mapping[str, Any], column: str, rule_code: str) -> Any:
    text = _clean(row.get(column))
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise RowRejected(
            "malformed_json",
            f"Column '{column}' is not valid JSON: {e.msg}",
            rule_code,
        ) from e


def _parse_active(value: Any) -> bool:
    text = _clean(value)
    if text is None:
        return True
    return text.lower() in ("true", "1", "yes", "y")


def parse_rule_row(row: Mapping[str, Any]) -> DecisionRule:
    """Build a DecisionRule from one DAK CSV row.

    Raises:
        RowRejected: With a reason code naming what is wrong with the row.
    """
    rule_code = _clean(row.get("rule_identifier"))
    message = _clean(row.get("display_to_health_worker"))
    module = _clean(row.get("applicable_module"))

    if not rule_code or not message or not module:
        raise RowRejected(
            "missing_required_fields",
            "Missing required fields (rule_identifier, display_to_health_worker, applicable_module)",
            rule_code,
        )

    module = module.upper()
    if not MODULE_CODE_PATTERN.match(module):
        raise RowRejected(
            "invalid_module_code",
            f"Invalid module_code format '{module}'. Must contain only uppercase "
            "letters, numbers, and underscores",
            rule_code,
        )

    evidence = _clean(row.get("evidence_rating"))
    if evidence is not None:
        evidence = evidence[0].upper()
        if evidence not in EVIDENCE_RATINGS:
            raise RowRejected(
                "invalid_evidence_rating",
                f"Invalid evidence_rating '{row.get('evidence_rating')}'. Must be A, B, C, or D",
                rule_code,
            )

    recommendations = _parse_json_cell(row, "recommendations", rule_code)
    raw_trigger = _parse_json_cell(row, "trigger_conditions", rule_code)
    thresholds = _parse_json_cell(row, "clinical_thresholds", rule_code)

    if recommendations is None:
        recommendations = []
    elif isinstance(recommendations, str):
        recommendations = [recommendations]
    elif not isinstance(recommendations, list):
        raise RowRejected("malformed_json", "recommendations must be a JSON array", rule_code)

    if thresholds is None:
        thresholds = {}
    elif not isinstance(thresholds, dict):
        raise RowRejected("malformed_json", "clinical_thresholds must be a JSON object", rule_code)

    try:
        trigger = parse_trigger_conditions(raw_trigger)
    except ValidationError as e:
        raise RowRejected("invalid_trigger", e.message, rule_code) from e

    try:
        severity = AlertSeverity.parse(row.get("alert_severity"))
    except ValidationError as e:
        raise RowRejected("invalid_severity", e.message, rule_code) from e

    version = _clean(row.get("version")) or "1.0"
    try:
        parse_version(version)
    except ValidationError as e:
        raise RowRejected("invalid_version", e.message, rule_code) from e

    return DecisionRule(
        rule_code=rule_code,
        module_code=module,
        rule_name=_clean(row.get("rule_name")) or rule_code,
        rule_description=_clean(row.get("rule_description")),
        decision_support_message=message,
        alert_severity=severity,
        alert_title=_clean(row.get("alert_title")) or rule_code,
        alert_message=_clean(row.get("alert_message")) or message,
        recommendations=[str(r) for r in recommendations],
        trigger_conditions=trigger,
        clinical_thresholds=thresholds,
        dak_source_id=_clean(row.get("dak_source_id")),
        guideline_version=_clean(row.get("guideline_doc_version")),
        evidence_rating=evidence,
        who_guideline_ref=_clean(row.get("who_guideline_ref")),
        version=version,
        status=RuleStatus.ACTIVE if _parse_active(row.get("is_rule_active")) else RuleStatus.INACTIVE,
    )


def iter_csv_rows(stream: TextIO) -> Iterator[dict[str, str]]:
    """Yield DAK CSV rows one at a time after validating the header.

    Blank header cells keep their column position; their values are dropped.

    Raises:
        ImportAbortedError: If the sheet is empty, lacks required headers,
            is not valid UTF-8 or is not parseable as CSV.
    """
    try:
        reader = csv.DictReader(stream)
        headers = [h.strip() if h else "" for h in (reader.fieldnames or [])]
        if not any(headers):
            raise ImportAbortedError("CSV data is empty")

        missing = [h for h in REQUIRED_HEADERS if h not in headers]
        if missing:
            raise ImportAbortedError(
                f"Missing required headers: {', '.join(missing)}",
                details={"missing_headers": missing},
            )
        reader.fieldnames = headers

        for row in reader:
            row.pop("", None)
            if not any(_clean(v) for v in row.values() if isinstance(v, str)):
                continue
            yield row
    except (UnicodeDecodeError, csv.Error) as e:
        raise ImportAbortedError(f"Could not parse CSV data: {e}") from e


def open_csv(path: str | Path) -> Iterator[dict[str, str]]:
    """Lazily read a DAK CSV file from disk.

    Raises:
        ImportAbortedError: If the file is missing or unreadable.
    """
    path = Path(path)
    if not path.exists():
        raise ImportAbortedError(f"File not found: {path}")
    logger.info(f"Streaming DAK CSV file: {path}")
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            yield from iter_csv_rows(f)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise ImportAbortedError(f"Could not read {path}: {e}") from e
