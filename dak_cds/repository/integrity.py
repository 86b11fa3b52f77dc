"""Rule integrity verification and DAK compliance reporting.

The integrity check is diagnostic: every problem becomes an
IntegrityIssue in the report and nothing is raised, so a bad rule never
blocks evaluation of the rest.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models import EVIDENCE_RATINGS, MODULE_CODE_PATTERN, DecisionRule
from ..normalizer.vocabulary import MODULE_VOCABULARY

logger = logging.getLogger(__name__)


class IssueSeverity(str, Enum):
    ERROR = "error"        # Rule does not count as valid
    WARNING = "warning"    # Recommended fix; rule still valid


class IssueType(str, Enum):
    MISSING_DAK_REFERENCE = "missing_dak_reference"
    MISSING_WHO_REFERENCE = "missing_who_reference"
    MISSING_DECISION_MESSAGE = "missing_decision_message"
    MISSING_MODULE_CODE = "missing_module_code"
    INVALID_MODULE_FORMAT = "invalid_module_format"
    INVALID_EVIDENCE_RATING = "invalid_evidence_rating"
    EMPTY_TRIGGER = "empty_trigger"
    EMPTY_RECOMMENDATIONS = "empty_recommendations"
    UNKNOWN_OBSERVATION_KEY = "unknown_observation_key"
    DUPLICATE_ACTIVE_RULE = "duplicate_active_rule"
    MISSING_GUIDELINE_VERSION = "missing_guideline_version"
    UNVALIDATED_MODULE = "unvalidated_module"


@dataclass(frozen=True)
class IntegrityIssue:
    rule_id: int | None
    rule_code: str
    module_code: str | None
    issue_type: IssueType
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_code": self.rule_code,
            "module_code": self.module_code,
            "issue_type": self.issue_type.value,
            "issue": self.message,
            "severity": self.severity.value,
        }


def _percent(part: int, total: int) -> float:
    if total == 0:
        return 100.0
    return round(part / total * 100, 1)


@dataclass
class IntegrityReport:
    """Result of one integrity check over the active rule set."""
    total_rules: int = 0
    valid_rules: int = 0
    issues: list[IntegrityIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.now)

    @property
    def issues_found(self) -> int:
        return len(self.issues)

    def count(self, issue_type: IssueType) -> int:
        """Number of distinct rules carrying an issue of this type."""
        return len({(i.rule_id, i.rule_code) for i in self.issues if i.issue_type == issue_type})

    @property
    def errors(self) -> list[IntegrityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[IntegrityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]

    def compliance(self) -> dict[str, float]:
        """Percentage compliance per DAK dimension.

        An empty rule set is reported as fully compliant.
        """
        total = self.total_rules
        traceable = total - len({
            (i.rule_id, i.rule_code) for i in self.issues
            if i.issue_type in (IssueType.MISSING_DAK_REFERENCE, IssueType.MISSING_WHO_REFERENCE)
        })
        module_bad = len({
            (i.rule_id, i.rule_code) for i in self.issues
            if i.issue_type in (IssueType.MISSING_MODULE_CODE, IssueType.INVALID_MODULE_FORMAT)
        })
        return {
            "dak_traceability": _percent(traceable, total),
            "decision_support": _percent(total - self.count(IssueType.MISSING_DECISION_MESSAGE), total),
            "module_compliance": _percent(total - module_bad, total),
            "overall_compliance": _percent(self.valid_rules, total),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rules": self.total_rules,
            "valid_rules": self.valid_rules,
            "issues_found": self.issues_found,
            "issues": [i.to_dict() for i in self.issues],
            "summary": {t.value: self.count(t) for t in IssueType if self.count(t)},
            "checked_at": self.checked_at.isoformat(),
        }


class IntegrityChecker:
    """Validate active rules for DAK traceability and evaluability.

    Checks per active rule:
    1. dak_source_id and who_guideline_ref present
    2. decision support message and module code present and well-formed
    3. evidence rating in A-D
    4. at least one trigger clause, each on a known observation key
    5. at least one recommendation
    Across rules: no rule code active more than once.
    """

    def __init__(self, vocabulary: Mapping[str, Mapping[str, Any]] = MODULE_VOCABULARY):
        self.vocabulary = vocabulary

    def check(self, rules: Iterable[DecisionRule]) -> IntegrityReport:
        active = [r for r in rules if r.is_active]
        report = IntegrityReport(total_rules=len(active))

        invalid: set[int] = set()
        for index, rule in enumerate(active):
            rule_issues = self._check_rule(rule)
            if any(i.severity == IssueSeverity.ERROR for i in rule_issues):
                invalid.add(index)
            report.issues.extend(rule_issues)

        by_code: dict[str, list[int]] = defaultdict(list)
        for index, rule in enumerate(active):
            by_code[rule.rule_code].append(index)
        for code, indexes in by_code.items():
            if len(indexes) < 2:
                continue
            for index in indexes:
                rule = active[index]
                invalid.add(index)
                report.issues.append(IntegrityIssue(
                    rule.id, code, rule.module_code, IssueType.DUPLICATE_ACTIVE_RULE,
                    f"Rule code active {len(indexes)} times (version {rule.version})",
                ))

        report.valid_rules = len(active) - len(invalid)

        if report.issues:
            logger.warning(
                f"Integrity check found {report.issues_found} issue(s) "
                f"across {len(active)} active rule(s)"
            )
        else:
            logger.info(f"Integrity check passed for {len(active)} active rule(s)")
        return report

    def _check_rule(self, rule: DecisionRule) -> list[IntegrityIssue]:
        issues = []

        def add(issue_type, message, severity=IssueSeverity.ERROR):
            issues.append(IntegrityIssue(
                rule.id, rule.rule_code, rule.module_code, issue_type, message, severity,
            ))

        if not rule.dak_source_id:
            add(IssueType.MISSING_DAK_REFERENCE, "Missing DAK source reference")
        if not rule.who_guideline_ref:
            add(IssueType.MISSING_WHO_REFERENCE, "Missing WHO guideline reference")
        if not rule.decision_support_message:
            add(IssueType.MISSING_DECISION_MESSAGE, "Missing decision support message")

        if not rule.module_code:
            add(IssueType.MISSING_MODULE_CODE, "Missing module code")
        elif not MODULE_CODE_PATTERN.match(rule.module_code):
            add(IssueType.INVALID_MODULE_FORMAT, f"Invalid module code format '{rule.module_code}'")

        if rule.evidence_rating not in EVIDENCE_RATINGS:
            add(
                IssueType.INVALID_EVIDENCE_RATING,
                f"Invalid evidence rating '{rule.evidence_rating}'. Must be A, B, C, or D",
            )

        if not rule.trigger_conditions:
            add(IssueType.EMPTY_TRIGGER, "Rule has no trigger conditions and can never fire")
        else:
            known = self.vocabulary.get(rule.module_code or "")
            if known is None:
                add(
                    IssueType.UNVALIDATED_MODULE,
                    f"No observation vocabulary for module '{rule.module_code}'; "
                    "trigger keys not validated",
                    IssueSeverity.WARNING,
                )
            else:
                for key in sorted(rule.observation_keys - set(known)):
                    add(
                        IssueType.UNKNOWN_OBSERVATION_KEY,
                        f"Trigger references unknown observation '{key}' for {rule.module_code}",
                    )

        if not rule.recommendations:
            add(IssueType.EMPTY_RECOMMENDATIONS, "Rule has no recommendations")

        if not rule.guideline_version:
            add(
                IssueType.MISSING_GUIDELINE_VERSION,
                "Missing guideline version - recommend adding for traceability",
                IssueSeverity.WARNING,
            )
        return issues
