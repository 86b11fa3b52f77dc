"""Data models for DAK-traceable clinical decision support.

This module defines:
- ModuleCode / AlertSeverity / Urgency / RuleStatus: controlled value sets
- Operator / TriggerClause: the structured predicate a rule fires on
- DecisionRule: one versioned, traceable clinical rule
- ClinicalObservationSet: the immutable, normalized input to evaluation
- Alert: one fired rule, as shown to the health worker
- RiskFactor / RiskAssessment: weighted-checklist scoring output
"""

import json
import math
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import ValidationError

MODULE_CODE_PATTERN = re.compile(r"^[A-Z0-9_]+$")
EVIDENCE_RATINGS = ("A", "B", "C", "D")


class ModuleCode(str, Enum):
    """Clinical modules that own rule sets."""
    ANC = "ANC"                                # Antenatal care
    ART = "ART"                                # Antiretroviral therapy
    PREP = "PREP"                              # Pre-exposure prophylaxis
    PHARMACOVIGILANCE = "PHARMACOVIGILANCE"    # Adverse drug reaction monitoring
    PNC = "PNC"                                # Postnatal care

    @classmethod
    def is_known(cls, value: str) -> bool:
        return value in cls._value2member_map_


class Urgency(str, Enum):
    """How quickly a fired alert must be acted on."""
    IMMEDIATE = "immediate"
    SAME_DAY = "same_day"
    ROUTINE = "routine"


class AlertSeverity(str, Enum):
    """Traffic-light alert severity used by the DAK rule sheets."""
    RED = "red"          # critical
    YELLOW = "yellow"    # warning
    GREEN = "green"      # info

    @classmethod
    def parse(cls, value: "AlertSeverity | str | None") -> "AlertSeverity":
        """Parse a severity, accepting the clinical aliases used in rule sheets.

        Raises:
            ValidationError: If the value is not a recognized severity.
        """
        if isinstance(value, AlertSeverity):
            return value
        if value is None or not str(value).strip():
            return cls.YELLOW
        key = str(value).strip().lower()
        try:
            return _SEVERITY_ALIASES[key]
        except KeyError:
            raise ValidationError(
                f"Invalid alert severity '{value}'", field="alert_severity"
            ) from None

    @property
    def priority(self) -> int:
        """Sort priority; lower surfaces first."""
        return {AlertSeverity.RED: 0, AlertSeverity.YELLOW: 1, AlertSeverity.GREEN: 2}[self]

    @property
    def urgency(self) -> Urgency:
        return {
            AlertSeverity.RED: Urgency.IMMEDIATE,
            AlertSeverity.YELLOW: Urgency.SAME_DAY,
            AlertSeverity.GREEN: Urgency.ROUTINE,
        }[self]


_SEVERITY_ALIASES = {
    "red": AlertSeverity.RED,
    "critical": AlertSeverity.RED,
    "high": AlertSeverity.RED,
    "urgent": AlertSeverity.RED,
    "yellow": AlertSeverity.YELLOW,
    "warning": AlertSeverity.YELLOW,
    "medium": AlertSeverity.YELLOW,
    "moderate": AlertSeverity.YELLOW,
    "green": AlertSeverity.GREEN,
    "info": AlertSeverity.GREEN,
    "low": AlertSeverity.GREEN,
}


class RuleStatus(str, Enum):
    """Rule lifecycle. Rules are never deleted, only superseded or deactivated."""
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"    # A newer version of the same rule code is active
    INACTIVE = "inactive"        # Deactivated by an administrator


# Allowed lifecycle transitions
RULE_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset({RuleStatus.ACTIVE, RuleStatus.INACTIVE}),
    RuleStatus.ACTIVE: frozenset({RuleStatus.SUPERSEDED, RuleStatus.INACTIVE}),
    RuleStatus.INACTIVE: frozenset({RuleStatus.ACTIVE, RuleStatus.SUPERSEDED}),
    RuleStatus.SUPERSEDED: frozenset(),
}


class Operator(str, Enum):
    """Comparison operators allowed in a trigger clause."""
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "=="
    IN = "in"

    @classmethod
    def parse(cls, value: "Operator | str") -> "Operator":
        if isinstance(value, Operator):
            return value
        symbol = str(value).strip().lower()
        symbol = _OPERATOR_ALIASES.get(symbol, symbol)
        try:
            return cls(symbol)
        except ValueError:
            raise ValidationError(
                f"Unknown trigger operator '{value}'", field="trigger_conditions"
            ) from None

    @property
    def is_numeric(self) -> bool:
        return self in (Operator.GT, Operator.GE, Operator.LT, Operator.LE)

    def apply(self, actual: Any, threshold: Any) -> bool:
        """Compare an observed value against the clause threshold.

        Raises:
            TypeError: If a numeric operator meets a non-numeric operand.
        """
        if self.is_numeric:
            if not is_number(actual) or not is_number(threshold):
                raise TypeError(
                    f"Operator '{self.value}' needs numeric operands, "
                    f"got {actual!r} and {threshold!r}"
                )
            if self is Operator.GT:
                return actual > threshold
            if self is Operator.GE:
                return actual >= threshold
            if self is Operator.LT:
                return actual < threshold
            return actual <= threshold

        if self is Operator.EQ:
            if isinstance(actual, frozenset):
                return _fold(threshold) in {_fold(v) for v in actual}
            return _values_equal(actual, threshold)

        # Operator.IN
        if not isinstance(threshold, (list, tuple, set, frozenset)):
            raise TypeError(f"Operator 'in' needs a list threshold, got {threshold!r}")
        allowed = {_fold(v) for v in threshold}
        if isinstance(actual, frozenset):
            return any(_fold(v) in allowed for v in actual)
        return _fold(actual) in allowed


_OPERATOR_ALIASES = {
    "=": "==",
    "eq": "==",
    "gt": ">",
    "gte": ">=",
    "ge": ">=",
    "lt": "<",
    "lte": "<=",
    "le": "<=",
}


def is_number(value: Any) -> bool:
    """True for int/float values, excluding booleans and NaN."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and not math.isnan(value)


def _fold(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _values_equal(actual: Any, threshold: Any) -> bool:
    if isinstance(actual, bool) and isinstance(threshold, str):
        return actual == (threshold.strip().lower() in ("yes", "true", "1"))
    if is_number(actual) and is_number(threshold):
        return actual == threshold
    return _fold(actual) == _fold(threshold)


@dataclass(frozen=True)
class TriggerClause:
    """One (observation key, operator, threshold) predicate."""
    observation_key: str
    operator: Operator
    threshold: Any

    def matches(self, observations: Mapping[str, Any]) -> bool:
        """Evaluate against observations; an absent key never matches."""
        if self.observation_key not in observations:
            return False
        return self.operator.apply(observations[self.observation_key], self.threshold)

    def to_dict(self) -> dict:
        return {
            "key": self.observation_key,
            "operator": self.operator.value,
            "value": list(self.threshold) if isinstance(self.threshold, tuple) else self.threshold,
        }


def parse_trigger_conditions(raw: Any) -> tuple[TriggerClause, ...]:
    """Parse the trigger_conditions structure of a DAK rule into clauses.

    Accepted shapes:
        [{"key": "systolicBP", "operator": ">=", "value": 160}, ...]
        {"all": [<clause>, ...]}
        {"systolicBP": {">=": 160}, "hivStatus": "positive", "dangerSigns": ["Fever"]}

    Raises:
        ValidationError: On an unknown operator or an unusable shape.
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Malformed trigger_conditions JSON: {e}", field="trigger_conditions"
            ) from e

    if isinstance(raw, dict) and "all" in raw:
        raw = raw["all"]

    clauses: list[TriggerClause] = []
    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                raise ValidationError(
                    f"Trigger clause must be an object, got {item!r}",
                    field="trigger_conditions",
                )
            key = item.get("key") or item.get("field") or item.get("observation")
            op = item.get("operator") or item.get("op") or "=="
            if "value" in item:
                threshold = item["value"]
            else:
                threshold = item.get("threshold")
            clauses.append(_build_clause(key, op, threshold))
    elif isinstance(raw, dict):
        for key, condition in raw.items():
            if isinstance(condition, dict):
                for op, threshold in condition.items():
                    clauses.append(_build_clause(key, op, threshold))
            elif isinstance(condition, list):
                clauses.append(_build_clause(key, Operator.IN, condition))
            else:
                clauses.append(_build_clause(key, Operator.EQ, condition))
    else:
        raise ValidationError(
            f"Unsupported trigger_conditions shape: {type(raw).__name__}",
            field="trigger_conditions",
        )
    return tuple(clauses)


def _build_clause(key: Any, op: Any, threshold: Any) -> TriggerClause:
    if not key or not isinstance(key, str):
        raise ValidationError("Trigger clause missing observation key", field="trigger_conditions")
    operator = Operator.parse(op)
    if operator.is_numeric and not is_number(threshold):
        raise ValidationError(
            f"Operator '{operator.value}' on '{key}' needs a numeric threshold, got {threshold!r}",
            field="trigger_conditions",
        )
    if operator is Operator.IN:
        if not isinstance(threshold, (list, tuple)):
            raise ValidationError(
                f"Operator 'in' on '{key}' needs a list threshold", field="trigger_conditions"
            )
        threshold = tuple(threshold)
    return TriggerClause(observation_key=key, operator=operator, threshold=threshold)


@dataclass(frozen=True)
class DecisionRule:
    """A DAK-traceable clinical decision rule.

    Provenance fields (dak_source_id, guideline_version, evidence_rating,
    who_guideline_ref) are only ever changed by rule-management operations.
    Instances are immutable; updates produce a new rule via dataclasses.replace.
    """
    rule_code: str
    module_code: str
    alert_title: str
    alert_message: str
    alert_severity: AlertSeverity = AlertSeverity.YELLOW
    trigger_conditions: tuple[TriggerClause, ...] = ()
    recommendations: tuple[str, ...] = ()

    # Provenance / traceability
    dak_source_id: str | None = None
    guideline_version: str | None = None
    evidence_rating: str | None = None
    who_guideline_ref: str | None = None

    # Descriptive
    rule_name: str = ""
    rule_description: str | None = None
    decision_support_message: str | None = None
    clinical_thresholds: Mapping[str, Any] = field(default_factory=dict, hash=False)

    version: str = "1.0"
    status: RuleStatus = RuleStatus.ACTIVE
    id: int | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, "trigger_conditions", tuple(self.trigger_conditions))
        object.__setattr__(self, "recommendations", tuple(self.recommendations))
        object.__setattr__(self, "clinical_thresholds", MappingProxyType(dict(self.clinical_thresholds)))

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    @property
    def version_number(self) -> float:
        return parse_version(self.version)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Severity priority (critical first), then rule code."""
        return (self.alert_severity.priority, self.rule_code)

    @property
    def observation_keys(self) -> set[str]:
        return {c.observation_key for c in self.trigger_conditions}

    @property
    def referral_required(self) -> bool:
        if self.alert_severity == AlertSeverity.RED:
            return True
        return bool(self.clinical_thresholds.get("referral"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "rule_code": self.rule_code,
            "module_code": self.module_code,
            "rule_name": self.rule_name,
            "rule_description": self.rule_description,
            "decision_support_message": self.decision_support_message,
            "alert_severity": self.alert_severity.value,
            "alert_title": self.alert_title,
            "alert_message": self.alert_message,
            "recommendations": list(self.recommendations),
            "trigger_conditions": [c.to_dict() for c in self.trigger_conditions],
            "clinical_thresholds": dict(self.clinical_thresholds),
            "dak_source_id": self.dak_source_id,
            "guideline_version": self.guideline_version,
            "evidence_rating": self.evidence_rating,
            "who_guideline_ref": self.who_guideline_ref,
            "version": self.version,
            "status": self.status.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DecisionRule":
        """Rebuild a rule from its to_dict() form."""
        def parse_datetime(val):
            if val is None:
                return datetime.now()
            if isinstance(val, datetime):
                return val
            return datetime.fromisoformat(val)

        return cls(
            id=data.get("id"),
            rule_code=data["rule_code"],
            module_code=data["module_code"],
            rule_name=data.get("rule_name") or data["rule_code"],
            rule_description=data.get("rule_description"),
            decision_support_message=data.get("decision_support_message"),
            alert_severity=AlertSeverity.parse(data.get("alert_severity")),
            alert_title=data.get("alert_title") or data["rule_code"],
            alert_message=data.get("alert_message") or "",
            recommendations=list(data.get("recommendations") or []),
            trigger_conditions=parse_trigger_conditions(data.get("trigger_conditions")),
            clinical_thresholds=dict(data.get("clinical_thresholds") or {}),
            dak_source_id=data.get("dak_source_id"),
            guideline_version=data.get("guideline_version"),
            evidence_rating=data.get("evidence_rating"),
            who_guideline_ref=data.get("who_guideline_ref"),
            version=str(data.get("version") or "1.0"),
            status=RuleStatus(data.get("status", RuleStatus.ACTIVE.value)),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


def parse_version(value: Any) -> float:
    """Parse a rule version ("1", "1.2", 2.0) into a sortable number.

    Raises:
        ValidationError: If the version is not numeric.
    """
    try:
        return float(str(value).strip().lstrip("vV"))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid rule version '{value}'", field="version") from None


class ClinicalObservationSet(Mapping):
    """Immutable, normalized observations for one evaluation call.

    Values are numbers, booleans, strings, or frozensets of strings.
    Built by the normalizer; never mutated afterwards.
    """

    def __init__(
        self,
        module_code: str,
        values: Mapping[str, Any] | None = None,
        dropped_keys: tuple[str, ...] = (),
    ):
        self._module_code = module_code
        self._values = MappingProxyType(dict(values or {}))
        self._dropped_keys = tuple(dropped_keys)

    @property
    def module_code(self) -> str:
        return self._module_code

    @property
    def dropped_keys(self) -> tuple[str, ...]:
        """Input keys that were ignored during normalization."""
        return self._dropped_keys

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ClinicalObservationSet({self._module_code!r}, {dict(self._values)!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            k: sorted(v) if isinstance(v, frozenset) else v
            for k, v in self._values.items()
        }


@dataclass(frozen=True)
class Alert:
    """One fired rule, ready for display."""
    rule_code: str
    severity: AlertSeverity
    title: str
    message: str
    recommendations: tuple[str, ...]
    referral_required: bool
    urgency: Urgency
    timestamp: datetime
    module_code: str | None = None
    dak_source_id: str | None = None
    who_guideline_ref: str | None = None

    @classmethod
    def from_rule(cls, rule: DecisionRule, timestamp: datetime) -> "Alert":
        return cls(
            rule_code=rule.rule_code,
            severity=rule.alert_severity,
            title=rule.alert_title,
            message=rule.alert_message or rule.decision_support_message or "",
            recommendations=tuple(rule.recommendations),
            referral_required=rule.referral_required,
            urgency=rule.alert_severity.urgency,
            timestamp=timestamp,
            module_code=rule.module_code,
            dak_source_id=rule.dak_source_id,
            who_guideline_ref=rule.who_guideline_ref,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_code": self.rule_code,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "recommendations": list(self.recommendations),
            "referral_required": self.referral_required,
            "urgency": self.urgency.value,
            "timestamp": self.timestamp.isoformat(),
            "module_code": self.module_code,
            "dak_source_id": self.dak_source_id,
            "who_guideline_ref": self.who_guideline_ref,
        }


class Eligibility(str, Enum):
    """PrEP eligibility outcome. Conditional stays distinct from eligible."""
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    CONDITIONAL = "conditional"
    PENDING = "pending"


@dataclass(frozen=True)
class RiskFactor:
    """A weighted checklist item. Points are fixed per factor id within a scheme."""
    category: str
    id: str
    label: str
    points: int
    present: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "id": self.id,
            "label": self.label,
            "points": self.points,
            "present": self.present,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Composite risk output. Produced fresh per call."""
    score: float = 0
    level: str = "low"
    factors: tuple[RiskFactor, ...] = ()
    recommendations: tuple[str, ...] = ()
    contraindications: tuple[str, ...] = ()
    eligibility: Eligibility | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "factors": [f.to_dict() for f in self.factors],
            "recommendations": list(self.recommendations),
            "contraindications": list(self.contraindications),
            "eligibility": self.eligibility.value if self.eligibility else None,
        }


class ImportJobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


@dataclass
class ImportJob:
    """Record of one bulk rule import."""
    id: str
    source: str
    status: ImportJobStatus = ImportJobStatus.RUNNING
    accepted: int = 0
    rejected: int = 0
    superseded: int = 0
    errors: list[dict] = field(default_factory=list)
    message: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "status": self.status.value,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "superseded": self.superseded,
            "errors": list(self.errors),
            "message": self.message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_row(cls, row: tuple) -> "ImportJob":
        """Create from database row."""
        (job_id, source, status, accepted, rejected, superseded,
         errors_json, message, started_at, completed_at) = row
        return cls(
            id=job_id,
            source=source,
            status=ImportJobStatus(status),
            accepted=accepted or 0,
            rejected=rejected or 0,
            superseded=superseded or 0,
            errors=json.loads(errors_json) if errors_json else [],
            message=message or "",
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )
