"""Multi-parameter patient risk from laboratory values and comorbidities.

Each category uses a fixed three-cutoff table (critical/high/medium).
CD4 count is worse when lower; viral load, liver enzymes and creatinine
are worse when higher. The overall risk of a patient is the worst
category level, never an average.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..exceptions import ValidationError
from ..models import is_number

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2, RiskLevel.CRITICAL: 3}


class LabCategory(str, Enum):
    CD4_COUNT = "cd4Count"
    VIRAL_LOAD = "viralLoad"
    LIVER_FUNCTION = "liverFunction"
    RENAL_FUNCTION = "renalFunction"
    COMORBIDITY = "comorbidity"


@dataclass(frozen=True)
class LabThreshold:
    """Cutoffs for one test. Reaching a cutoff puts the value in that band."""
    critical: float
    high: float
    medium: float
    lower_is_worse: bool = False

    def classify(self, value: float) -> RiskLevel:
        if self.lower_is_worse:
            if value <= self.critical:
                return RiskLevel.CRITICAL
            if value <= self.high:
                return RiskLevel.HIGH
            if value <= self.medium:
                return RiskLevel.MEDIUM
            return RiskLevel.LOW
        if value >= self.critical:
            return RiskLevel.CRITICAL
        if value >= self.high:
            return RiskLevel.HIGH
        if value >= self.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


LAB_THRESHOLDS: Mapping[str, LabThreshold] = MappingProxyType({
    "cd4Count": LabThreshold(critical=200, high=350, medium=500, lower_is_worse=True),   # cells/mm3
    "viralLoad": LabThreshold(critical=100000, high=10000, medium=1000),                 # copies/mL
    "alt": LabThreshold(critical=200, high=120, medium=70),                              # U/L
    "ast": LabThreshold(critical=200, high=120, medium=70),                              # U/L
    "creatinine": LabThreshold(critical=2.0, high=1.5, medium=1.2),                      # mg/dL
})

# Test -> reported category
_TEST_CATEGORY = {
    "cd4Count": LabCategory.CD4_COUNT,
    "viralLoad": LabCategory.VIRAL_LOAD,
    "alt": LabCategory.LIVER_FUNCTION,
    "ast": LabCategory.LIVER_FUNCTION,
    "creatinine": LabCategory.RENAL_FUNCTION,
}

_INTERPRETATION: dict[LabCategory, dict[RiskLevel, tuple[str, str]]] = {
    LabCategory.CD4_COUNT: {
        RiskLevel.LOW: ("CD4 count within normal range.",
                        "Continue current treatment regimen."),
        RiskLevel.MEDIUM: ("CD4 count moderately reduced.",
                           "Monitor closely, consider immune support."),
        RiskLevel.HIGH: ("Low CD4 count indicates compromised immune function.",
                         "Evaluate for treatment failure, consider regimen change."),
        RiskLevel.CRITICAL: ("Critically low CD4 count; high risk of opportunistic infections.",
                             "Urgent intervention required. Assess for opportunistic infections."),
    },
    LabCategory.VIRAL_LOAD: {
        RiskLevel.LOW: ("Viral load suppressed, indicating effective treatment.",
                        "Continue current treatment regimen."),
        RiskLevel.MEDIUM: ("Detectable viral load, may indicate adherence issues.",
                           "Assess adherence and consider repeat test in 1 month."),
        RiskLevel.HIGH: ("High viral load, suggests treatment failure.",
                         "Evaluate for treatment failure and drug resistance."),
        RiskLevel.CRITICAL: ("Very high viral load, urgent intervention needed.",
                             "Urgent regimen switch with resistance testing if available."),
    },
    LabCategory.LIVER_FUNCTION: {
        RiskLevel.LOW: ("Liver function tests within normal range.",
                        "Continue current treatment regimen."),
        RiskLevel.MEDIUM: ("Mildly elevated liver enzymes, monitor closely.",
                           "Monitor liver function tests monthly."),
        RiskLevel.HIGH: ("Significantly elevated liver enzymes, possible hepatotoxicity.",
                         "Consider drug toxicity, evaluate for regimen change."),
        RiskLevel.CRITICAL: ("Severely elevated liver enzymes, urgent intervention required.",
                             "Discontinue hepatotoxic drugs immediately and refer to specialist."),
    },
    LabCategory.RENAL_FUNCTION: {
        RiskLevel.LOW: ("Renal function within normal range.",
                        "Continue current treatment regimen."),
        RiskLevel.MEDIUM: ("Mildly elevated creatinine, monitor renal function.",
                           "Monitor renal function monthly, ensure adequate hydration."),
        RiskLevel.HIGH: ("Significant renal impairment, adjust medication dosing.",
                         "Adjust dosing of renally cleared medications, consider nephrology consult."),
        RiskLevel.CRITICAL: ("Severe renal impairment, urgent intervention required.",
                             "Discontinue nephrotoxic drugs, immediate nephrology referral."),
    },
    LabCategory.COMORBIDITY: {
        RiskLevel.LOW: ("No significant comorbidities identified.",
                        "Standard management approach appropriate."),
        RiskLevel.MEDIUM: ("One comorbidity present, monitor for interactions.",
                           "Consider impact of comorbidity on HIV management."),
        RiskLevel.HIGH: ("Multiple comorbidities present, complex management required.",
                         "Implement integrated care approach for multiple conditions."),
        RiskLevel.CRITICAL: ("Multiple severe comorbidities, high risk of complications.",
                             "Multidisciplinary team approach required, consider specialist referral."),
    },
}


@dataclass(frozen=True)
class LabRiskAssessment:
    category: LabCategory
    level: RiskLevel
    description: str
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "level": self.level.value,
            "description": self.description,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class PatientRiskProfile:
    overall_risk: RiskLevel
    assessments: tuple[LabRiskAssessment, ...]
    last_updated: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_risk": self.overall_risk.value,
            "assessments": [a.to_dict() for a in self.assessments],
            "last_updated": self.last_updated.isoformat(),
        }


def _assessment(category: LabCategory, level: RiskLevel) -> LabRiskAssessment:
    description, recommendation = _INTERPRETATION[category][level]
    return LabRiskAssessment(category, level, description, recommendation)


def _require_number(test: str, value: Any) -> float:
    if not is_number(value):
        raise ValidationError(f"{test} must be numeric, got {value!r}", field=test)
    return value


def assess_lab_value_risk(
    test: str,
    value: float,
    thresholds: Mapping[str, LabThreshold] = LAB_THRESHOLDS,
) -> LabRiskAssessment:
    """Risk band for one lab value.

    Args:
        test: cd4Count, viralLoad, alt, ast or creatinine
        value: Numeric result in the test's usual unit

    Raises:
        ValidationError: Unknown test or non-numeric value.
    """
    if test not in thresholds or test not in _TEST_CATEGORY:
        raise ValidationError(f"Unknown lab test '{test}'", field="category")
    level = thresholds[test].classify(_require_number(test, value))
    return _assessment(_TEST_CATEGORY[test], level)


def assess_liver_function(
    alt: float | None,
    ast: float | None,
    thresholds: Mapping[str, LabThreshold] = LAB_THRESHOLDS,
) -> LabRiskAssessment:
    """Liver risk from ALT and AST; the worse of the two decides."""
    levels = [
        thresholds[test].classify(_require_number(test, value))
        for test, value in (("alt", alt), ("ast", ast))
        if value is not None
    ]
    if not levels:
        raise ValidationError("ALT or AST is required", field="alt")
    return _assessment(LabCategory.LIVER_FUNCTION, max(levels, key=lambda lv: lv.rank))


def assess_comorbidity_risk(comorbidities: Mapping[str, bool] | Iterable[str]) -> LabRiskAssessment:
    """1 active comorbidity: medium, 2: high, 3 or more: critical."""
    if isinstance(comorbidities, Mapping):
        count = sum(1 for active in comorbidities.values() if active)
    else:
        count = len({str(c).strip().lower() for c in comorbidities if str(c).strip()})

    if count >= 3:
        level = RiskLevel.CRITICAL
    elif count == 2:
        level = RiskLevel.HIGH
    elif count == 1:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return _assessment(LabCategory.COMORBIDITY, level)


def overall_risk(assessments: Iterable[LabRiskAssessment]) -> RiskLevel:
    """Worst level across assessments; LOW when there are none."""
    return max((a.level for a in assessments), key=lambda lv: lv.rank, default=RiskLevel.LOW)


def generate_patient_risk_profile(
    values: Mapping[str, Any],
    thresholds: Mapping[str, LabThreshold] = LAB_THRESHOLDS,
    clock: Callable[[], datetime] = datetime.now,
) -> PatientRiskProfile:
    """Assess every category for which a value is available.

    Args:
        values: Observations keyed by cd4Count, viralLoad, alt, ast,
            creatinine and comorbidities. Missing or non-numeric lab values
            are skipped.
    """
    assessments: list[LabRiskAssessment] = []

    for test in ("cd4Count", "viralLoad"):
        if is_number(values.get(test)):
            assessments.append(assess_lab_value_risk(test, values[test], thresholds))

    alt = values.get("alt") if is_number(values.get("alt")) else None
    ast = values.get("ast") if is_number(values.get("ast")) else None
    if alt is not None or ast is not None:
        assessments.append(assess_liver_function(alt, ast, thresholds))

    if is_number(values.get("creatinine")):
        assessments.append(assess_lab_value_risk("creatinine", values["creatinine"], thresholds))

    comorbidities = values.get("comorbidities")
    if comorbidities is not None:
        assessments.append(assess_comorbidity_risk(comorbidities))

    profile = PatientRiskProfile(
        overall_risk=overall_risk(assessments),
        assessments=tuple(assessments),
        last_updated=clock(),
    )
    logger.debug(f"Patient risk profile: {profile.overall_risk.value} from {len(assessments)} categories")
    return profile
