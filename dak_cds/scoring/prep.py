"""PrEP (pre-exposure prophylaxis) risk scoring and eligibility.

Risk score is the sum of points of the risk factors present:
- Low: score < 5
- Moderate: 5 <= score < 10
- High: score >= 10

Eligibility is tri-state and independent of the score when there are
contraindications:
- ineligible: any absolute contraindication (HIV positive, acute HIV symptoms)
- conditional: any relative contraindication (renal impairment, active
  hepatitis B, drug allergy), or Low risk (offer on patient preference)
- eligible: Moderate or High risk with no contraindications
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..exceptions import ValidationError
from ..models import Eligibility, RiskAssessment, RiskFactor

logger = logging.getLogger(__name__)

HIGH_RISK_THRESHOLD = 10
MODERATE_RISK_THRESHOLD = 5
RENAL_IMPAIRMENT_CRCL = 60          # mL/min
PREP_ALLERGENS = frozenset({"tenofovir", "emtricitabine"})

HIV_POSITIVE = "HIV positive status - refer for ART initiation"
ACUTE_HIV_PREFIX = "Acute HIV symptoms present"
RENAL_IMPAIRMENT = "Renal impairment (CrCl < 60 mL/min)"
DRUG_ALLERGY = "Allergy to PrEP medication components"
HEPATITIS_B = "Active Hepatitis B infection - requires specialist consultation"

ABSOLUTE_CONTRAINDICATIONS = (HIV_POSITIVE, ACUTE_HIV_PREFIX)
RELATIVE_CONTRAINDICATIONS = (RENAL_IMPAIRMENT, DRUG_ALLERGY, HEPATITIS_B)


class PrEPRiskLevel(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


def _factor(category: str, factor_id: str, label: str, points: int) -> RiskFactor:
    return RiskFactor(category=category, id=factor_id, label=label, points=points)


# Weight table. Points are fixed per factor id.
PREP_RISK_FACTORS: Mapping[str, tuple[RiskFactor, ...]] = MappingProxyType({
    "behavioral": (
        _factor("behavioral", "inconsistent_condom", "Inconsistent condom use", 3),
        _factor("behavioral", "multiple_partners", "Multiple sexual partners (≥2 in last 6 months)", 3),
        _factor("behavioral", "recent_sti", "Recent STI diagnosis (within 6 months)", 2),
        _factor("behavioral", "sex_work", "Engages in transactional sex", 4),
        _factor("behavioral", "substance_use", "Substance use during sex", 2),
        _factor("behavioral", "partner_change", "Recent change in sexual partner", 1),
    ),
    "partner": (
        _factor("partner", "partner_hiv_positive", "Partner is HIV positive", 5),
        _factor("partner", "partner_unknown_status", "Partner HIV status unknown", 2),
        _factor("partner", "partner_high_risk", "Partner has high-risk behaviors", 3),
        _factor("partner", "partner_not_on_art", "HIV+ partner not on ART", 4),
        _factor("partner", "partner_detectable_vl", "Partner has detectable viral load", 4),
        _factor("partner", "partner_injection_drugs", "Partner injects drugs", 3),
    ),
    "pregnancy": (
        _factor("pregnancy", "trying_conceive_hiv", "Trying to conceive with HIV+ partner", 5),
        _factor("pregnancy", "pregnant_high_risk", "Pregnant with ongoing risk exposure", 4),
        _factor("pregnancy", "breastfeeding_risk", "Breastfeeding with ongoing risk exposure", 3),
        _factor("pregnancy", "pregnancy_discordant", "Pregnant in serodiscordant relationship", 4),
    ),
})


def max_score(table: Mapping[str, Iterable[RiskFactor]] = PREP_RISK_FACTORS) -> int:
    """Highest achievable score: every factor in the table present."""
    return sum(f.points for factors in table.values() for f in factors)


PREP_MAX_SCORE = max_score()


def build_risk_factors(
    present_ids: Iterable[str],
    table: Mapping[str, Iterable[RiskFactor]] = PREP_RISK_FACTORS,
) -> tuple[RiskFactor, ...]:
    """Full checklist from the table with `present` set for the given ids.

    Raises:
        ValidationError: If an id is not in the table.
    """
    present = {str(i).strip() for i in present_ids or ()}
    known = {f.id for factors in table.values() for f in factors}
    unknown = sorted(present - known)
    if unknown:
        raise ValidationError(f"Unknown PrEP risk factor(s): {', '.join(unknown)}", field="riskFactors")
    return tuple(
        replace(f, present=f.id in present)
        for factors in table.values()
        for f in factors
    )


def score_prep_risk(factors: Iterable[RiskFactor]) -> int:
    """Sum of points for factors marked present."""
    return sum(f.points for f in factors if f.present)


def classify_prep_risk(score: float) -> PrEPRiskLevel:
    if score >= HIGH_RISK_THRESHOLD:
        return PrEPRiskLevel.HIGH
    if score >= MODERATE_RISK_THRESHOLD:
        return PrEPRiskLevel.MODERATE
    return PrEPRiskLevel.LOW


def _text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return sorted(str(v) for v in value) if isinstance(value, (set, frozenset)) else [str(v) for v in value]


def check_prep_contraindications(clinical: Mapping[str, Any]) -> list[str]:
    """Contraindications from clinical data, absolute ones first.

    Reads hivStatus, acuteHivSymptoms, creatinineClearance, allergies and
    hepatitisB. Missing values contribute nothing.
    """
    found: list[str] = []

    if str(clinical.get("hivStatus") or "").strip().lower() == "positive":
        found.append(HIV_POSITIVE)

    symptoms = _text_list(clinical.get("acuteHivSymptoms"))
    if symptoms:
        found.append(f"{ACUTE_HIV_PREFIX}: {', '.join(symptoms)}")

    crcl = clinical.get("creatinineClearance")
    if isinstance(crcl, (int, float)) and not isinstance(crcl, bool) and crcl < RENAL_IMPAIRMENT_CRCL:
        found.append(RENAL_IMPAIRMENT)

    allergies = {a.strip().lower() for a in _text_list(clinical.get("allergies"))}
    if allergies & PREP_ALLERGENS:
        found.append(DRUG_ALLERGY)

    if str(clinical.get("hepatitisB") or "").strip().lower() == "reactive":
        found.append(HEPATITIS_B)

    return found


def is_absolute_contraindication(text: str) -> bool:
    return text.startswith(ABSOLUTE_CONTRAINDICATIONS)


def determine_prep_eligibility(
    risk_level: PrEPRiskLevel,
    contraindications: Iterable[str],
) -> Eligibility:
    contraindications = list(contraindications)
    if any(is_absolute_contraindication(c) for c in contraindications):
        return Eligibility.INELIGIBLE
    if contraindications:
        return Eligibility.CONDITIONAL
    if risk_level in (PrEPRiskLevel.HIGH, PrEPRiskLevel.MODERATE):
        return Eligibility.ELIGIBLE
    return Eligibility.CONDITIONAL


_LEVEL_RECOMMENDATIONS = {
    PrEPRiskLevel.HIGH: (
        "Strongly recommend immediate PrEP initiation",
        "Provide intensive adherence counseling",
        "Schedule monthly follow-up visits",
        "Offer HIV self-testing kits for partner",
    ),
    PrEPRiskLevel.MODERATE: (
        "Recommend PrEP initiation",
        "Provide standard adherence counseling",
        "Schedule quarterly follow-up visits",
        "Discuss risk reduction strategies",
    ),
    PrEPRiskLevel.LOW: (
        "PrEP may be considered based on patient preference",
        "Focus on risk reduction counseling",
        "Regular HIV testing every 6 months",
    ),
}

_FACTOR_RECOMMENDATIONS = {
    "partner_hiv_positive": (
        "Ensure partner is on ART with viral suppression",
        "Consider couples counseling and testing",
    ),
    "trying_conceive_hiv": (
        "Provide conception counseling for serodiscordant couples",
        "Coordinate with fertility services if needed",
    ),
    "recent_sti": (
        "Complete STI treatment before PrEP initiation",
        "Regular STI screening every 3 months",
    ),
    "substance_use": (
        "Offer substance use counseling and support",
        "Consider harm reduction services",
    ),
}


def generate_prep_recommendations(
    risk_level: PrEPRiskLevel,
    factors: Iterable[RiskFactor],
) -> list[str]:
    recommendations = list(_LEVEL_RECOMMENDATIONS[risk_level])
    present = {f.id for f in factors if f.present}
    for factor_id, texts in _FACTOR_RECOMMENDATIONS.items():
        if factor_id in present:
            recommendations.extend(texts)
    recommendations.append("Provide condoms and lubricants")
    recommendations.append("Educate on PrEP effectiveness and limitations")
    return recommendations


def assess_prep_risk(
    present_factor_ids: Iterable[str],
    clinical: Mapping[str, Any] | None = None,
    table: Mapping[str, Iterable[RiskFactor]] = PREP_RISK_FACTORS,
) -> RiskAssessment:
    """Full PrEP assessment: score, level, contraindications, eligibility.

    Args:
        present_factor_ids: Checklist factor ids the client reports.
        clinical: Clinical data for contraindication screening.
        table: Weight table; defaults to the national checklist.
    """
    factors = build_risk_factors(present_factor_ids, table)
    score = score_prep_risk(factors)
    level = classify_prep_risk(score)
    contraindications = check_prep_contraindications(clinical or {})
    eligibility = determine_prep_eligibility(level, contraindications)

    logger.debug(f"PrEP score {score} ({level.value}), eligibility {eligibility.value}")

    return RiskAssessment(
        score=score,
        level=level.value,
        factors=factors,
        recommendations=tuple(generate_prep_recommendations(level, factors)),
        contraindications=tuple(contraindications),
        eligibility=eligibility,
    )


@dataclass(frozen=True)
class PrEPAlert:
    type: str               # critical | warning | info
    title: str
    message: str
    actions: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "actions": list(self.actions),
        }


def generate_prep_alert(assessment: RiskAssessment) -> PrEPAlert | None:
    """Clinical alert for a PrEP assessment, or None when nothing needs flagging."""
    if HIV_POSITIVE in assessment.contraindications:
        return PrEPAlert(
            "critical",
            "HIV Positive - PrEP Contraindicated",
            "Patient is HIV positive. PrEP is not appropriate.",
            ("Initiate ART immediately", "Provide post-test counseling", "Link to HIV care"),
        )
    if any(c.startswith(ACUTE_HIV_PREFIX) for c in assessment.contraindications):
        return PrEPAlert(
            "critical",
            "Acute HIV Infection Suspected",
            "Patient has symptoms consistent with acute HIV infection.",
            ("Order HIV RNA test", "Defer PrEP", "Retest in 2-4 weeks"),
        )
    if assessment.level == PrEPRiskLevel.HIGH.value and assessment.eligibility == Eligibility.ELIGIBLE:
        return PrEPAlert(
            "warning",
            "High Risk - Immediate PrEP Indicated",
            f"Patient has high HIV risk (score: {assessment.score}/{PREP_MAX_SCORE}). "
            "Immediate PrEP initiation recommended.",
            ("Initiate PrEP today", "Provide adherence counseling", "Schedule follow-up in 1 month"),
        )
    if assessment.eligibility == Eligibility.CONDITIONAL:
        return PrEPAlert(
            "warning",
            "Conditional PrEP Eligibility",
            "Patient may be eligible for PrEP but requires additional evaluation.",
            ("Review contraindications", "Consider specialist referral", "Address barriers"),
        )
    if assessment.level == PrEPRiskLevel.MODERATE.value and assessment.eligibility == Eligibility.ELIGIBLE:
        return PrEPAlert(
            "info",
            "Moderate Risk - PrEP Recommended",
            "Patient has moderate HIV risk. PrEP is recommended.",
            ("Discuss PrEP benefits", "Address concerns", "Initiate if patient agrees"),
        )
    return None


@dataclass(frozen=True)
class FollowUpSchedule:
    interval_days: int
    tests: tuple[str, ...]
    counseling: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval_days": self.interval_days,
            "tests": list(self.tests),
            "counseling": list(self.counseling),
        }


def calculate_prep_follow_up_schedule(
    is_new_user: bool,
    risk_level: PrEPRiskLevel | str,
    has_complications: bool = False,
) -> FollowUpSchedule:
    """Monthly for new users, high risk or complications; quarterly otherwise."""
    level = PrEPRiskLevel(risk_level) if not isinstance(risk_level, PrEPRiskLevel) else risk_level
    interval = 90
    tests = ["HIV test"]
    counseling = ["Adherence assessment"]

    if is_new_user:
        interval = 30
        tests += ["Creatinine", "Urinalysis"]
        counseling += ["Side effects review", "Risk reduction counseling"]
    elif level == PrEPRiskLevel.HIGH or has_complications:
        interval = 30
        tests += ["STI screening", "Creatinine"]
    else:
        tests.append("STI screening")
        counseling.append("Risk reassessment")

    tests += ["Hepatitis B (annually)", "Hepatitis C (annually)"]
    return FollowUpSchedule(interval, tuple(tests), tuple(counseling))


@dataclass(frozen=True)
class PrEPPrescription:
    regimen: str            # TDF/FTC | TAF/FTC
    duration_days: int
    adherence_counseling: bool
    start_date: date
    next_visit_date: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "regimen": self.regimen,
            "duration_days": self.duration_days,
            "adherence_counseling": self.adherence_counseling,
            "start_date": self.start_date.isoformat(),
            "next_visit_date": self.next_visit_date.isoformat(),
        }


def recommend_prep_regimen(
    eligibility: Eligibility,
    is_pregnant: bool = False,
    has_renal_impairment: bool = False,
    start_date: date | None = None,
) -> PrEPPrescription | None:
    """Starting prescription for an eligible or conditional client.

    TAF/FTC with renal impairment, TDF/FTC otherwise (also preferred in
    pregnancy). New users get a one-month supply.
    """
    if eligibility not in (Eligibility.ELIGIBLE, Eligibility.CONDITIONAL):
        return None
    if has_renal_impairment:
        regimen = "TAF/FTC"
    elif is_pregnant:
        regimen = "TDF/FTC"  # preferred in pregnancy
    else:
        regimen = "TDF/FTC"

    start = start_date or date.today()
    duration = 30
    return PrEPPrescription(
        regimen=regimen,
        duration_days=duration,
        adherence_counseling=True,
        start_date=start,
        next_visit_date=start + timedelta(days=duration),
    )
