"""Intimate partner violence (IPV) risk stratification.

Maps the IPV signs ticked during an ANC contact to one of five risk levels
(none, low, medium, high, immediate_danger) with referral and urgent-action
flags. The most severe matching rule wins; three or more distinct signs
escalate to the multiple-indicator rule regardless of which signs they are.

Reference: WHO Health care for women subjected to intimate partner violence
or sexual violence - Clinical handbook
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

NO_SIGNS = "No presenting signs or symptoms indicative of IPV"
DISCLOSURE = "Woman discloses or is suspected to be subjected to intimate partner violence"
MULTIPLE_INDICATOR_THRESHOLD = 3

WHO_IPV_HANDBOOK = (
    "WHO Health care for women subjected to intimate partner violence or sexual violence "
    "- Clinical handbook"
)


class IPVRiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    IMMEDIATE_DANGER = "immediate_danger"

    @property
    def rank(self) -> int:
        return list(IPVRiskLevel).index(self)


@dataclass(frozen=True)
class IPVDecisionRule:
    """One row of the IPV decision table.

    A rule with no triggers is only reached through combination logic.
    """
    rule_id: str
    rule_code: str
    rule_name: str
    business_rule: str
    triggers: tuple[str, ...]
    risk_level: IPVRiskLevel
    alert_severity: str           # blue | yellow | orange | red
    alert_title: str
    alert_message: str
    recommendations: tuple[str, ...]
    safety_considerations: tuple[str, ...]
    referral_required: bool = False
    urgent_action: bool = False
    who_guideline_reference: str = WHO_IPV_HANDBOOK

    def matches(self, signs: Iterable[str]) -> bool:
        triggers = {t.lower() for t in self.triggers}
        return any(s.lower() in triggers for s in signs)


IPV_DECISION_RULES: tuple[IPVDecisionRule, ...] = (
    IPVDecisionRule(
        rule_id="IPV.01",
        rule_code="IPV_NO_SIGNS",
        rule_name="No IPV Signs Detected",
        business_rule=(
            "When no IPV signs are present, continue routine care with general safety information"
        ),
        triggers=(NO_SIGNS,),
        risk_level=IPVRiskLevel.NONE,
        alert_severity="blue",
        alert_title="No IPV Risk Indicators",
        alert_message="No current signs of IPV detected. Continue routine care.",
        recommendations=(
            "Continue standard antenatal care",
            "Provide general information about healthy relationships",
            "Ensure patient knows IPV resources are available if needed",
        ),
        safety_considerations=(
            "IPV can develop or escalate during pregnancy",
            "Maintain open, non-judgmental communication",
        ),
    ),
    IPVDecisionRule(
        rule_id="IPV.02",
        rule_code="IPV_BEHAVIORAL_SIGNS",
        rule_name="Behavioral IPV Indicators",
        business_rule=(
            "Behavioral signs may indicate early or low-level IPV requiring enhanced support"
        ),
        triggers=(
            "Woman's partner or husband is intrusive during consultations",
            "Woman often misses her own or her children's health-care appointments",
            "Children have emotional and behavioural problems",
        ),
        risk_level=IPVRiskLevel.LOW,
        alert_severity="yellow",
        alert_title="Behavioral IPV Risk Indicators",
        alert_message=(
            "Behavioral patterns suggest possible IPV. Enhanced assessment and support recommended."
        ),
        recommendations=(
            "Conduct private consultation when safe to do so",
            "Provide IPV information and resources discretely",
            "Assess patient's safety concerns and support needs",
            "Document observations professionally and confidentially",
        ),
        safety_considerations=(
            "Ensure partner cannot access patient records",
            "Do not confront partner about behavior",
            "Respect patient's choices about disclosure",
        ),
    ),
    IPVDecisionRule(
        rule_id="IPV.03",
        rule_code="IPV_PSYCHOLOGICAL_IMPACT",
        rule_name="Psychological IPV Impact",
        business_rule=(
            "Psychological symptoms often indicate ongoing IPV requiring specialized support"
        ),
        triggers=(
            "Ongoing stress",
            "Ongoing anxiety",
            "Ongoing depression",
            "Unspecified ongoing emotional health issues",
            "Misuse of alcohol",
            "Misuse of drugs",
            "Unspecified harmful behaviours",
            "Thoughts of self-harm or (attempted) suicide",
            "Plans of self-harm or (attempt) suicide",
        ),
        risk_level=IPVRiskLevel.MEDIUM,
        alert_severity="orange",
        alert_title="Psychological IPV Impact Detected",
        alert_message=(
            "Signs suggest psychological impact of IPV. Mental health support and safety "
            "assessment needed."
        ),
        recommendations=(
            "Conduct comprehensive mental health screening",
            "Provide specialized IPV counseling referral",
            "Develop safety plan with patient",
            "Consider psychosocial support services",
            "Schedule more frequent follow-up appointments",
        ),
        safety_considerations=(
            "Risk of suicide may be elevated",
            "Patient may minimize danger due to psychological impact",
            "Ensure immediate mental health support is available",
        ),
        referral_required=True,
    ),
    IPVDecisionRule(
        rule_id="IPV.04",
        rule_code="IPV_PHYSICAL_INDICATORS",
        rule_name="Physical IPV Indicators",
        business_rule=(
            "Physical symptoms and care patterns suggest active IPV requiring immediate "
            "intervention"
        ),
        triggers=(
            "Repeated sexually transmitted infections (STIs)",
            "Unwanted pregnancies",
            "Unexplained chronic pain",
            "Unexplained chronic gastrointestinal symptoms",
            "Unexplained genitourinary symptoms",
            "Adverse reproductive outcomes",
            "Unexplained reproductive symptoms",
            "Repeated vaginal bleeding",
            "Injury to abdomen",
            "Injury other (specify)",
            "Problems with central nervous system",
            "Repeated health consultations with no clear diagnosis",
        ),
        risk_level=IPVRiskLevel.HIGH,
        alert_severity="orange",
        alert_title="Physical IPV Indicators Present",
        alert_message=(
            "Physical signs and care patterns suggest active IPV. Immediate assessment and "
            "intervention required."
        ),
        recommendations=(
            "Conduct thorough physical examination when safe",
            "Document injuries with photos if consented and safe",
            "Provide immediate IPV specialist referral",
            "Develop comprehensive safety plan",
            "Consider emergency accommodation if needed",
            "Coordinate with social services and legal support",
        ),
        safety_considerations=(
            "Patient safety is paramount - do not increase risk",
            "Violence may escalate if partner suspects disclosure",
            "Have emergency contact information readily available",
        ),
        referral_required=True,
        urgent_action=True,
    ),
    IPVDecisionRule(
        rule_id="IPV.05",
        rule_code="IPV_MULTIPLE_INDICATORS",
        rule_name="Multiple IPV Risk Factors",
        business_rule=(
            "Multiple IPV indicators suggest high risk requiring comprehensive intervention"
        ),
        triggers=(),
        risk_level=IPVRiskLevel.HIGH,
        alert_severity="red",
        alert_title="Multiple IPV Risk Factors Detected",
        alert_message=(
            "Multiple signs indicate high IPV risk. Comprehensive safety assessment and "
            "immediate intervention required."
        ),
        recommendations=(
            "Conduct immediate comprehensive safety assessment",
            "Activate multi-disciplinary IPV response team",
            "Develop detailed safety plan with patient",
            "Provide emergency contact numbers and resources",
            "Consider emergency shelter referral if safe and desired",
            "Coordinate with police and legal services if appropriate",
            "Schedule urgent follow-up within 24-48 hours",
        ),
        safety_considerations=(
            "High risk of escalation - prioritize immediate safety",
            "Multiple exit strategies should be discussed",
            "Emergency services should be readily accessible",
        ),
        referral_required=True,
        urgent_action=True,
    ),
)


@dataclass(frozen=True)
class IPVRiskAssessment:
    """Outcome of IPV screening for one contact."""
    rule_code: str
    risk_level: IPVRiskLevel
    alert_severity: str
    alert_title: str
    alert_message: str
    recommendations: tuple[str, ...]
    safety_considerations: tuple[str, ...]
    referral_required: bool
    urgent_action: bool
    signs: tuple[str, ...] = ()

    @classmethod
    def from_rule(cls, rule: IPVDecisionRule, signs: Iterable[str] = ()) -> "IPVRiskAssessment":
        return cls(
            rule_code=rule.rule_code,
            risk_level=rule.risk_level,
            alert_severity=rule.alert_severity,
            alert_title=rule.alert_title,
            alert_message=rule.alert_message,
            recommendations=rule.recommendations,
            safety_considerations=rule.safety_considerations,
            referral_required=rule.referral_required,
            urgent_action=rule.urgent_action,
            signs=tuple(signs),
        )

    @property
    def requires_immediate_intervention(self) -> bool:
        return self.urgent_action or self.risk_level in (
            IPVRiskLevel.HIGH, IPVRiskLevel.IMMEDIATE_DANGER,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_code": self.rule_code,
            "risk_level": self.risk_level.value,
            "alert_severity": self.alert_severity,
            "alert_title": self.alert_title,
            "alert_message": self.alert_message,
            "recommendations": list(self.recommendations),
            "safety_considerations": list(self.safety_considerations),
            "referral_required": self.referral_required,
            "urgent_action": self.urgent_action,
            "requires_immediate_intervention": self.requires_immediate_intervention,
            "signs": list(self.signs),
        }


def _rule(rules: tuple[IPVDecisionRule, ...], rule_code: str) -> IPVDecisionRule:
    for rule in rules:
        if rule.rule_code == rule_code:
            return rule
    raise KeyError(f"IPV decision table has no {rule_code} rule")


def evaluate_ipv_risk(
    selected: Iterable[str] | None,
    rules: tuple[IPVDecisionRule, ...] = IPV_DECISION_RULES,
) -> IPVRiskAssessment:
    """Stratify IPV risk from the signs ticked on the screening form.

    Args:
        selected: Screening answers. Empty, None, or only the "no presenting
            signs" answer means no risk.
        rules: IPV decision table. Must contain the IPV_NO_SIGNS,
            IPV_BEHAVIORAL_SIGNS and IPV_MULTIPLE_INDICATORS rows.

    Returns:
        IPVRiskAssessment for the most severe matching rule. Signs that
        match no rule, or a bare disclosure, fall back to the behavioural
        (low) rule.
    """
    if isinstance(selected, str):
        selected = [selected]
    answers = [s.strip() for s in (selected or []) if isinstance(s, str) and s.strip()]

    if not answers or all(a.lower() == NO_SIGNS.lower() for a in answers):
        return IPVRiskAssessment.from_rule(_rule(rules, "IPV_NO_SIGNS"))

    signs: list[str] = []
    for answer in answers:
        if answer.lower() in (NO_SIGNS.lower(), DISCLOSURE.lower()):
            continue
        if answer.lower() not in (s.lower() for s in signs):
            signs.append(answer)

    if len(signs) >= MULTIPLE_INDICATOR_THRESHOLD:
        logger.debug(f"{len(signs)} IPV signs selected; escalating to multiple-indicator rule")
        return IPVRiskAssessment.from_rule(_rule(rules, "IPV_MULTIPLE_INDICATORS"), signs)

    matched: IPVDecisionRule | None = None
    for rule in rules:
        if not rule.triggers or rule.risk_level == IPVRiskLevel.NONE:
            continue
        if rule.matches(signs) and (matched is None or rule.risk_level.rank > matched.risk_level.rank):
            matched = rule

    return IPVRiskAssessment.from_rule(matched or _rule(rules, "IPV_BEHAVIORAL_SIGNS"), signs)


def requires_immediate_intervention(
    selected: Iterable[str] | None,
    rules: tuple[IPVDecisionRule, ...] = IPV_DECISION_RULES,
) -> bool:
    return evaluate_ipv_risk(selected, rules).requires_immediate_intervention


def generate_ipv_recommendations(assessment: IPVRiskAssessment) -> str:
    """Health-worker facing summary of an IPV assessment."""
    lines = [f"IPV RISK ASSESSMENT: {assessment.risk_level.value.upper()}", "", assessment.alert_message, ""]

    if assessment.recommendations:
        lines.append("CLINICAL RECOMMENDATIONS:")
        lines.extend(f"{i}. {rec}" for i, rec in enumerate(assessment.recommendations, start=1))
        lines.append("")

    if assessment.safety_considerations:
        lines.append("SAFETY CONSIDERATIONS:")
        lines.extend(f"- {item}" for item in assessment.safety_considerations)
        lines.append("")

    if assessment.urgent_action:
        lines.append("URGENT ACTION REQUIRED - Implement immediately")
    elif assessment.referral_required:
        lines.append("REFERRAL RECOMMENDED - Coordinate specialized support")

    return "\n".join(lines)
