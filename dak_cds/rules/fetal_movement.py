"""Fetal movement assessment.

Rules are checked in order; the first that applies decides:
1. No fetal movement at >= 20 weeks             -> emergency, referral
2. Reduced movement at >= 36 weeks              -> urgent, referral
3. Reduced movement at >= 28 weeks              -> urgent, kick counting
4. Gestational age < 20 weeks                   -> normal, education
5. Normal movement with maternal concern        -> concern, reassurance
6. Concerning additional symptoms               -> urgent, referral
7. Otherwise                                    -> normal
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

NO_MOVEMENT = "No fetal movement"
REDUCED_MOVEMENT = "Reduced or poor fetal movement"
NORMAL_MOVEMENT = "Normal fetal movement"

CONCERNING_SYMPTOMS = frozenset({"bleeding", "cramping", "fluid_leakage", "severe_pain"})


@dataclass(frozen=True)
class FetalMovementDecision:
    risk_level: str               # normal | concern | urgent | emergency
    alert_title: str
    alert_message: str
    recommendations: tuple[str, ...]
    safety_considerations: tuple[str, ...]
    referral_required: bool
    urgent_action: bool
    follow_up_required: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_level": self.risk_level,
            "alert_title": self.alert_title,
            "alert_message": self.alert_message,
            "recommendations": list(self.recommendations),
            "safety_considerations": list(self.safety_considerations),
            "referral_required": self.referral_required,
            "urgent_action": self.urgent_action,
            "follow_up_required": self.follow_up_required,
        }


def _status_is(status: str | None, expected: str) -> bool:
    return bool(status) and status.strip().lower() == expected.lower()


def assess_fetal_movement(
    movement_status: str | None,
    gestational_age_weeks: float,
    maternal_concern: bool = False,
    additional_symptoms: Iterable[str] = (),
) -> FetalMovementDecision:
    """Classify a reported fetal movement pattern."""
    symptoms = {str(s).strip().lower() for s in additional_symptoms or ()}

    if _status_is(movement_status, NO_MOVEMENT) and gestational_age_weeks >= 20:
        return FetalMovementDecision(
            risk_level="emergency",
            alert_title="EMERGENCY: No Fetal Movement Detected",
            alert_message="Immediate fetal assessment required - potential fetal compromise",
            recommendations=(
                "IMMEDIATE referral for fetal heart rate monitoring",
                "Arrange emergency obstetric consultation",
                "Prepare for potential emergency delivery",
                "Monitor maternal vital signs closely",
                "Document time of last felt movement",
            ),
            safety_considerations=(
                "Time is critical - do not delay referral",
                "Ensure emergency transport is available",
                "Inform receiving facility of urgent referral",
                "Stay with patient until transfer complete",
            ),
            referral_required=True,
            urgent_action=True,
            follow_up_required=True,
        )

    if _status_is(movement_status, REDUCED_MOVEMENT) and gestational_age_weeks >= 36:
        return FetalMovementDecision(
            risk_level="urgent",
            alert_title="Late Pregnancy: Reduced Movement Concern",
            alert_message="Reduced movement in late pregnancy requires immediate assessment",
            recommendations=(
                "URGENT referral for fetal heart rate monitoring",
                "Biophysical profile assessment if available",
                "Consider delivery planning if gestational age >37 weeks",
                "Monitor for signs of labor onset",
                "Continuous fetal monitoring recommended",
            ),
            safety_considerations=(
                "Late pregnancy movement changes require prompt evaluation",
                "Be prepared for potential delivery",
                "Monitor for additional danger signs",
                "Ensure obstetric care availability",
            ),
            referral_required=True,
            urgent_action=False,
            follow_up_required=True,
        )

    if _status_is(movement_status, REDUCED_MOVEMENT) and gestational_age_weeks >= 28:
        return FetalMovementDecision(
            risk_level="urgent",
            alert_title="Reduced Fetal Movement - Assessment Required",
            alert_message="Decreased fetal activity may indicate fetal compromise",
            recommendations=(
                "Initiate kick counting protocol (10 movements in 2 hours)",
                "Position mother on left side for optimal blood flow",
                "Offer light snack or cold drink to stimulate movement",
                "Schedule fetal heart rate assessment within 24 hours",
                "Educate mother on when to seek immediate care",
            ),
            safety_considerations=(
                "If no movement felt after kick counting, refer immediately",
                "Provide clear instructions for home monitoring",
                "Ensure mother understands warning signs",
                "Schedule follow-up within 48 hours",
            ),
            referral_required=False,
            urgent_action=False,
            follow_up_required=True,
        )

    if gestational_age_weeks < 20:
        return FetalMovementDecision(
            risk_level="normal",
            alert_title="Early Pregnancy - Movement Assessment",
            alert_message="First movements typically felt between 16-25 weeks",
            recommendations=(
                "Educate about expected timing of first movements",
                "Reassure about normal variation in movement onset",
                "Schedule routine follow-up at 24-28 weeks",
                "Provide information about fetal development",
            ),
            safety_considerations=(
                "First-time mothers may not feel movement until 25 weeks",
                "Previous pregnancies may feel movement earlier",
                "No intervention required at this stage",
            ),
            referral_required=False,
            urgent_action=False,
            follow_up_required=False,
        )

    if _status_is(movement_status, NORMAL_MOVEMENT) and maternal_concern:
        return FetalMovementDecision(
            risk_level="concern",
            alert_title="Normal Movement with Maternal Concern",
            alert_message="Provide reassurance and education about normal movement patterns",
            recommendations=(
                "Reassure mother about normal fetal activity",
                "Educate about daily movement patterns",
                "Teach kick counting technique for peace of mind",
                "Schedule routine follow-up appointment",
                "Provide written information about fetal movement",
            ),
            safety_considerations=(
                "Maternal anxiety about movement is common",
                "Provide clear guidance on when to seek care",
                "Document concerns and reassurance provided",
            ),
            referral_required=False,
            urgent_action=False,
            follow_up_required=False,
        )

    if symptoms & CONCERNING_SYMPTOMS:
        return FetalMovementDecision(
            risk_level="urgent",
            alert_title="Fetal Movement Changes with Additional Symptoms",
            alert_message="Movement changes combined with other symptoms require assessment",
            recommendations=(
                "URGENT obstetric evaluation required",
                "Assess for signs of preterm labor",
                "Monitor for placental abruption signs",
                "Continuous fetal monitoring recommended",
                "Prepare for potential emergency intervention",
            ),
            safety_considerations=(
                "Multiple symptoms increase risk level",
                "Do not delay evaluation",
                "Monitor maternal vital signs",
                "Ensure emergency care availability",
            ),
            referral_required=True,
            urgent_action=True,
            follow_up_required=True,
        )

    return FetalMovementDecision(
        risk_level="normal",
        alert_title="Normal Fetal Movement",
        alert_message="Fetal activity is within normal range for gestational age",
        recommendations=(
            "Continue routine monitoring",
            "Maintain healthy lifestyle",
            "Schedule regular antenatal appointments",
            "Contact healthcare provider with any concerns",
        ),
        safety_considerations=(
            "Normal movement patterns vary between pregnancies",
            "Encourage continued self-monitoring",
            "Provide education about danger signs",
        ),
        referral_required=False,
        urgent_action=False,
        follow_up_required=False,
    )
