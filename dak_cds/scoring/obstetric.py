"""Obstetric history validation and parity risk assessment.

Parity categories:
- nullipara: para = 0
- primipara: para = 1
- multipara: 2 <= para <= 4
- grand_multipara: para >= 5

Risk escalates to high with gravida >= 5, two or more previous
complications, para > 6, or three or more pregnancy losses. A single
complication, or infant mortality above 20% with para >= 2, makes it at
least moderate.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import ValidationError
from ..models import RiskAssessment, RiskFactor, is_number

logger = logging.getLogger(__name__)

GRAND_MULTIGRAVIDA = 5
HIGH_PARITY = 6
RECURRENT_LOSS = 3
INFANT_MORTALITY_PERCENT = 20

# Field -> (min, max) accepted by the obstetric history form
OBSTETRIC_FIELD_RANGES = {
    "gravida": (1, 20),
    "para": (0, 15),
    "abortions": (0, 10),
    "livingChildren": (0, 15),
}


class ParityCategory(str, Enum):
    NULLIPARA = "nullipara"
    PRIMIPARA = "primipara"
    MULTIPARA = "multipara"
    GRAND_MULTIPARA = "grand_multipara"


# Complication id -> (label, targeted recommendation)
COMPLICATIONS = {
    "cesarean_section": (
        "Previous cesarean section",
        "Monitor for VBAC eligibility and uterine scar integrity",
    ),
    "preeclampsia": (
        "Previous pre-eclampsia",
        "Enhanced BP monitoring and early pre-eclampsia screening",
    ),
    "gestational_diabetes": (
        "Previous gestational diabetes",
        "Early glucose tolerance testing at 12-16 weeks",
    ),
    "preterm_labor": (
        "Previous preterm labor",
        "Cervical length monitoring and preterm prevention counseling",
    ),
    "postpartum_hemorrhage": (
        "Previous postpartum hemorrhage",
        "Active management of third stage of labor and blood availability",
    ),
}

_COMPLICATION_ALIASES = {
    "cesarean": "cesarean_section",
    "caesarean_section": "cesarean_section",
    "c_section": "cesarean_section",
    "previous_cesarean": "cesarean_section",
    "pre_eclampsia": "preeclampsia",
    "gdm": "gestational_diabetes",
    "preterm_labour": "preterm_labor",
    "preterm_birth": "preterm_labor",
    "pph": "postpartum_hemorrhage",
    "postpartum_haemorrhage": "postpartum_hemorrhage",
}


@dataclass(frozen=True)
class ObstetricValidation:
    is_valid: bool
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": list(self.errors)}


@dataclass(frozen=True)
class ObstetricRiskAssessment(RiskAssessment):
    """RiskAssessment with the obstetric-specific outputs."""
    parity_category: ParityCategory = ParityCategory.NULLIPARA
    warnings: tuple[str, ...] = field(default_factory=tuple)
    requires_specialist_consultation: bool = False
    monitoring_intensity: str = "standard"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "parity_category": self.parity_category.value,
            "warnings": list(self.warnings),
            "requires_specialist_consultation": self.requires_specialist_consultation,
            "monitoring_intensity": self.monitoring_intensity,
        })
        return data


def validate_obstetric_history(history: Mapping[str, Any]) -> ObstetricValidation:
    """Check field ranges and the gravida/para/abortions/living children relationships."""
    errors: list[str] = []

    for name, (low, high) in OBSTETRIC_FIELD_RANGES.items():
        value = history.get(name)
        if not is_number(value):
            errors.append(f"{name} is required and must be a number")
            continue
        if value < low:
            errors.append(f"{name} must be at least {low}" if low else f"{name} cannot be negative")
        elif value > high:
            errors.append(f"{name} cannot exceed {high}")

    if errors:
        return ObstetricValidation(False, tuple(errors))

    gravida = history["gravida"]
    para = history["para"]
    if para + history["abortions"] > gravida:
        errors.append("Para + Abortions cannot exceed total pregnancies (Gravida)")
    if history["livingChildren"] > para:
        errors.append("Living children cannot exceed live births (Para)")

    return ObstetricValidation(not errors, tuple(errors))


def parity_category(para: int) -> ParityCategory:
    if para == 0:
        return ParityCategory.NULLIPARA
    if para == 1:
        return ParityCategory.PRIMIPARA
    if 2 <= para <= 4:
        return ParityCategory.MULTIPARA
    return ParityCategory.GRAND_MULTIPARA


def _complication_id(value: str) -> str:
    key = re.sub(r"[\s\-]+", "_", str(value).strip().lower())
    return _COMPLICATION_ALIASES.get(key, key)


def _present_complications(values: Iterable[str] | None) -> list[str]:
    found = set()
    for value in values or ():
        cid = _complication_id(value)
        if cid in COMPLICATIONS:
            found.add(cid)
        else:
            logger.debug(f"Ignoring unrecognized obstetric complication '{value}'")
    return [cid for cid in COMPLICATIONS if cid in found]


def field_warnings(field_name: str, value: float) -> list[str]:
    """Warnings shown beside a single obstetric history field."""
    warnings = []
    if field_name == "gravida":
        if value >= 10:
            warnings.append("High gravidity - enhanced monitoring recommended")
        if value >= 15:
            warnings.append("Extremely high gravidity - specialist consultation required")
    elif field_name == "para":
        if value >= 6:
            warnings.append("High parity - increased obstetric risks")
        if value >= 10:
            warnings.append("Extremely high parity - specialist consultation required")
    elif field_name == "abortions":
        if value >= 2:
            warnings.append("Multiple pregnancy losses - consider specialist consultation")
        if value >= 3:
            warnings.append("Recurrent pregnancy loss - specialist workup required")
    return warnings


def assess_obstetric_risk(history: Mapping[str, Any]) -> ObstetricRiskAssessment:
    """Classify obstetric risk from gravida, para, abortions, living children
    and previous complications.

    Raises:
        ValidationError: If the history fails validate_obstetric_history();
            details["errors"] lists every problem.
    """
    validation = validate_obstetric_history(history)
    if not validation.is_valid:
        raise ValidationError(
            "Invalid obstetric history",
            field="obstetric_history",
            details={"errors": list(validation.errors)},
        )

    gravida = history["gravida"]
    para = history["para"]
    abortions = history["abortions"]
    living = history["livingChildren"]
    category = parity_category(para)
    complications = _present_complications(history.get("previousComplications"))

    levels = ["low"]
    warnings: list[str] = []
    recommendations: list[str] = []
    specialist = False

    factors = [
        RiskFactor("parity", "grand_multigravida", "Grand multiparity (≥5 pregnancies)", 2,
                   present=gravida >= GRAND_MULTIGRAVIDA),
        RiskFactor("parity", "high_parity", "High parity (>6 live births)", 2, present=para > HIGH_PARITY),
        RiskFactor("parity", "recurrent_loss", "Recurrent pregnancy loss (≥3 losses)", 2,
                   present=abortions >= RECURRENT_LOSS),
    ]
    factors += [
        RiskFactor("complication_history", cid, label, 1, present=cid in complications)
        for cid, (label, _) in COMPLICATIONS.items()
    ]

    # Step 1: Grand multigravida
    if gravida >= GRAND_MULTIGRAVIDA:
        warnings.append("Grand Multiparity (≥5 pregnancies) identified")
        recommendations.append("Enhanced monitoring for uterine rupture risk")
        recommendations.append("Delivery planning at tertiary care facility")
        levels.append("high")
        specialist = True

    # Step 2: High parity and recurrent loss
    if para > HIGH_PARITY:
        warnings.append("High parity (>6 live births) - increased obstetric risks")
        recommendations.append("Specialist obstetric consultation required")
        levels.append("high")
        specialist = True

    if abortions >= RECURRENT_LOSS:
        warnings.append("Recurrent pregnancy loss (≥3 losses) identified")
        recommendations.append("Specialist consultation for recurrent loss workup")
        levels.append("high")
        specialist = True

    # Step 3: Infant mortality among live births
    infant_mortality = (para - living) / para * 100 if para > 0 else 0
    if infant_mortality > INFANT_MORTALITY_PERCENT and para >= 2:
        warnings.append(f"High infant mortality rate ({infant_mortality:.1f}%)")
        recommendations.append("Detailed perinatal history review required")
        recommendations.append("Enhanced antenatal surveillance")
        levels.append("moderate")

    # Step 4: Previous complications, each with a targeted recommendation
    for cid in complications:
        recommendations.append(COMPLICATIONS[cid][1])
    if len(complications) >= 2:
        levels.append("high")
    elif complications:
        levels.append("moderate")

    # Step 5: Parity-specific care
    if category == ParityCategory.NULLIPARA:
        recommendations.append("First pregnancy - standard antenatal care protocol")
        recommendations.append("Patient education on labor signs and danger signs")
    elif category == ParityCategory.PRIMIPARA:
        recommendations.append("Second pregnancy - monitor for complications from first pregnancy")
    elif category == ParityCategory.MULTIPARA:
        recommendations.append("Standard ANC monitoring with obstetric history review")
        if not any(f.present for f in factors):
            recommendations.append("Standard ANC visit schedule: 12, 20, 26, 30, 34, 36, 38, 40 weeks")
            recommendations.append("Routine screening: FBC, blood group, syphilis, HIV at booking")
            recommendations.append("Fetal movement monitoring education")
            recommendations.append("Birth preparedness and complication readiness counseling")

    order = {"low": 0, "moderate": 1, "high": 2}
    level = max(levels, key=order.__getitem__)

    return ObstetricRiskAssessment(
        score=sum(f.points for f in factors if f.present),
        level=level,
        factors=tuple(factors),
        recommendations=tuple(recommendations),
        parity_category=category,
        warnings=tuple(warnings),
        requires_specialist_consultation=specialist,
        monitoring_intensity="enhanced" if level == "high" else "standard",
    )
