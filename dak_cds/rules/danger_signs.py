"""ANC quick-check danger-sign evaluation.

Before each antenatal contact the health worker checks for danger signs.
Any sign present means urgent referral to hospital; no signs (or an
explicit "None") means the normal contact continues:

    NORMAL   -> "Continue ANC Contact"   (ANC.DT.01)
    REFERRAL -> "Referral"               (ANC.DT.02 - ANC.DT.11)

The catalog and the decision rules are immutable tables passed in as
arguments, so alternate tables can be evaluated without touching module
state.

Reference: Zambian ANC Guidelines 2022, WHO ANC DAK decision table ANC.DT
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

NO_DANGER_SIGNS = "None"
CONTINUE_CONTACT_ACTION = "Continue ANC Contact"
REFERRAL_ACTION = "Referral"
DEFAULT_REFERRAL_ANNOTATION = "Danger sign detected. Please refer the patient to a hospital."
URGENT_REFERRAL_ANNOTATION = (
    "This is a danger sign that indicates that the woman needs urgent referral to a hospital."
)
GUIDELINE_SOURCE = "Zambian ANC Guidelines 2022"


class DangerSignSeverity(str, Enum):
    CRITICAL = "critical"
    URGENT = "urgent"
    WARNING = "warning"

    @property
    def priority(self) -> int:
        return {
            DangerSignSeverity.CRITICAL: 0,
            DangerSignSeverity.URGENT: 1,
            DangerSignSeverity.WARNING: 2,
        }[self]


@dataclass(frozen=True)
class DangerSignMetadata:
    """Catalog entry for one danger sign."""
    sign: str
    severity: DangerSignSeverity
    urgency: str                      # immediate | same_day | next_visit
    description: str
    management_protocol: str
    guideline_reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sign": self.sign,
            "severity": self.severity.value,
            "urgency": self.urgency,
            "description": self.description,
            "management_protocol": self.management_protocol,
            "guideline_reference": self.guideline_reference,
        }


def _sign(sign, severity, urgency, description, protocol, section=None):
    reference = f"{GUIDELINE_SOURCE}, Section {section}" if section else GUIDELINE_SOURCE
    return sign, DangerSignMetadata(
        sign=sign,
        severity=severity,
        urgency=urgency,
        description=description,
        management_protocol=protocol,
        guideline_reference=reference,
    )


_CRIT = DangerSignSeverity.CRITICAL
_URG = DangerSignSeverity.URGENT
_WARN = DangerSignSeverity.WARNING

# Catalog order is the order the quick-check form presents the signs
DANGER_SIGN_CATALOG: Mapping[str, DangerSignMetadata] = MappingProxyType(dict([
    _sign(
        "Vaginal bleeding", _CRIT, "immediate",
        "Any amount of vaginal bleeding in pregnancy may indicate placental abruption, "
        "placenta previa, cervical problems or threatened abortion.",
        "Immediate assessment, IV access, cross-match blood, monitor vitals, "
        "prepare for possible transfusion",
        "3.2",
    ),
    _sign(
        "Draining", _URG, "immediate",
        "Amniotic fluid leak or rupture of membranes (PROM/PPROM), with risk of "
        "chorioamnionitis, preterm labour and cord prolapse.",
        "Confirm PROM/PPROM, assess for cord prolapse, start antibiotics if indicated, "
        "prepare for delivery",
        "3.3",
    ),
    _sign(
        "Imminent delivery", _CRIT, "immediate",
        "Birth is about to happen: urge to push, contractions under 2 minutes apart, "
        "or crowning.",
        "Prepare for immediate delivery, ensure clean delivery kit, call skilled birth attendant",
        "3.4",
    ),
    _sign(
        "Labour", _URG, "immediate",
        "Regular painful contractions with progressive cervical change; before 37 weeks "
        "this is preterm labour.",
        "Assess gestational age, evaluate cervical changes, consider tocolytics if preterm, "
        "prepare for delivery",
        "3.5",
    ),
    _sign(
        "Convulsing", _CRIT, "immediate",
        "Eclamptic seizure with tonic-clonic movements and loss of consciousness.",
        "Protect airway, administer magnesium sulfate, control BP, prepare for emergency delivery",
        "3.6",
    ),
    _sign(
        "Severe headache", _URG, "same_day",
        "New, persistent headache not relieved by usual painkillers; a hallmark of pre-eclampsia.",
        "Check BP, assess for pre-eclampsia signs, test urine for protein, "
        "consider antihypertensives",
        "3.7",
    ),
    _sign(
        "Visual disturbance", _URG, "same_day",
        "Flashing lights, spots, double or blurred vision; a sign of severe pre-eclampsia.",
        "Urgent BP check, assess for pre-eclampsia/eclampsia, prepare for possible "
        "magnesium sulfate",
        "3.7",
    ),
    _sign(
        "Unconscious", _CRIT, "immediate",
        "Patient cannot be roused; causes include eclampsia, haemorrhagic or septic shock.",
        "ABC assessment, check glucose, assess for eclampsia/shock, immediate resuscitation",
        "3.8",
    ),
    _sign(
        "Fever", _URG, "same_day",
        "Temperature of 38°C or more with chills or rigors, often signalling serious infection.",
        "Identify infection source, blood cultures, start antibiotics, monitor fetal wellbeing",
        "3.9",
    ),
    _sign(
        "Looks very ill", _URG, "immediate",
        "Clinical judgement that the patient is lethargic, confused, pale or clammy; "
        "often early sepsis or shock.",
        "Full assessment, vital signs, investigate for sepsis/shock, early intervention",
        "3.10",
    ),
    _sign(
        "Severe vomiting", _WARN, "same_day",
        "Persistent vomiting preventing intake of food or fluids, risking dehydration "
        "and ketosis.",
        "Assess hydration, check ketones, IV fluids, antiemetics, monitor electrolytes",
        "3.11",
    ),
    _sign(
        "Severe abdominal pain", _URG, "immediate",
        "Intense non-contraction abdominal pain; may indicate abruption, HELLP or infection.",
        "Assess for abruption, HELLP, appendicitis, monitor fetal heart rate, "
        "prepare for intervention",
        "3.12",
    ),
    _sign(
        "Other", _WARN, "same_day",
        "Any other concerning symptom not listed that requires clinical assessment.",
        "Clinical assessment based on specific symptoms",
    ),
]))


@dataclass(frozen=True)
class DangerSignRule:
    """One row of the ANC.DT danger-sign decision table."""
    rule_id: str
    sign: str | None          # None for the no-danger-signs row
    action: str
    annotation: str


ANC_DANGER_SIGN_RULES: tuple[DangerSignRule, ...] = (
    DangerSignRule(
        "ANC.DT.01", None, CONTINUE_CONTACT_ACTION,
        "If no danger signs are present, the health worker can continue with the "
        "normal ANC contact.",
    ),
    DangerSignRule("ANC.DT.02", "Vaginal bleeding", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.03", "Convulsing", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.04", "Fever", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.05", "Severe headache", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.06", "Visual disturbance", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.07", "Imminent delivery", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.08", "Looks very ill", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.09", "Severe vomiting", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.10", "Severe abdominal pain", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
    DangerSignRule("ANC.DT.11", "Unconscious", REFERRAL_ACTION, URGENT_REFERRAL_ANNOTATION),
)


class DangerSignState(str, Enum):
    """Terminal states of the quick-check."""
    NORMAL = "normal"
    REFERRAL = "referral"


@dataclass(frozen=True)
class DangerSignEvaluation:
    """Outcome of the danger-sign quick-check."""
    state: DangerSignState
    action: str
    rule_id: str | None
    annotation: str
    triggering_sign: str | None = None
    signs: tuple[DangerSignMetadata, ...] = ()      # prioritized, critical first
    ignored: tuple[str, ...] = ()                   # input values not in the catalog

    @property
    def referral_required(self) -> bool:
        return self.state == DangerSignState.REFERRAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "action": self.action,
            "rule_id": self.rule_id,
            "annotation": self.annotation,
            "triggering_sign": self.triggering_sign,
            "referral_required": self.referral_required,
            "signs": [s.to_dict() for s in self.signs],
            "ignored": list(self.ignored),
        }


def _catalog_lookup(catalog: Mapping[str, DangerSignMetadata]) -> dict[str, str]:
    return {name.strip().lower(): name for name in catalog}


def _ordered(selected: Iterable[str] | None, catalog: Mapping[str, DangerSignMetadata]) -> list[str]:
    """Selected values in input order.

    Unordered sets carry no input order; those are taken in catalog order
    so the outcome stays deterministic.
    """
    if not selected:
        return []
    if isinstance(selected, str):
        return [selected]
    if isinstance(selected, (set, frozenset)):
        position = {name.lower(): i for i, name in enumerate(catalog)}
        return sorted(selected, key=lambda s: (position.get(str(s).strip().lower(), len(position)), str(s)))
    return list(selected)


def is_danger_sign(value: str, catalog: Mapping[str, DangerSignMetadata] = DANGER_SIGN_CATALOG) -> bool:
    return isinstance(value, str) and value.strip().lower() in _catalog_lookup(catalog)


def prioritize_danger_signs(
    signs: Iterable[str],
    catalog: Mapping[str, DangerSignMetadata] = DANGER_SIGN_CATALOG,
) -> list[DangerSignMetadata]:
    """Catalog entries for the given signs, critical first; stable within a severity."""
    lookup = _catalog_lookup(catalog)
    entries = []
    for sign in signs:
        name = lookup.get(str(sign).strip().lower())
        if name is not None and catalog[name] not in entries:
            entries.append(catalog[name])
    return sorted(entries, key=lambda m: m.severity.priority)


def critical_danger_signs(
    signs: Iterable[str],
    catalog: Mapping[str, DangerSignMetadata] = DANGER_SIGN_CATALOG,
) -> list[str]:
    return [
        m.sign for m in prioritize_danger_signs(signs, catalog)
        if m.severity == DangerSignSeverity.CRITICAL
    ]


def requires_immediate_action(
    signs: Iterable[str],
    catalog: Mapping[str, DangerSignMetadata] = DANGER_SIGN_CATALOG,
) -> bool:
    return any(m.urgency == "immediate" for m in prioritize_danger_signs(signs, catalog))


def evaluate_danger_signs(
    selected: Iterable[str] | None,
    catalog: Mapping[str, DangerSignMetadata] = DANGER_SIGN_CATALOG,
    rules: tuple[DangerSignRule, ...] = ANC_DANGER_SIGN_RULES,
) -> DangerSignEvaluation:
    """Run the quick-check over the selected danger signs.

    Args:
        selected: Signs ticked on the form. Empty, None, or only "None"
            means no danger signs.
        catalog: Danger-sign catalog to test membership against.
        rules: ANC.DT decision table.

    Returns:
        DangerSignEvaluation in state NORMAL or REFERRAL. The first
        catalog sign in input order decides the rule and annotation.
    """
    lookup = _catalog_lookup(catalog)
    rules_by_sign = {r.sign.lower(): r for r in rules if r.sign}
    no_signs_rule = next((r for r in rules if r.sign is None), None)

    matched: list[str] = []
    ignored: list[str] = []
    for value in _ordered(selected, catalog):
        text = str(value).strip()
        if not text or text.lower() == NO_DANGER_SIGNS.lower():
            continue
        name = lookup.get(text.lower())
        if name is None:
            ignored.append(text)
            continue
        if name not in matched:
            matched.append(name)

    if ignored:
        logger.debug(f"Ignoring values not in danger-sign catalog: {ignored}")

    if not matched:
        return DangerSignEvaluation(
            state=DangerSignState.NORMAL,
            action=CONTINUE_CONTACT_ACTION,
            rule_id=no_signs_rule.rule_id if no_signs_rule else None,
            annotation=no_signs_rule.annotation if no_signs_rule else "No danger signs detected.",
            ignored=tuple(ignored),
        )

    trigger = matched[0]
    rule = rules_by_sign.get(trigger.lower())
    return DangerSignEvaluation(
        state=DangerSignState.REFERRAL,
        action=REFERRAL_ACTION,
        rule_id=rule.rule_id if rule else None,
        annotation=rule.annotation if rule else DEFAULT_REFERRAL_ANNOTATION,
        triggering_sign=trigger,
        signs=tuple(prioritize_danger_signs(matched, catalog)),
        ignored=tuple(ignored),
    )


def generate_recommendation(evaluation: DangerSignEvaluation) -> str:
    """Health-worker facing recommendation text for a quick-check outcome."""
    if evaluation.state == DangerSignState.NORMAL:
        return (
            "RECOMMENDATION: Continue with normal ANC contact. "
            "No danger signs requiring urgent attention were detected."
        )
    signs = ", ".join(m.sign for m in evaluation.signs)
    return (
        "URGENT RECOMMENDATION: Immediate referral required. "
        f"Danger sign(s) detected: {signs}. {evaluation.annotation}"
    )
