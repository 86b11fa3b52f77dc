"""Behaviour counselling triggers (ANC.DT.12).

Reads the medical-history section of an ANC observation set and lists
the counselling sessions the health worker must deliver: caffeine,
tobacco, second-hand smoke, alcohol/substance use and IPV/GBV.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

RULE_ID = "ANC.DT.12"

HIGH_CAFFEINE_INTAKES = frozenset(s.lower() for s in (
    "More than 2 cups (200 ml) of filtered or commercially brewed coffee",
    "More than 4 cups of tea",
    "More than one bottle of cola or caffeine energy drink",
    "More than 3 cups (300 ml) of instant coffee",
    "More than 48 pieces (squares) of chocolate",
    "more_than_2_cups_coffee",
    "more_than_4_cups_tea",
    "energy_drinks",
    "high",
    "yes",
))
RISK_SUBSTANCES = frozenset({"alcohol", "marijuana", "cocaine", "crack", "injectable_drugs"})

_YES = {"yes", "true"}


@dataclass(frozen=True)
class CounsellingAlert:
    id: str
    type: str                 # caffeine | tobacco | secondhand_smoke | alcohol_substance | ipv
    title: str
    message: str
    counselling_guidance: str
    trigger_condition: str
    severity: str             # warning | important | critical
    requires_acknowledgment: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "counselling_guidance": self.counselling_guidance,
            "trigger_condition": self.trigger_condition,
            "severity": self.severity,
            "requires_acknowledgment": self.requires_acknowledgment,
        }


@dataclass(frozen=True)
class CounsellingRequirements:
    caffeine_required: bool = False
    tobacco_required: bool = False
    secondhand_smoke_required: bool = False
    alcohol_substance_required: bool = False
    ipv_required: bool = False
    alerts: tuple[CounsellingAlert, ...] = field(default_factory=tuple)

    @property
    def any_required(self) -> bool:
        return bool(self.alerts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": RULE_ID,
            "caffeine_required": self.caffeine_required,
            "tobacco_required": self.tobacco_required,
            "secondhand_smoke_required": self.secondhand_smoke_required,
            "alcohol_substance_required": self.alcohol_substance_required,
            "ipv_required": self.ipv_required,
            "alerts": [a.to_dict() for a in self.alerts],
        }


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value).strip().lower()


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return [str(v) for v in value]


def evaluate_behavioral_counselling(
    profile: Mapping[str, Any],
    persistent_behaviors: Iterable[str] = (),
) -> CounsellingRequirements:
    """Determine required behaviour counselling from an ANC client profile.

    Args:
        profile: Observations keyed by caffeineIntake, tobaccoSmoking,
            tobaccoSniffing, householdSmoking, substanceUse and
            intimatePartnerViolence. Missing keys trigger nothing.
        persistent_behaviors: Behaviours carried over from earlier contacts.
    """
    persistent = set(persistent_behaviors or ())
    alerts: list[CounsellingAlert] = []
    flags = dict.fromkeys(
        ("caffeine", "tobacco", "secondhand_smoke", "alcohol_substance", "ipv"), False
    )

    caffeine = profile.get("caffeineIntake")
    if (caffeine and _text(caffeine) in HIGH_CAFFEINE_INTAKES) or "High caffeine intake" in persistent:
        flags["caffeine"] = True
        intake = str(caffeine) if caffeine else "High caffeine intake"
        kind = "reduction" if "chocolate" in intake.lower() else "avoidance"
        alerts.append(CounsellingAlert(
            id="caffeine_counselling",
            type="caffeine",
            title=f"Caffeine {kind} counseling required",
            message=f"Client reports: {intake}",
            counselling_guidance=(
                "Lowering daily caffeine intake during pregnancy is recommended to reduce "
                "the risk of pregnancy loss and low-birth-weight neonates. This includes any "
                "product, beverage or food containing caffeine."
            ),
            trigger_condition=f"Daily caffeine intake: {intake}",
            severity="warning",
        ))

    smoking = _text(profile.get("tobaccoSmoking"))
    sniffing = _text(profile.get("tobaccoSniffing"))
    if (
        smoking in _YES | {"recently_quit"}
        or sniffing in _YES | {"recently_quit"}
        or "Current tobacco use or recently quit" in persistent
    ):
        flags["tobacco"] = True
        current = smoking in _YES or sniffing in _YES
        quit_only = not current and "recently_quit" in (smoking, sniffing)
        status = "recently quit" if quit_only else "current use"
        alerts.append(CounsellingAlert(
            id="tobacco_counselling",
            type="tobacco",
            title="Tobacco cessation counseling required",
            message=f"Client reports tobacco {status}",
            counselling_guidance=(
                "Healthcare providers should routinely offer advice and psycho-social "
                "interventions for tobacco cessation to all pregnant women who are either "
                "current tobacco users or recent tobacco quitters."
            ),
            trigger_condition=f"Tobacco use: {status}",
            severity="important",
        ))

    if _text(profile.get("householdSmoking")) in _YES or "Does anyone in the household smoke?" in persistent:
        flags["secondhand_smoke"] = True
        alerts.append(CounsellingAlert(
            id="secondhand_smoke_counselling",
            type="secondhand_smoke",
            title="Second-hand smoke counseling required",
            message="Household member(s) smoke",
            counselling_guidance=(
                "Provide pregnant women, their partners and other household members with "
                "advice and information about the risks of second-hand smoke exposure, as "
                "well as strategies to reduce it in the home."
            ),
            trigger_condition="Anyone in household smokes: Yes",
            severity="important",
        ))

    substances = [s for s in _as_list(profile.get("substanceUse")) if s.strip().lower() in RISK_SUBSTANCES]
    if substances or "Alcohol use" in persistent or "Substance use" in persistent:
        flags["alcohol_substance"] = True
        reported = ", ".join(substances)
        alerts.append(CounsellingAlert(
            id="alcohol_substance_counselling",
            type="alcohol_substance",
            title="Alcohol / substance use counseling required",
            message=f"Client reports: {reported}",
            counselling_guidance=(
                "Advise pregnant women dependent on alcohol or drugs to cease their use at the "
                "earliest opportunity and offer, or refer them to, detoxification services "
                "under medical supervision where necessary."
            ),
            trigger_condition=f"Substance use: {reported}",
            severity="critical",
        ))

    if _text(profile.get("intimatePartnerViolence")) in _YES | {"suspected"}:
        flags["ipv"] = True
        alerts.append(CounsellingAlert(
            id="ipv_counselling",
            type="ipv",
            title="IPV/GBV counseling required",
            message="Intimate partner violence indicators present",
            counselling_guidance=(
                "Ask pregnant women about physical or emotional abuse and violence with their "
                "current or previous partner, and examine for signs of IPV/GBV."
            ),
            trigger_condition="IPV/GBV indicators detected",
            severity="critical",
        ))

    return CounsellingRequirements(
        caffeine_required=flags["caffeine"],
        tobacco_required=flags["tobacco"],
        secondhand_smoke_required=flags["secondhand_smoke"],
        alcohol_substance_required=flags["alcohol_substance"],
        ipv_required=flags["ipv"],
        alerts=tuple(alerts),
    )
