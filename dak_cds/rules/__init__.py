"""Rule evaluation: DAK rule engine and ANC guideline evaluators.

Guideline evaluators cover danger signs, fetal movement, counselling and IPV.
"""

from .counselling import CounsellingAlert, CounsellingRequirements, evaluate_behavioral_counselling
from .danger_signs import (
    ANC_DANGER_SIGN_RULES,
    DANGER_SIGN_CATALOG,
    DangerSignEvaluation,
    DangerSignMetadata,
    DangerSignRule,
    DangerSignSeverity,
    DangerSignState,
    critical_danger_signs,
    evaluate_danger_signs,
    generate_recommendation,
    is_danger_sign,
    prioritize_danger_signs,
    requires_immediate_action,
)
from .engine import EvaluationResult, RuleEvaluationEngine, SkippedRule
from .fetal_movement import FetalMovementDecision, assess_fetal_movement
from .ipv import (
    IPV_DECISION_RULES,
    IPVDecisionRule,
    IPVRiskAssessment,
    IPVRiskLevel,
    evaluate_ipv_risk,
    generate_ipv_recommendations,
    requires_immediate_intervention,
)

__all__ = [
    "RuleEvaluationEngine",
    "EvaluationResult",
    "SkippedRule",
    "DANGER_SIGN_CATALOG",
    "ANC_DANGER_SIGN_RULES",
    "DangerSignMetadata",
    "DangerSignRule",
    "DangerSignSeverity",
    "DangerSignState",
    "DangerSignEvaluation",
    "evaluate_danger_signs",
    "generate_recommendation",
    "is_danger_sign",
    "prioritize_danger_signs",
    "critical_danger_signs",
    "requires_immediate_action",
    "FetalMovementDecision",
    "assess_fetal_movement",
    "CounsellingAlert",
    "CounsellingRequirements",
    "evaluate_behavioral_counselling",
    "IPV_DECISION_RULES",
    "IPVDecisionRule",
    "IPVRiskAssessment",
    "IPVRiskLevel",
    "evaluate_ipv_risk",
    "generate_ipv_recommendations",
    "requires_immediate_intervention",
]
