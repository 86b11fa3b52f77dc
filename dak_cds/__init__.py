"""DAK clinical decision support core.

Normalizes clinical findings, stores versioned DAK-traceable rules,
evaluates them into ordered alerts, scores PrEP, obstetric and lab risk,
and caches per-module rule lookups.
"""

from .cache import DecisionCache
from .exceptions import DAKError, ImportAbortedError, NotFoundError, UnknownModuleError, ValidationError
from .models import Alert, ClinicalObservationSet, DecisionRule, ModuleCode, RiskAssessment, RiskFactor
from .normalizer import normalize
from .repository import RuleRepository
from .rules import RuleEvaluationEngine, evaluate_danger_signs

__version__ = "0.1.0"

__all__ = [
    "normalize",
    "RuleRepository",
    "RuleEvaluationEngine",
    "DecisionCache",
    "evaluate_danger_signs",
    "Alert",
    "ClinicalObservationSet",
    "DecisionRule",
    "ModuleCode",
    "RiskAssessment",
    "RiskFactor",
    "DAKError",
    "ValidationError",
    "UnknownModuleError",
    "NotFoundError",
    "ImportAbortedError",
]
