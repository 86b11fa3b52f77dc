"""Rule Evaluation Engine.

Evaluates DAK decision rules against a normalized observation set and
produces alerts in display order.

Decision Flow (per rule, in priority order):
1. Rule inactive or without trigger clauses -> skipped silently
2. Any clause references an absent observation -> does not fire
3. All clauses hold -> one Alert
4. A clause cannot be evaluated (type mismatch, bad threshold)
   -> rule skipped, skip counter incremented, evaluation continues

Alert order is severity priority (red first) then rule code, because
callers often display only the top few alerts.
"""

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models import Alert, DecisionRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedRule:
    """A rule that could not be evaluated against this observation set."""
    rule_code: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"rule_code": self.rule_code, "reason": self.reason}


@dataclass(frozen=True)
class EvaluationResult:
    """Alerts plus diagnostics for one evaluation call."""
    alerts: tuple[Alert, ...]
    evaluated: int
    skipped: tuple[SkippedRule, ...] = field(default_factory=tuple)

    @property
    def referral_required(self) -> bool:
        return any(a.referral_required for a in self.alerts)

    def top(self, n: int) -> tuple[Alert, ...]:
        return self.alerts[:max(n, 0)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": len(self.alerts),
            "evaluated": self.evaluated,
            "referral_required": self.referral_required,
            "alerts": [a.to_dict() for a in self.alerts],
            "skipped": [s.to_dict() for s in self.skipped],
        }


class RuleEvaluationEngine:
    """Apply active decision rules to observations deterministically.

    The engine holds no rule state. The only mutable state is the
    cumulative skip counter, kept for diagnostics.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._skip_lock = threading.Lock()
        self._skip_count = 0

    @property
    def skip_count(self) -> int:
        """Rules skipped across all evaluations by this engine."""
        return self._skip_count

    def evaluate(
        self,
        observations: Mapping[str, Any],
        rules: Iterable[DecisionRule],
    ) -> list[Alert]:
        """Evaluate rules against observations.

        Args:
            observations: Normalized observation set
            rules: Candidate rules; inactive ones are ignored

        Returns:
            One Alert per firing rule, critical severity first
        """
        return list(self.evaluate_detailed(observations, rules).alerts)

    def evaluate_detailed(
        self,
        observations: Mapping[str, Any],
        rules: Iterable[DecisionRule],
    ) -> EvaluationResult:
        """Evaluate rules and report which were skipped and why."""
        timestamp = self._clock()
        active = sorted((r for r in rules if r.is_active), key=lambda r: r.sort_key)

        alerts: list[Alert] = []
        skipped: list[SkippedRule] = []

        for rule in active:
            if not rule.trigger_conditions:
                continue
            try:
                fired = all(clause.matches(observations) for clause in rule.trigger_conditions)
            except Exception as e:
                logger.warning(f"Skipping rule {rule.rule_code}: {e}")
                skipped.append(SkippedRule(rule.rule_code, str(e)))
                continue

            if fired:
                logger.debug(f"Rule {rule.rule_code} fired ({rule.alert_severity.value})")
                alerts.append(Alert.from_rule(rule, timestamp))

        if skipped:
            with self._skip_lock:
                self._skip_count += len(skipped)

        return EvaluationResult(
            alerts=tuple(alerts),
            evaluated=len(active),
            skipped=tuple(skipped),
        )
