"""Tests for IPV risk stratification."""

import pytest

from dak_cds.rules import (
    IPV_DECISION_RULES,
    IPVRiskLevel,
    evaluate_ipv_risk,
    generate_ipv_recommendations,
    requires_immediate_intervention,
)
from dak_cds.rules.ipv import DISCLOSURE, NO_SIGNS, IPVDecisionRule


class TestDecisionTable:
    """IPV decision table contents."""

    def test_five_rules(self):
        assert [r.rule_id for r in IPV_DECISION_RULES] == [
            "IPV.01", "IPV.02", "IPV.03", "IPV.04", "IPV.05",
        ]

    def test_combination_rule_has_no_triggers(self):
        assert IPV_DECISION_RULES[-1].rule_code == "IPV_MULTIPLE_INDICATORS"
        assert IPV_DECISION_RULES[-1].triggers == ()


class TestEvaluateIPVRisk:
    """Risk level selection."""

    @pytest.mark.parametrize("selected", [None, [], [NO_SIGNS], ["  "]])
    def test_no_signs(self, selected):
        assessment = evaluate_ipv_risk(selected)

        assert assessment.risk_level == IPVRiskLevel.NONE
        assert assessment.alert_severity == "blue"
        assert assessment.referral_required is False

    def test_behavioural_sign_is_low(self):
        assessment = evaluate_ipv_risk(["Children have emotional and behavioural problems"])

        assert assessment.rule_code == "IPV_BEHAVIORAL_SIGNS"
        assert assessment.risk_level == IPVRiskLevel.LOW
        assert assessment.referral_required is False

    def test_psychological_sign_is_medium_with_referral(self):
        assessment = evaluate_ipv_risk(["ongoing anxiety"])

        assert assessment.risk_level == IPVRiskLevel.MEDIUM
        assert assessment.referral_required is True
        assert assessment.urgent_action is False

    def test_most_severe_rule_wins(self):
        assessment = evaluate_ipv_risk(["Ongoing stress", "Injury to abdomen"])

        assert assessment.rule_code == "IPV_PHYSICAL_INDICATORS"
        assert assessment.risk_level == IPVRiskLevel.HIGH
        assert assessment.urgent_action is True

    def test_three_signs_escalate(self):
        assessment = evaluate_ipv_risk([
            "Ongoing stress",
            "Ongoing anxiety",
            "Woman's partner or husband is intrusive during consultations",
        ])

        assert assessment.rule_code == "IPV_MULTIPLE_INDICATORS"
        assert assessment.alert_severity == "red"
        assert len(assessment.signs) == 3

    def test_duplicates_and_disclosure_not_counted(self):
        assessment = evaluate_ipv_risk([
            "Ongoing stress", "ongoing stress", DISCLOSURE, NO_SIGNS,
        ])

        assert assessment.rule_code == "IPV_PSYCHOLOGICAL_IMPACT"
        assert assessment.signs == ("Ongoing stress",)

    def test_disclosure_alone_is_low(self):
        assert evaluate_ipv_risk([DISCLOSURE]).risk_level == IPVRiskLevel.LOW

    def test_unrecognised_sign_defaults_to_behavioural(self):
        assert evaluate_ipv_risk(["Bruised wrist"]).rule_code == "IPV_BEHAVIORAL_SIGNS"

    def test_alternate_table(self):
        extra = IPVDecisionRule(
            rule_id="IPV.06",
            rule_code="IPV_THREAT_TO_LIFE",
            rule_name="Threat to life",
            business_rule="Threats to kill require emergency response",
            triggers=("Partner has threatened to kill her",),
            risk_level=IPVRiskLevel.IMMEDIATE_DANGER,
            alert_severity="red",
            alert_title="Immediate danger",
            alert_message="Woman is in immediate danger.",
            recommendations=("Activate emergency response",),
            safety_considerations=(),
            referral_required=True,
            urgent_action=True,
        )

        assessment = evaluate_ipv_risk(
            ["Partner has threatened to kill her", "Ongoing stress"],
            rules=IPV_DECISION_RULES + (extra,),
        )

        assert assessment.risk_level == IPVRiskLevel.IMMEDIATE_DANGER


class TestHelpers:
    """Intervention flag and recommendation text."""

    def test_requires_immediate_intervention(self):
        assert requires_immediate_intervention(["Injury to abdomen"]) is True
        assert requires_immediate_intervention(["Ongoing depression"]) is False
        assert requires_immediate_intervention([]) is False

    def test_recommendation_text_urgent(self):
        text = generate_ipv_recommendations(evaluate_ipv_risk(["Injury to abdomen"]))

        assert text.startswith("IPV RISK ASSESSMENT: HIGH")
        assert "1. Conduct thorough physical examination when safe" in text
        assert "- Violence may escalate if partner suspects disclosure" in text
        assert text.endswith("URGENT ACTION REQUIRED - Implement immediately")

    def test_recommendation_text_referral(self):
        text = generate_ipv_recommendations(evaluate_ipv_risk(["Misuse of drugs"]))

        assert text.endswith("REFERRAL RECOMMENDED - Coordinate specialized support")

    def test_to_dict(self):
        data = evaluate_ipv_risk(["Unwanted pregnancies"]).to_dict()

        assert data["risk_level"] == "high"
        assert data["requires_immediate_intervention"] is True
        assert data["signs"] == ["Unwanted pregnancies"]
