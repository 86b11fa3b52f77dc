"""Tests for rule integrity checks and compliance reporting."""

from dak_cds.models import AlertSeverity, RuleStatus
from dak_cds.repository import IntegrityChecker
from dak_cds.repository.integrity import IssueSeverity, IssueType


class TestIntegrityChecker:
    """Per-rule and cross-rule checks."""

    def test_fully_traceable_rule_is_valid(self, make_rule):
        report = IntegrityChecker().check([make_rule()])

        assert report.total_rules == 1
        assert report.valid_rules == 1
        assert report.issues == []

    def test_missing_references(self, make_rule):
        rule = make_rule(dak_source_id=None, who_guideline_ref=None)

        report = IntegrityChecker().check([rule])

        types = {i.issue_type for i in report.issues}
        assert IssueType.MISSING_DAK_REFERENCE in types
        assert IssueType.MISSING_WHO_REFERENCE in types
        assert report.valid_rules == 0

    def test_missing_guideline_version_is_warning(self, make_rule):
        report = IntegrityChecker().check([make_rule(guideline_version=None)])

        assert report.valid_rules == 1
        (issue,) = report.issues
        assert issue.issue_type == IssueType.MISSING_GUIDELINE_VERSION
        assert issue.severity == IssueSeverity.WARNING

    def test_empty_trigger_and_recommendations(self, make_rule):
        rule = make_rule(trigger={}, recommendations=[])

        report = IntegrityChecker().check([rule])

        types = {i.issue_type for i in report.issues}
        assert types == {IssueType.EMPTY_TRIGGER, IssueType.EMPTY_RECOMMENDATIONS}

    def test_unknown_observation_key(self, make_rule):
        rule = make_rule(trigger={"shoeSize": {">": 40}})

        report = IntegrityChecker().check([rule])

        assert report.issues[0].issue_type == IssueType.UNKNOWN_OBSERVATION_KEY
        assert "shoeSize" in report.issues[0].message

    def test_key_valid_in_other_module_only(self, make_rule):
        rule = make_rule(trigger={"viralLoad": {">=": 1000}})

        report = IntegrityChecker().check([rule])

        assert report.valid_rules == 0

    def test_module_without_vocabulary_warns(self, make_rule):
        rule = make_rule(module_code="DENTAL", trigger={"plaque": {">": 2}})

        report = IntegrityChecker().check([rule])

        (issue,) = report.issues
        assert issue.issue_type == IssueType.UNVALIDATED_MODULE
        assert report.valid_rules == 1

    def test_invalid_evidence_rating(self, make_rule):
        report = IntegrityChecker().check([make_rule(evidence_rating=None)])

        assert report.issues[0].issue_type == IssueType.INVALID_EVIDENCE_RATING

    def test_inactive_rules_not_checked(self, make_rule):
        rule = make_rule(dak_source_id=None, status=RuleStatus.INACTIVE)

        report = IntegrityChecker().check([rule])

        assert report.total_rules == 0
        assert report.issues == []

    def test_duplicate_active_rule_code(self, make_rule):
        rules = [
            make_rule("ANC.X.01", id=1, version="1.0"),
            make_rule("ANC.X.01", id=2, version="2.0", severity=AlertSeverity.RED),
            make_rule("ANC.X.02", id=3),
        ]

        report = IntegrityChecker().check(rules)

        duplicates = [i for i in report.issues if i.issue_type == IssueType.DUPLICATE_ACTIVE_RULE]
        assert {i.rule_id for i in duplicates} == {1, 2}
        assert report.valid_rules == 1

    def test_bad_rule_does_not_hide_others(self, make_rule):
        rules = [make_rule("ANC.A", who_guideline_ref=None), make_rule("ANC.B")]

        report = IntegrityChecker().check(rules)

        assert report.total_rules == 2
        assert report.valid_rules == 1
        assert all(i.rule_code == "ANC.A" for i in report.issues)


class TestComplianceReport:
    """Percentages derived from an integrity report."""

    def test_empty_rule_set_is_fully_compliant(self):
        compliance = IntegrityChecker().check([]).compliance()

        assert compliance == {
            "dak_traceability": 100.0,
            "decision_support": 100.0,
            "module_compliance": 100.0,
            "overall_compliance": 100.0,
        }

    def test_partial_compliance(self, make_rule):
        rules = [
            make_rule("ANC.A", dak_source_id=None),
            make_rule("ANC.B"),
            make_rule("ANC.C"),
            make_rule("ANC.D", decision_support_message=None),
        ]

        compliance = IntegrityChecker().check(rules).compliance()

        assert compliance["dak_traceability"] == 75.0
        assert compliance["decision_support"] == 75.0
        assert compliance["module_compliance"] == 100.0
        assert compliance["overall_compliance"] == 50.0

    def test_summary_counts(self, make_rule):
        rules = [make_rule("ANC.A", dak_source_id=None), make_rule("ANC.B", dak_source_id=None)]

        summary = IntegrityChecker().check(rules).to_dict()["summary"]

        assert summary == {"missing_dak_reference": 2}


class TestRepositoryDiagnostics:
    """integrity_check and compliance_report on a loaded repository."""

    def test_fixture_sheet_is_clean(self, populated_repository):
        report = populated_repository.integrity_check()

        assert report.total_rules == 6
        assert report.valid_rules == 6
        assert report.issues_found == 0

    def test_compliance_report_shape(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ART.VL.01")
        populated_repository.patch_rule(rule.id, {"whoGuidelineRef": ""})
        populated_repository.integrity_check()

        report = populated_repository.compliance_report()

        assert report["total_rules"] == 6
        assert report["valid_rules"] == 5
        assert report["compliance"]["dak_traceability"] == 83.3
        assert "checked_at" in report

    def test_compliance_runs_check_when_none_cached(self, populated_repository):
        assert populated_repository.last_integrity_report is None

        report = populated_repository.compliance_report()

        assert report["compliance"]["overall_compliance"] == 100.0
        assert populated_repository.last_integrity_report is not None
