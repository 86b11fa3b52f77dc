"""Tests for SQLite rule persistence."""

import dataclasses

import pytest

from dak_cds.models import AlertSeverity, ImportJobStatus, RuleStatus


class TestRuleStore:
    """Rule versions round-trip through SQLite."""

    def test_schema_created(self, store):
        assert store.count_rules() == 0
        assert store.list_import_jobs() == []

    def test_save_and_load(self, store, make_rule):
        rule = make_rule(
            id=1,
            severity=AlertSeverity.RED,
            trigger={"systolicBP": {">=": 160}, "dangerSigns": ["Convulsing"], "hivStatus": "positive"},
            clinical_thresholds={"systolic": 160, "referral": True},
        )

        store.save_rule(rule)
        (loaded,) = store.load_rules()

        assert loaded == rule

    def test_status_updated_in_place(self, store, make_rule):
        rule = make_rule(id=1)
        store.save_rule(rule)
        store.save_rule(dataclasses.replace(rule, status=RuleStatus.SUPERSEDED))

        assert store.count_rules() == 1
        assert store.load_rules()[0].status == RuleStatus.SUPERSEDED

    def test_load_by_module(self, store, make_rule):
        store.save_rules([
            make_rule("ANC.A", id=1),
            make_rule("ART.A", module_code="ART", id=2, trigger={"cd4Count": {"<": 200}}),
        ])

        assert [r.rule_code for r in store.load_rules("art")] == ["ART.A"]

    def test_rule_without_id_rejected(self, store, make_rule):
        with pytest.raises(ValueError):
            store.save_rule(make_rule())


class TestImportJobs:
    """Import job history."""

    def test_create_and_update(self, store):
        job = store.create_import_job("rules.csv")
        assert store.get_import_job(job.id).status == ImportJobStatus.RUNNING

        job.status = ImportJobStatus.COMPLETED
        job.accepted = 3
        job.errors = [{"row": 2, "reason": "invalid_severity"}]
        store.record_import_job(job)

        loaded = store.get_import_job(job.id)
        assert loaded.status == ImportJobStatus.COMPLETED
        assert loaded.accepted == 3
        assert loaded.errors == [{"row": 2, "reason": "invalid_severity"}]

    def test_unknown_job(self, store):
        assert store.get_import_job("nope") is None

    def test_filter_by_status(self, store):
        done = store.create_import_job("a.csv")
        done.status = ImportJobStatus.COMPLETED
        store.record_import_job(done)
        store.create_import_job("b.csv")

        jobs = store.list_import_jobs(status=ImportJobStatus.COMPLETED)

        assert [j.source for j in jobs] == ["a.csv"]
