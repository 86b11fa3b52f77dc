"""Tests for the versioned rule repository."""

import dataclasses
import io
import threading

import pytest

from dak_cds.exceptions import ImportAbortedError, NotFoundError, ValidationError
from dak_cds.models import AlertSeverity, ImportJobStatus, RuleStatus
from dak_cds.repository import RuleRepository


HEADER = (
    "rule_identifier,dak_source_id,evidence_rating,display_to_health_worker,"
    "applicable_module,alert_severity,trigger_conditions,who_guideline_ref,version\n"
)


def _csv(*lines):
    return io.StringIO(HEADER + "\n".join(lines) + "\n")


class TestBulkImport:
    """CSV bulk import with per-row isolation."""

    def test_import_fixture(self, repository, dak_csv_path):
        result = repository.import_csv(dak_csv_path)

        assert result.accepted == 6
        assert result.rejected == 1
        assert result.errors[0].reason == "malformed_json"
        assert result.errors[0].row == 7
        assert result.errors[0].rule_code == "ANC.BAD.01"
        assert result.modules_touched == {"ANC", "ART", "PREP"}
        assert result.success is False
        assert result.message == "Processed 7 records with 1 errors"

    def test_bad_row_does_not_block_batch(self, repository):
        result = repository.bulk_import([
            {"rule_identifier": "R1", "display_to_health_worker": "M", "applicable_module": "ANC"},
            {"rule_identifier": "", "display_to_health_worker": "M", "applicable_module": "ANC"},
            {"rule_identifier": "R3", "display_to_health_worker": "M", "applicable_module": "ANC"},
        ])

        assert result.accepted == 2
        assert result.rejected == 1
        assert result.errors[0].reason == "missing_required_fields"
        assert result.errors[0].row == 2

    def test_import_is_idempotent(self, repository, dak_csv_path):
        repository.import_csv(dak_csv_path)
        first = {r.rule_code: r.version for m in repository.modules() for r in repository.get_active_rules(m)}

        second_result = repository.import_csv(dak_csv_path)
        second = {r.rule_code: r.version for m in repository.modules() for r in repository.get_active_rules(m)}

        assert first == second
        assert second_result.superseded == 6
        for module in repository.modules():
            codes = [r.rule_code for r in repository.get_active_rules(module)]
            assert len(codes) == len(set(codes))

    def test_same_version_reimport_keeps_old_for_audit(self, repository, dak_csv_path):
        repository.import_csv(dak_csv_path)
        repository.import_csv(dak_csv_path)

        versions = repository.get_versions("ANC", "ANC.BP.01")
        assert [v.status for v in versions] == [RuleStatus.SUPERSEDED, RuleStatus.ACTIVE]

    def test_newer_version_supersedes(self, repository):
        repository.import_csv(_csv(
            'R1,D1,A,Old message,ANC,red,"{""systolicBP"": {"">="": 160}}",WHO,1.0',
        ))
        result = repository.import_csv(_csv(
            'R1,D1,A,New message,ANC,red,"{""systolicBP"": {"">="": 150}}",WHO,2.0',
        ))

        assert result.superseded == 1
        (active,) = repository.get_active_rules("ANC")
        assert active.version == "2.0"
        assert active.decision_support_message == "New message"

    def test_older_version_stored_superseded(self, repository):
        repository.import_csv(_csv('R1,D1,A,V2,ANC,red,,WHO,2.0'))
        repository.import_csv(_csv('R1,D1,A,V1,ANC,red,,WHO,1.0'))

        (active,) = repository.get_active_rules("ANC")
        assert active.version == "2.0"
        old = [v for v in repository.get_versions("ANC", "R1") if v.version == "1.0"][0]
        assert old.status == RuleStatus.SUPERSEDED

    def test_small_batches(self, dak_csv_path):
        repository = RuleRepository(batch_size=2)
        result = repository.import_csv(dak_csv_path)

        assert result.accepted == 6
        assert len(repository.get_active_rules("ANC")) == 3

    def test_accepts_generator(self, repository):
        def rows():
            for i in range(5):
                yield {
                    "rule_identifier": f"R{i}",
                    "display_to_health_worker": "M",
                    "applicable_module": "ART",
                }

        assert repository.bulk_import(rows()).accepted == 5

    def test_missing_headers_aborts(self, repository):
        with pytest.raises(ImportAbortedError):
            repository.import_csv(io.StringIO("rule_identifier,version\nR1,1.0\n"))

    def test_unreadable_file_aborts(self, repository, tmp_path):
        with pytest.raises(ImportAbortedError):
            repository.import_csv(tmp_path / "nope.csv")


class TestQueries:
    """Rule lookups."""

    def test_active_rules_ordered_by_severity_then_code(self, populated_repository):
        rules = populated_repository.get_active_rules("ANC")

        assert [r.rule_code for r in rules] == ["ANC.BP.01", "ANC.HB.01", "ANC.GA.01"]
        assert [r.alert_severity for r in rules] == [
            AlertSeverity.RED, AlertSeverity.YELLOW, AlertSeverity.GREEN,
        ]

    def test_module_code_case_insensitive(self, populated_repository):
        assert len(populated_repository.get_active_rules("art")) == 2

    def test_unknown_module_empty(self, populated_repository):
        assert populated_repository.get_active_rules("DENTAL") == []

    def test_get_rule_not_found(self, populated_repository):
        with pytest.raises(NotFoundError):
            populated_repository.get_rule(999)

    def test_get_rule_by_code(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ART.VL.01")

        assert rule.module_code == "ART"
        with pytest.raises(NotFoundError):
            populated_repository.get_rule_by_code("NOPE")

    def test_list_rules_filters(self, populated_repository):
        assert len(populated_repository.list_rules()) == 6

    def test_returned_rules_are_read_only(self, populated_repository):
        rule = populated_repository.get_active_rules("ANC")[0]
        source_id = rule.dak_source_id

        with pytest.raises(dataclasses.FrozenInstanceError):
            rule.dak_source_id = "TAMPERED"
        with pytest.raises(TypeError):
            rule.clinical_thresholds["referral"] = False
        with pytest.raises(AttributeError):
            rule.recommendations.append("Ignore")

        assert populated_repository.get_rule(rule.id).dak_source_id == source_id
        assert len(populated_repository.list_rules(limit=2)) == 2
        assert len(populated_repository.list_rules(module_code="PREP")) == 1

    def test_list_rules_active_only(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.GA.01")
        populated_repository.deactivate_rule(rule.id)

        assert len(populated_repository.list_rules(active_only=True)) == 5
        assert len(populated_repository.list_rules()) == 6


class TestPatchRule:
    """Admin edits of single fields."""

    def test_patch_updates_only_supplied_fields(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        updated = populated_repository.patch_rule(rule.id, {"rule_description": "Updated"})

        assert updated.rule_description == "Updated"
        assert updated.alert_title == rule.alert_title
        assert updated.dak_source_id == rule.dak_source_id
        assert populated_repository.get_rule(rule.id).rule_description == "Updated"

    def test_patch_camel_case_fields(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        updated = populated_repository.patch_rule(rule.id, {"alertSeverity": "critical"})

        assert updated.alert_severity == AlertSeverity.RED
        assert populated_repository.get_active_rules("ANC")[0].rule_code == "ANC.BP.01"
        assert populated_repository.get_active_rules("ANC")[1].rule_code == "ANC.HB.01"

    @pytest.mark.parametrize("field", ["rule_code", "ruleCode", "dak_source_id", "dakSourceId", "version"])
    def test_provenance_identity_immutable(self, populated_repository, field):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        with pytest.raises(ValidationError):
            populated_repository.patch_rule(rule.id, {field: "CHANGED"})
        assert populated_repository.get_rule(rule.id).rule_code == "ANC.HB.01"

    def test_unknown_field(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        with pytest.raises(ValidationError):
            populated_repository.patch_rule(rule.id, {"color": "blue"})

    def test_empty_patch(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        with pytest.raises(ValidationError):
            populated_repository.patch_rule(rule.id, {})

    def test_unknown_id(self, populated_repository):
        with pytest.raises(NotFoundError):
            populated_repository.patch_rule(999, {"rule_description": "x"})

    def test_invalid_trigger_rejected(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        with pytest.raises(ValidationError):
            populated_repository.patch_rule(rule.id, {"trigger_conditions": {"hemoglobin": {"~": 1}}})

    def test_patch_is_active_false_deactivates(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ANC.HB.01")

        updated = populated_repository.patch_rule(rule.id, {"isActive": False})

        assert updated.status == RuleStatus.INACTIVE
        assert "ANC.HB.01" not in [r.rule_code for r in populated_repository.get_active_rules("ANC")]


class TestLifecycle:
    """Deactivation and reactivation; nothing is deleted."""

    def test_deactivate_keeps_rule(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ART.CD4.01")

        populated_repository.deactivate_rule(rule.id)

        assert populated_repository.get_rule(rule.id).status == RuleStatus.INACTIVE
        assert len(populated_repository) == 6

    def test_reactivate(self, populated_repository):
        rule = populated_repository.get_rule_by_code("ART.CD4.01")
        populated_repository.deactivate_rule(rule.id)

        populated_repository.activate_rule(rule.id)

        assert populated_repository.get_rule(rule.id).is_active

    def test_superseded_cannot_be_reactivated(self, repository):
        repository.import_csv(_csv('R1,D1,A,V1,ANC,red,,WHO,1.0'))
        repository.import_csv(_csv('R1,D1,A,V2,ANC,red,,WHO,2.0'))
        old = repository.get_versions("ANC", "R1")[0]

        with pytest.raises(ValidationError):
            repository.activate_rule(old.id)

    def test_inactive_older_version_blocked_by_newer_active(self, repository):
        repository.import_csv(_csv('R1,D1,A,V1,ANC,red,,WHO,1.0'))
        old = repository.get_versions("ANC", "R1")[0]
        repository.deactivate_rule(old.id)
        repository.import_csv(_csv('R1,D1,A,V2,ANC,red,,WHO,2.0'))

        with pytest.raises(ValidationError):
            repository.activate_rule(old.id)


class TestInvalidationListeners:
    """Mutations notify listeners with the affected module."""

    def test_listeners_called(self, repository, dak_csv_path):
        seen = []
        repository.add_invalidation_listener(seen.append)

        repository.import_csv(dak_csv_path)
        assert set(seen) == {"ANC", "ART", "PREP"}

        seen.clear()
        rule = repository.get_rule_by_code("PREP.HIV.01")
        repository.patch_rule(rule.id, {"rule_description": "x"})
        repository.deactivate_rule(rule.id)
        assert seen == ["PREP", "PREP"]


class TestConcurrentImports:
    """Per-module serialization keeps one active version per rule code."""

    def test_parallel_imports_same_module(self):
        repository = RuleRepository(batch_size=1)
        rows = [
            {
                "rule_identifier": f"R{i % 5}",
                "display_to_health_worker": "M",
                "applicable_module": "ANC",
                "version": "1.0",
            }
            for i in range(20)
        ]

        threads = [threading.Thread(target=repository.bulk_import, args=(list(rows),)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        active = repository.get_active_rules("ANC")
        assert sorted(r.rule_code for r in active) == ["R0", "R1", "R2", "R3", "R4"]
        assert len(repository) == 80


class TestPersistence:
    """Write-through to the SQLite store."""

    def test_rules_survive_restart(self, store, dak_csv_path):
        RuleRepository(store=store).import_csv(dak_csv_path)

        reloaded = RuleRepository(store=store)

        assert len(reloaded) == 6
        assert [r.rule_code for r in reloaded.get_active_rules("ANC")] == [
            "ANC.BP.01", "ANC.HB.01", "ANC.GA.01",
        ]

    def test_patch_persisted(self, store, dak_csv_path):
        repository = RuleRepository(store=store)
        repository.import_csv(dak_csv_path)
        rule = repository.get_rule_by_code("ANC.HB.01")
        repository.patch_rule(rule.id, {"rule_description": "Persisted"})

        reloaded = RuleRepository(store=store)

        assert reloaded.get_rule(rule.id).rule_description == "Persisted"

    def test_import_job_recorded(self, store, dak_csv_path):
        result = RuleRepository(store=store).import_csv(dak_csv_path)

        job = store.get_import_job(result.job_id)
        assert job.status == ImportJobStatus.COMPLETED_WITH_ERRORS
        assert job.accepted == 6
        assert job.rejected == 1
        assert job.errors[0]["reason"] == "malformed_json"

    def test_failed_import_job_recorded(self, store):
        repository = RuleRepository(store=store)

        with pytest.raises(ImportAbortedError):
            repository.import_csv(io.StringIO("rule_identifier\nR1\n"), name="bad.csv")

        (job,) = store.list_import_jobs()
        assert job.status == ImportJobStatus.FAILED
        assert job.source == "bad.csv"
        assert "Missing required headers" in job.message

    def test_undecodable_upload_marks_job_failed(self, store):
        repository = RuleRepository(store=store)
        data = HEADER.encode() + b"R1,ANC.DT.01,A,\xff\xfe,ANC,red,{},WHO,1.0\n"
        stream = io.TextIOWrapper(io.BytesIO(data), encoding="utf-8", newline="")

        with pytest.raises(ImportAbortedError):
            repository.import_csv(stream, name="latin1.csv")

        (job,) = store.list_import_jobs()
        assert job.status == ImportJobStatus.FAILED

    def test_unexpected_error_marks_job_failed(self, store):
        repository = RuleRepository(store=store)

        def rows():
            yield {"rule_identifier": "ANC.X.01", "display_to_health_worker": "M", "applicable_module": "ANC"}
            raise RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            repository.bulk_import(rows(), source="stream")

        (job,) = store.list_import_jobs()
        assert job.status == ImportJobStatus.FAILED
        assert "connection reset" in job.message
