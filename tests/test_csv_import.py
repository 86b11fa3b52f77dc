"""Tests for DAK CSV row parsing and streaming."""

import io

import pytest

from dak_cds.exceptions import ImportAbortedError
from dak_cds.models import AlertSeverity, Operator, RuleStatus
from dak_cds.repository import RowRejected, iter_csv_rows, open_csv, parse_rule_row


def _row(**overrides):
    row = {
        "rule_identifier": "ANC.BP.01",
        "dak_source_id": "ANC.DT.14",
        "guideline_doc_version": "2022.1",
        "evidence_rating": "A",
        "display_to_health_worker": "Severe hypertension: refer",
        "applicable_module": "anc",
        "is_rule_active": "true",
        "rule_name": "Severe hypertension",
        "rule_description": "",
        "alert_severity": "critical",
        "alert_title": "Severe Hypertension",
        "alert_message": "BP in severe range",
        "recommendations": '["Refer to hospital"]',
        "trigger_conditions": '{"systolicBP": {">=": 160}}',
        "who_guideline_ref": "WHO ANC 2016",
        "clinical_thresholds": '{"systolic": 160}',
        "version": "1.0",
    }
    row.update(overrides)
    return row


class TestParseRuleRow:
    """One CSV row to one DecisionRule."""

    def test_valid_row(self):
        rule = parse_rule_row(_row())

        assert rule.rule_code == "ANC.BP.01"
        assert rule.module_code == "ANC"
        assert rule.alert_severity == AlertSeverity.RED
        assert rule.recommendations == ("Refer to hospital",)
        assert rule.trigger_conditions[0].operator == Operator.GE
        assert rule.clinical_thresholds == {"systolic": 160}
        assert rule.guideline_version == "2022.1"
        assert rule.rule_description is None
        assert rule.status == RuleStatus.ACTIVE

    def test_json_parsed_at_ingestion(self):
        rule = parse_rule_row(_row())

        assert not isinstance(rule.recommendations, str)
        assert not isinstance(rule.trigger_conditions, str)

    def test_defaults(self):
        rule = parse_rule_row(_row(alert_title="", alert_message="", version="", rule_name=""))

        assert rule.alert_title == "ANC.BP.01"
        assert rule.rule_name == "ANC.BP.01"
        assert rule.alert_message == "Severe hypertension: refer"
        assert rule.version == "1.0"

    def test_inactive_row(self):
        rule = parse_rule_row(_row(is_rule_active="false"))

        assert rule.status == RuleStatus.INACTIVE

    def test_evidence_rating_first_letter(self):
        assert parse_rule_row(_row(evidence_rating="b - moderate")).evidence_rating == "B"

    @pytest.mark.parametrize("overrides,reason", [
        ({"rule_identifier": ""}, "missing_required_fields"),
        ({"display_to_health_worker": "  "}, "missing_required_fields"),
        ({"applicable_module": "ANC-2"}, "invalid_module_code"),
        ({"evidence_rating": "E"}, "invalid_evidence_rating"),
        ({"recommendations": '["Refer"'}, "malformed_json"),
        ({"trigger_conditions": "{systolicBP >= 160}"}, "malformed_json"),
        ({"clinical_thresholds": "[1, 2]"}, "malformed_json"),
        ({"recommendations": '{"a": 1}'}, "malformed_json"),
        ({"trigger_conditions": '{"systolicBP": {"approx": 160}}'}, "invalid_trigger"),
        ({"alert_severity": "purple"}, "invalid_severity"),
        ({"version": "draft"}, "invalid_version"),
    ])
    def test_rejections(self, overrides, reason):
        with pytest.raises(RowRejected) as exc_info:
            parse_rule_row(_row(**overrides))

        assert exc_info.value.reason == reason


class TestIterCsvRows:
    """Header validation and lazy reading."""

    def test_quoted_json_cells(self):
        text = (
            "rule_identifier,display_to_health_worker,applicable_module,recommendations\n"
            'R1,Message,ANC,"[""First"", ""Second""]"\n'
        )
        rows = list(iter_csv_rows(io.StringIO(text)))

        assert rows[0]["recommendations"] == '["First", "Second"]'
        assert parse_rule_row(rows[0]).recommendations == ("First", "Second")

    def test_blank_rows_skipped(self):
        text = "rule_identifier,display_to_health_worker,applicable_module\nR1,M,ANC\n,,\n"

        assert len(list(iter_csv_rows(io.StringIO(text)))) == 1

    def test_missing_headers(self):
        with pytest.raises(ImportAbortedError) as exc_info:
            list(iter_csv_rows(io.StringIO("rule_identifier,applicable_module\nR1,ANC\n")))

        assert exc_info.value.details["missing_headers"] == ["display_to_health_worker"]

    def test_empty_data(self):
        with pytest.raises(ImportAbortedError):
            list(iter_csv_rows(io.StringIO("")))

    def test_rows_are_lazy(self):
        text = "rule_identifier,display_to_health_worker,applicable_module\nR1,M,ANC\nR2,M,ANC\n"
        rows = iter_csv_rows(io.StringIO(text))

        assert next(rows)["rule_identifier"] == "R1"
        assert next(rows)["rule_identifier"] == "R2"

    def test_blank_header_column_keeps_positions(self):
        text = (
            "rule_identifier,,display_to_health_worker,applicable_module\n"
            "R1,stray,Check BP,ANC\n"
        )
        (row,) = list(iter_csv_rows(io.StringIO(text)))

        assert "" not in row
        assert row["display_to_health_worker"] == "Check BP"
        assert row["applicable_module"] == "ANC"

    def test_oversized_cell_aborts(self):
        text = (
            "rule_identifier,display_to_health_worker,applicable_module,rule_description\n"
            f"R1,M,ANC,{'x' * 200_000}\n"
        )

        with pytest.raises(ImportAbortedError):
            list(iter_csv_rows(io.StringIO(text)))

    def test_invalid_utf8_aborts(self):
        data = b"rule_identifier,display_to_health_worker,applicable_module\nR1,\xff\xfe,ANC\n"
        stream = io.TextIOWrapper(io.BytesIO(data), encoding="utf-8", newline="")

        with pytest.raises(ImportAbortedError):
            list(iter_csv_rows(stream))


class TestOpenCsv:
    """Reading rule sheets from disk."""

    def test_reads_fixture(self, dak_csv_path):
        rows = list(open_csv(dak_csv_path))

        assert len(rows) == 7
        assert rows[0]["rule_identifier"] == "ANC.BP.01"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ImportAbortedError):
            list(open_csv(tmp_path / "missing.csv"))

    def test_utf8_bom(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_text(
            "rule_identifier,display_to_health_worker,applicable_module\nR1,M,ANC\n",
            encoding="utf-8-sig",
        )

        assert list(open_csv(path))[0]["rule_identifier"] == "R1"
