"""Tests for the command-line runner."""

import json

import pytest

from dak_cds.repository import RuleRepository
from dak_cds.runner import main
from dak_cds.store import RuleStore


@pytest.fixture
def db_args(tmp_path):
    return ["--db-path", str(tmp_path / "cli.db")]


class TestRunner:
    """Subcommands and exit codes."""

    def test_import_then_integrity(self, db_args, dak_csv_path, capsys):
        assert main([*db_args, "import", str(dak_csv_path)]) == 0
        out = capsys.readouterr().out
        assert "Accepted:     6" in out
        assert "malformed_json" in out

        assert main([*db_args, "integrity"]) == 0
        assert "Valid rules:         6" in capsys.readouterr().out

    def test_compliance(self, db_args, dak_csv_path, capsys):
        main([*db_args, "import", str(dak_csv_path)])
        capsys.readouterr()

        assert main([*db_args, "compliance"]) == 0
        assert "overall_compliance" in capsys.readouterr().out

    def test_evaluate(self, db_args, dak_csv_path, tmp_path, capsys):
        main([*db_args, "import", str(dak_csv_path)])
        visit = tmp_path / "visit.json"
        visit.write_text(json.dumps({"systolic_bp": 170, "hb": 9.5}))
        capsys.readouterr()

        assert main([*db_args, "evaluate", "ANC", str(visit), "--top", "1"]) == 0
        out = capsys.readouterr().out
        assert "Referral required:  yes" in out
        assert "ANC.BP.01" in out
        assert "ANC.HB.01" not in out

    def test_evaluate_unknown_module(self, db_args, tmp_path):
        visit = tmp_path / "visit.json"
        visit.write_text("{}")

        assert main([*db_args, "evaluate", "DENTAL", str(visit)]) == 1

    def test_missing_file_aborts_import(self, db_args, tmp_path):
        assert main([*db_args, "import", str(tmp_path / "missing.csv")]) == 2

    def test_danger_signs_exit_codes(self, capsys):
        assert main(["danger-signs", "Convulsing"]) == 1
        assert "Referral" in capsys.readouterr().out

        assert main(["danger-signs", "None"]) == 0
        assert "Continue ANC Contact" in capsys.readouterr().out

    def test_integrity_issues_exit_code(self, tmp_path, dak_csv_path, capsys):
        db_path = tmp_path / "issues.db"
        repository = RuleRepository(store=RuleStore(db_path=str(db_path)))
        repository.import_csv(dak_csv_path)
        rule = repository.get_rule_by_code("ANC.HB.01")
        repository.patch_rule(rule.id, {"whoGuidelineRef": ""})
        capsys.readouterr()

        assert main(["--db-path", str(db_path), "integrity"]) == 1
        assert "Valid rules:         5" in capsys.readouterr().out

    def test_ipv_exit_codes(self, capsys):
        assert main(["ipv", "Injury to abdomen"]) == 1
        assert "IPV RISK ASSESSMENT: HIGH" in capsys.readouterr().out

        assert main(["ipv"]) == 0
        assert "Level:    none" in capsys.readouterr().out
