"""Shared fixtures for DAK decision support tests."""

from datetime import datetime
from pathlib import Path

import pytest

from dak_cds.models import AlertSeverity, DecisionRule, RuleStatus, parse_trigger_conditions
from dak_cds.repository import RuleRepository
from dak_cds.store import RuleStore

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def dak_csv_path():
    """Sample DAK rule sheet: 6 valid rules across ANC/ART/PREP and 1 malformed row."""
    return FIXTURES / "dak_rules.csv"


@pytest.fixture
def make_rule():
    """Factory for fully traceable rules with sensible defaults."""
    def _make(
        rule_code="ANC.BP.01",
        module_code="ANC",
        severity=AlertSeverity.YELLOW,
        trigger=None,
        version="1.0",
        status=RuleStatus.ACTIVE,
        **overrides,
    ):
        fields = dict(
            rule_code=rule_code,
            module_code=module_code,
            alert_title=f"{rule_code} alert",
            alert_message=f"{rule_code} fired",
            alert_severity=severity,
            trigger_conditions=parse_trigger_conditions(
                trigger if trigger is not None else {"systolicBP": {">=": 140}}
            ),
            recommendations=["Recheck in 1 week"],
            dak_source_id=f"{module_code}.DT.01",
            guideline_version="2022.1",
            evidence_rating="A",
            who_guideline_ref="WHO ANC 2016",
            rule_name=rule_code,
            decision_support_message=f"{rule_code} message",
            version=version,
            status=status,
        )
        fields.update(overrides)
        return DecisionRule(**fields)

    return _make


@pytest.fixture
def repository():
    """Empty in-memory repository."""
    return RuleRepository(clock=lambda: datetime(2024, 6, 1, 9, 0))


@pytest.fixture
def populated_repository(repository, dak_csv_path):
    """Repository loaded from the sample DAK sheet."""
    repository.import_csv(dak_csv_path)
    return repository


@pytest.fixture
def store(tmp_path):
    """SQLite rule store in a temporary directory."""
    return RuleStore(db_path=str(tmp_path / "dak_rules.db"))
