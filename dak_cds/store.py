"""SQLite-backed persistence for DAK decision rules and import jobs."""

import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from .config import config
from .models import (
    AlertSeverity,
    DecisionRule,
    ImportJob,
    ImportJobStatus,
    RuleStatus,
    parse_trigger_conditions,
)

logger = logging.getLogger(__name__)

_RULE_COLUMNS = """
    id, rule_code, module_code, version, status,
    rule_name, rule_description, decision_support_message,
    alert_severity, alert_title, alert_message,
    recommendations, trigger_conditions, clinical_thresholds,
    dak_source_id, guideline_version, evidence_rating, who_guideline_ref,
    created_at, updated_at
"""

_JOB_COLUMNS = """
    id, source, status, accepted, rejected, superseded,
    errors, message, started_at, completed_at
"""


def _rule_from_row(row: sqlite3.Row) -> DecisionRule:
    return DecisionRule(
        id=row["id"],
        rule_code=row["rule_code"],
        module_code=row["module_code"],
        version=row["version"],
        status=RuleStatus(row["status"]),
        rule_name=row["rule_name"] or row["rule_code"],
        rule_description=row["rule_description"],
        decision_support_message=row["decision_support_message"],
        alert_severity=AlertSeverity.parse(row["alert_severity"]),
        alert_title=row["alert_title"] or row["rule_code"],
        alert_message=row["alert_message"] or "",
        recommendations=json.loads(row["recommendations"]) if row["recommendations"] else [],
        trigger_conditions=parse_trigger_conditions(row["trigger_conditions"]),
        clinical_thresholds=json.loads(row["clinical_thresholds"]) if row["clinical_thresholds"] else {},
        dak_source_id=row["dak_source_id"],
        guideline_version=row["guideline_version"],
        evidence_rating=row["evidence_rating"],
        who_guideline_ref=row["who_guideline_ref"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class RuleStore:
    """SQLite storage for rule versions and import history.

    Rules are never deleted; every version is a row, and status changes
    are written in place.
    """

    def __init__(self, db_path: str | None = None):
        """Initialize rule store.

        Args:
            db_path: Path to SQLite database. Defaults to DAK_DB_PATH env var
                     or ~/.dak_cds/dak_rules.db
        """
        self.db_path = os.path.expanduser(db_path or config.DB_PATH)

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        with self._connect() as conn:
            conn.executescript(schema)

    def _connect(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # Rules

    def save_rule(self, rule: DecisionRule) -> None:
        """Insert or update one rule version by id."""
        if rule.id is None:
            raise ValueError(f"Rule {rule.rule_code} has no id; assign one before saving")
        self.save_rules([rule])

    def save_rules(self, rules: list[DecisionRule]) -> None:
        """Insert or update several rule versions in one transaction."""
        if not rules:
            return
        with self._connect() as conn:
            conn.executemany(
                f"INSERT OR REPLACE INTO decision_rules ({_RULE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.id, r.rule_code, r.module_code, r.version, r.status.value,
                        r.rule_name, r.rule_description, r.decision_support_message,
                        r.alert_severity.value, r.alert_title, r.alert_message,
                        json.dumps(list(r.recommendations)),
                        json.dumps([c.to_dict() for c in r.trigger_conditions]),
                        json.dumps(dict(r.clinical_thresholds)),
                        r.dak_source_id, r.guideline_version, r.evidence_rating,
                        r.who_guideline_ref,
                        r.created_at.isoformat(), r.updated_at.isoformat(),
                    )
                    for r in rules
                ],
            )
            conn.commit()
        logger.debug(f"Saved {len(rules)} rule version(s)")

    def load_rules(self, module_code: str | None = None) -> list[DecisionRule]:
        """Load every stored rule version, oldest first."""
        with self._connect() as conn:
            if module_code:
                cursor = conn.execute(
                    f"SELECT {_RULE_COLUMNS} FROM decision_rules WHERE module_code = ? ORDER BY id",
                    (module_code.upper(),),
                )
            else:
                cursor = conn.execute(f"SELECT {_RULE_COLUMNS} FROM decision_rules ORDER BY id")
            return [_rule_from_row(row) for row in cursor.fetchall()]

    def count_rules(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM decision_rules").fetchone()[0]

    # Import jobs

    def create_import_job(self, source: str) -> ImportJob:
        """Start a new import job record."""
        job = ImportJob(id=str(uuid.uuid4())[:8], source=source)
        self.record_import_job(job)
        logger.info(f"Created import job {job.id} for {source}")
        return job

    def record_import_job(self, job: ImportJob) -> None:
        """Insert or update an import job."""
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO import_jobs ({_JOB_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    job.id, job.source, job.status.value,
                    job.accepted, job.rejected, job.superseded,
                    json.dumps(job.errors) if job.errors else None,
                    job.message,
                    job.started_at.isoformat(),
                    job.completed_at.isoformat() if job.completed_at else None,
                ),
            )
            conn.commit()

    def get_import_job(self, job_id: str) -> ImportJob | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM import_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row:
                return ImportJob.from_row(tuple(row))
            return None

    def list_import_jobs(
        self,
        limit: int = 20,
        status: ImportJobStatus | None = None,
    ) -> list[ImportJob]:
        """Most recent import jobs first."""
        with self._connect() as conn:
            if status:
                cursor = conn.execute(
                    f"SELECT {_JOB_COLUMNS} FROM import_jobs WHERE status = ? "
                    "ORDER BY started_at DESC LIMIT ?",
                    (status.value, limit),
                )
            else:
                cursor = conn.execute(
                    f"SELECT {_JOB_COLUMNS} FROM import_jobs ORDER BY started_at DESC LIMIT ?",
                    (limit,),
                )
            return [ImportJob.from_row(tuple(row)) for row in cursor.fetchall()]
