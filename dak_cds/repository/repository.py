"""In-process rule repository with versioned supersession.

Rules are indexed by (module_code, rule_code). Each key holds every
version ever imported; at most one of them is ACTIVE. Nothing is
deleted: a newer import supersedes the active version and an admin
deactivation marks it INACTIVE.

Writes are serialized per module. Bulk import parses rows outside any
lock and holds the module lock only while writing each batch, so reads
are never blocked for the length of a large import.
"""

import dataclasses
import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

from ..config import config
from ..exceptions import ImportAbortedError, NotFoundError, ValidationError
from ..models import (
    EVIDENCE_RATINGS,
    RULE_TRANSITIONS,
    AlertSeverity,
    DecisionRule,
    ImportJob,
    ImportJobStatus,
    ModuleCode,
    RuleStatus,
    parse_trigger_conditions,
)
from .csv_import import RowRejected, iter_csv_rows, open_csv, parse_rule_row
from .integrity import IntegrityChecker, IntegrityReport

logger = logging.getLogger(__name__)

# Fields an admin patch may change. Provenance identity never changes.
PATCHABLE_FIELDS = frozenset({
    "rule_name",
    "rule_description",
    "decision_support_message",
    "alert_severity",
    "alert_title",
    "alert_message",
    "recommendations",
    "trigger_conditions",
    "clinical_thresholds",
    "guideline_version",
    "evidence_rating",
    "who_guideline_ref",
    "is_active",
})
IMMUTABLE_FIELDS = frozenset({
    "id", "rule_code", "dak_source_id", "module_code", "version",
    "status", "created_at", "updated_at",
})
_FIELD_ALIASES = {
    "description": "rule_description",
    "name": "rule_name",
    "severity": "alert_severity",
    "title": "alert_title",
    "message": "alert_message",
    "triggers": "trigger_conditions",
    "who_guideline_reference": "who_guideline_ref",
    "dak_reference": "dak_source_id",
    "evidence_quality": "evidence_rating",
}


def _snake_case(name: str) -> str:
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
    return _FIELD_ALIASES.get(snake, snake)


def _module_key(module_code: "ModuleCode | str") -> str:
    if isinstance(module_code, ModuleCode):
        return module_code.value
    return str(module_code).strip().upper()


@dataclass(frozen=True)
class ImportRowError:
    """One rejected CSV row."""
    row: int
    reason: str
    message: str
    rule_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "reason": self.reason,
            "message": self.message,
            "rule_code": self.rule_code,
        }


@dataclass
class ImportResult:
    """Outcome of a bulk import. Per-row problems are listed, not raised."""
    accepted: int = 0
    rejected: int = 0
    superseded: int = 0
    errors: list[ImportRowError] = field(default_factory=list)
    modules_touched: set[str] = field(default_factory=set)
    job_id: str | None = None

    @property
    def processed(self) -> int:
        return self.accepted + self.rejected

    @property
    def success(self) -> bool:
        return self.rejected == 0

    @property
    def message(self) -> str:
        if self.success:
            return f"Successfully processed {self.processed} records with {self.accepted} updates"
        return f"Processed {self.processed} records with {self.rejected} errors"

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "superseded": self.superseded,
            "processed": self.processed,
            "modules": sorted(self.modules_touched),
            "errors": [e.to_dict() for e in self.errors],
        }


class RuleRepository:
    """Versioned store of DAK decision rules.

    Args:
        store: Optional RuleStore; every mutation is written through and
            the repository is hydrated from it on construction.
        batch_size: Rows written per locked batch during bulk import.
        checker: IntegrityChecker used by integrity_check().
    """

    def __init__(
        self,
        store=None,
        batch_size: int | None = None,
        checker: IntegrityChecker | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.batch_size = batch_size or config.IMPORT_BATCH_SIZE
        self.checker = checker or IntegrityChecker()
        self._clock = clock

        self._registry_lock = threading.RLock()
        self._module_locks: dict[str, threading.RLock] = {}
        self._rules: dict[int, DecisionRule] = {}
        self._versions: dict[tuple[str, str], list[int]] = {}
        self._next_id = 1
        self._listeners: list[Callable[[str], None]] = []
        self.last_integrity_report: IntegrityReport | None = None

        if store is not None:
            self.restore(store.load_rules())

    # Locks and listeners

    def _module_lock(self, module_code: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._module_locks.get(module_code)
            if lock is None:
                lock = self._module_locks[module_code] = threading.RLock()
            return lock

    def add_invalidation_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with a module code after each mutation."""
        with self._registry_lock:
            self._listeners.append(listener)

    def _notify(self, module_code: str) -> None:
        with self._registry_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(module_code)

    # Reads

    def get_rule(self, rule_id: int) -> DecisionRule:
        """Get a rule version by id.

        Raises:
            NotFoundError: If no rule has this id.
        """
        with self._registry_lock:
            rule = self._rules.get(int(rule_id))
        if rule is None:
            raise NotFoundError("DecisionRule", rule_id)
        return rule

    def get_rule_by_code(self, rule_code: str, module_code: str | None = None) -> DecisionRule:
        """Current version of a rule code: the active one, else the newest.

        Raises:
            NotFoundError: If the rule code is unknown.
        """
        with self._registry_lock:
            candidates = [
                self._rules[i]
                for (module, code), ids in self._versions.items()
                if code == rule_code and (module_code is None or module == _module_key(module_code))
                for i in ids
            ]
        if not candidates:
            raise NotFoundError("DecisionRule", rule_code)
        active = [r for r in candidates if r.is_active]
        if active:
            return active[0]
        return max(candidates, key=lambda r: (r.version_number, r.id))

    def get_versions(self, module_code: str, rule_code: str) -> list[DecisionRule]:
        """Every stored version of a rule, in import order."""
        with self._registry_lock:
            ids = list(self._versions.get((_module_key(module_code), rule_code), []))
            return [self._rules[i] for i in ids]

    def get_active_rules(self, module_code: "ModuleCode | str") -> list[DecisionRule]:
        """Active rules for a module, critical severity first then by rule code."""
        module = _module_key(module_code)
        with self._registry_lock:
            active = [r for r in self._rules.values() if r.module_code == module and r.is_active]
        return sorted(active, key=lambda r: r.sort_key)

    def list_rules(
        self,
        limit: int | None = None,
        active_only: bool = False,
        module_code: str | None = None,
    ) -> list[DecisionRule]:
        """List rule versions ordered by module, rule code and version."""
        module = _module_key(module_code) if module_code else None
        with self._registry_lock:
            rules = [
                r for r in self._rules.values()
                if (not active_only or r.is_active) and (module is None or r.module_code == module)
            ]
        rules.sort(key=lambda r: (r.module_code, r.rule_code, r.version_number, r.id))
        if limit is not None:
            rules = rules[: max(0, int(limit))]
        return rules

    def modules(self) -> list[str]:
        with self._registry_lock:
            return sorted({module for module, _ in self._versions})

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._rules)

    # Writes

    def restore(self, rules: Iterable[DecisionRule]) -> int:
        """Load rules exactly as persisted, without applying supersession.

        Used to hydrate from storage; conflicting states are left for
        integrity_check() to report.
        """
        count = 0
        touched = set()
        with self._registry_lock:
            for rule in rules:
                if rule.id is None:
                    rule = dataclasses.replace(rule, id=self._next_id)
                self._rules[rule.id] = rule
                self._versions.setdefault((rule.module_code, rule.rule_code), []).append(rule.id)
                self._next_id = max(self._next_id, rule.id + 1)
                touched.add(rule.module_code)
                count += 1
        for module in sorted(touched):
            self._notify(module)
        if count:
            logger.info(f"Restored {count} rule version(s)")
        return count

    def add_rule(self, rule: DecisionRule) -> DecisionRule:
        """Insert one rule version, superseding per version order."""
        module = _module_key(rule.module_code)
        with self._module_lock(module):
            stored, superseded = self._insert(dataclasses.replace(rule, module_code=module))
        self._persist([stored, *superseded])
        self._notify(module)
        return stored

    def _insert(self, rule: DecisionRule) -> tuple[DecisionRule, list[DecisionRule]]:
        """Insert a new version. Caller holds the module lock.

        A version at or above the active one supersedes it; an older
        version is kept for the audit trail as SUPERSEDED.
        """
        now = self._clock()
        superseded: list[DecisionRule] = []

        with self._registry_lock:
            key = (rule.module_code, rule.rule_code)
            ids = self._versions.setdefault(key, [])
            current = [self._rules[i] for i in ids if self._rules[i].is_active]

            status = rule.status
            newer_than_current = all(rule.version_number >= c.version_number for c in current)

            if newer_than_current:
                for old in current:
                    replaced = dataclasses.replace(old, status=RuleStatus.SUPERSEDED, updated_at=now)
                    self._rules[old.id] = replaced
                    superseded.append(replaced)
            elif status == RuleStatus.ACTIVE:
                logger.warning(
                    f"Rule {rule.rule_code} version {rule.version} is older than the active "
                    f"version; stored as superseded"
                )
                status = RuleStatus.SUPERSEDED

            stored = dataclasses.replace(
                rule, id=self._next_id, status=status, created_at=now, updated_at=now,
            )
            self._next_id += 1
            self._rules[stored.id] = stored
            ids.append(stored.id)

        return stored, superseded

    def _persist(self, rules: list[DecisionRule]) -> None:
        if self.store is not None and rules:
            self.store.save_rules(rules)

    def bulk_import(
        self,
        rows: Iterable[Mapping[str, Any]],
        source: str = "bulk_import",
    ) -> ImportResult:
        """Import DAK rule rows.

        Rows are consumed lazily. A row that cannot become a rule is
        rejected and reported; the rest of the batch continues. A row whose
        rule code and version already exist supersedes the stored version.

        Raises:
            ImportAbortedError: If the row source itself fails (missing
                headers, unreadable file).
        """
        result = ImportResult()
        job = self._start_job(source)
        if job is not None:
            result.job_id = job.id

        batch: list[DecisionRule] = []
        try:
            for row_number, row in enumerate(rows, start=1):
                try:
                    batch.append(parse_rule_row(row))
                except RowRejected as e:
                    result.rejected += 1
                    result.errors.append(ImportRowError(row_number, e.reason, e.message, e.rule_code))
                    logger.warning(f"Row {row_number} rejected ({e.reason}): {e.message}")
                    continue

                if len(batch) >= self.batch_size:
                    self._write_batch(batch, result)
                    batch = []

            if batch:
                self._write_batch(batch, result)
        except ImportAbortedError as e:
            self._finish_job(job, result, failed=e.message)
            raise
        except Exception as e:
            self._finish_job(job, result, failed=f"Import failed: {e}")
            raise
        finally:
            for module in sorted(result.modules_touched):
                self._notify(module)

        self._finish_job(job, result)
        logger.info(
            f"Imported {result.accepted} rule(s), rejected {result.rejected}, "
            f"superseded {result.superseded} from {source}"
        )
        return result

    def _write_batch(self, batch: list[DecisionRule], result: ImportResult) -> None:
        by_module: dict[str, list[DecisionRule]] = {}
        for rule in batch:
            by_module.setdefault(rule.module_code, []).append(rule)

        for module, rules in by_module.items():
            written: list[DecisionRule] = []
            with self._module_lock(module):
                for rule in rules:
                    stored, superseded = self._insert(rule)
                    written.append(stored)
                    written.extend(superseded)
                    result.accepted += 1
                    result.superseded += len(superseded)
            self._persist(written)
            result.modules_touched.add(module)

    def import_csv(self, source: "str | Path | TextIO", name: str | None = None) -> ImportResult:
        """Import a DAK CSV from a path or an open text stream.

        Raises:
            ImportAbortedError: If the file is unreadable or lacks required headers.
        """
        if isinstance(source, (str, Path)):
            rows: Iterator[dict[str, str]] = open_csv(source)
            label = name or str(source)
        else:
            rows = iter_csv_rows(source)
            label = name or getattr(source, "name", None) or "upload"
        return self.bulk_import(rows, source=str(label))

    def _start_job(self, source: str) -> ImportJob | None:
        if self.store is None:
            return None
        return self.store.create_import_job(source)

    def _finish_job(self, job: ImportJob | None, result: ImportResult, failed: str | None = None) -> None:
        if job is None:
            return
        job.accepted = result.accepted
        job.rejected = result.rejected
        job.superseded = result.superseded
        job.errors = [e.to_dict() for e in result.errors]
        job.completed_at = datetime.now()
        if failed:
            job.status = ImportJobStatus.FAILED
            job.message = failed
        else:
            job.status = ImportJobStatus.COMPLETED if result.success else ImportJobStatus.COMPLETED_WITH_ERRORS
            job.message = result.message
        self.store.record_import_job(job)

    # Lifecycle

    def _transition(self, rule: DecisionRule, target: RuleStatus) -> DecisionRule:
        if rule.status == target:
            return rule
        if target not in RULE_TRANSITIONS[rule.status]:
            raise ValidationError(
                f"Cannot change rule {rule.rule_code} from {rule.status.value} to {target.value}",
                field="status",
            )
        return dataclasses.replace(rule, status=target, updated_at=self._clock())

    def _replace(self, rule: DecisionRule) -> None:
        with self._registry_lock:
            self._rules[rule.id] = rule

    def activate_rule(self, rule_id: int) -> DecisionRule:
        """Reactivate a rule version.

        Raises:
            NotFoundError: Unknown id.
            ValidationError: If a newer version of the rule is active, or
                the version was superseded.
        """
        rule = self.get_rule(rule_id)
        with self._module_lock(rule.module_code):
            rule = self.get_rule(rule_id)
            others = [
                r for r in self.get_versions(rule.module_code, rule.rule_code)
                if r.is_active and r.id != rule.id
            ]
            if any(o.version_number > rule.version_number for o in others):
                raise ValidationError(
                    f"A newer version of {rule.rule_code} is active", field="is_active",
                )
            updated = self._transition(rule, RuleStatus.ACTIVE)
            replaced = [self._transition(o, RuleStatus.SUPERSEDED) for o in others]
            for r in (updated, *replaced):
                self._replace(r)
        self._persist([updated, *replaced])
        self._notify(rule.module_code)
        logger.info(f"Activated rule {rule.rule_code} v{rule.version}")
        return updated

    def deactivate_rule(self, rule_id: int) -> DecisionRule:
        """Deactivate a rule version. It is kept for audit, never deleted."""
        rule = self.get_rule(rule_id)
        with self._module_lock(rule.module_code):
            updated = self._transition(self.get_rule(rule_id), RuleStatus.INACTIVE)
            self._replace(updated)
        self._persist([updated])
        self._notify(rule.module_code)
        logger.info(f"Deactivated rule {rule.rule_code} v{rule.version}")
        return updated

    def patch_rule(self, rule_id: int, fields: Mapping[str, Any]) -> DecisionRule:
        """Update only the supplied fields of a rule.

        Field names may be snake_case or camelCase. rule_code and
        dak_source_id (and the rest of the version identity) cannot change.

        Raises:
            NotFoundError: Unknown id.
            ValidationError: Immutable, unknown, or invalid field values.
        """
        rule = self.get_rule(rule_id)

        changes: dict[str, Any] = {}
        activation: bool | None = None
        for raw_name, value in (fields or {}).items():
            name = _snake_case(raw_name)
            if name in IMMUTABLE_FIELDS:
                raise ValidationError(f"Field '{raw_name}' cannot be changed", field=raw_name)
            if name not in PATCHABLE_FIELDS:
                raise ValidationError(f"Unknown rule field '{raw_name}'", field=raw_name)
            if name == "is_active":
                activation = _parse_bool(value, raw_name)
            else:
                changes[name] = _validate_patch_value(name, value)

        if not changes and activation is None:
            raise ValidationError("No fields to update")

        if changes:
            with self._module_lock(rule.module_code):
                current = self.get_rule(rule_id)
                updated = dataclasses.replace(current, updated_at=self._clock(), **changes)
                self._replace(updated)
            self._persist([updated])
            self._notify(rule.module_code)
            logger.info(f"Patched rule {rule.rule_code}: {sorted(changes)}")

        if activation is True:
            return self.activate_rule(rule_id)
        if activation is False:
            return self.deactivate_rule(rule_id)
        return self.get_rule(rule_id)

    # Diagnostics

    def integrity_check(self) -> IntegrityReport:
        """Validate the active rule set; the report is kept for compliance_report()."""
        with self._registry_lock:
            rules = list(self._rules.values())
        report = self.checker.check(sorted(rules, key=lambda r: (r.module_code, r.rule_code, r.id)))
        self.last_integrity_report = report
        return report

    def compliance_report(self) -> dict[str, Any]:
        """Compliance derived from the last integrity check (run one if none yet)."""
        report = self.last_integrity_report or self.integrity_check()
        return {
            "total_rules": report.total_rules,
            "valid_rules": report.valid_rules,
            "compliance": report.compliance(),
            "checked_at": report.checked_at.isoformat(),
        }


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValidationError(f"Field '{name}' must be a boolean", field=name)


def _validate_patch_value(name: str, value: Any) -> Any:
    if name == "alert_severity":
        return AlertSeverity.parse(value)
    if name == "trigger_conditions":
        return parse_trigger_conditions(value)
    if name == "recommendations":
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValidationError("recommendations must be a list", field=name)
        return [str(v) for v in value]
    if name == "clinical_thresholds":
        if not isinstance(value, Mapping):
            raise ValidationError("clinical_thresholds must be an object", field=name)
        return dict(value)
    if name == "evidence_rating":
        rating = str(value).strip()[:1].upper() if value else ""
        if rating not in EVIDENCE_RATINGS:
            raise ValidationError(
                f"Invalid evidence_rating '{value}'. Must be A, B, C, or D", field=name,
            )
        return rating
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"Field '{name}' must be text", field=name)
    if name in ("alert_title", "rule_name") and not (value or "").strip():
        raise ValidationError(f"Field '{name}' cannot be empty", field=name)
    return value.strip() if isinstance(value, str) else value
