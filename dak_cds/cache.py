"""Decision Cache: memoized active-rule lookups per module.

The repository owns invalidation. The cache registers itself as an
invalidation listener, so every import, patch, activation or deactivation
drops the affected module's slots before the next lookup.

A miss is computed outside the lock. Two concurrent misses for the same
module both compute from the same repository state and the last write
wins; a write is discarded if the module was invalidated while it was
being computed.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import config
from .models import DecisionRule

logger = logging.getLogger(__name__)

ALL_MODULES = "all"


@dataclass(frozen=True)
class DecisionSupportMessage:
    """Display form of a rule for decision-support listings."""
    rule_id: int | None
    rule_code: str
    message: str
    severity: str
    recommendations: tuple[str, ...]
    dak_source_id: str | None = None
    guideline_version: str | None = None
    evidence_rating: str | None = None
    who_guideline_ref: str | None = None

    @classmethod
    def from_rule(cls, rule: DecisionRule) -> "DecisionSupportMessage":
        return cls(
            rule_id=rule.id,
            rule_code=rule.rule_code,
            message=rule.decision_support_message or rule.alert_message,
            severity=rule.alert_severity.value,
            recommendations=tuple(rule.recommendations),
            dak_source_id=rule.dak_source_id,
            guideline_version=rule.guideline_version,
            evidence_rating=rule.evidence_rating,
            who_guideline_ref=rule.who_guideline_ref,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_code": self.rule_code,
            "message": self.message,
            "severity": self.severity,
            "recommendations": list(self.recommendations),
            "dak_source_id": self.dak_source_id,
            "guideline_version": self.guideline_version,
            "evidence_rating": self.evidence_rating,
            "who_guideline_ref": self.who_guideline_ref,
        }


@dataclass
class DecisionCacheEntry:
    module_code: str
    active_only: bool
    rules: tuple[DecisionRule, ...]
    computed_at: float
    ttl: float
    messages: tuple[DecisionSupportMessage, ...] = field(default_factory=tuple)

    def is_expired(self, now: float) -> bool:
        return now - self.computed_at >= self.ttl


class DecisionCache:
    """TTL cache over RuleRepository lookups.

    Args:
        repository: RuleRepository to read from and listen to.
        ttl_seconds: Entry lifetime. Defaults to DAK_CACHE_TTL_SECONDS.
        max_entries: Slot limit; the oldest entry is evicted on overflow.
        clock: Monotonic seconds source, injectable for tests.
    """

    def __init__(
        self,
        repository,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.ttl = config.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = max_entries or config.CACHE_MAX_ENTRIES
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: dict[tuple[str, bool], DecisionCacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._global_generation = 0
        self.hits = 0
        self.misses = 0
        self.last_warmed_at: datetime | None = None
        self.last_invalidated_at: datetime | None = None

        repository.add_invalidation_listener(self.invalidate)

    def _generation(self, module: str) -> tuple[int, int]:
        return (self._global_generation, self._generations.get(module, 0))

    def _lookup(self, module_code: str, active_only: bool) -> DecisionCacheEntry:
        module = module_code.strip().upper()
        key = (module, active_only)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._clock()):
                self.hits += 1
                logger.debug(f"Cache hit for module: {module}")
                return entry
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            generation = self._generation(module)

        logger.debug(f"Cache miss for module: {module}, fetching from repository")
        if active_only:
            rules = self.repository.get_active_rules(module)
        else:
            rules = self.repository.list_rules(module_code=module)
        entry = DecisionCacheEntry(
            module_code=module,
            active_only=active_only,
            rules=tuple(rules),
            computed_at=self._clock(),
            ttl=self.ttl,
            messages=tuple(DecisionSupportMessage.from_rule(r) for r in rules),
        )

        with self._lock:
            if self._generation(module) != generation:
                # Invalidated while computing; serve the fresh result uncached
                return entry
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].computed_at)
                del self._entries[oldest]
        return entry

    def get_active_rules_cached(self, module_code: str) -> list[DecisionRule]:
        """Active rules for a module, critical first, served from cache when fresh."""
        return list(self._lookup(module_code, True).rules)

    def get_decision_support_messages(
        self,
        module_code: str,
        active_only: bool = True,
    ) -> list[DecisionSupportMessage]:
        return list(self._lookup(module_code, active_only).messages)

    def warm(self, modules: Iterable[str] | None = None) -> list[str]:
        """Populate active and full listings for each module.

        Returns:
            Module codes that were warmed.
        """
        targets = list(modules) if modules else config.get_warm_modules()
        warmed = []
        for module in targets:
            module = str(module).strip().upper()
            if not module:
                continue
            self._lookup(module, True)
            self._lookup(module, False)
            warmed.append(module)
            logger.info(f"Cache warmed for module: {module}")
        with self._lock:
            self.last_warmed_at = datetime.now()
        return warmed

    def invalidate(self, module_code: str = ALL_MODULES) -> int:
        """Drop cached slots for one module, or every slot with "all".

        Returns:
            Number of entries removed.
        """
        module = (module_code or ALL_MODULES).strip()
        with self._lock:
            if module.lower() == ALL_MODULES:
                removed = len(self._entries)
                self._entries.clear()
                self._global_generation += 1
            else:
                module = module.upper()
                keys = [k for k in self._entries if k[0] == module]
                for key in keys:
                    del self._entries[key]
                removed = len(keys)
                self._generations[module] = self._generations.get(module, 0) + 1
            self.last_invalidated_at = datetime.now()

        if module.lower() == ALL_MODULES:
            logger.info("All decision cache entries invalidated")
        else:
            logger.info(f"Decision cache invalidated for module: {module}")
        return removed

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
                "modules": sorted({m for m, _ in self._entries}),
                "last_warmed_at": self.last_warmed_at.isoformat() if self.last_warmed_at else None,
                "last_invalidated_at": (
                    self.last_invalidated_at.isoformat() if self.last_invalidated_at else None
                ),
            }
