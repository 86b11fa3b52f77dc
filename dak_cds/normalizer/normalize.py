"""Normalize loose caller input into a ClinicalObservationSet.

Upstream form shapes evolve independently of the rule engine, so
ingestion is permissive: unrecognized keys and values that cannot be read
as the key's declared type are dropped, never raised.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from ..exceptions import UnknownModuleError
from ..models import ClinicalObservationSet, ModuleCode, is_number
from .vocabulary import FIELD_ALIASES, MODULE_VOCABULARY, ObservationType

logger = logging.getLogger(__name__)

_NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_TRUE_STRINGS = {"yes", "true", "y", "1"}
_FALSE_STRINGS = {"no", "false", "n", "0"}


def _compact(name: str) -> str:
    """Lower-case a field name and drop separators, keeping path dots."""
    return ".".join(re.sub(r"[\s_\-]", "", part.lower()) for part in name.split("."))


def _build_alias_lookup() -> dict[str, str]:
    lookup: dict[str, str] = {}
    for vocab in MODULE_VOCABULARY.values():
        for key in vocab:
            lookup[_compact(key)] = key
    for canonical, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            lookup.setdefault(_compact(alias), canonical)
    return lookup


_ALIAS_LOOKUP = _build_alias_lookup()


def coerce_value(raw: Any) -> Any:
    """Generic coercion of a raw input value.

    Numeric-looking strings become numbers, "yes"/"no" become booleans,
    sequences become frozensets of strings, anything else is kept.
    Blank strings and None become None.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        lowered = text.lower()
        if lowered in ("yes", "no"):
            return lowered == "yes"
        if _NUMERIC_PATTERN.match(text):
            number = float(text)
            return int(number) if number.is_integer() and "." not in text and "e" not in lowered else number
        return text
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(str(v).strip() for v in raw if v is not None and str(v).strip())
    return raw


def _conform(raw: Any, obs_type: ObservationType) -> Any:
    """Read a raw value as the declared type; None when it cannot be."""
    value = coerce_value(raw)
    if value is None:
        return None

    if obs_type == ObservationType.NUMBER:
        return value if is_number(value) else None

    if obs_type == ObservationType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if is_number(value) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        return None

    if obs_type == ObservationType.TEXT:
        if isinstance(value, frozenset):
            return None
        if isinstance(raw, str):
            return raw.strip()
        return str(value)

    # TEXT_SET
    if isinstance(value, frozenset):
        return value
    return frozenset({raw.strip() if isinstance(raw, str) else str(value)})


def _flatten(data: Mapping[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    items: list[tuple[str, Any]] = []
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            items.extend(_flatten(value, path))
        else:
            items.append((path, value))
    return items


def resolve_key(path: str) -> str | None:
    """Map an input field path onto a canonical observation key."""
    compact = _compact(path)
    if compact in _ALIAS_LOOKUP:
        return _ALIAS_LOOKUP[compact]
    leaf = compact.rsplit(".", 1)[-1]
    return _ALIAS_LOOKUP.get(leaf)


def normalize(raw_input: Mapping[str, Any], module_code: "ModuleCode | str") -> ClinicalObservationSet:
    """Translate caller input into the module's observation set.

    Args:
        raw_input: Form-shaped or integration payload; may be nested.
        module_code: Module whose vocabulary governs which keys are kept.

    Returns:
        A new, immutable ClinicalObservationSet.

    Raises:
        UnknownModuleError: If the module has no observation vocabulary.
    """
    code = module_code.value if isinstance(module_code, ModuleCode) else str(module_code).upper()
    vocabulary = MODULE_VOCABULARY.get(code)
    if vocabulary is None:
        raise UnknownModuleError(code)

    values: dict[str, Any] = {}
    dropped: list[str] = []

    for path, raw in _flatten(raw_input or {}):
        key = resolve_key(path)
        if key is None or key not in vocabulary:
            dropped.append(path)
            continue
        value = _conform(raw, vocabulary[key])
        if value is None:
            if raw not in (None, ""):
                dropped.append(path)
            continue
        if key in values:
            logger.debug(f"Observation '{key}' supplied more than once; keeping first value")
            continue
        values[key] = value

    if dropped:
        logger.debug(f"Dropped {len(dropped)} unrecognized {code} input field(s): {dropped}")

    return ClinicalObservationSet(code, values, dropped_keys=tuple(dropped))
