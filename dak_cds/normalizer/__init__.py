"""Clinical finding normalizer.

Maps heterogeneous input shapes onto the controlled observation
vocabulary each module's rules are written against.
"""

from .normalize import coerce_value, normalize, resolve_key
from .vocabulary import (
    FIELD_ALIASES,
    MODULE_VOCABULARY,
    ObservationType,
    known_modules,
    vocabulary_for,
)

__all__ = [
    "normalize",
    "coerce_value",
    "resolve_key",
    "ObservationType",
    "MODULE_VOCABULARY",
    "FIELD_ALIASES",
    "known_modules",
    "vocabulary_for",
]
