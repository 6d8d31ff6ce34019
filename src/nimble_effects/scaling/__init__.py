"""
Spell scaling: upcast validation and delta application.
"""

from .upcast import (
    SPELL_TIER_LEVELS,
    UpcastError,
    UpcastResult,
    UpcastValidation,
    apply_scaling,
    apply_upcast,
    get_highest_spell_tier,
    validate_upcast,
)

__all__ = [
    "SPELL_TIER_LEVELS",
    "UpcastError",
    "UpcastResult",
    "UpcastValidation",
    "apply_scaling",
    "apply_upcast",
    "get_highest_spell_tier",
    "validate_upcast",
]
