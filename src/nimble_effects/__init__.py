"""
Nimble Effects - effect tree tooling for the Nimble RPG, served over FastMCP.
"""

from .activation import ActivationEvaluator, evaluate_activation
from .models import *
from .scaling import apply_upcast, validate_upcast
from .tree import flatten_effects_tree, reconstruct_effects_tree

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("nimble-effects")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "ActivationEvaluator",
    "evaluate_activation",
    "apply_upcast",
    "validate_upcast",
    "flatten_effects_tree",
    "reconstruct_effects_tree",
]
