"""Search/replace matching cascade."""
from conductor.patching.engine import (
    PatchApplication,
    PatchResult,
    apply_patches,
    replace,
)
from conductor.patching.strategies import STRATEGIES, levenshtein

__all__ = [
    "PatchApplication",
    "PatchResult",
    "STRATEGIES",
    "apply_patches",
    "levenshtein",
    "replace",
]
