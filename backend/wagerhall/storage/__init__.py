"""Storage layer for Wagerhall - file-based persistence of run state.

All operations use Pydantic models for validation and atomic writes to
prevent corruption.
"""

from .state import (
    FeeDistributionState,
    load_distribution_state,
    save_distribution_state,
)

__all__ = [
    "FeeDistributionState",
    "load_distribution_state",
    "save_distribution_state",
]
