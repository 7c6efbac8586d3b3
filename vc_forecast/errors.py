"""
errors.py — Exception and warning types raised by the forecast engine.

No imports from within this library.
"""
from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """Fund inputs or simulation settings are malformed or out of range.

    Always raised before any simulation work starts.
    """


class InvalidProbabilityMatrix(ConfigurationError):
    """A graduation or exit-probability row is not a valid distribution."""

    def __init__(
        self,
        stage: object,
        observed_sum: float,
        matrix: str = "probability",
        detail: Optional[str] = None,
    ) -> None:
        self.stage = stage
        self.observed_sum = float(observed_sum)
        self.matrix = matrix
        stage_name = getattr(stage, "value", stage)
        message = (
            f"{matrix} row for stage {stage_name!r} sums to "
            f"{self.observed_sum:.6f}, expected 1.0"
        )
        if detail:
            message = f"{matrix} row for stage {stage_name!r}: {detail}"
        super().__init__(message)


class ConvergenceWarning(UserWarning):
    """Monte Carlo running mean did not stabilise within the iteration cap."""
