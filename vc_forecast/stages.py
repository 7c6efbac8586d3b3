"""
stages.py — Funding stages, exit buckets, and the stage-keyed probability tables.

Depends only on: errors.py

Both tables are stored as dense numpy arrays indexed by ``FundStage.index`` so
that every stage has a row; a missing or malformed row is rejected when the
table is built, never discovered mid-simulation.
"""
from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional, Union

import numpy as np
import numpy.typing as npt

from vc_forecast.errors import ConfigurationError, InvalidProbabilityMatrix

PROBABILITY_TOLERANCE = 1e-3

EXIT = "Exit"
FAIL = "Fail"

_FAIL_ALIASES = {"fail", "failed", "failure", "write-off", "written-off"}


class FundStage(str, Enum):
    """Funding stages in graduation order."""

    PRE_SEED = "Pre-Seed"
    SEED = "Seed"
    SERIES_A = "Series A"
    SERIES_B = "Series B"
    SERIES_C = "Series C"
    SERIES_D_PLUS = "Series D+"

    @property
    def index(self) -> int:
        return _STAGE_ORDER.index(self)

    @classmethod
    def parse(cls, value: Union["FundStage", str]) -> "FundStage":
        if isinstance(value, FundStage):
            return value
        key = str(value).strip().lower().replace("_", " ").replace("-", " ")
        for stage in cls:
            if stage.value.lower().replace("-", " ") == key:
                return stage
        if key in ("series d", "growth"):
            return cls.SERIES_D_PLUS
        raise ConfigurationError(f"Unknown funding stage {value!r}")


_STAGE_ORDER: list[FundStage] = list(FundStage)
N_STAGES = len(_STAGE_ORDER)


class ExitBucket(str, Enum):
    """Return-multiple buckets an exit can land in."""

    FAIL = "fail"
    SUB_ONE = "0-1x"
    ONE_TO_THREE = "1-3x"
    THREE_TO_TEN = "3-10x"
    TEN_PLUS = "10x+"

    @property
    def index(self) -> int:
        return _BUCKET_ORDER.index(self)

    @property
    def bounds(self) -> tuple[float, float]:
        return _BUCKET_BOUNDS[self]

    @classmethod
    def parse(cls, value: Union["ExitBucket", str]) -> "ExitBucket":
        if isinstance(value, ExitBucket):
            return value
        key = str(value).strip().lower()
        for bucket in cls:
            if bucket.value == key:
                return bucket
        if key in _BUCKET_ALIASES:
            return _BUCKET_ALIASES[key]
        raise ConfigurationError(f"Unknown exit bucket {value!r}")

    @classmethod
    def classify(cls, multiple: float) -> "ExitBucket":
        """Bucket a realised multiple falls into."""
        if multiple <= 0.0:
            return cls.FAIL
        for bucket in _BUCKET_ORDER[1:]:
            lo, hi = bucket.bounds
            if lo <= multiple < hi:
                return bucket
        return cls.TEN_PLUS


_BUCKET_ORDER: list[ExitBucket] = list(ExitBucket)
N_BUCKETS = len(_BUCKET_ORDER)

_BUCKET_BOUNDS: dict[ExitBucket, tuple[float, float]] = {
    ExitBucket.FAIL: (0.0, 0.0),
    ExitBucket.SUB_ONE: (0.0, 1.0),
    ExitBucket.ONE_TO_THREE: (1.0, 3.0),
    ExitBucket.THREE_TO_TEN: (3.0, 10.0),
    ExitBucket.TEN_PLUS: (10.0, float("inf")),
}

# Older inputs label buckets by performance case
_BUCKET_ALIASES: dict[str, ExitBucket] = {
    "failure": ExitBucket.FAIL,
    "mediocre": ExitBucket.SUB_ONE,
    "good": ExitBucket.ONE_TO_THREE,
    "great": ExitBucket.THREE_TO_TEN,
    "home_run": ExitBucket.TEN_PLUS,
}

DEFAULT_BUCKET_MULTIPLES: dict[ExitBucket, float] = {
    ExitBucket.FAIL: 0.0,
    ExitBucket.SUB_ONE: 0.5,
    ExitBucket.ONE_TO_THREE: 2.0,
    ExitBucket.THREE_TO_TEN: 5.0,
    ExitBucket.TEN_PLUS: 15.0,
}


def _check_row(
    stage: FundStage,
    row: npt.NDArray[np.float64],
    matrix: str,
) -> None:
    if np.any(row < 0):
        raise InvalidProbabilityMatrix(
            stage, float(row.sum()), matrix, detail="negative probability"
        )
    total = float(row.sum())
    if abs(total - 1.0) > PROBABILITY_TOLERANCE:
        raise InvalidProbabilityMatrix(stage, total, matrix)


# ---------------------------------------------------------------------------
# Graduation matrix
# ---------------------------------------------------------------------------

class GraduationMatrix:
    """
    Stage-to-stage transition probabilities.

    Columns are every stage followed by ``Exit`` and ``Fail``; a row may only
    put mass on strictly later stages, so the chain is absorbing with two
    absorbing classes. Built from a mapping such as::

        {"Seed": {"Series A": 0.5, "Exit": 0.2, "Fail": 0.3}, ...}
    """

    EXIT_COLUMN = N_STAGES
    FAIL_COLUMN = N_STAGES + 1

    def __init__(self, rows: Mapping[Union[FundStage, str], Mapping[str, float]]) -> None:
        table = np.zeros((N_STAGES, N_STAGES + 2), dtype=np.float64)
        parsed = {FundStage.parse(stage): targets for stage, targets in rows.items()}

        for stage in _STAGE_ORDER:
            if stage not in parsed:
                raise InvalidProbabilityMatrix(
                    stage, 0.0, "graduation", detail="row is missing"
                )
            for target, probability in parsed[stage].items():
                column = self._column(target)
                if column < N_STAGES and column <= stage.index:
                    raise InvalidProbabilityMatrix(
                        stage,
                        float(sum(parsed[stage].values())),
                        "graduation",
                        detail=f"cannot transition to earlier or same stage {target!r}",
                    )
                table[stage.index, column] += float(probability)
            _check_row(stage, table[stage.index], "graduation")

        table.setflags(write=False)
        self._table = table

    @staticmethod
    def _column(target: Union[FundStage, str]) -> int:
        if isinstance(target, str) and not isinstance(target, FundStage):
            key = target.strip().lower()
            if key == EXIT.lower():
                return GraduationMatrix.EXIT_COLUMN
            if key in _FAIL_ALIASES:
                return GraduationMatrix.FAIL_COLUMN
        return FundStage.parse(target).index

    @staticmethod
    def column_label(column: int) -> Union[FundStage, str]:
        if column == GraduationMatrix.EXIT_COLUMN:
            return EXIT
        if column == GraduationMatrix.FAIL_COLUMN:
            return FAIL
        return _STAGE_ORDER[column]

    @property
    def table(self) -> npt.NDArray[np.float64]:
        return self._table

    def row(self, stage: FundStage) -> npt.NDArray[np.float64]:
        return self._table[stage.index]

    def probability(self, stage: FundStage, target: Union[FundStage, str]) -> float:
        return float(self._table[stage.index, self._column(target)])

    def graduation_probability(self, stage: FundStage) -> float:
        return float(self._table[stage.index, :N_STAGES].sum())

    def exit_probability(self, stage: FundStage) -> float:
        return float(self._table[stage.index, self.EXIT_COLUMN])

    def fail_probability(self, stage: FundStage) -> float:
        return float(self._table[stage.index, self.FAIL_COLUMN])

    def to_dict(self) -> dict[str, dict[str, float]]:
        out: dict[str, dict[str, float]] = {}
        for stage in _STAGE_ORDER:
            row = self._table[stage.index]
            out[stage.value] = {
                str(getattr(self.column_label(c), "value", self.column_label(c))): float(p)
                for c, p in enumerate(row)
                if p > 0
            }
        return out

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GraduationMatrix):
            return NotImplemented
        return bool(np.array_equal(self._table, other._table))

    def __repr__(self) -> str:
        return f"GraduationMatrix(stages={N_STAGES})"


# ---------------------------------------------------------------------------
# Exit probability matrix
# ---------------------------------------------------------------------------

class ExitProbabilityMatrix:
    """
    Per-stage distribution over exit-multiple buckets.

    Each bucket pays a representative multiple (``DEFAULT_BUCKET_MULTIPLES``
    unless overridden).
    """

    def __init__(
        self,
        rows: Mapping[Union[FundStage, str], Mapping[str, float]],
        multiples: Optional[Mapping[Union[ExitBucket, str], float]] = None,
    ) -> None:
        table = np.zeros((N_STAGES, N_BUCKETS), dtype=np.float64)
        parsed = {FundStage.parse(stage): buckets for stage, buckets in rows.items()}

        for stage in _STAGE_ORDER:
            if stage not in parsed:
                raise InvalidProbabilityMatrix(stage, 0.0, "exit", detail="row is missing")
            table[stage.index] = self._parse_row(parsed[stage])
            _check_row(stage, table[stage.index], "exit")

        bucket_multiples = dict(DEFAULT_BUCKET_MULTIPLES)
        for bucket, multiple in (multiples or {}).items():
            if multiple < 0:
                raise ConfigurationError(f"Exit multiple for {bucket!r} must be non-negative")
            bucket_multiples[ExitBucket.parse(bucket)] = float(multiple)

        table.setflags(write=False)
        self._table = table
        self._multiples = np.array(
            [bucket_multiples[b] for b in _BUCKET_ORDER], dtype=np.float64
        )
        self._multiples.setflags(write=False)

    @staticmethod
    def _parse_row(buckets: Mapping[str, float]) -> npt.NDArray[np.float64]:
        row = np.zeros(N_BUCKETS, dtype=np.float64)
        for bucket, probability in buckets.items():
            row[ExitBucket.parse(bucket).index] += float(probability)
        return row

    @property
    def table(self) -> npt.NDArray[np.float64]:
        return self._table

    @property
    def multiples(self) -> npt.NDArray[np.float64]:
        return self._multiples

    def row(self, stage: FundStage) -> npt.NDArray[np.float64]:
        return self._table[stage.index]

    def multiple(self, bucket: ExitBucket) -> float:
        return float(self._multiples[bucket.index])

    def expected_multiple(self, stage: FundStage) -> float:
        """E[exit multiple | stage]."""
        return float(self._table[stage.index] @ self._multiples)

    def favourable_probability(self, stage: FundStage) -> float:
        """Probability an exit from ``stage`` returns more than 1x."""
        return float(self._table[stage.index][self._multiples > 1.0].sum())

    def with_rows(
        self,
        overrides: Mapping[Union[FundStage, str], Mapping[str, float]],
    ) -> "ExitProbabilityMatrix":
        """Return a copy with the given stage rows replaced."""
        rows = self.to_dict()
        for stage, buckets in overrides.items():
            rows[FundStage.parse(stage).value] = dict(buckets)
        return ExitProbabilityMatrix(
            rows, multiples={b: self.multiple(b) for b in _BUCKET_ORDER}
        )

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            stage.value: {
                bucket.value: float(self._table[stage.index, bucket.index])
                for bucket in _BUCKET_ORDER
                if self._table[stage.index, bucket.index] > 0
            }
            for stage in _STAGE_ORDER
        }

    def multiples_dict(self) -> dict[str, float]:
        return {bucket.value: self.multiple(bucket) for bucket in _BUCKET_ORDER}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExitProbabilityMatrix):
            return NotImplemented
        return bool(
            np.array_equal(self._table, other._table)
            and np.array_equal(self._multiples, other._multiples)
        )

    def __repr__(self) -> str:
        return f"ExitProbabilityMatrix(stages={N_STAGES}, buckets={N_BUCKETS})"


# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------

DEFAULT_GRADUATION_ROWS: dict[str, dict[str, float]] = {
    "Pre-Seed": {"Seed": 0.6, "Series A": 0.1, EXIT: 0.1, FAIL: 0.2},
    "Seed": {"Series A": 0.5, "Series B": 0.05, EXIT: 0.15, FAIL: 0.3},
    "Series A": {"Series B": 0.4, "Series C": 0.1, EXIT: 0.25, FAIL: 0.25},
    "Series B": {"Series C": 0.35, "Series D+": 0.15, EXIT: 0.35, FAIL: 0.15},
    "Series C": {"Series D+": 0.3, EXIT: 0.5, FAIL: 0.2},
    "Series D+": {EXIT: 0.7, FAIL: 0.3},
}

DEFAULT_EXIT_ROWS: dict[str, dict[str, float]] = {
    "Pre-Seed": {"0-1x": 0.7, "1-3x": 0.2, "3-10x": 0.08, "10x+": 0.02},
    "Seed": {"0-1x": 0.6, "1-3x": 0.25, "3-10x": 0.12, "10x+": 0.03},
    "Series A": {"0-1x": 0.5, "1-3x": 0.3, "3-10x": 0.15, "10x+": 0.05},
    "Series B": {"0-1x": 0.4, "1-3x": 0.35, "3-10x": 0.2, "10x+": 0.05},
    "Series C": {"0-1x": 0.3, "1-3x": 0.4, "3-10x": 0.25, "10x+": 0.05},
    "Series D+": {"0-1x": 0.2, "1-3x": 0.45, "3-10x": 0.3, "10x+": 0.05},
}


def default_graduation_matrix() -> GraduationMatrix:
    return GraduationMatrix(DEFAULT_GRADUATION_ROWS)


def default_exit_matrix() -> ExitProbabilityMatrix:
    return ExitProbabilityMatrix(DEFAULT_EXIT_ROWS)
