"""Survey-year strata and the per-stratum sample size plan.

The design is stratified by the year a point was visited. Each year with at
least ``min_population`` eligible points gets ``ceil(n * fraction)`` draws;
years below the threshold are left out of the design entirely. For example a
year with 4,000 points at ``fraction=0.10`` contributes 400 points.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Hashable, List, Optional

import numpy as np
import pandas as pd

from .errors import EmptyPopulation, InvalidInput

# Leading 20xx year of a date string, e.g. "2016-05-03T00:00:00".
# Sentinel dates such as 1900-01-01 stay unlabelled.
_YEAR_PREFIX = r"^\s*(20\d{2})"


# ---------------------------------------------------------------------------
# Stratum labels
# ---------------------------------------------------------------------------

def extract_year(
    frame: pd.DataFrame,
    *,
    year_field: Optional[str] = None,
    date_field: Optional[str] = None,
    date_format: Optional[str] = None,
    fixed_year: Optional[int] = None,
) -> pd.Series:
    """Return the survey year of every row as a nullable ``Int64`` Series.

    Exactly one source for the label must be given:

    fixed_year : int
        Every row belongs to that year (a single-season ingest layer).
    year_field : str
        Column already holding the year; coerced to integer.
    date_field : str
        Column holding the visit date. With *date_format* the column is
        parsed strictly and the calendar year taken; without it the leading
        20xx year of the value is used.

    Values that cannot be interpreted become ``<NA>``.
    """
    modes = [fixed_year is not None, year_field is not None, date_field is not None]
    if sum(modes) != 1:
        raise ValueError("Specify exactly one of fixed_year, year_field or date_field")

    if fixed_year is not None:
        return pd.Series(int(fixed_year), index=frame.index, dtype="Int64", name="year")

    column = year_field if year_field is not None else date_field
    if column not in frame.columns:
        raise KeyError(f"Column {column!r} not found; have {list(frame.columns)}")
    values = frame[column]

    if year_field is not None:
        years = pd.to_numeric(values, errors="coerce")
        years = years.where(years.isna() | (years % 1 == 0))
    elif pd.api.types.is_datetime64_any_dtype(values):
        years = values.dt.year
    elif date_format is not None:
        years = pd.to_datetime(values, format=date_format, errors="coerce").dt.year
    else:
        years = pd.to_numeric(
            values.astype("string").str.extract(_YEAR_PREFIX, expand=False),
            errors="coerce",
        )

    return years.astype("Int64").rename("year")


# ---------------------------------------------------------------------------
# Sample size plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SamplePlan:
    """Number of points to draw per stratum."""

    sizes: Dict[Hashable, int]
    populations: Dict[Hashable, int]
    fraction: float
    min_population: int
    excluded: List[Hashable] = field(default_factory=list)

    @property
    def strata(self) -> List[Hashable]:
        return list(self.sizes)

    @property
    def total(self) -> int:
        return sum(self.sizes.values())

    def __contains__(self, stratum: Hashable) -> bool:
        return stratum in self.sizes

    def __getitem__(self, stratum: Hashable) -> int:
        return self.sizes[stratum]

    def to_frame(self) -> pd.DataFrame:
        """Per-stratum summary (population, target, included) for reports."""
        rows = [
            {
                "stratum": s,
                "population": n,
                "target": self.sizes.get(s, 0),
                "included": s in self.sizes,
            }
            for s, n in self.populations.items()
        ]
        return pd.DataFrame(rows, columns=["stratum", "population", "target", "included"])


def _as_label(value):
    if isinstance(value, np.integer):
        return int(value)
    return value


def target_size(population: int, fraction: float) -> int:
    """``ceil(population * fraction)`` without float round-off (110 * 0.1 → 11)."""
    return math.ceil(Fraction(int(population)) * Fraction(str(fraction)))


def population_counts(records: pd.DataFrame, stratum_field: str = "year") -> pd.Series:
    """Number of records per stratum label, sorted by label."""
    counts = records[stratum_field].value_counts(dropna=True).sort_index()
    counts.index = [_as_label(v) for v in counts.index]
    return counts.astype(int)


def build_sample_plan(
    records: pd.DataFrame,
    *,
    stratum_field: str = "year",
    id_field: str = "PrimaryKey",
    fraction: float = 0.10,
    min_population: int = 100,
) -> SamplePlan:
    """Compute the per-stratum draw counts for *records*.

    Parameters
    ----------
    records : DataFrame
        Eligible records; every row must carry a stratum label.
    fraction : float, default 0.10
        Share of each qualifying stratum to draw.
    min_population : int, default 100
        Strata with fewer records are excluded. A stratum with exactly this
        many records is kept.

    Raises
    ------
    InvalidInput
        Some records have no stratum label.
    EmptyPopulation
        No stratum reaches *min_population*.
    """
    if not 0 < fraction <= 1:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")
    if min_population < 1:
        raise ValueError(f"min_population must be >= 1, got {min_population}")

    missing = records[stratum_field].isna()
    if missing.any():
        ids = records.loc[missing, id_field] if id_field in records.columns else records.index[missing]
        raise InvalidInput(f"{int(missing.sum())} records have no {stratum_field!r}", ids)

    counts = population_counts(records, stratum_field)
    populations = {s: int(n) for s, n in counts.items()}
    sizes = {
        s: target_size(n, fraction)
        for s, n in populations.items()
        if n >= min_population
    }
    excluded = [s for s in populations if s not in sizes]

    if not sizes:
        raise EmptyPopulation(
            f"No stratum has at least {min_population} records "
            f"(largest: {max(populations.values(), default=0)})"
        )

    return SamplePlan(
        sizes=sizes,
        populations=populations,
        fraction=fraction,
        min_population=min_population,
        excluded=excluded,
    )


def restrict_to_plan(records: pd.DataFrame, plan: SamplePlan, stratum_field: str = "year") -> pd.DataFrame:
    """Rows of *records* whose stratum is part of *plan*."""
    return records[records[stratum_field].isin(plan.strata)].copy()
