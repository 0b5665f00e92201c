"""Spatially balanced sampling behind a small pluggable interface.

A sampler takes the eligible points, the per-stratum sizes and a seed and
returns the selected rows. ``GrtsSampler`` delegates to ``spsurvey::grts()``
in R; ``StratifiedRandomSampler`` is a plain per-stratum random draw for
machines without R.

Usage:
    sampler = get_sampler("grts")
    sample = sampler.draw(points, plan.sizes, "year", seed=46290)
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Hashable, Mapping, Type

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger

from .errors import SamplingFailure

# spsurvey::grts() wraps the data frame in sf, then drops geometry on the way back
_GRTS_R = """
function(df, n_base, stratum_var, crs, seed) {
  sframe <- sf::st_as_sf(df, coords = c("x", "y"), crs = sf::st_crs(crs))
  set.seed(seed)
  design <- spsurvey::grts(sframe = sframe, n_base = n_base, stratum_var = stratum_var)
  as.data.frame(sf::st_drop_geometry(design$sites_base))
}
"""


class Sampler(ABC):
    """Draws ``sizes[s]`` points from every stratum ``s``."""

    name: str = ""

    @abstractmethod
    def draw(
        self,
        records: gpd.GeoDataFrame,
        sizes: Mapping[Hashable, int],
        stratum_field: str,
        seed: int,
        *,
        id_field: str = "PrimaryKey",
    ) -> gpd.GeoDataFrame:
        """Return the selected rows of *records*."""


class GrtsSampler(Sampler):
    """Generalized Random Tessellation Stratified design via R's spsurvey.

    Only base sites are drawn; there are no oversample (replacement) points.
    *records* must be in a projected CRS.
    """

    name = "grts"

    def draw(self, records, sizes, stratum_field, seed, *, id_field="PrimaryKey"):
        if records.crs is None or records.crs.is_geographic:
            raise SamplingFailure("GRTS needs points in a projected CRS")

        # Stratum labels travel as strings so they match the names of n_base
        frame = pd.DataFrame(
            {
                id_field: records[id_field].astype(str).to_numpy(),
                stratum_field: records[stratum_field].astype(str).to_numpy(),
                "x": records.geometry.x.to_numpy(),
                "y": records.geometry.y.to_numpy(),
            }
        )
        n_base = {str(s): int(n) for s, n in sizes.items()}

        logger.info(f"Running spsurvey::grts() for {len(sizes)} strata, {sum(sizes.values())} base sites")
        sites = self._run_grts(frame, n_base, stratum_field, records.crs.to_wkt(), int(seed))

        if id_field not in sites.columns:
            raise SamplingFailure(f"grts() output has no {id_field!r} column")
        chosen = set(sites[id_field].astype(str))
        return records[records[id_field].astype(str).isin(chosen)].copy()

    def _run_grts(
        self,
        frame: pd.DataFrame,
        n_base: Dict[str, int],
        stratum_field: str,
        crs_wkt: str,
        seed: int,
    ) -> pd.DataFrame:
        """Call ``spsurvey::grts()`` on *frame* and return ``sites_base`` without geometry."""
        try:
            from rpy2 import robjects
            from rpy2.rinterface_lib.embedded import RRuntimeError
            from rpy2.robjects import pandas2ri
            from rpy2.robjects.conversion import localconverter
            from rpy2.robjects.packages import PackageNotInstalledError, importr
        except ImportError as exc:
            raise SamplingFailure(
                "GRTS sampling needs rpy2 (pip install 'aim-sample[grts]') and R with spsurvey and sf"
            ) from exc

        try:
            importr("spsurvey")
            importr("sf")
        except PackageNotInstalledError as exc:
            raise SamplingFailure(f"R package missing: {exc}") from exc

        r_sizes = robjects.IntVector(list(n_base.values()))
        r_sizes.names = robjects.StrVector(list(n_base))
        try:
            with localconverter(robjects.default_converter + pandas2ri.converter):
                r_frame = robjects.conversion.py2rpy(frame)
                result = robjects.r(_GRTS_R)(r_frame, r_sizes, stratum_field, crs_wkt, seed)
                # Calls made under the pandas converter usually come back converted already
                return result if isinstance(result, pd.DataFrame) else robjects.conversion.rpy2py(result)
        except RRuntimeError as exc:
            raise SamplingFailure(f"spsurvey::grts() failed: {exc}") from exc


class StratifiedRandomSampler(Sampler):
    """Simple random sample within each stratum (not spatially balanced)."""

    name = "random"

    def draw(self, records, sizes, stratum_field, seed, *, id_field="PrimaryKey"):
        rng = np.random.default_rng(seed)

        parts = []
        for stratum, n in sizes.items():
            subgroup = records[records[stratum_field] == stratum]
            if n > len(subgroup):
                raise SamplingFailure(
                    f"Stratum {stratum!r}: asked for {n} points but only {len(subgroup)} available"
                )
            parts.append(subgroup.sample(n=n, random_state=int(rng.integers(0, 2**32 - 1))))

        if not parts:
            return records.iloc[0:0].copy()
        return gpd.GeoDataFrame(pd.concat(parts), geometry=records.geometry.name, crs=records.crs)


# Registry of available samplers
_SAMPLER_REGISTRY: Dict[str, Type[Sampler]] = {
    GrtsSampler.name: GrtsSampler,
    StratifiedRandomSampler.name: StratifiedRandomSampler,
}


def get_sampler(name: str) -> Sampler:
    """Return a sampler instance by registry name (``"grts"`` or ``"random"``)."""
    try:
        return _SAMPLER_REGISTRY[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown sampler {name!r}; choose from {sorted(_SAMPLER_REGISTRY)}") from None


# ---------------------------------------------------------------------------
# Consistency check on whatever a sampler returns
# ---------------------------------------------------------------------------

def check_sample(
    sample: pd.DataFrame,
    population: pd.DataFrame,
    sizes: Mapping[Hashable, int],
    *,
    id_field: str = "PrimaryKey",
    stratum_field: str = "year",
) -> None:
    """Raise ``SamplingFailure`` unless *sample* matches *sizes* exactly.

    Each stratum must contain exactly its planned count, every identifier
    must come from the same stratum of *population*, and no identifier may be
    drawn twice. Rows without a stratum are rejected.
    """
    unlabelled = sample[stratum_field].isna()
    if unlabelled.any():
        raise SamplingFailure(f"Sample has {int(unlabelled.sum())} rows without a {stratum_field!r}")

    dupes = sample[id_field][sample[id_field].duplicated()]
    if not dupes.empty:
        raise SamplingFailure(f"Sample repeats identifiers: {sorted(dupes.astype(str).unique())[:10]}")

    extra = set(sample[stratum_field].dropna().unique()) - set(sizes)
    if extra:
        raise SamplingFailure(f"Sample contains strata outside the plan: {sorted(extra)}")

    for stratum, n in sizes.items():
        drawn = sample.loc[sample[stratum_field] == stratum, id_field].astype(str)
        if len(drawn) != n:
            raise SamplingFailure(f"Stratum {stratum!r}: expected {n} points, sampler returned {len(drawn)}")
        pool = set(population.loc[population[stratum_field] == stratum, id_field].astype(str))
        foreign = sorted(set(drawn) - pool)
        if foreign:
            raise SamplingFailure(f"Stratum {stratum!r}: identifiers not in its population: {foreign[:10]}")
