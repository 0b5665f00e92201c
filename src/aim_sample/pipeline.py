"""Draw the stratified, spatially balanced validation sample of AIM/LMF points.

The design is stratified by survey year. Each year with at least 100 eligible
points contributes 10 % of them (rounded up) to the sample; e.g. 4,000 points
visited in 2016 give a "2016" stratum of 400 points.

Run with:
    python -m aim_sample.pipeline

``config.RUN_PRESET`` picks the run. "historical" reproduces the design over
LDC headers + 2022 LMF ingest and writes ``output/validation_sample_points.shp``;
"reserve" draws 2024 from the terrestrial GDB and appends the earlier reserve
sample into a dated CSV.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from . import config
from .config import RunConfig
from .errors import SampleDesignError
from .output import merge_reserve, read_reserve, trim_sample, write_sample
from .sampler import Sampler, check_sample, get_sampler
from .sources import Fetcher, filter_eligible, load_points
from .strata import SamplePlan, build_sample_plan, restrict_to_plan


@dataclass(frozen=True)
class RunResult:
    plan: SamplePlan
    sample: pd.DataFrame
    output_path: Path


def run(
    cfg: RunConfig,
    *,
    sampler: Optional[Sampler] = None,
    fetcher: Optional[Fetcher] = None,
) -> RunResult:
    """Execute one sample-design run end to end.

    Parameters
    ----------
    cfg : RunConfig
        Inputs, output destination and design constants.
    sampler : Sampler, optional
        Overrides ``cfg.sampler``.
    fetcher : callable, optional
        Replaces the LDC download for ``kind="ldc"`` sources.

    Raises
    ------
    SampleDesignError
        Any failure; nothing is written in that case.
    """
    sampler = sampler or get_sampler(cfg.sampler)

    # 1. Points ---------------------------------------------------------------
    points, input_crs = load_points(cfg.sources, cfg.crs, fetcher=fetcher)
    eligible = filter_eligible(
        points,
        projects=cfg.projects,
        years=cfg.years,
        id_field=cfg.id_field,
        stratum_field=cfg.stratum_field,
    )

    # 2. Design ---------------------------------------------------------------
    plan = build_sample_plan(
        eligible,
        stratum_field=cfg.stratum_field,
        id_field=cfg.id_field,
        fraction=cfg.fraction,
        min_population=cfg.min_population,
    )
    if plan.excluded:
        logger.info(f"Strata below {cfg.min_population} points left out: {plan.excluded}")
    logger.info("Sample sizes:\n" + plan.to_frame().to_string(index=False))

    frame = restrict_to_plan(eligible, plan, cfg.stratum_field)

    # 3. Draw -----------------------------------------------------------------
    sample = sampler.draw(frame, plan.sizes, cfg.stratum_field, cfg.seed, id_field=cfg.id_field)
    check_sample(sample, frame, plan.sizes, id_field=cfg.id_field, stratum_field=cfg.stratum_field)
    logger.success(f"Drew {len(sample)} points with the {sampler.name} sampler")

    result = trim_sample(
        sample,
        cfg.output_crs or input_crs,
        id_field=cfg.id_field,
        stratum_field=cfg.stratum_field,
    )

    # 4. Reserve + write --------------------------------------------------------
    if cfg.include_reserve:
        reserve = read_reserve(
            cfg.reserve_path,
            id_field=cfg.id_field,
            stratum_field=cfg.stratum_field,
            source_stratum_field=cfg.reserve_stratum_field,
        )
        result = merge_reserve(result, reserve, id_field=cfg.id_field, stratum_field=cfg.stratum_field)

    written = result
    if cfg.output_stratum_field and cfg.output_stratum_field != cfg.stratum_field:
        written = result.rename(columns={cfg.stratum_field: cfg.output_stratum_field})
    out = write_sample(written, cfg.output_path, overwrite=cfg.overwrite, layer=config.OUTPUT_LAYER)
    return RunResult(plan=plan, sample=result, output_path=out)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

def main() -> None:
    logger.remove()
    logger.add(lambda msg: print(msg, end=""))
    logger.info("=== AIM VALIDATION SAMPLE DESIGN ===")

    try:
        result = run(config.preset_config())
    except SampleDesignError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        raise SystemExit(1)

    per_year = result.sample[config.YEAR_FIELD].value_counts().sort_index()
    logger.success(f"Sample written → {result.output_path}")
    print("\nBy year:\n", per_year.to_string())


if __name__ == "__main__":
    main()
