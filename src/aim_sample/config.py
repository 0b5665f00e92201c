"""Global configuration constants for the AIM validation sample design."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .sources import PointSource

# ---------------------------------------------------------------------------
# Core paths
# ---------------------------------------------------------------------------
ROOT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT_DIR / "data"
OUTPUT_DIR = ROOT_DIR / "output"

# Ensure sub-directories exist
for _dir in (DATA_DIR, OUTPUT_DIR):
    _dir.mkdir(parents=True, exist_ok=True)

# LMF points ingested into a GDB but not yet in the national database
LMF_2022_GDB = DATA_DIR / "LMF2022Ingest.gdb"
# Terrestrial AIM publication GDB (indicator layers for LMF and TerrADat)
TERRESTRIAL_GDB = DATA_DIR / "AIMTerrestrialPub1-15-26.gdb"

# Reproducibility -----------------------------------------------------------
RANDOM_SEED = 46290

# CRS ----------------------------------------------------------------------
# grts() needs projected coordinates, so everything goes through Albers first
CRS_ALBERS = (
    "+proj=aea +lat_1=29.5 +lat_2=45.5 +lat_0=37.5 +lon_0=-96 +x_0=0 +y_0=0 "
    "+ellps=GRS80 +datum=NAD83 +units=m +no_defs"
)
CRS_NAD83 = "EPSG:4269"

# Design ---------------------------------------------------------------------
SAMPLE_FRACTION = 0.10
MIN_STRATUM_SIZE = 100
ACCEPTED_PROJECTS: Tuple[str, ...] = ("BLM_AIM",)

# Field names ----------------------------------------------------------------
ID_FIELD = "PrimaryKey"
YEAR_FIELD = "year"
PROJECT_FIELD = "ProjectKey"
DATE_FIELD = "DateVisited"

OUTPUT_LAYER = "validation_sample_points"
# Reserve sample carried forward from the 2024 draw (its year column is YearVisited)
RESERVE_CSV = OUTPUT_DIR / "AIM_reserve_validataion_2024-09-23.csv"
RESERVE_YEAR_FIELD = "YearVisited"

# Preset run by `python -m aim_sample.pipeline`: "historical" or "reserve"
RUN_PRESET = "historical"


def dated_output(prefix: str, suffix: str = ".csv", today: Optional[date] = None) -> Path:
    """Return ``OUTPUT_DIR/<prefix>_<YYYY-MM-DD><suffix>``."""
    today = today or date.today()
    return OUTPUT_DIR / f"{prefix}_{today.isoformat()}{suffix}"


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunConfig:
    """Everything a single sample-design run depends on."""

    sources: Tuple[PointSource, ...]
    output_path: Path
    seed: int = RANDOM_SEED
    fraction: float = SAMPLE_FRACTION
    min_population: int = MIN_STRATUM_SIZE
    crs: str = CRS_ALBERS
    projects: Optional[Tuple[str, ...]] = ACCEPTED_PROJECTS
    years: Optional[Tuple[int, ...]] = None
    reserve_path: Optional[Path] = None
    reserve_stratum_field: Optional[str] = None
    sampler: str = "grts"
    overwrite: bool = False
    id_field: str = ID_FIELD
    stratum_field: str = YEAR_FIELD
    output_crs: Optional[str] = None
    # Name of the year column in the written file; defaults to stratum_field
    output_stratum_field: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.sources:
            raise ValueError("RunConfig needs at least one input source")
        if not 0 < self.fraction <= 1:
            raise ValueError(f"fraction must be in (0, 1], got {self.fraction}")
        if self.min_population < 1:
            raise ValueError(f"min_population must be >= 1, got {self.min_population}")
        # Reserve rows carry no geometry, so the merged sample can only be tabular
        if self.reserve_path is not None and Path(self.output_path).suffix.lower() != ".csv":
            raise ValueError("A run that appends a reserve sample must write a .csv output")

    @property
    def include_reserve(self) -> bool:
        return self.reserve_path is not None

    def with_overrides(self, **changes) -> "RunConfig":
        return replace(self, **changes)


def historical_config() -> RunConfig:
    """All AIM/LMF points through 2022: LDC headers plus the 2022 LMF ingest GDB."""
    return RunConfig(
        sources=(
            # First source sets the output CRS
            PointSource(
                name="lmf_2022",
                kind="vector",
                path=LMF_2022_GDB,
                layer="POINTCOORDINATES",
                fixed_year=2022,
                project_key="BLM_AIM",
            ),
            PointSource(
                name="ldc_headers",
                kind="ldc",
                date_field=DATE_FIELD,
            ),
        ),
        output_path=OUTPUT_DIR / f"{OUTPUT_LAYER}.shp",
        overwrite=True,
    )


def reserve_config(reserve_path: Path = RESERVE_CSV, year: int = 2024) -> RunConfig:
    """One survey year from the terrestrial GDB, appended to an earlier reserve sample."""
    indicator_layers = (
        ("terrestrial_lmf", "AIM_TerrestrialLMF__I_Indicators"),
        ("terrestrial_terradat", "AIM_TerrestrialTerradat__I_Indicators"),
    )
    return RunConfig(
        sources=tuple(
            PointSource(
                name=name,
                kind="vector",
                path=TERRESTRIAL_GDB,
                layer=layer,
                date_field=DATE_FIELD,
                date_format="%Y/%m/%d %H:%M",
            )
            for name, layer in indicator_layers
        ),
        output_path=dated_output("AIM_reserve_validation"),
        projects=None,
        years=(year,),
        reserve_path=Path(reserve_path),
        reserve_stratum_field=RESERVE_YEAR_FIELD,
        output_stratum_field=RESERVE_YEAR_FIELD,
    )


PRESETS: Dict[str, Callable[[], RunConfig]] = {
    "historical": historical_config,
    "reserve": reserve_config,
}


def preset_config(name: Optional[str] = None) -> RunConfig:
    """Build the named preset run (see ``PRESETS``); ``RUN_PRESET`` when *name* is None."""
    name = name or RUN_PRESET
    try:
        factory = PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown preset {name!r}; choose from {sorted(PRESETS)}") from None
    return factory()
