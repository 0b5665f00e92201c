"""Read AIM / LMF point sources into one equal-area point layer.

Every source is normalised to the same four columns before anything else
happens:

    PrimaryKey  – unique plot-visit identifier (str)
    year        – survey year, nullable Int64 (the stratum label)
    ProjectKey  – program tag used for the eligibility filter
    geometry    – point location

Sources are either vector layers (GDB / GPKG / shapefile), CSV tables with
coordinate columns, or the LDC header table.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import pandas as pd
from loguru import logger

from . import ldc
from .errors import InputReadFailure
from .strata import extract_year

KINDS = ("vector", "csv", "ldc")
COLUMNS = ["PrimaryKey", "year", "ProjectKey", "source", "geometry"]

# Tabular coordinates are NAD83 lon/lat unless a source says otherwise
DEFAULT_TABULAR_CRS = "EPSG:4269"

Fetcher = Callable[[], pd.DataFrame]


@dataclass(frozen=True)
class PointSource:
    """Where one set of points comes from and how to label it."""

    name: str
    kind: str = "vector"
    path: Optional[Path] = None
    layer: Optional[str] = None
    id_field: str = "PrimaryKey"
    x_field: str = "Longitude_NAD83"
    y_field: str = "Latitude_NAD83"
    crs: Optional[str] = None
    fixed_year: Optional[int] = None
    year_field: Optional[str] = None
    date_field: Optional[str] = None
    date_format: Optional[str] = None
    project_key: Optional[str] = None
    project_field: str = "ProjectKey"

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"Source {self.name!r}: kind must be one of {KINDS}, got {self.kind!r}")
        if self.kind != "ldc" and self.path is None:
            raise ValueError(f"Source {self.name!r}: a path is required for kind {self.kind!r}")
        labels = [self.fixed_year, self.year_field, self.date_field]
        if sum(v is not None for v in labels) != 1:
            raise ValueError(
                f"Source {self.name!r}: set exactly one of fixed_year, year_field, date_field"
            )


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------

def _has_points(frame: pd.DataFrame) -> bool:
    if not isinstance(frame, gpd.GeoDataFrame):
        return False
    try:
        geoms = frame.geometry
    except AttributeError:  # GeoDataFrame without an active geometry column
        return False
    return not geoms.isna().all()


def _points_from_xy(frame: pd.DataFrame, source: PointSource) -> gpd.GeoDataFrame:
    missing = [c for c in (source.x_field, source.y_field) if c not in frame.columns]
    if missing:
        raise InputReadFailure(f"Source {source.name!r} has no geometry and lacks columns {missing}")

    xs = pd.to_numeric(frame[source.x_field], errors="coerce")
    ys = pd.to_numeric(frame[source.y_field], errors="coerce")
    ok = xs.notna() & ys.notna()
    if not ok.all():
        logger.warning(f"{source.name}: dropping {int((~ok).sum())} rows without coordinates")
    frame = pd.DataFrame(frame.loc[ok]).drop(columns="geometry", errors="ignore")
    return gpd.GeoDataFrame(
        frame,
        geometry=gpd.points_from_xy(xs[ok], ys[ok]),
        crs=source.crs or DEFAULT_TABULAR_CRS,
    )


def _read_vector(source: PointSource) -> gpd.GeoDataFrame:
    path = Path(source.path)
    if not path.exists():
        raise InputReadFailure(f"Source {source.name!r}: {path} does not exist")
    try:
        frame = gpd.read_file(path, layer=source.layer) if source.layer else gpd.read_file(path)
    except Exception as exc:  # noqa: BLE001 – driver errors vary by backend
        raise InputReadFailure(
            f"Source {source.name!r}: cannot read layer {source.layer!r} from {path}: {exc}"
        ) from exc

    if not _has_points(frame):
        return _points_from_xy(frame, source)
    if frame.crs is None:
        if source.crs is None:
            raise InputReadFailure(f"Source {source.name!r}: layer has no CRS and none was configured")
        frame = frame.set_crs(source.crs)
    return frame


def _read_csv(source: PointSource) -> gpd.GeoDataFrame:
    path = Path(source.path)
    if not path.is_file():
        raise InputReadFailure(f"Source {source.name!r}: {path} does not exist")
    try:
        frame = pd.read_csv(path, dtype={source.id_field: str})
    except (OSError, ValueError) as exc:
        raise InputReadFailure(f"Source {source.name!r}: cannot parse {path}: {exc}") from exc
    return _points_from_xy(frame, source)


def _read_ldc(source: PointSource, fetcher: Optional[Fetcher]) -> gpd.GeoDataFrame:
    fetch = fetcher or ldc.fetch_headers
    frame = fetch()
    if frame.empty:
        raise InputReadFailure(f"Source {source.name!r}: the LDC returned no records")
    return _points_from_xy(frame, source)


def read_source(source: PointSource, *, fetcher: Optional[Fetcher] = None) -> gpd.GeoDataFrame:
    """Read *source* and return its points in the source's own CRS."""
    logger.info(f"Reading {source.name} ({source.kind}) …")
    if source.kind == "vector":
        raw = _read_vector(source)
    elif source.kind == "csv":
        raw = _read_csv(source)
    else:
        raw = _read_ldc(source, fetcher)

    if source.id_field not in raw.columns:
        raise InputReadFailure(f"Source {source.name!r} has no {source.id_field!r} column")

    try:
        years = extract_year(
            raw,
            year_field=source.year_field,
            date_field=source.date_field,
            date_format=source.date_format,
            fixed_year=source.fixed_year,
        )
    except KeyError as exc:
        raise InputReadFailure(f"Source {source.name!r}: {exc}") from exc

    if source.project_key is not None:
        projects = pd.Series(source.project_key, index=raw.index, dtype="string")
    elif source.project_field in raw.columns:
        projects = raw[source.project_field].astype("string")
    else:
        projects = pd.Series(pd.NA, index=raw.index, dtype="string")

    out = gpd.GeoDataFrame(
        {
            "PrimaryKey": raw[source.id_field].astype("string"),
            "year": years,
            "ProjectKey": projects,
            "source": source.name,
        },
        geometry=raw.geometry.values,
        crs=raw.crs,
        index=raw.index,
    ).reset_index(drop=True)

    logger.success(f"{source.name}: {len(out)} points ({out['year'].isna().sum()} without a year)")
    return out[COLUMNS]


def load_points(
    sources: Sequence[PointSource],
    crs: str,
    *,
    fetcher: Optional[Fetcher] = None,
) -> Tuple[gpd.GeoDataFrame, object]:
    """Read all *sources*, reproject to *crs* and stack them.

    Returns the combined points and the CRS of the first source, which is the
    CRS the final sample is written in.
    """
    if not sources:
        raise ValueError("No sources configured")

    frames: List[gpd.GeoDataFrame] = [read_source(s, fetcher=fetcher) for s in sources]
    input_crs = frames[0].crs
    projected = [f.to_crs(crs) for f in frames]
    points = gpd.GeoDataFrame(pd.concat(projected, ignore_index=True), geometry="geometry")
    logger.info(f"Combined {len(points)} points from {len(frames)} sources")
    return points, input_crs


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

def filter_eligible(
    points: gpd.GeoDataFrame,
    *,
    projects: Optional[Iterable[str]] = None,
    years: Optional[Iterable[int]] = None,
    id_field: str = "PrimaryKey",
    stratum_field: str = "year",
    project_field: str = "ProjectKey",
) -> gpd.GeoDataFrame:
    """Keep points with a survey year, an accepted project and (optionally) a wanted year.

    Duplicate identifiers are collapsed to their first occurrence.
    """
    out = points

    no_year = out[stratum_field].isna()
    if no_year.any():
        logger.warning(f"Dropping {int(no_year.sum())} points with no usable {stratum_field}")
        out = out[~no_year]

    if projects is not None:
        projects = list(projects)
        keep = out[project_field].isin(projects).fillna(False).astype(bool)
        logger.info(f"Project filter {projects}: keeping {int(keep.sum())} of {len(out)} points")
        out = out[keep]

    if years is not None:
        years = list(years)
        keep = out[stratum_field].isin(years).fillna(False).astype(bool)
        logger.info(f"Year filter {years}: keeping {int(keep.sum())} of {len(out)} points")
        out = out[keep]

    dupes = out[id_field].duplicated(keep="first")
    if dupes.any():
        logger.warning(f"Dropping {int(dupes.sum())} points with a repeated {id_field}")
        out = out[~dupes]

    return out.reset_index(drop=True)
