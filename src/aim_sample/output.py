"""Trim, merge and write the drawn sample.

Outputs are written all-or-nothing: files go to a scratch directory beside the
destination and are moved into place only once the writer has finished.
"""
from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import InputReadFailure, OutputWriteFailure

VECTOR_DRIVERS: Dict[str, str] = {
    ".shp": "ESRI Shapefile",
    ".gpkg": "GPKG",
    ".geojson": "GeoJSON",
}
# Sidecar files a shapefile writer may produce
_SHAPEFILE_PARTS = (".shp", ".shx", ".dbf", ".prj", ".cpg")


def trim_sample(
    sample: gpd.GeoDataFrame,
    output_crs=None,
    *,
    id_field: str = "PrimaryKey",
    stratum_field: str = "year",
) -> gpd.GeoDataFrame:
    """Keep identifier, stratum and geometry; reproject to *output_crs* if given."""
    trimmed = sample[[id_field, stratum_field, sample.geometry.name]].reset_index(drop=True)
    # Plain numpy dtypes: not every OGR driver accepts pandas extension types
    trimmed[id_field] = trimmed[id_field].astype(str)
    if pd.api.types.is_integer_dtype(trimmed[stratum_field]):
        trimmed[stratum_field] = trimmed[stratum_field].astype("int64")
    if output_crs is not None:
        trimmed = trimmed.to_crs(output_crs)
    return trimmed


def read_reserve(
    path: Path,
    *,
    id_field: str = "PrimaryKey",
    stratum_field: str = "year",
    source_stratum_field: Optional[str] = None,
) -> pd.DataFrame:
    """Read a sample written by an earlier run (CSV or any vector format).

    *source_stratum_field* names the year column in the file when it differs
    from *stratum_field*; it is renamed on the way in.
    """
    path = Path(path)
    if not path.exists():
        raise InputReadFailure(f"Reserve sample {path} does not exist")
    try:
        if path.suffix.lower() == ".csv":
            reserve = pd.read_csv(path, dtype={id_field: str})
        else:
            reserve = gpd.read_file(path)
    except Exception as exc:  # noqa: BLE001 – csv and vector readers raise different types
        raise InputReadFailure(f"Cannot read reserve sample {path}: {exc}") from exc

    if source_stratum_field and source_stratum_field != stratum_field:
        reserve = reserve.rename(columns={source_stratum_field: stratum_field})

    missing = [c for c in (id_field, stratum_field) if c not in reserve.columns]
    if missing:
        raise InputReadFailure(f"Reserve sample {path} lacks columns {missing}")

    reserve = pd.DataFrame(reserve[[id_field, stratum_field]]).copy()
    reserve[id_field] = reserve[id_field].astype("string")
    reserve[stratum_field] = pd.to_numeric(reserve[stratum_field], errors="coerce").astype("Int64")
    logger.success(f"Loaded {len(reserve)} reserve points ← {path.name}")
    return reserve


def merge_reserve(
    sample: pd.DataFrame,
    reserve: pd.DataFrame,
    *,
    id_field: str = "PrimaryKey",
    stratum_field: str = "year",
) -> pd.DataFrame:
    """Append *reserve* to *sample*; every identifier appears once in the result.

    The merged table has no geometry: the reserve file does not carry one.
    """
    new = pd.DataFrame(sample[[id_field, stratum_field]])
    new[id_field] = new[id_field].astype("string")

    doubled = reserve[id_field].duplicated(keep="first")
    if doubled.any():
        logger.warning(f"Reserve sample lists {int(doubled.sum())} points more than once – keeping one copy")
        reserve = reserve.loc[~doubled]

    repeated = reserve[id_field].isin(new[id_field])
    if repeated.any():
        logger.warning(
            f"{int(repeated.sum())} reserve points were drawn again this run – keeping one copy"
        )
    merged = pd.concat([new, reserve.loc[~repeated, [id_field, stratum_field]]], ignore_index=True)
    merged[stratum_field] = merged[stratum_field].astype("Int64")
    return merged


def _write(frame: pd.DataFrame, path: Path, layer: str) -> None:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        pd.DataFrame(frame.drop(columns="geometry", errors="ignore")).to_csv(path, index=False)
        return
    if not isinstance(frame, gpd.GeoDataFrame):
        raise OutputWriteFailure(f"{path.name}: only CSV output is possible for a sample without geometry")
    frame.to_file(path, driver=VECTOR_DRIVERS[suffix], layer=layer)


def write_sample(
    frame: pd.DataFrame,
    path: Path,
    *,
    overwrite: bool = False,
    layer: str = "validation_sample_points",
) -> Path:
    """Write *frame* to *path* (``.csv``, ``.shp``, ``.gpkg`` or ``.geojson``).

    Raises ``OutputWriteFailure`` if *path* exists and *overwrite* is false,
    the format is unsupported or the write itself fails. Nothing is left at
    *path* after a failure.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix != ".csv" and suffix not in VECTOR_DRIVERS:
        raise OutputWriteFailure(f"Unsupported output format {path.suffix!r}")
    if path.exists() and not overwrite:
        raise OutputWriteFailure(f"{path} already exists (set overwrite=True to replace it)")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=path.parent, prefix=".aim_sample_") as tmp:
            staged = Path(tmp) / path.name
            _write(frame, staged, layer)
            if suffix == ".shp":
                for part in _SHAPEFILE_PARTS:
                    piece = staged.with_suffix(part)
                    if piece.exists():
                        shutil.move(str(piece), str(path.with_suffix(part)))
            else:
                shutil.move(str(staged), str(path))
    except OutputWriteFailure:
        raise
    except Exception as exc:  # noqa: BLE001 – OS and driver errors alike abort the run
        raise OutputWriteFailure(f"Writing {path} failed: {exc}") from exc

    logger.success(f"Wrote {len(frame)} sample points → {path}")
    return path
