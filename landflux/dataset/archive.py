"""
Archive index handling: read or build the CMIP archive index, pair every data
file with the land fraction (sftlf) and cell area (areacella) files of its
(model, experiment, ensemble, grid) group, and load observation coordinates.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd

from landflux.dataset.variables import (
    archive_columns,
    key_columns,
    meta_vars,
    rs_gpp_vars,
    DEFAULT_EXPERIMENT,
)
from landflux.utils.errors import (
    AmbiguousMetadataError,
    MissingColumnsError,
    MissingVariablesError,
)

log = logging.getLogger(__name__)

# <variable>_<table>_<model>_<experiment>_<ensemble>_<grid>[_<time>].nc
_CMIP_NAME_RE = re.compile(
    r"^(?P<variable>[^_]+)_(?P<domain>[^_]+)_(?P<model>[^_]+)_(?P<experiment>[^_]+)"
    r"_(?P<ensemble>[^_]+)_(?P<grid>[^_]+)(?:_(?P<time>[^_]+))?\.nc$"
)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def check_columns(df: pd.DataFrame, required: Iterable[str], where: str = "table") -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise MissingColumnsError(missing, where)


def check_variables(df: pd.DataFrame, variables: Iterable[str], where: str = "archive index") -> None:
    present = set(df["variable"]) if "variable" in df.columns else set()
    missing = [v for v in variables if v not in present]
    if missing:
        raise MissingVariablesError(missing, where)


# ---------------------------------------------------------------------------
# Archive index
# ---------------------------------------------------------------------------

def read_archive_index(path: Union[str, Path]) -> pd.DataFrame:
    """Read a CSV archive index and make sure it has the columns the pipeline relies on."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    check_columns(df, archive_columns, where=str(path))
    return df


def parse_cmip_filename(path: Union[str, Path]) -> Optional[dict]:
    """Split a CMIP style file name into archive fields, or return None if it does not match."""
    m = _CMIP_NAME_RE.match(Path(path).name)
    if m is None:
        return None
    return m.groupdict()


def build_archive_index(root: Union[str, Path], type_: str = "CMIP6") -> pd.DataFrame:
    """
    Walk `root` for NetCDF files and build an archive index from their names.

    Fixed fields (sftlf, areacella) carry no time tag, so their `time` is missing.
    Files that do not follow the CMIP naming convention are skipped.
    """
    root = Path(root)
    rows: List[dict] = []
    for nc in sorted(root.rglob("*.nc")):
        fields = parse_cmip_filename(nc)
        if fields is None:
            log.warning("Skipping file with a non-CMIP name: %s", nc)
            continue
        rows.append({"file": str(nc), "type": type_, **fields})

    df = pd.DataFrame(rows, columns=archive_columns)
    log.info("Indexed %d files under %s", len(df), root)
    return df


# ---------------------------------------------------------------------------
# Metadata resolver and data selector
# ---------------------------------------------------------------------------

def find_land_meta_files(df: pd.DataFrame) -> pd.DataFrame:
    """
    Subset the archive index to the files needed for the land-area weights.

    Returns one row per (model, experiment, ensemble, grid) with an `areacella`
    and an `sftlf` column holding the file paths. Groups missing either file are dropped.
    """
    check_variables(df, meta_vars)
    check_columns(df, archive_columns, where="archive index")

    meta = df.loc[df["variable"].isin(meta_vars)].drop(columns=["type", "domain", "time"])

    dupes = meta.duplicated(subset=key_columns + ["variable"], keep=False)
    if dupes.any():
        sample = meta.loc[dupes, key_columns + ["variable", "file"]].head(6).to_dict("records")
        raise AmbiguousMetadataError(f"More than one metadata file per group and variable: {sample}")

    wide = (
        meta.pivot(index=key_columns, columns="variable", values="file")
        .reset_index()
        .dropna(subset=meta_vars)
    )
    wide.columns.name = None
    return wide[key_columns + sorted(meta_vars)].reset_index(drop=True)


def find_carbon_data_files(
    df: pd.DataFrame,
    meta: pd.DataFrame,
    variables: Sequence[str],
    experiment: str = DEFAULT_EXPERIMENT,
) -> pd.DataFrame:
    """
    Select the carbon data files to process and attach the metadata files to use as area weights.

    Data files whose group has no metadata are dropped.
    """
    check_variables(df, variables)
    check_columns(df, archive_columns, where="archive index")

    data = df.loc[df["variable"].isin(variables) & (df["experiment"] == experiment)]
    out = data.merge(meta, on=key_columns, how="inner")

    dropped = len(data) - len(out)
    if dropped:
        log.debug("%d data file(s) without land metadata were dropped", dropped)
    return out.reset_index(drop=True)


def pivot_flux_files(df: pd.DataFrame, variables: Sequence[str] = tuple(rs_gpp_vars)) -> pd.DataFrame:
    """
    Reshape resolved data files so each row holds one path column per variable.

    Rows are keyed by (model, experiment, ensemble, grid, time, areacella, sftlf);
    a row lacking any of the variables is dropped. Two files for one variable of a
    key (e.g. the same gpp range in Lmon and Emon) raise AmbiguousMetadataError.
    """
    variables = list(variables)
    check_variables(df, variables, where="resolved data files")
    index = key_columns + ["time"] + sorted(meta_vars)
    check_columns(df, index + ["file", "variable"], where="resolved data files")

    sub = df.loc[df["variable"].isin(variables), index + ["variable", "file"]]

    dupes = sub.duplicated(subset=index + ["variable"], keep=False)
    if dupes.any():
        sample = sub.loc[dupes, key_columns + ["time", "variable", "file"]].head(6).to_dict("records")
        raise AmbiguousMetadataError(f"More than one data file per group, time and variable: {sample}")

    wide = (
        sub.pivot_table(index=index, columns="variable", values="file", aggfunc="first")
        .reset_index()
        .dropna(subset=variables)
    )
    wide.columns.name = None
    return wide[index + variables].reset_index(drop=True)


# ---------------------------------------------------------------------------
# Observation coordinates
# ---------------------------------------------------------------------------

def load_coordinates(directory: Union[str, Path], pattern: str = "*_LatLon.csv") -> pd.DataFrame:
    """
    Read the observation coordinate files into one (Latitude, Longitude, source) table.

    The source label is the file name without the `_LatLon.csv` suffix and `RsGPP_` prefix.
    """
    files = sorted(Path(directory).glob(pattern))
    if not files:
        raise FileNotFoundError(f"No coordinate files matching {pattern} in {directory}")

    frames = []
    for f in files:
        coords = pd.read_csv(f)
        check_columns(coords, ["Latitude", "Longitude"], where=str(f))
        source = f.name.replace("_LatLon.csv", "")
        if source.startswith("RsGPP_"):
            source = source[len("RsGPP_"):]
        frames.append(coords[["Latitude", "Longitude"]].assign(source=source))

    return pd.concat(frames, ignore_index=True).dropna().reset_index(drop=True)
