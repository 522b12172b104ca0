"""
Land-area weighted spatial means of CMIP carbon fluxes.

For every resolved data file the land-area weights (areacella * sftlf / 100) are
generated with CDO, then each time slice of the data is averaged over space with
those weights. Cells where either the value or the weight is missing are left
out of both the sum and the normalising weight.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, Mapping, Tuple, Union

import cftime
import numpy as np
import pandas as pd
import xarray as xr

from landflux.analysis.land_area import generate_land_area, land_area_basename
from landflux.dataset.archive import check_columns
from landflux.dataset.variables import archive_columns, cell_area, meta_vars, weighted_mean_columns
from landflux.utils.cdo import Cdo
from landflux.utils.errors import (
    DimensionMismatchError,
    LandfluxError,
    MissingMetadataError,
    ProcessingResult,
)
from landflux.utils.tools import open_nc, open_single_var, units_of

log = logging.getLogger(__name__)

# Per-file failures: pipeline errors, unreadable files, bad time axes or variables.
RECORD_ERRORS = (LandfluxError, OSError, ValueError, KeyError)

_DAYS_SINCE_RE = re.compile(r"^\s*days\s+since\s+\S+", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def format_time(ds: xr.Dataset) -> pd.DataFrame:
    """
    Convert the relative 'days since <origin>' time axis of `ds` into calendar dates.

    `ds` must be opened with decode_times=False. Returns columns datetime (ISO date
    string), year and month, one row per time step.
    """
    if "time" not in ds.variables:
        raise KeyError("Dataset has no 'time' variable")

    units = str(ds["time"].attrs.get("units", ""))
    if not _DAYS_SINCE_RE.match(units):
        raise ValueError(f"Expected time units like 'days since <date>', got {units!r}")
    calendar = str(ds["time"].attrs.get("calendar", "standard"))

    offsets = np.atleast_1d(np.asarray(ds["time"].values, dtype="float64"))
    dates = np.atleast_1d(cftime.num2date(offsets, units=units, calendar=calendar))

    return pd.DataFrame({
        "datetime": [f"{d.year:04d}-{d.month:02d}-{d.day:02d}" for d in dates],
        "year": [int(d.year) for d in dates],
        "month": [int(d.month) for d in dates],
    })


# ---------------------------------------------------------------------------
# Weighted mean
# ---------------------------------------------------------------------------

def weighted_spatial_mean(data: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """
    Weighted mean of every time slice of `data` (time first, then the spatial dims).

    Missing values drop out together with their weight; a slice with no usable
    weight gives NaN.
    """
    data = np.asarray(data, dtype="float64")
    weights = np.asarray(weights, dtype="float64")
    if data.shape[1:] != weights.shape:
        raise DimensionMismatchError(
            f"Spatial dims of data {data.shape[1:]} do not match the weight grid {weights.shape}"
        )

    axes = tuple(range(1, data.ndim))
    valid = np.isfinite(data) & np.isfinite(weights)[np.newaxis, ...]
    w = np.where(valid, weights[np.newaxis, ...], 0.0)
    num = np.where(valid, data, 0.0) * w

    total = num.sum(axis=axes)
    norm = w.sum(axis=axes)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = total / norm
    mean[norm == 0] = np.nan
    return mean


def read_land_area(path: Union[str, Path]) -> Tuple[xr.DataArray, str]:
    """Load the land-area grid (dropping a length-one time axis) and its units."""
    ds = open_nc(path)
    if cell_area in ds.data_vars:
        name = cell_area
    else:
        ds.close()
        ds, name = open_single_var(path)
    try:
        da = ds[name]
        if "time" in da.dims and da.sizes["time"] == 1:
            da = da.isel(time=0, drop=True)
        da = da.load()
    finally:
        ds.close()
    return da, units_of(da)


def _align_weights(data: xr.DataArray, weights: xr.DataArray) -> xr.DataArray:
    spatial = [d for d in data.dims if d != "time"]
    if set(spatial) == set(weights.dims):
        weights = weights.transpose(*spatial)
    return weights


def process_record(record: Mapping, weights_path: Union[str, Path]) -> ProcessingResult:
    """
    Weighted land mean of one data file given its land-area grid.

    Returns a tagged result: the WeightedMeanRecord rows on success, otherwise the
    error that stopped the computation (dimension mismatch, missing metadata,
    unreadable file, time units other than "days since", ...).
    """
    try:
        frame = _weighted_mean_frame(record, weights_path)
    except RECORD_ERRORS as e:
        return ProcessingResult.failure(e)
    return ProcessingResult.success(frame)


def _weighted_mean_frame(record: Mapping, weights_path: Union[str, Path]) -> pd.DataFrame:
    variable = record["variable"]
    area, area_units = read_land_area(weights_path)
    total_area = float(np.nansum(area.values))

    with open_nc(record["file"]) as ds:
        if variable not in ds.data_vars:
            raise MissingMetadataError(f"Variable '{variable}' not found in {record['file']}")
        time = format_time(ds)
        da = ds[variable]
        if "time" not in da.dims:
            raise DimensionMismatchError(f"'{variable}' in {record['file']} has no time dimension")
        da = da.transpose("time", ...)
        weights = _align_weights(da, area)

        log.info("Calculate Mean.")
        mean = weighted_spatial_mean(da.values, weights.values)
        units = units_of(da)

    if len(mean) != len(time):
        raise DimensionMismatchError(f"{len(mean)} means for {len(time)} time steps in {record['file']}")

    out = time.assign(
        value=mean,
        units=units,
        area=total_area,
        area_units=area_units,
        model=record["model"],
        variable=variable,
        domain=record["domain"],
        experiment=record["experiment"],
        ensemble=record["ensemble"],
        grid=record["grid"],
    )
    return out[weighted_mean_columns]


# ---------------------------------------------------------------------------
# Batch driver
# ---------------------------------------------------------------------------

def weighted_land_mean_results(
    df: pd.DataFrame,
    intermed_dir: Union[str, Path],
    cdo: Cdo,
    reuse_weights: bool = False,
) -> Iterator[Tuple[str, ProcessingResult, Path]]:
    """
    Process every row of `df` in order, yielding (basename, result, csv_path) per row.

    Successful rows are written to `{basename}{time}Mean.csv` in `intermed_dir`;
    failed rows keep their error in the result and write nothing.
    """
    intermed_dir = Path(intermed_dir)
    if not intermed_dir.is_dir():
        raise FileNotFoundError(f"intermed_dir does not exist: {intermed_dir}")
    check_columns(df, archive_columns + meta_vars, where="resolved data files")

    for _, row in df.iterrows():
        basename = land_area_basename(row)
        log.info("--------")
        log.info(basename)
        out_csv = intermed_dir / f"{basename}{row['time']}Mean.csv"

        try:
            log.info("Calculate the area weights.")
            weights_nc = generate_land_area(row, basename, intermed_dir, cdo, overwrite=not reuse_weights)
        except RECORD_ERRORS as e:
            result = ProcessingResult.failure(e)
        else:
            result = process_record(row, weights_nc)

        if result.ok:
            result.frame.to_csv(out_csv, index=False)
        yield basename, result, out_csv


def weighted_land_mean(
    df: pd.DataFrame,
    intermed_dir: Union[str, Path],
    cdo: Cdo,
    cleanup: bool = False,
    strict: bool = True,
    reuse_weights: bool = False,
) -> pd.DataFrame:
    """
    Area weighted land mean of every data file in `df`, concatenated in row then time order.

    Args:
      df:            resolved data files (archive columns plus sftlf and areacella).
      intermed_dir:  directory for the LandArea NetCDFs and the per-file CSVs.
      cdo:           CDO wrapper.
      cleanup:       remove the per-file CSVs written here once they are concatenated.
      strict:        raise the first failure (default); otherwise log it and skip the row.
      reuse_weights: reuse existing LandArea files instead of regenerating them.
    """
    frames = []
    written = []
    for basename, result, out_csv in weighted_land_mean_results(df, intermed_dir, cdo, reuse_weights):
        if not result.ok:
            if strict:
                raise result.error
            log.error("Skipping %s (%s): %s", basename, result.status, result.error)
            continue
        frames.append(result.frame)
        written.append(out_csv)

    if frames:
        out = pd.concat(frames, ignore_index=True)
    else:
        out = pd.DataFrame(columns=weighted_mean_columns)

    if cleanup:
        for f in written:
            try: f.unlink()
            except FileNotFoundError: pass
    return out
