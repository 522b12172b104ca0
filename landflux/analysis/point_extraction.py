"""
Extract gpp, raRoot, rhSoil and land area at observation coordinates.

For every (model, experiment, ensemble, grid, time) file group the nearest grid
cell to each coordinate is pulled out with CDO remapnn, the three fluxes are
reduced to annual means with yearmonmean, and everything is assembled into one
long table. Results are cached per group in the intermediate directory; a group
that fails is replaced by a single `problem` marker row, which is cached too.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Union

import numpy as np
import pandas as pd

from landflux.analysis.cache import ResultCache, STATUS_FAILED, STATUS_OK
from landflux.analysis.land_area import generate_land_area, point_basename
from landflux.analysis.weighted_mean import format_time
from landflux.dataset.archive import check_columns
from landflux.dataset.variables import (
    cell_area,
    failure_columns,
    meta_vars,
    point_columns,
    rs_gpp_vars,
)
from landflux.utils.cdo import Cdo, remapnn_operator
from landflux.utils.errors import DimensionMismatchError, error_kind
from landflux.utils.tools import open_nc, units_of

log = logging.getLogger(__name__)

coord_columns = ["Latitude", "Longitude", "source"]


def cdo_yearmonmean(name: str, in_nc: Union[str, Path], intermed_dir: Union[str, Path], cdo: Cdo) -> Path:
    """Annual mean (weighted by days per month) of `in_nc`, written to `{name}-yearmonmean.nc`."""
    in_nc = Path(in_nc)
    intermed_dir = Path(intermed_dir)
    if not in_nc.exists():
        raise FileNotFoundError(f"Input file does not exist: {in_nc}")
    if not intermed_dir.is_dir():
        raise FileNotFoundError(f"intermed_dir does not exist: {intermed_dir}")

    out_nc = intermed_dir / f"{name}-yearmonmean.nc"
    if out_nc.exists():
        out_nc.unlink()
    return cdo.yearmonmean(in_nc, out_nc)


def _series_frame(nc_file: Path, var: str, time: pd.DataFrame) -> pd.DataFrame:
    """One extracted series as (value, units, variable) joined with the time table."""
    with open_nc(nc_file) as ds:
        da = ds[var]
        values = np.asarray(da.values, dtype="float64").ravel()
        units = units_of(da)

    # Fixed fields such as the land area have a single value; repeat it for every year.
    if values.size == 1 and len(time) != 1:
        values = np.repeat(values, len(time))
    if values.size != len(time):
        raise DimensionMismatchError(f"{nc_file} holds {values.size} values for {len(time)} time steps")

    return pd.DataFrame({"value": values, "units": units, "variable": var}).join(time)


def _extract_group(
    row: Mapping,
    coords: pd.DataFrame,
    base_name: str,
    intermed_dir: Path,
    cdo: Cdo,
    reuse_weights: bool = False,
) -> pd.DataFrame:
    # Calculate the land area (remove the ocean area from the total cell area).
    area_nc = generate_land_area(row, base_name, intermed_dir, cdo, overwrite=not reuse_weights)

    point_nc = {var: intermed_dir / f"{base_name}_{var}-LatLon.nc" for var in rs_gpp_vars}
    area_point = intermed_dir / f"{base_name}_area-LatLon.nc"
    yearly_nc = {var: Path(f"{point_nc[var]}yearmonmean.nc") for var in rs_gpp_vars}

    coord_frames = []
    for _, coord in coords.iterrows():
        lon = round(float(coord["Longitude"]), 4)
        lat = round(float(coord["Latitude"]), 4)

        log.info("extracting %s", remapnn_operator(lon, lat))
        for var in rs_gpp_vars:
            cdo.remapnn(lon, lat, row[var], point_nc[var])
        cdo.remapnn(lon, lat, area_nc, area_point)

        log.info("yearmonmean")
        for var in rs_gpp_vars:
            cdo.yearmonmean(point_nc[var], yearly_nc[var])

        # Any of the yearly files carries the same time axis; use gpp.
        with open_nc(yearly_nc["gpp"]) as ds:
            time = format_time(ds)

        series = [_series_frame(yearly_nc[var], var, time) for var in rs_gpp_vars]
        series.append(_series_frame(area_point, cell_area, time))

        coord_frames.append(
            pd.concat(series, ignore_index=True).assign(
                Longitude=coord["Longitude"],
                Latitude=coord["Latitude"],
                source=coord["source"],
            )
        )

    if not coord_frames:
        return pd.DataFrame(columns=point_columns)

    out = pd.concat(coord_frames, ignore_index=True).assign(
        model=row["model"],
        experiment=row["experiment"],
        ensemble=row["ensemble"],
        grid=row["grid"],
    )
    return out[point_columns]


def failure_marker(row: Mapping, error: Exception) -> pd.DataFrame:
    """The single row that stands in for a file group whose extraction failed."""
    marker = pd.DataFrame([{
        "model": row["model"],
        "experiment": row["experiment"],
        "ensemble": row["ensemble"],
        "time": row["time"],
        "problem": True,
        "error_kind": error_kind(error),
        "error_message": str(error),
    }])
    return marker[failure_columns]


def extract_latlon(
    df: pd.DataFrame,
    coords: pd.DataFrame,
    intermed_dir: Union[str, Path],
    cdo: Cdo,
    cache_version: str = "1",
    retry_failed: bool = False,
    reuse_weights: bool = False,
) -> pd.DataFrame:
    """
    Extract the flux and land-area values at specific coordinates for every file group.

    Args:
      df:            one row per file group with gpp, raRoot, rhSoil, areacella and sftlf paths
                     (see `pivot_flux_files`).
      coords:        Latitude, Longitude and source of the observations.
      intermed_dir:  directory for the intermediate NetCDFs and the per-group cache.
      cdo:           CDO wrapper.
      cache_version: cache entries written under another version are recomputed.
      retry_failed:  recompute groups whose cached result is a failure marker; by default
                     cached failures are returned as they are.
      reuse_weights: reuse existing LandArea files instead of regenerating them.

    Returns:
      The long table of values (see `point_columns`), with a `problem` row for every
      group that could not be processed.
    """
    check_columns(df, rs_gpp_vars + meta_vars, where="resolved flux files")
    check_columns(coords, coord_columns, where="coordinates")
    cdo.check()
    intermed_dir = Path(intermed_dir)
    if not intermed_dir.is_dir():
        raise FileNotFoundError(f"intermed_dir does not exist: {intermed_dir}")

    cache = ResultCache(intermed_dir, version=cache_version)

    frames = []
    for _, row in df.iterrows():
        base_name = point_basename(row)
        log.info("------------------------------------------------")
        log.info(base_name)

        entry = cache.load(base_name)
        if entry is not None and not (retry_failed and entry.failed):
            log.info("Importing previous results from %s", entry.path)
            frames.append(entry.frame)
            continue

        try:
            out = _extract_group(row, coords, base_name, intermed_dir, cdo, reuse_weights)
        except Exception as e:
            log.error("Point extraction failed for %s (%s): %s", base_name, error_kind(e), e)
            out = failure_marker(row, e)
            cache.store(base_name, out, status=STATUS_FAILED, error=e)
        else:
            cache.store(base_name, out, status=STATUS_OK)
        frames.append(out)

    if not frames:
        return pd.DataFrame(columns=point_columns)
    return pd.concat(frames, ignore_index=True)
