import logging
import math
import os
from pathlib import Path
from typing import Tuple, Union

import pandas as pd
import xarray as xr

log = logging.getLogger(__name__)


def open_nc(path: Union[str, Path]) -> xr.Dataset:
    """Open a NetCDF without decoding times; callers parse 'days since' themselves."""
    return xr.open_dataset(path, engine="netcdf4", decode_times=False)


def open_single_var(path: Union[str, Path]) -> Tuple[xr.Dataset, str]:
    """Opens a dataset and searches for a variable which is not time, lat, lon, bnds etc.
    Returns the ds and the variable name"""
    ds = open_nc(path)
    exclude = {"time", "lat", "lon", "time_bnds", "bnds", "time_bounds",
               "lat_bnds", "lon_bnds", "lat_bounds", "lon_bounds"}
    varnames = [v for v in ds.data_vars if v not in exclude and not v.endswith("_bnds")]
    if len(varnames) != 1:
        ds.close()
        raise ValueError(f"Expected exactly one data var, found {len(varnames)} in {path}: {varnames}")
    return ds, varnames[0]


def units_of(da: xr.DataArray) -> str:
    """The 'units' attribute of a variable, or '' when it is absent."""
    return str(da.attrs.get("units", da.attrs.get("unit", "")))


def slurm_shard(items):
    """
    Return the slice of `items` this SLURM array task should process.

    Defaults:
      - Round-robin slicing: items[tid::n_tasks]
      - If not running under SLURM, returns the full list.

    Env overrides:
      - ONLY_INDEX: if set (int), return just that single item (or row).
      - SHARD_COUNT: force the total number of shards.
      - SHARD_ID: force the shard index (0-based), overriding SLURM_ARRAY_TASK_ID.
      - SHARD_STRATEGY: "rr" (round-robin, default) or "block" (contiguous chunk).

    Every output of the pipeline is named after its own row keys, so shards never
    write to the same file.
    """
    is_frame = isinstance(items, pd.DataFrame)

    only = os.getenv("ONLY_INDEX")
    if only is not None:
        idx = int(only)
        shard = items.iloc[[idx]] if is_frame else items[idx:idx + 1]
        log.info("ONLY_INDEX=%d -> %d item(s)", idx, len(shard))
        return shard

    tid_str = os.getenv("SLURM_ARRAY_TASK_ID")
    tmin_str = os.getenv("SLURM_ARRAY_TASK_MIN")
    tmax_str = os.getenv("SLURM_ARRAY_TASK_MAX")

    if tid_str is None and os.getenv("SHARD_ID") is None:
        log.info("No SLURM array vars; processing all %d items.", len(items))
        return items

    if os.getenv("SHARD_COUNT") is not None:
        n_tasks = int(os.getenv("SHARD_COUNT"))
    elif tmin_str is not None and tmax_str is not None:
        n_tasks = int(tmax_str) - int(tmin_str) + 1
    else:
        n_tasks = int(os.getenv("SLURM_ARRAY_TASK_COUNT", "1"))

    if os.getenv("SHARD_ID") is not None:
        tid = int(os.getenv("SHARD_ID"))
    else:
        tid = int(tid_str or "0")

    if not (0 <= tid < max(1, n_tasks)):
        raise IndexError(f"Shard id {tid} out of range for n_tasks={n_tasks}")

    strategy = os.getenv("SHARD_STRATEGY", "rr").lower()

    if strategy in ("block", "contiguous"):
        n = len(items)
        per = math.ceil(n / n_tasks)
        start = tid * per
        end = min(start + per, n)
        shard = items.iloc[start:end] if is_frame else items[start:end]
    else:
        shard = items.iloc[tid::n_tasks] if is_frame else items[tid::n_tasks]

    log.info("SLURM shard: task %d/%d (%s) -> %d items", tid, n_tasks, strategy, len(shard))
    return shard
