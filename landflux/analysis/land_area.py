from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Union

import pandas as pd

from landflux.dataset.variables import cell_area, land_fraction
from landflux.utils.cdo import Cdo
from landflux.utils.errors import AmbiguousMetadataError, ExternalToolError, MissingMetadataError

log = logging.getLogger(__name__)

Record = Union[Mapping, pd.Series, pd.DataFrame]


def land_area_basename(record: Mapping) -> str:
    """Base name for files derived from one data file: model_variable_domain_experiment_ensemble_grid."""
    keys = ("model", "variable", "domain", "experiment", "ensemble", "grid")
    return "_".join(str(record[k]) for k in keys)


def point_basename(record: Mapping) -> str:
    """Base name for the point extraction of one file group: model_experiment_ensemble_grid_time."""
    keys = ("model", "experiment", "ensemble", "grid", "time")
    return "_".join(str(record[k]) for k in keys)


def _unique_meta(record: Record, column: str) -> str:
    if isinstance(record, pd.DataFrame):
        if column not in record.columns:
            raise MissingMetadataError(f"No '{column}' column to build land-area weights from")
        values = record[column].unique().tolist()
    else:
        if column not in record:
            raise MissingMetadataError(f"No '{column}' entry to build land-area weights from")
        values = [record[column]]

    values = [v for v in values if not pd.isna(v)]
    if len(values) == 0:
        raise MissingMetadataError(f"No {column} file to build land-area weights from")
    if len(values) != 1:
        raise AmbiguousMetadataError(f"Expected one {column} file, found {len(values)}: {values}")
    return str(values[0])


def land_area_path(basename: str, intermed_dir: Union[str, Path]) -> Path:
    return Path(intermed_dir) / f"{basename}_LandArea.nc"


def generate_land_area(
    record: Record,
    basename: str,
    intermed_dir: Union[str, Path],
    cdo: Cdo,
    overwrite: bool = True,
) -> Path:
    """
    Calculate the land area of each grid cell, used as the weights of the spatial mean.

    LandArea = areacella * (sftlf / 100), written to `{basename}_LandArea.nc` in
    `intermed_dir` (with `{basename}_PercentLand.nc` as the intermediate step).

    Args:
      record:       one resolved row, or rows that share a single sftlf and areacella file.
      basename:     prefix of the output files.
      intermed_dir: where the NetCDFs are written.
      cdo:          the CDO wrapper used for the grid arithmetic.
      overwrite:    when False an existing LandArea file is returned without re-running CDO.

    Returns:
      Path to the LandArea NetCDF.
    """
    sftlf = _unique_meta(record, land_fraction)
    areacella = _unique_meta(record, cell_area)

    intermed_dir = Path(intermed_dir)
    percent_land_nc = intermed_dir / f"{basename}_PercentLand.nc"
    land_area_nc = land_area_path(basename, intermed_dir)

    if land_area_nc.exists() and not overwrite:
        log.info("Reusing land area weights %s", land_area_nc.name)
        return land_area_nc

    cdo.divc(100, sftlf, percent_land_nc)
    cdo.mul(areacella, percent_land_nc, land_area_nc)

    if not land_area_nc.exists():
        raise ExternalToolError([cdo.executable, "-mul", areacella, str(percent_land_nc)], None,
                                reason=f"{land_area_nc} does not exist")
    return land_area_nc
