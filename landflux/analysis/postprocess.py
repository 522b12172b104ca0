"""
Post-processing of the global and point tables: unit harmonisation, annual
totals, cleaning across models and the soil respiration to GPP percentage.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from landflux.dataset.archive import check_columns
from landflux.dataset.variables import key_columns, rs_gpp_vars

log = logging.getLogger(__name__)

# Molar mass ratio C / CO2
CO2_TO_C = 12.011 / 44.009

SECONDS_PER_YEAR = 365.0 * 86400.0  # fixed 365-day year
KG_PER_PG = 1e12

FLUX_UNITS = "kg m-2 s-1"
ANNUAL_TOTAL_UNITS = "Pg C yr-1"

_LONLAT_RE = re.compile(r"lon=(?P<lon>-?\d+(?:\.\d+)?)_lat=(?P<lat>-?\d+(?:\.\d+)?)")
_HEMI_RE = re.compile(
    r"^\s*(?P<lat>\d+(?:\.\d+)?)\s*(?P<ns>[NS])[\s,;/]+(?P<lon>\d+(?:\.\d+)?)\s*(?P<ew>[EW])\s*$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

def _is_problem(col: pd.Series) -> pd.Series:
    return col.map(lambda v: str(v).strip().lower() in {"true", "1"})


def drop_problem_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Remove failure markers left by the point extraction."""
    if "problem" not in df.columns:
        return df
    bad = _is_problem(df["problem"])
    if bad.any():
        log.warning("Dropping %d problem row(s)", int(bad.sum()))
    return df.loc[~bad].drop(columns=[c for c in ("problem", "error_kind", "error_message", "time")
                                      if c in df.columns]).reset_index(drop=True)


def filter_consistent_models(
    df: pd.DataFrame,
    variables: Sequence[str] = tuple(rs_gpp_vars),
    by: Sequence[str] = tuple(key_columns),
) -> pd.DataFrame:
    """
    Keep only groups that report every variable in `variables` over the same set of years.
    """
    variables = list(variables)
    by = list(by)
    df = drop_problem_rows(df)
    check_columns(df, by + ["variable", "year"], where="results table")

    def _consistent(g: pd.DataFrame) -> bool:
        years = [set(g.loc[g["variable"] == v, "year"]) for v in variables]
        if any(len(y) == 0 for y in years):
            return False
        return all(y == years[0] for y in years[1:])

    out = df.groupby(by, group_keys=False).filter(_consistent)
    n_before = df[by].drop_duplicates().shape[0]
    n_after = out[by].drop_duplicates().shape[0]
    if n_after < n_before:
        log.info("Kept %d of %d groups with consistent %s", n_after, n_before, variables)
    return out.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

def convert_co2_to_carbon(df: pd.DataFrame, models: Sequence[str]) -> pd.DataFrame:
    """Rescale values reported as mass of CO2 to mass of carbon for the listed models."""
    out = df.copy()
    mask = out["model"].isin(list(models))
    if not mask.any():
        return out
    out.loc[mask, "value"] = out.loc[mask, "value"].astype(float) * CO2_TO_C
    if "units" in out.columns:
        out.loc[mask, "units"] = out.loc[mask, "units"].astype(str).str.replace("CO2", "C", regex=False)
    log.info("Converted CO2 to C for %d row(s) of %s", int(mask.sum()), sorted(set(out.loc[mask, "model"])))
    return out


def annual_totals(df: pd.DataFrame) -> pd.DataFrame:
    """
    Turn area weighted mean flux rates into annual land totals.

    value (kg m-2 s-1) * area (m2) * seconds per year / 1e12 -> Pg C yr-1, using the
    mean rate of the months present in each year (`n_months` reports how many).
    Rows in other units are skipped.
    """
    group_cols = ["model", "variable", "experiment", "ensemble", "grid", "year"]
    check_columns(df, group_cols + ["value", "units", "area"], where="weighted means")

    is_flux = df["units"].astype(str).str.strip() == FLUX_UNITS
    if not is_flux.all():
        skipped = sorted(set(df.loc[~is_flux, "units"].astype(str)))
        log.warning("Skipping %d row(s) not in %s: %s", int((~is_flux).sum()), FLUX_UNITS, skipped)

    out = (
        df.loc[is_flux]
        .groupby(group_cols, as_index=False)
        .agg(value=("value", "mean"), area=("area", "first"), n_months=("value", "size"))
    )
    out["value"] = out["value"] * out["area"] * SECONDS_PER_YEAR / KG_PER_PG
    out["units"] = ANNUAL_TOTAL_UNITS
    return out[group_cols + ["value", "units", "n_months"]]


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------

def parse_coordinate_label(label: str) -> Tuple[float, float]:
    """
    Parse a coordinate label into (latitude, longitude).

    Accepts CDO style labels ('lon=-105.25_lat=40.5') and hemisphere labels ('40.5N 105.25W').
    """
    m = _LONLAT_RE.search(str(label))
    if m:
        return float(m.group("lat")), float(m.group("lon"))

    m = _HEMI_RE.match(str(label))
    if m:
        lat = float(m.group("lat")) * (-1 if m.group("ns").upper() == "S" else 1)
        lon = float(m.group("lon")) * (-1 if m.group("ew").upper() == "W" else 1)
        return lat, lon

    raise ValueError(f"Cannot parse coordinate label {label!r}")


def add_coordinates(df: pd.DataFrame, label_col: str = "coordinate") -> pd.DataFrame:
    """Add Latitude and Longitude columns parsed from `label_col`."""
    parsed = [parse_coordinate_label(v) for v in df[label_col]]
    out = df.copy()
    out["Latitude"] = [p[0] for p in parsed]
    out["Longitude"] = [p[1] for p in parsed]
    return out


# ---------------------------------------------------------------------------
# Ratios and extracts
# ---------------------------------------------------------------------------

def rs_to_gpp_percent(df: pd.DataFrame, by: Sequence[str]) -> pd.DataFrame:
    """
    Soil respiration (raRoot + rhSoil) as a percentage of gpp for every `by` group.

    Works on either the global table (by model keys and year) or the point table
    (add source, Latitude and Longitude to `by`).
    """
    by = list(by)
    df = drop_problem_rows(df)
    check_columns(df, by + ["variable", "value"], where="results table")

    wide = (
        df.loc[df["variable"].isin(rs_gpp_vars)]
        .pivot_table(index=by, columns="variable", values="value", aggfunc="mean")
        .reset_index()
    )
    wide.columns.name = None
    for v in rs_gpp_vars:
        if v not in wide.columns:
            wide[v] = np.nan

    with np.errstate(invalid="ignore", divide="ignore"):
        wide["rs_gpp_percent"] = (wide["raRoot"] + wide["rhSoil"]) / wide["gpp"] * 100.0
    wide.loc[wide["gpp"] == 0, "rs_gpp_percent"] = np.nan
    return wide[by + list(rs_gpp_vars) + ["rs_gpp_percent"]]


def write_variable_extracts(
    df: pd.DataFrame,
    out_dir: Union[str, Path],
    prefix: str,
    variables: Optional[Sequence[str]] = None,
) -> List[Path]:
    """Write one CSV per variable, `{prefix}_{variable}.csv`, and return their paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    check_columns(df, ["variable"], where="results table")

    wanted = list(variables) if variables is not None else sorted(df["variable"].dropna().unique())
    paths = []
    for var in wanted:
        sub = df.loc[df["variable"] == var]
        if sub.empty:
            log.warning("No rows for variable %s; no extract written", var)
            continue
        out_path = out_dir / f"{prefix}_{var}.csv"
        sub.to_csv(out_path, index=False)
        log.info("Wrote %s", out_path)
        paths.append(out_path)
    return paths
