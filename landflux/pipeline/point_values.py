#!/usr/bin/env python3
"""
point_values.py
---------------

Extract gpp, raRoot, rhSoil and land area at observation coordinates.

  archive index -> land metadata -> gpp/raRoot/rhSoil files, one row per file group
  -> nearest grid cell per coordinate, annual means -> <output_dir>/point_values.csv

Coordinates are read from `<coords_dir>/*_LatLon.csv`. Each file group is cached
in the intermediate directory and reloaded on later runs; use --retry-failed to
recompute groups whose cached result is a failure marker.
"""
from __future__ import annotations

import argparse
import os
from pathlib import Path

from landflux.analysis.point_extraction import extract_latlon
from landflux.dataset.archive import (
    find_carbon_data_files,
    find_land_meta_files,
    load_coordinates,
    pivot_flux_files,
    read_archive_index,
)
from landflux.dataset.variables import rs_gpp_vars
from landflux.utils.cdo import Cdo
from landflux.utils.config import load_config, save_config
from landflux.utils.logging import setup_logging
from landflux.utils.tools import slurm_shard


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Point values of CMIP carbon fluxes at observation sites.")
    ap.add_argument("-c", "--config", type=Path, help="YAML config file.")
    ap.add_argument("--archive-index", dest="archive_index", type=Path)
    ap.add_argument("--coords-dir", dest="coords_dir", type=Path)
    ap.add_argument("--intermed-dir", dest="intermed_dir", type=Path)
    ap.add_argument("--output-dir", dest="output_dir", type=Path)
    ap.add_argument("--cdo", dest="cdo_exe")
    ap.add_argument("--experiment")
    ap.add_argument("--retry-failed", dest="retry_failed", action="store_true", default=None)
    ap.add_argument("--reuse-weights", dest="reuse_weights", action="store_true", default=None)
    ap.add_argument("--cache-version", dest="cache_version")
    ap.add_argument("--log-level", dest="log_level")
    return ap


def main(argv=None):
    args = vars(build_parser().parse_args(argv))
    cfg = load_config(args.pop("config"), **args)

    cfg.output_dir.mkdir(parents=True, exist_ok=True)
    cfg.intermed_dir.mkdir(parents=True, exist_ok=True)
    log = setup_logging(cfg.output_dir, "point_values", cfg.log_level)
    save_config(cfg.output_dir, cfg)

    index = read_archive_index(cfg.archive_index)
    meta = find_land_meta_files(index)
    data = find_carbon_data_files(index, meta, rs_gpp_vars, cfg.experiment)
    groups = pivot_flux_files(data, rs_gpp_vars)
    coords = load_coordinates(cfg.coords_dir)
    log.info("%d file group(s), %d coordinate(s)", len(groups), len(coords))

    groups = slurm_shard(groups)
    out = extract_latlon(
        groups,
        coords,
        cfg.intermed_dir,
        Cdo(cfg.cdo_exe),
        cache_version=cfg.cache_version,
        retry_failed=cfg.retry_failed,
        reuse_weights=cfg.reuse_weights,
    )

    if "problem" in out.columns:
        log.warning("%d file group(s) failed; see the problem rows", int(out["problem"].notna().sum()))

    task = os.getenv("SHARD_ID", os.getenv("SLURM_ARRAY_TASK_ID"))
    name = "point_values.csv" if task is None else f"point_values_{task}.csv"
    out_path = cfg.output_dir / name
    out.to_csv(out_path, index=False)
    log.info("Wrote %d rows to %s", len(out), out_path)


if __name__ == "__main__":
    main()
