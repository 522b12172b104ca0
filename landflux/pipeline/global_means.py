#!/usr/bin/env python3
"""
global_means.py
---------------

Land-area weighted global means of CMIP carbon fluxes.

  archive index -> land metadata (sftlf, areacella) -> carbon data files
  -> weighted land mean per file and time step -> <output_dir>/global_means.csv

Rows can be split over a SLURM array (see `slurm_shard`); each task then writes
global_means_<task>.csv. Settings come from an optional YAML file, overridden
by the flags below.

  landflux-global -c config.yml --var gpp npp --cleanup
"""
from __future__ import annotations

import argparse
import os
from pathlib import Path

from landflux.analysis.weighted_mean import weighted_land_mean
from landflux.dataset.archive import find_carbon_data_files, find_land_meta_files, read_archive_index
from landflux.utils.cdo import Cdo
from landflux.utils.config import load_config, save_config
from landflux.utils.logging import setup_logging
from landflux.utils.tools import slurm_shard


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Area weighted land means of CMIP carbon fluxes.")
    ap.add_argument("-c", "--config", type=Path, help="YAML config file.")
    ap.add_argument("--archive-index", dest="archive_index", type=Path)
    ap.add_argument("--intermed-dir", dest="intermed_dir", type=Path)
    ap.add_argument("--output-dir", dest="output_dir", type=Path)
    ap.add_argument("--cdo", dest="cdo_exe")
    ap.add_argument("--var", dest="variables", nargs="+")
    ap.add_argument("--experiment")
    ap.add_argument("--cleanup", action="store_true", default=None,
                    help="Remove the per-file CSVs once concatenated.")
    ap.add_argument("--keep-going", dest="strict", action="store_false", default=None,
                    help="Log failed files and continue instead of stopping.")
    ap.add_argument("--reuse-weights", dest="reuse_weights", action="store_true", default=None)
    ap.add_argument("--log-level", dest="log_level")
    return ap


def main(argv=None):
    args = vars(build_parser().parse_args(argv))
    cfg = load_config(args.pop("config"), **args)

    cfg.output_dir.mkdir(parents=True, exist_ok=True)
    cfg.intermed_dir.mkdir(parents=True, exist_ok=True)
    log = setup_logging(cfg.output_dir, "global_means", cfg.log_level)
    save_config(cfg.output_dir, cfg)

    index = read_archive_index(cfg.archive_index)
    meta = find_land_meta_files(index)
    data = find_carbon_data_files(index, meta, cfg.variables, cfg.experiment)
    log.info("%d data file(s) with land metadata", len(data))

    data = slurm_shard(data)
    cdo = Cdo(cfg.cdo_exe)
    cdo.check()

    out = weighted_land_mean(
        data,
        cfg.intermed_dir,
        cdo,
        cleanup=cfg.cleanup,
        strict=cfg.strict,
        reuse_weights=cfg.reuse_weights,
    )

    task = os.getenv("SHARD_ID", os.getenv("SLURM_ARRAY_TASK_ID"))
    name = "global_means.csv" if task is None else f"global_means_{task}.csv"
    out_path = cfg.output_dir / name
    out.to_csv(out_path, index=False)
    log.info("Wrote %d rows to %s", len(out), out_path)


if __name__ == "__main__":
    main()
