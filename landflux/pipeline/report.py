#!/usr/bin/env python3
"""
report.py
---------

Post-process the outputs of global_means.py and point_values.py:

  - convert CO2 based fluxes to carbon for the models in `co2_models`
  - global means -> annual land totals (Pg C yr-1)
  - drop failed point groups and models without a consistent set of variables
  - soil respiration to GPP percentage, globally and per site
  - one CSV per variable under <output_dir>/extracts, plus series plots

  landflux-report -c config.yml --global-means output/global_means.csv \
      --point-values output/point_values.csv
"""
from __future__ import annotations

import argparse
from pathlib import Path

import pandas as pd

from landflux.analysis.postprocess import (
    annual_totals,
    convert_co2_to_carbon,
    filter_consistent_models,
    rs_to_gpp_percent,
    write_variable_extracts,
)
from landflux.dataset.variables import key_columns
from landflux.utils.config import load_config
from landflux.utils.logging import setup_logging
from landflux.utils.visualisation import plot_series


def main(argv=None):
    ap = argparse.ArgumentParser(description="Harmonise, clean and summarise the flux tables.")
    ap.add_argument("-c", "--config", type=Path, help="YAML config file.")
    ap.add_argument("--global-means", type=Path, help="CSV written by global_means.py.")
    ap.add_argument("--point-values", type=Path, help="CSV written by point_values.py.")
    ap.add_argument("--output-dir", dest="output_dir", type=Path)
    ap.add_argument("--co2-models", dest="co2_models", nargs="*")
    ap.add_argument("--no-plots", action="store_true")
    ap.add_argument("--log-level", dest="log_level")
    args = ap.parse_args(argv)
    if args.global_means is None and args.point_values is None:
        ap.error("Give --global-means and/or --point-values.")

    cfg = load_config(args.config, output_dir=args.output_dir, co2_models=args.co2_models,
                      log_level=args.log_level)
    log = setup_logging(cfg.output_dir, "report", cfg.log_level)
    extracts_dir = cfg.output_dir / "extracts"
    plots_dir = cfg.output_dir / "plots"

    if args.global_means is not None:
        means = pd.read_csv(args.global_means)
        means = convert_co2_to_carbon(means, cfg.co2_models)
        totals = annual_totals(means)
        write_variable_extracts(totals, extracts_dir, "global_annual_totals")

        ratio = rs_to_gpp_percent(means, by=key_columns + ["year"])
        if ratio["rs_gpp_percent"].notna().any():
            ratio.to_csv(extracts_dir / "global_rs_gpp_percent.csv", index=False)

        if not args.no_plots:
            for var in sorted(totals["variable"].unique()):
                plot_series(totals, var, output_dir=plots_dir)

    if args.point_values is not None:
        points = pd.read_csv(args.point_values)
        points = convert_co2_to_carbon(points, cfg.co2_models)
        points = filter_consistent_models(points)
        write_variable_extracts(points, extracts_dir, "point_values")

        by = key_columns + ["source", "Latitude", "Longitude", "year"]
        ratio = rs_to_gpp_percent(points, by=by)
        ratio.to_csv(extracts_dir / "point_rs_gpp_percent.csv", index=False)
        log.info("Point ratios for %d site-years", len(ratio))


if __name__ == "__main__":
    main()
