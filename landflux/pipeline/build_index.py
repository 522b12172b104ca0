#!/usr/bin/env python3
"""
build_index.py
--------------

Walk a directory of CMIP NetCDF files and write the archive index CSV used by
the other stages (columns: file, type, domain, variable, model, experiment,
ensemble, grid, time).

  landflux-index /data/cmip6 -o data/cmip6_archive_index.csv
"""
from __future__ import annotations

import argparse
from pathlib import Path

from landflux.dataset.archive import build_archive_index
from landflux.paths import paths
from landflux.utils.logging import setup_logging


def main(argv=None):
    ap = argparse.ArgumentParser(description="Build a CMIP archive index from file names.")
    ap.add_argument("root", type=Path, help="Directory searched recursively for *.nc files.")
    ap.add_argument("-o", "--out", type=Path, default=paths.archive_index_path)
    ap.add_argument("--type", default="CMIP6", dest="type_", help="Value of the 'type' column.")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)

    log = setup_logging(args.out.parent, "build_index", args.log_level)

    df = build_archive_index(args.root, type_=args.type_)
    args.out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(args.out, index=False)
    log.info("Wrote %d rows to %s", len(df), args.out)


if __name__ == "__main__":
    main()
