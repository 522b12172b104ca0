import os
from pathlib import Path

project_root = Path(os.environ.get("LANDFLUX_ROOT", Path.cwd()))

# Inputs
data_dir = project_root / "data"
archive_index_path = data_dir / "cmip6_archive_index.csv"
coords_dir = data_dir / "observations"

# Intermediate cache (LandArea grids, point extracts, per-file CSVs)
intermed_dir = project_root / "intermed"

# Outputs
output_dir = project_root / "output"
