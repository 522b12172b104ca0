# ---------------------------------------------------------------------------
# Archive index layout
# ---------------------------------------------------------------------------
archive_columns = [
    "file",
    "type",
    "domain",
    "variable",
    "model",
    "experiment",
    "ensemble",
    "grid",
    "time",
]

# Columns that identify a (model, experiment, ensemble, grid) group
key_columns = ["model", "experiment", "ensemble", "grid"]

# ---------------------------------------------------------------------------
# Fixed fields used to build the land-area weights
# ---------------------------------------------------------------------------
land_fraction = "sftlf"
cell_area = "areacella"
meta_vars = [land_fraction, cell_area]

# ---------------------------------------------------------------------------
# Carbon flux variables
# ---------------------------------------------------------------------------

# Monthly fluxes averaged over land
carbon_vars = [
    "gpp",
    "npp",
    "rh",
]

# Fluxes needed for the soil respiration to GPP ratio at point locations
rs_gpp_vars = [
    "gpp",
    "raRoot",
    "rhSoil",
]

DEFAULT_EXPERIMENT = "historical"

# ---------------------------------------------------------------------------
# Output tables
# ---------------------------------------------------------------------------
weighted_mean_columns = [
    "datetime",
    "year",
    "month",
    "value",
    "units",
    "area",
    "area_units",
    "model",
    "variable",
    "domain",
    "experiment",
    "ensemble",
    "grid",
]

point_columns = [
    "value",
    "units",
    "variable",
    "datetime",
    "year",
    "month",
    "Longitude",
    "Latitude",
    "source",
    "model",
    "experiment",
    "ensemble",
    "grid",
]

failure_columns = [
    "model",
    "experiment",
    "ensemble",
    "time",
    "problem",
    "error_kind",
    "error_message",
]
