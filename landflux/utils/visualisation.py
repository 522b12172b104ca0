from pathlib import Path
import logging
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

log = logging.getLogger(__name__)


def _series_path(variable: str, output_dir, output_path) -> Path:
    # one target only: a directory (named after the variable) or an explicit file
    if (output_dir is None) == (output_path is None):
        raise ValueError(f"Plot of {variable}: give output_dir or output_path, not both or neither.")
    out = Path(output_path) if output_path is not None else Path(output_dir) / f"{variable}_series.png"
    out.parent.mkdir(parents=True, exist_ok=True)
    return out


def plot_series(
    df: pd.DataFrame,
    variable: str,
    output_dir: str | Path = None,
    output_path: str | Path = None,
    by: str = "model",
    title: str = None,
    overwrite: bool = True,
) -> Path | None:
    """Annual series of one variable, one line per `by` group (values averaged within each year)."""
    sub = df.loc[df["variable"] == variable]
    if sub.empty:
        log.warning("No rows for %s, skipping plot.", variable)
        return None

    fname = _series_path(variable, output_dir, output_path)
    if fname.exists() and not overwrite:
        log.info("Exists: %s", fname)
        return fname

    yearly = sub.groupby([by, "year"], as_index=False)["value"].mean()
    units = sub["units"].iloc[0] if "units" in sub.columns else ""

    fig, ax = plt.subplots(figsize=(10, 4))
    for name, g in yearly.groupby(by):
        ax.plot(g["year"], g["value"], label=str(name), linewidth=1)
    ax.set_xlabel("Year")
    ax.set_ylabel(f"{variable} [{units}]" if units else variable)
    ax.set_title(title or f"{variable} by {by}")
    ax.legend(fontsize=7, ncol=2, frameon=False)
    fig.tight_layout()
    fig.savefig(fname, dpi=300)
    plt.close(fig)
    log.info("Saved plot: %s", fname)
    return fname
