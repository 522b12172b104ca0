from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from landflux.paths import paths
from landflux.dataset.variables import carbon_vars, DEFAULT_EXPERIMENT

_PATH_FIELDS = {"archive_index", "intermed_dir", "output_dir", "coords_dir"}


@dataclass
class PipelineConfig:
    archive_index: Path = paths.archive_index_path
    intermed_dir: Path = paths.intermed_dir
    output_dir: Path = paths.output_dir
    coords_dir: Path = paths.coords_dir
    cdo_exe: str = "cdo"
    variables: List[str] = field(default_factory=lambda: list(carbon_vars))
    experiment: str = DEFAULT_EXPERIMENT
    cleanup: bool = False
    strict: bool = True
    reuse_weights: bool = False
    retry_failed: bool = False
    cache_version: str = "1"
    co2_models: List[str] = field(default_factory=list)
    log_level: str = "INFO"

    def update(self, **overrides: Any) -> "PipelineConfig":
        """Apply non-None overrides (e.g. CLI flags) on top of the current values."""
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key not in known:
                raise ValueError(f"Unknown config key '{key}'")
            if value is None:
                continue
            if key in _PATH_FIELDS:
                value = Path(value)
            setattr(self, key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(self).items()}


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults, an optional YAML file, then keyword overrides.

    Unknown keys in the YAML file raise ValueError so typos are not silently ignored.
    """
    cfg = PipelineConfig()
    if path is not None:
        raw = yaml.safe_load(Path(path).read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must contain a mapping, got {type(raw).__name__}")
        cfg.update(**raw)
    return cfg.update(**overrides)


def save_config(run_dir: Path, cfg: PipelineConfig) -> Path:
    """Write the resolved config to `run_dir/info/config.yaml` and return the path."""
    info_dir = Path(run_dir) / "info"
    info_dir.mkdir(parents=True, exist_ok=True)
    out_path = info_dir / "config.yaml"
    with open(out_path, "w") as f:
        yaml.safe_dump(cfg.to_dict(), f, sort_keys=False, default_flow_style=False)
    return out_path
