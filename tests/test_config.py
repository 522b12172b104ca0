"""Tests for the YAML config layer, logging setup and SLURM sharding."""

import logging
from pathlib import Path

import pandas as pd
import pytest
import yaml

from landflux.utils.config import PipelineConfig, load_config, save_config
from landflux.utils.logging import setup_logging
from landflux.utils.tools import slurm_shard


class TestConfig:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.variables == ["gpp", "npp", "rh"]
        assert cfg.experiment == "historical"
        assert cfg.strict is True
        assert cfg.retry_failed is False
        assert isinstance(cfg.intermed_dir, Path)

    def test_yaml_then_overrides(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({
            "intermed_dir": str(tmp_path / "intermed"),
            "variables": ["gpp"],
            "cleanup": True,
            "co2_models": ["CanESM5"],
        }))
        cfg = load_config(path, variables=["rh"], cleanup=None)
        assert cfg.intermed_dir == tmp_path / "intermed"
        assert cfg.variables == ["rh"]
        # None means "not given on the command line"
        assert cfg.cleanup is True
        assert cfg.co2_models == ["CanESM5"]

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("intermed_dri: /tmp\n")
        with pytest.raises(ValueError, match="intermed_dri"):
            load_config(path)

    def test_unknown_override_even_if_none(self):
        with pytest.raises(ValueError):
            PipelineConfig().update(nope=None)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert load_config(path).cdo_exe == "cdo"

    def test_save_config(self, tmp_path):
        cfg = load_config(output_dir=tmp_path / "out", variables=["gpp"])
        out = save_config(tmp_path / "run", cfg)
        assert out == tmp_path / "run" / "info" / "config.yaml"
        saved = yaml.safe_load(out.read_text())
        assert saved["output_dir"] == str(tmp_path / "out")
        assert saved["variables"] == ["gpp"]
        # a saved config loads back to the same settings
        assert load_config(out).to_dict() == cfg.to_dict()

    def test_root_from_environment(self, tmp_path, monkeypatch):
        import importlib

        from landflux.paths import paths

        monkeypatch.setenv("LANDFLUX_ROOT", str(tmp_path))
        try:
            reloaded = importlib.reload(paths)
            assert reloaded.intermed_dir == tmp_path / "intermed"
            assert reloaded.archive_index_path == tmp_path / "data" / "cmip6_archive_index.csv"
        finally:
            monkeypatch.delenv("LANDFLUX_ROOT")
            importlib.reload(paths)


class TestLogging:
    def test_file_and_stdout(self, tmp_path, capsys):
        log = setup_logging(tmp_path, "job")
        logging.getLogger("landflux.analysis.weighted_mean").info("hello from a module")
        for h in log.handlers:
            h.flush()

        text = (tmp_path / "logs" / "job.log").read_text()
        assert "[INFO] hello from a module" in text
        assert "hello from a module" in capsys.readouterr().out

    def test_handlers_replaced_per_stage(self, tmp_path):
        setup_logging(tmp_path, "global_means")
        log = setup_logging(tmp_path, "report", level="debug")
        assert len(log.handlers) == 2
        assert log.level == logging.DEBUG

        logging.getLogger("landflux.pipeline.report").debug("only in the report log")
        for h in log.handlers:
            h.flush()
        assert "only in the report log" in (tmp_path / "logs" / "report.log").read_text()
        assert "only in the report log" not in (tmp_path / "logs" / "global_means.log").read_text()

    def test_unknown_level(self, tmp_path):
        with pytest.raises(ValueError, match="LOUD"):
            setup_logging(tmp_path, "job", level="LOUD")


class TestSlurmShard:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for var in ("ONLY_INDEX", "SHARD_COUNT", "SHARD_ID", "SHARD_STRATEGY",
                    "SLURM_ARRAY_TASK_ID", "SLURM_ARRAY_TASK_MIN", "SLURM_ARRAY_TASK_MAX",
                    "SLURM_ARRAY_TASK_COUNT"):
            monkeypatch.delenv(var, raising=False)

    def test_no_slurm(self):
        items = list(range(5))
        assert slurm_shard(items) == items

    def test_round_robin(self, monkeypatch):
        monkeypatch.setenv("SLURM_ARRAY_TASK_ID", "1")
        monkeypatch.setenv("SLURM_ARRAY_TASK_MIN", "0")
        monkeypatch.setenv("SLURM_ARRAY_TASK_MAX", "2")
        assert slurm_shard(list(range(7))) == [1, 4]

    def test_block_on_frame(self, monkeypatch):
        monkeypatch.setenv("SHARD_ID", "1")
        monkeypatch.setenv("SHARD_COUNT", "2")
        monkeypatch.setenv("SHARD_STRATEGY", "block")
        df = pd.DataFrame({"x": range(5)})
        assert slurm_shard(df)["x"].tolist() == [3, 4]

    def test_only_index(self, monkeypatch):
        monkeypatch.setenv("ONLY_INDEX", "2")
        df = pd.DataFrame({"x": range(5)})
        assert slurm_shard(df)["x"].tolist() == [2]

    def test_out_of_range(self, monkeypatch):
        monkeypatch.setenv("SHARD_ID", "3")
        monkeypatch.setenv("SHARD_COUNT", "2")
        with pytest.raises(IndexError):
            slurm_shard([1, 2, 3])
