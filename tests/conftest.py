"""Shared fixtures: tiny CMIP-like NetCDF files and an in-process stand-in for CDO."""

import re
import subprocess
from pathlib import Path

import cftime
import numpy as np
import pytest
import xarray as xr

from landflux.dataset.archive import build_archive_index
from landflux.utils.cdo import Cdo

LAT = np.array([-45.0, 45.0])
LON = np.array([0.0, 180.0])
TIME_UNITS = "days since 1850-01-01"
MONTH_STARTS = np.array([0, 31, 59, 90, 120, 151, 181, 212, 243, 273, 304, 334])

SFTLF = np.array([[0.0, 50.0], [100.0, 100.0]])
AREACELLA = np.full((2, 2), 1e9)
LAND_AREA = np.array([[0.0, 5e8], [1e9, 1e9]])


def monthly_offsets(n_years):
    """Mid-month day offsets on a 365-day calendar starting in January 1850."""
    return np.concatenate([MONTH_STARTS + 14 + 365 * y for y in range(n_years)]).astype("float64")


def write_field(path, name, values, units, time=None, lat=LAT, lon=LON):
    values = np.asarray(values, dtype="float64")
    coords = {
        "lat": ("lat", np.asarray(lat, dtype="float64"), {"units": "degrees_north"}),
        "lon": ("lon", np.asarray(lon, dtype="float64"), {"units": "degrees_east"}),
    }
    if time is None:
        dims = ("lat", "lon")
    else:
        dims = ("time", "lat", "lon")
        coords["time"] = ("time", np.asarray(time, dtype="float64"),
                          {"units": TIME_UNITS, "calendar": "noleap"})
    ds = xr.Dataset({name: (dims, values, {"units": units})}, coords=coords)
    ds.to_netcdf(path, engine="netcdf4")
    return Path(path)


def read_field(path, name):
    with xr.open_dataset(path, engine="netcdf4", decode_times=False) as ds:
        return ds[name].values.copy()


# ---------------------------------------------------------------------------
# CDO stand-in
# ---------------------------------------------------------------------------

def _load(path):
    with xr.open_dataset(path, engine="netcdf4", decode_times=False) as ds:
        return ds.load()


def _data_var(ds):
    return list(ds.data_vars)[0]


class FakeCdo:
    """Replaces subprocess.run and applies the CDO operators the pipeline uses with xarray."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.skip_output = set()

    @property
    def operators(self):
        return [c[1].lstrip("-").split(",")[0] for c in self.calls]

    def __call__(self, cmd, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        op = cmd[1].lstrip("-")
        name = op.split(",")[0]
        if name in self.fail_on:
            return subprocess.CompletedProcess(cmd, 1, "", f"cdo    {name} (Abort): simulated failure")
        if name in self.skip_output:
            return subprocess.CompletedProcess(cmd, 0, "", "")

        inputs, out = cmd[2:-1], cmd[-1]
        self._apply(name, op, inputs).to_netcdf(out, engine="netcdf4")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def _apply(self, name, op, inputs):
        if name in ("divc", "mulc"):
            const = float(op.split(",")[1])
            ds = _load(inputs[0])
            v = _data_var(ds)
            res = ds[v] / const if name == "divc" else ds[v] * const
            ds[v] = res.assign_attrs(ds[v].attrs)
            return ds

        if name == "mul":
            a, b = _load(inputs[0]), _load(inputs[1])
            va, vb = _data_var(a), _data_var(b)
            a[va] = (a[va] * b[vb].values).assign_attrs(a[va].attrs)
            return a

        if name == "yearmonmean":
            ds = _load(inputs[0])
            v = _data_var(ds)
            t = ds["time"]
            dates = cftime.num2date(t.values, t.attrs["units"], t.attrs.get("calendar", "standard"))
            years = np.array([d.year for d in dates])
            uniq = sorted(set(years))
            means = [ds[v].isel(time=np.where(years == y)[0]).mean("time") for y in uniq]
            tvals = [float(t.values[years == y].mean()) for y in uniq]
            da = xr.concat(means, dim="time").assign_coords(time=("time", tvals, dict(t.attrs)))
            da = da.transpose("time", ...).assign_attrs(ds[v].attrs)
            da.name = v
            return da.to_dataset()

        if name == "remapnn":
            m = re.match(r"remapnn,lon=(?P<lon>[^_]+)_lat=(?P<lat>.+)$", op)
            lon, lat = float(m.group("lon")), float(m.group("lat"))
            ds = _load(inputs[0])
            ilat = int(np.abs(ds["lat"].values - lat).argmin())
            ilon = int(np.abs(ds["lon"].values - lon).argmin())
            return ds.isel(lat=[ilat], lon=[ilon])

        raise AssertionError(f"Operator not emulated: {op}")


@pytest.fixture
def fake_cdo(monkeypatch):
    fake = FakeCdo()
    monkeypatch.setattr("landflux.utils.cdo.subprocess.run", fake)
    return fake


@pytest.fixture
def cdo(tmp_path, fake_cdo):
    exe = tmp_path / "bin" / "cdo"
    exe.parent.mkdir()
    exe.write_text("#!/bin/sh\n")
    return Cdo(exe)


@pytest.fixture
def intermed_dir(tmp_path):
    d = tmp_path / "intermed"
    d.mkdir()
    return d


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

@pytest.fixture
def archive_dir(tmp_path):
    """One model group with land metadata and two years of monthly gpp, raRoot and rhSoil."""
    root = tmp_path / "archive"
    root.mkdir()
    write_field(root / "sftlf_fx_M_historical_E_G.nc", "sftlf", SFTLF, "%")
    write_field(root / "areacella_fx_M_historical_E_G.nc", "areacella", AREACELLA, "m2")

    time = monthly_offsets(2)
    base = np.array([[1.0, 2.0], [3.0, 4.0]])
    for i, var in enumerate(["gpp", "raRoot", "rhSoil"]):
        values = np.stack([base * (i + 1) + t for t in range(len(time))])
        write_field(root / f"{var}_Lmon_M_historical_E_G_185001-185112.nc", var, values, "kg m-2 s-1", time=time)
    return root


@pytest.fixture
def archive_index(archive_dir):
    return build_archive_index(archive_dir)
