from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Sequence, Union

from landflux.utils.errors import ExternalToolError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Cdo:
    """
    Thin wrapper around the CDO executable.

    Every operator writes to a temporary sibling of the requested output and is
    renamed into place only once CDO exits cleanly, so a deterministic output
    name never holds a half-written file. A non-zero exit status, or a missing
    output after a clean exit, raises ExternalToolError with CDO's stderr attached.
    There is no timeout and no retry.
    """

    def __init__(self, executable: PathLike = "cdo"):
        self.executable = str(executable)

    def __repr__(self) -> str:
        return f"Cdo({self.executable!r})"

    def check(self) -> str:
        """Return the resolved executable, or raise FileNotFoundError if it cannot be found."""
        if Path(self.executable).is_file():
            return self.executable
        found = shutil.which(self.executable)
        if found is None:
            raise FileNotFoundError(f"Path to CDO executable does not exist: {self.executable}")
        return found

    # ------------------------------------------------------------------
    # Core runner
    # ------------------------------------------------------------------

    def run(self, operator: Sequence[str], inputs: Sequence[PathLike], out_path: PathLike) -> Path:
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = out_path.with_name(out_path.name + ".__cdo__.nc")
        if tmp.exists():
            tmp.unlink()

        cmd = [self.executable, *operator, *(str(p) for p in inputs), str(tmp)]
        log.debug("Running: %s", " ".join(cmd))
        proc = subprocess.run(cmd, capture_output=True, text=True)

        if proc.returncode != 0:
            try: tmp.unlink()
            except FileNotFoundError: pass
            raise ExternalToolError(cmd, proc.returncode, proc.stderr)
        if not tmp.exists():
            raise ExternalToolError(cmd, proc.returncode, proc.stderr,
                                    reason=f"expected output {out_path} was not written")

        os.replace(tmp, out_path)
        return out_path

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def divc(self, constant: float, in_path: PathLike, out_path: PathLike) -> Path:
        return self.run([f"-divc,{constant:g}"], [in_path], out_path)

    def mulc(self, constant: float, in_path: PathLike, out_path: PathLike) -> Path:
        return self.run([f"-mulc,{constant:g}"], [in_path], out_path)

    def mul(self, in1: PathLike, in2: PathLike, out_path: PathLike) -> Path:
        return self.run(["-mul"], [in1, in2], out_path)

    def yearmonmean(self, in_path: PathLike, out_path: PathLike) -> Path:
        """Annual means weighted by the number of days in each month."""
        return self.run(["yearmonmean"], [in_path], out_path)

    def remapnn(self, lon: float, lat: float, in_path: PathLike, out_path: PathLike) -> Path:
        """Nearest-neighbour value of the grid cell closest to (lon, lat)."""
        return self.run([remapnn_operator(lon, lat)], [in_path], out_path)


def remapnn_operator(lon: float, lat: float) -> str:
    """CDO remapnn operator for a single coordinate, e.g. 'remapnn,lon=-105.25_lat=40.5'."""
    return f"remapnn,lon={lon}_lat={lat}"
