from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class LandfluxError(Exception):
    """Base class for every failure raised by the pipeline."""
    kind = "error"


class MissingColumnsError(LandfluxError, ValueError):
    kind = "missing_columns"

    def __init__(self, missing: Sequence[str], where: str = "table"):
        self.missing = list(missing)
        super().__init__(f"Missing required columns in {where}: {self.missing}")


class MissingVariablesError(LandfluxError, ValueError):
    kind = "missing_variables"

    def __init__(self, missing: Sequence[str], where: str = "archive index"):
        self.missing = list(missing)
        super().__init__(f"Missing variables in {where}: {self.missing}")


class AmbiguousMetadataError(LandfluxError):
    kind = "ambiguous_metadata"


class MissingMetadataError(LandfluxError):
    kind = "missing_metadata"


class DimensionMismatchError(LandfluxError, ValueError):
    kind = "dimension_mismatch"


class ExternalToolError(LandfluxError):
    """A CDO call exited non-zero or did not produce its output file."""
    kind = "external_tool_failure"

    def __init__(self, cmd: Sequence[str], returncode: Optional[int], stderr: str = "", reason: str = ""):
        self.cmd = [str(c) for c in cmd]
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        msg = reason or f"exit status {returncode}"
        text = f"{' '.join(self.cmd)} failed: {msg}"
        if self.stderr:
            text += f"\n{self.stderr}"
        super().__init__(text)


def error_kind(error: BaseException) -> str:
    """Tag of an error: the `kind` of pipeline errors, the class name otherwise."""
    return getattr(error, "kind", type(error).__name__)


# ---------------------------------------------------------------------------
# Tagged per-file result
# ---------------------------------------------------------------------------

OK = "ok"


@dataclass
class ProcessingResult:
    """Outcome of processing one data file: a frame, or the error that stopped it."""
    status: str
    frame: Optional[pd.DataFrame] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, frame: pd.DataFrame) -> "ProcessingResult":
        return cls(status=OK, frame=frame)

    @classmethod
    def failure(cls, error: Exception) -> "ProcessingResult":
        return cls(status=error_kind(error), error=error)

    @property
    def ok(self) -> bool:
        return self.status == OK
