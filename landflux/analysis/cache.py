"""
Keyed on-disk cache for per-group point extraction results.

Each entry is a CSV (`{key}-LatLon.csv`) plus a JSON sidecar recording whether
the CSV holds a successful result or a failure marker, and the cache version
it was written under. Entries written under another version are ignored. A
CSV without a sidecar has status "unknown" and is returned as-is.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from landflux.utils.errors import error_kind

log = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_UNKNOWN = "unknown"


@dataclass
class CacheEntry:
    key: str
    status: str
    frame: pd.DataFrame
    path: Path

    @property
    def failed(self) -> bool:
        """Recorded as failed, or an unmanifested CSV that holds a problem marker."""
        if self.status == STATUS_FAILED:
            return True
        return self.status == STATUS_UNKNOWN and "problem" in self.frame.columns


class ResultCache:
    def __init__(self, directory: Union[str, Path], version: str = "1", suffix: str = "-LatLon"):
        self.directory = Path(directory)
        self.version = str(version)
        self.suffix = suffix

    def path(self, key: str) -> Path:
        return self.directory / f"{key}{self.suffix}.csv"

    def manifest_path(self, key: str) -> Path:
        return self.directory / f"{key}{self.suffix}.json"

    def _read_manifest(self, key: str) -> Optional[dict]:
        mp = self.manifest_path(key)
        if not mp.exists():
            return None
        with open(mp) as f:
            return json.load(f)

    def load(self, key: str) -> Optional[CacheEntry]:
        path = self.path(key)
        if not path.exists():
            return None

        manifest = self._read_manifest(key)
        if manifest is None:
            status = STATUS_UNKNOWN
        elif str(manifest.get("version")) != self.version:
            log.info("Cache entry %s has version %s (want %s); ignoring it",
                     path.name, manifest.get("version"), self.version)
            return None
        else:
            status = manifest.get("status", STATUS_UNKNOWN)

        return CacheEntry(key=key, status=status, frame=pd.read_csv(path), path=path)

    def store(
        self,
        key: str,
        frame: pd.DataFrame,
        status: str = STATUS_OK,
        error: Optional[Exception] = None,
    ) -> Path:
        """
        Write the frame and its sidecar. Both go to `.tmp` siblings first and are
        renamed into place only once both are complete. The old sidecar is removed
        before the CSV is swapped, so an interrupted store leaves an unmanifested CSV
        (judged by its content on load) rather than a CSV paired with a stale status.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path(key)
        manifest_path = self.manifest_path(key)
        tmp_csv = path.with_name(path.name + ".tmp")
        tmp_manifest = manifest_path.with_name(manifest_path.name + ".tmp")

        manifest = {
            "status": status,
            "version": self.version,
            "error_kind": error_kind(error) if error is not None else None,
            "error_message": str(error) if error is not None else None,
            "created": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        try:
            frame.to_csv(tmp_csv, index=False)
            with open(tmp_manifest, "w") as f:
                json.dump(manifest, f, indent=2)
            manifest_path.unlink(missing_ok=True)
            os.replace(tmp_csv, path)
            os.replace(tmp_manifest, manifest_path)
        finally:
            for tmp in (tmp_csv, tmp_manifest):
                tmp.unlink(missing_ok=True)
        return path
