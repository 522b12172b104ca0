import logging
import sys
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level {level!r}")
    return value


def setup_logging(out_dir: Path, job_name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Send every `landflux.*` logger to stdout and to `out_dir/logs/<job_name>.log`.

    Handlers from an earlier call are closed and replaced, so running several
    stages in one process writes each line once, to the current stage's file.
    Returns the package logger.
    """
    level = _level(level)
    log_file = Path(out_dir) / "logs" / f"{job_name}.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log = logging.getLogger("landflux")
    log.setLevel(level)
    for h in list(log.handlers):
        log.removeHandler(h)
        h.close()

    fmt = logging.Formatter(LOG_FORMAT)
    for h in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_file)):
        h.setFormatter(fmt)
        h.setLevel(level)
        log.addHandler(h)

    log.debug("Logging %s to %s", job_name, log_file)
    return log
