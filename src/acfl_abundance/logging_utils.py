"""
Structured logging for pipeline steps.

Each step logs to the console and to logs/<step>_<run_id>.jsonl. A JSONL
line holds the timestamp, run_id, level, logger, message and, for events
written through the log_* helpers, an event_type (step_start, step_end,
qa_check, model_fit, output_written) with its context.

All steps of one acfl-run-all invocation share the run ID exported in
ACFL_RUN_ID, so their logs and metadata sidecars can be joined.
"""

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from acfl_abundance.paths import paths, ensure_dir


RUN_ID_ENV = "ACFL_RUN_ID"

_LOGGERS: dict[str, logging.Logger] = {}
_RUN_ID: str | None = None


def generate_run_id() -> str:
    """Run ID of the form YYYYMMDD_HHMMSS_<8 hex>."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid.uuid4().hex[:8]}"


class JSONLHandler(logging.Handler):
    """Append log records to a JSONL file, opened on first write."""

    def __init__(self, log_path: Path, run_id: str):
        super().__init__()
        self.log_path = log_path
        self.run_id = run_id
        self._file = None

    def emit(self, record: logging.LogRecord):
        try:
            if self._file is None:
                ensure_dir(self.log_path.parent)
                self._file = open(self.log_path, "a", encoding="utf-8")

            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "run_id": self.run_id,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            for field in ("event_type", "context"):
                if hasattr(record, field):
                    entry[field] = getattr(record, field)
            if record.exc_info:
                entry["exception"] = self.format(record)

            # Contexts carry numpy scalars and paths
            self._file.write(json.dumps(entry, default=str) + "\n")
            self._file.flush()
        except Exception:
            self.handleError(record)

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
        super().close()


def get_run_id() -> str:
    """The run ID exported by acfl-run-all, or a new one for a standalone step."""
    global _RUN_ID
    if _RUN_ID is None:
        _RUN_ID = os.environ.get(RUN_ID_ENV) or generate_run_id()
    return _RUN_ID


def set_run_id(run_id: str) -> None:
    global _RUN_ID
    _RUN_ID = run_id


def get_logger(
    step_name: str,
    run_id: str | None = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    log_dir: Path | None = None,
) -> logging.Logger:
    """
    Logger for a pipeline step with console and JSONL handlers.

    Loggers are cached per (step, run ID), so calling this again from
    library code returns the step's logger instead of adding handlers.

    Args:
        step_name: Step script name, e.g. "02_fit_candidate_models".
        run_id: Run ID to log under; defaults to get_run_id().
        console_level: Level for stdout.
        file_level: Level for the JSONL file.
        log_dir: Directory for the JSONL file (default: paths.logs).
    """
    if run_id is None:
        run_id = get_run_id()
    else:
        set_run_id(run_id)

    key = f"{step_name}_{run_id}"
    if key in _LOGGERS:
        return _LOGGERS[key]

    logger = logging.getLogger(key)
    logger.setLevel(min(console_level, file_level))
    logger.handlers = []
    logger.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(console)

    jsonl = JSONLHandler((log_dir or paths.logs) / f"{key}.jsonl", run_id)
    jsonl.setLevel(file_level)
    logger.addHandler(jsonl)

    _LOGGERS[key] = logger
    return logger


def log_event(logger: logging.Logger, level: int, message: str, event_type: str,
              **context: Any) -> None:
    """Log ``message`` with an event type and context for the JSONL file."""
    logger.log(level, message, extra={"event_type": event_type, "context": context})


def log_step_start(logger: logging.Logger, step_name: str, **context: Any) -> None:
    log_event(logger, logging.INFO, f"Starting: {step_name}", "step_start",
              step_name=step_name, **context)


def log_step_end(logger: logging.Logger, step_name: str, **context: Any) -> None:
    log_event(logger, logging.INFO, f"Completed: {step_name}", "step_end",
              step_name=step_name, **context)


def log_qa_check(
    logger: logging.Logger,
    check_name: str,
    passed: bool,
    details: str | None = None,
    **context: Any
) -> None:
    """Log a QA check at INFO when it passes and ERROR when it fails."""
    message = f"QA Check [{check_name}]: {'PASSED' if passed else 'FAILED'}"
    if details:
        message += f" - {details}"
    log_event(logger, logging.INFO if passed else logging.ERROR, message, "qa_check",
              check_name=check_name, passed=passed, details=details, **context)


def log_model_fit(
    logger: logging.Logger,
    model_name: str,
    loglik: float,
    aic: float,
    n_params: int,
    converged: bool,
    **context: Any
) -> None:
    """Log a model fit; an unconverged fit is logged as a WARNING."""
    message = f"Fitted {model_name}: logLik={loglik:.3f}, AIC={aic:.2f}, nPars={n_params}"
    if not converged:
        message += " (not converged)"
    log_event(logger, logging.INFO if converged else logging.WARNING, message, "model_fit",
              model_name=model_name, loglik=loglik, aic=aic,
              n_params=n_params, converged=converged, **context)


def log_output_written(
    logger: logging.Logger,
    output_path: str | Path,
    row_count: int | None = None,
    **context: Any
) -> None:
    message = f"Output written: {output_path}"
    if row_count is not None:
        message += f" ({row_count:,} rows)"
    log_event(logger, logging.INFO, message, "output_written",
              output_path=str(output_path), row_count=row_count, **context)
