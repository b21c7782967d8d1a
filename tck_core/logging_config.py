"""
Logging configuration for harness runs.

Every record is tagged with the scenario that produced it, so output from
interleaved scenarios (``pytest -n`` or async fixtures) can be told apart.

Two console formats:
  - **human** – coloured single line, scenario label in brackets
  - **json**  – one JSON object per line, for CI log collectors

A log file, when configured, is always written as JSON.

Usage:
    from tck_core.logging_config import setup_logging, scenario_scope
    setup_logging(level="DEBUG", fmt="json", log_file="tck.log")
    with scenario_scope("update account key"):
        ...
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

_current_scenario: contextvars.ContextVar[str] = contextvars.ContextVar(
    "tck_scenario", default="-",
)


@contextlib.contextmanager
def scenario_scope(label: str) -> Iterator[None]:
    """Tag every record logged inside the block with *label*."""
    token = _current_scenario.set(label or "-")
    try:
        yield
    finally:
        _current_scenario.reset(token)


def current_scenario() -> str:
    return _current_scenario.get()


class ScenarioFilter(logging.Filter):
    """Stamp ``record.scenario`` from the active :func:`scenario_scope`."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "scenario"):
            record.scenario = _current_scenario.get()
        return True


class _JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "scenario": getattr(record, "scenario", "-"),
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        start = self.COLOURS.get(record.levelname, "") if self.colour else ""
        end = self.RESET if self.colour else ""
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        scenario = getattr(record, "scenario", "-")
        text = (
            f"{start}{ts} {record.levelname[0]}{end} "
            f"[{scenario}] {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Install console (and optionally file) handlers on the root logger.

    Parameters
    ----------
    level : str
        DEBUG, INFO, WARNING, ERROR or CRITICAL.  Unknown names fall back
        to INFO.
    fmt : str
        ``"human"`` or ``"json"`` for the console handler.
    log_file : str, optional
        Extra JSON-lines sink.  Parent directories are created.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    scenario_filter = ScenarioFilter()

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    console.addFilter(scenario_filter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())
        fh.addFilter(scenario_filter)
        root.addHandler(fh)


def setup_logging_from_config(cfg: Any) -> None:
    """Apply the ``[logging]`` section of a :class:`~tck_core.config.TCKConfig`."""
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)
