"""JSONL logging for installer runs."""

import json
import os
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, TextIO


# Log level ordering
LOG_LEVELS = {"debug": 0, "info": 1, "warning": 2, "error": 3}

ECHO_PREFIX = "[zbxgpu]"


def default_log_dir() -> Path:
    """Base directory for run logs (~/var/log/zbxgpu)."""
    home = Path(os.environ.get("HOME", "/tmp"))
    return home / "var" / "log" / "zbxgpu"


def get_log_path(recipe: str, base_path: Path | None = None) -> Path:
    """
    Get the log file path for an installer recipe.

    Args:
        recipe: Recipe name (e.g. vendored, err-check)
        base_path: Base directory for logs (default: ~/var/log/zbxgpu)

    Returns:
        Path to the log file: {base}/{date}/{recipe}.jsonl
    """
    if base_path is None:
        base_path = default_log_dir()

    today = date.today().isoformat()
    return base_path / today / f"{recipe}.jsonl"


class InstallLogger:
    """
    JSONL logger for installer runs.

    Writes structured entries to a JSONL file and echoes messages to
    stderr. Quiet mode suppresses the echo for everything but errors.
    """

    def __init__(
        self,
        recipe: str,
        log_path: Path | None = None,
        quiet: bool = False,
        stream: TextIO | None = None,
        persist: bool = True,
    ):
        """
        Initialize logger.

        Args:
            recipe: Name of the recipe being logged
            log_path: Path to log file (default: auto-generated)
            quiet: Suppress non-error echo
            stream: Echo stream (default: stderr)
            persist: Write the JSONL file at all
        """
        self.recipe = recipe
        self.log_path = log_path or get_log_path(recipe)
        self.quiet = quiet
        self.stream = stream
        self.persist = persist
        self._file = None

    def _ensure_file(self) -> None:
        """Ensure log file is open."""
        if self._file is None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.log_path, "a")

    def _echo(self, level: str, message: str) -> None:
        if self.quiet and level != "error":
            return
        stream = self.stream or sys.stderr
        if level == "error":
            print(f"{ECHO_PREFIX} ERROR: {message}", file=stream)
        elif level == "warning":
            print(f"{ECHO_PREFIX} WARN: {message}", file=stream)
        else:
            print(f"{ECHO_PREFIX} {message}", file=stream)

    def _log(self, level: str, message: str, **extra: Any) -> None:
        """Write a log entry."""
        if level != "debug":
            self._echo(level, message)
        if not self.persist:
            return
        try:
            self._ensure_file()
        except OSError:
            # Unwritable log dir must not abort an install
            self.persist = False
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "recipe": self.recipe,
            "message": message,
            **extra,
        }
        self._file.write(json.dumps(entry, default=str) + "\n")
        self._file.flush()

    def debug(self, message: str, **extra: Any) -> None:
        """Log debug message."""
        self._log("debug", message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        """Log info message."""
        self._log("info", message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        """Log warning message."""
        self._log("warning", message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        """Log error message."""
        self._log("error", message, **extra)

    def close(self) -> None:
        """Close the log file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "InstallLogger":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


def query_logs(
    base_path: Path,
    recipe: str,
    log_date: date | None = None,
    min_level: str = "debug",
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """
    Query log entries.

    Args:
        base_path: Base directory for logs
        recipe: Recipe name to query
        log_date: Date to query (default: today)
        min_level: Minimum log level to include
        limit: Maximum number of entries to return

    Returns:
        List of log entries matching criteria
    """
    if log_date is None:
        log_date = date.today()

    log_file = base_path / log_date.isoformat() / f"{recipe}.jsonl"

    if not log_file.exists():
        return []

    min_level_num = LOG_LEVELS.get(min_level, 0)
    results = []

    with open(log_file) as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
                entry_level = LOG_LEVELS.get(entry.get("level", "debug"), 0)
                if entry_level >= min_level_num:
                    results.append(entry)
                    if limit and len(results) >= limit:
                        break
            except json.JSONDecodeError:
                continue

    return results
