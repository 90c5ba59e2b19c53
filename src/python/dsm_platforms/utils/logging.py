"""
Run logs for vignette runs.

Output of a dataset run goes to the terminal and to
results/logs/<dataset>_<timestamp>.txt. Python warnings raised while
the log is open (detection-function convergence, missing prediction
data in variance propagation, ...) are written to the same stream and
kept on the log so the run history can report them.
"""

import shutil
import sys
import warnings
from datetime import datetime
from pathlib import Path


class RunLog:
    """
    Tee of stdout into a log file, plus the warnings seen during the run.

    Usage:
        log = open_run_log(root, "seabirds")
        try:
            summary = run_vignette(root, "seabirds", cfg)
        finally:
            close_run_log(log)
    """

    def __init__(self, log_path: Path):
        self.terminal = sys.stdout
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_file = open(log_path, "w", encoding="utf-8")
        self.warnings: list[str] = []
        self._showwarning = warnings.showwarning

    def write(self, message: str):
        self.terminal.write(message)
        self.log_file.write(message)

    def flush(self):
        self.terminal.flush()
        self.log_file.flush()

    def record_warning(self, message, category, filename, lineno, file=None, line=None):
        """`warnings.showwarning` replacement writing `⚠ Category: message` lines."""
        text = f"{category.__name__}: {message}"
        self.warnings.append(text)
        self.write(f"⚠ {text}\n")

    def close(self):
        self.log_file.close()


def open_run_log(root: Path, dataset: str) -> RunLog:
    """
    Start logging one dataset run.

    Earlier logs for the same dataset move to results/logs/archive/, so
    results/logs/ holds the latest log per dataset.
    """
    logs_dir = root / "results" / "logs"
    archive_dir = logs_dir / "archive"
    archive_dir.mkdir(parents=True, exist_ok=True)

    started = datetime.now()
    log_path = logs_dir / f"{dataset}_{started.strftime('%Y%m%d_%H%M%S')}.txt"
    for previous in sorted(logs_dir.glob(f"{dataset}_*.txt")):
        if previous != log_path:
            shutil.move(str(previous), str(archive_dir / previous.name))
            print(f"Archived previous {dataset} log: {previous.name} → archive/")

    log = RunLog(log_path)
    sys.stdout = log
    warnings.showwarning = log.record_warning

    print(f"Dataset: {dataset}")
    print(f"Log file: {log_path.relative_to(root)}")
    print(f"Started: {started.strftime('%Y-%m-%d %H:%M:%S')}")
    print()
    return log


def close_run_log(log: RunLog) -> None:
    """Close the log file and restore stdout and warning display."""
    if log.warnings:
        print(f"\n⚠ {len(log.warnings)} warning(s) during the run, see {log.log_path.name}")
    log.close()
    sys.stdout = log.terminal
    warnings.showwarning = log._showwarning
