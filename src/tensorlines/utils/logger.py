"""
Logging utilities for tensorlines

Every module logs through a child of the "tensorlines" logger; this module
configures that parent once (console and optional file output) and writes
markdown run records that keep tracking runs reproducible.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional

CONSOLE_FORMAT = '%(levelname)s: %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


class TrackingLogger:
    """Owns the handlers of the package logger"""

    def __init__(
        self,
        name: str = "tensorlines",
        log_dir: Optional[str] = None,
        level: int = logging.INFO,
        console: bool = True
    ):
        """
        Args:
            name: Logger name; module loggers below it inherit the handlers
            log_dir: Directory for a timestamped log file, no file if None
            level: Level of the package logger
            console: Echo records to stdout
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.handlers = []
        self.log_file = None

        if console:
            stream = logging.StreamHandler(sys.stdout)
            stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            self.logger.addHandler(stream)

        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            self.log_file = log_path / f"tracking_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

            # The file always gets the full detail
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            self.logger.addHandler(file_handler)

            self.logger.info(f"Writing log to {self.log_file}")


_tracking_logger: Optional[TrackingLogger] = None


def get_logger(
    name: str = "tensorlines",
    log_dir: Optional[str] = None,
    level: int = logging.INFO
) -> logging.Logger:
    """Package logger, configured on first use or when a log directory is given"""
    global _tracking_logger
    if _tracking_logger is None or log_dir is not None:
        _tracking_logger = TrackingLogger(name, log_dir=log_dir, level=level)
    return _tracking_logger.logger


def log_decision(
    decision_id: str,
    component: str,
    decision: str,
    rationale: str,
    parameters: Dict,
    output_file: str = "tracking_runs/decision_log.md"
):
    """
    Append the record of a tracking run to a markdown log

    Args:
        decision_id: Run identifier, e.g. tracking_20240101_120000
        component: Stage that produced the run
        decision: One-line outcome of the run
        rationale: Inputs and anything needed to reproduce the outcome
        parameters: Options and counters, written as a table
        output_file: Markdown file; created with its directory if missing
    """
    lines = [
        "",
        f"### [{decision_id}] {component}",
        f"**Timestamp**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        f"**Outcome**: {decision}",
        "",
        f"**Inputs**: {rationale}",
        "",
        "| Option | Value |",
        "|---|---|",
    ]
    lines.extend(f"| {key} | {value} |" for key, value in parameters.items())
    lines.extend(["", "---", ""])

    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'a', encoding='utf-8') as f:
        f.write("\n".join(lines))

    get_logger().info(f"Run record {decision_id} appended to {output_path}")
