"""
Diagnostics Logger - Oracle Attempt Audit Trail

Storage Format: JSON Lines (JSONL) - one OracleAttempt per line
File Naming: diagnostics_{timestamp}.jsonl per execution
Retention: append-only, never rotated or deleted
"""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .models import OracleAttempt


class DiagnosticsLogger:
    """
    Appends every oracle tier attempt to a per-run JSONL file.

    Register ``record_attempt`` as an oracle listener to capture the raw
    text, parsed value and citations of each tier call.
    """

    def __init__(self, log_dir: Path = Path("logs/diagnostics")):
        """
        Initialize diagnostics logger with log directory.

        Args:
            log_dir: Directory for diagnostics files (created if missing)
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Microseconds keep filenames unique across quick successive runs
        timestamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        self.log_file = self.log_dir / f"diagnostics_{timestamp}.jsonl"
        self.log_file.touch(exist_ok=True)

    def record_attempt(self, attempt: OracleAttempt) -> None:
        """Append one attempt as a JSON line.

        Raises:
            IOError: If the log file cannot be written
        """
        json_line = json.dumps(attempt.to_dict())
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(json_line + "\n")

    def read_attempts(self, log_file: Optional[Path] = None) -> List[dict]:
        """
        Read raw attempt records from a diagnostics file.

        Args:
            log_file: Specific file to read (default: current log file)

        Returns:
            List of decoded JSON objects in write order

        Raises:
            FileNotFoundError: If the log file doesn't exist
            ValueError: If a line is not valid JSON
        """
        target_file = log_file if log_file else self.log_file

        if not target_file.exists():
            raise FileNotFoundError(f"Log file not found: {target_file}")

        records = []
        with open(target_file, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    raise ValueError(f"Invalid diagnostics entry at line {line_num}: {e}") from e
        return records

    def list_log_files(self) -> List[Path]:
        """Diagnostics files in the log directory, oldest first."""
        return sorted(self.log_dir.glob("diagnostics_*.jsonl"))
