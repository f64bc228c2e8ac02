"""Per-run log directory with one log file per flag.

Flag logs are created as ``<key>.running.log`` and renamed to
``.complete.log``, ``.failed.log`` or ``.skipped.log`` when the flag finishes.
"""

import itertools
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..models.summary import FlagStatus

_BANNER = "=" * 63
_counter = itertools.count()


def safe_log_name(flag_key: str) -> str:
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", flag_key)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FlagLog:
    """Log file for one flag, exposed as a ``logging.Logger``."""

    def __init__(self, run_dir: Path, flag_key: str):
        self.flag_key = flag_key
        self._base = run_dir / safe_log_name(flag_key)
        self.path = self._base.with_name(self._base.name + ".running.log")
        self.finished = False

        self.path.write_text(
            f"{_BANNER}\nFlag: {flag_key}\nStarted: {_now()}\n{_BANNER}\n\n", encoding="utf-8"
        )
        self._handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s"))

        # Unique name so concurrent flags never share handlers
        self.logger = logging.getLogger(f"bye_bye_flag.flag.{safe_log_name(flag_key)}.{next(_counter)}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.logger.addHandler(self._handler)

    def finish(self, status: FlagStatus, summary: Optional[str] = None) -> Path:
        """Write the footer, close the file and rename it to its final status."""
        self.logger.removeHandler(self._handler)
        self._handler.close()
        footer = [_BANNER, f"Status: {status.value.upper()}", f"Finished: {_now()}"]
        if summary:
            footer.append(f"Summary: {summary}")
        footer.append(_BANNER)
        with self.path.open("a", encoding="utf-8") as f:
            f.write("\n" + "\n".join(footer) + "\n")

        final_path = self._base.with_name(f"{self._base.name}.{status.value}.log")
        self.path.rename(final_path)
        self.path = final_path
        self.finished = True
        return final_path


class RunLogger:
    """Owns the timestamped directory for one run."""

    def __init__(self, base_dir: Path, started: Optional[datetime] = None):
        started = started or datetime.now(timezone.utc)
        timestamp = started.isoformat().replace(":", "-").replace(".", "-")
        self.run_dir = Path(base_dir) / timestamp
        self.run_dir.mkdir(parents=True, exist_ok=True)

    def flag_log(self, flag_key: str) -> FlagLog:
        return FlagLog(self.run_dir, flag_key)

    def write_summary(self, summary: dict) -> Path:
        path = self.run_dir / "summary.json"
        path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return path
