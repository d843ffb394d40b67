from __future__ import annotations

"""JSON line logger for task and block lifecycle records."""

import csv
import json
from collections import Counter
from pathlib import Path
from typing import Any

from ...config import Config


STATUSES = ("completed", "failed", "aborted", "interrupted", "invalid", "crashed")


class MetricAggregator:
    """Count block outcomes per status and append them to ``metrics.csv``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.counts: Counter[str] = Counter()

    def add(self, status: str) -> None:
        self.counts[status] += 1

    def flush(self, task: str) -> None:
        """Append one row of accumulated counts for ``task``."""

        if not self.counts:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        file_exists = self.path.exists()
        with self.path.open("a", newline="") as fh:
            fieldnames = ["task", *STATUSES]
            writer = csv.DictWriter(fh, fieldnames=fieldnames)
            if not file_exists:
                writer.writeheader()
            writer.writerow({"task": task, **{k: self.counts[k] for k in STATUSES}})
        self.counts.clear()


def log_record(
    category: str,
    label: str,
    *,
    value: Any = None,
    path: Path | None = None,
    **extra: Any,
) -> None:
    """Append a record to ``<category>_log.jsonl`` in the output directory.

    Records are skipped when ``Config.log_files`` disables the category.
    """

    if path is None:
        if not Config.is_log_enabled(category, f"{category}_log"):
            return
        path = Path(Config.output_path(f"{category}_log.jsonl"))
    path.parent.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {"label": label}
    if value is not None:
        if isinstance(value, dict):
            data.update(value)
        else:
            data["value"] = value
    if extra:
        data.update(extra)
    with path.open("a") as fh:
        fh.write(json.dumps(data, default=str) + "\n")
