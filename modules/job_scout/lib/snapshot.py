from __future__ import annotations

import json
import os
from collections.abc import Iterable
from datetime import date

from .models import Posting


def snapshot_path(logs_dir: str, day: date | None = None) -> str:
    day = day or date.today()
    return os.path.join(logs_dir, f"job-search-{day.isoformat()}.json")


def write_snapshot(logs_dir: str, postings: Iterable[Posting], day: date | None = None) -> str:
    """
    Write the run's unseen postings as a JSON array. A later run on the same
    day replaces the file. Returns the path written.
    """
    path = snapshot_path(logs_dir, day)
    os.makedirs(logs_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([p.to_dict() for p in postings], f, indent=1, ensure_ascii=False)
    return path
