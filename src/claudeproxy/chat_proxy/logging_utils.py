from __future__ import annotations

import glob
import json
import logging
import os
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)


class JsonlLogger:
    """Append one JSON record per request, rotating by size."""

    def __init__(
        self, path: str, max_bytes: int = 25_000_000, retention_days: int = 30
    ):
        self.path = path
        self.max_bytes = max_bytes
        self.retention_days = retention_days
        log_dir = os.path.dirname(path)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as exc:
                logger.warning("[jsonl] Cannot create log directory %s: %s", log_dir, exc)

    def rotated_files(self) -> list[str]:
        return sorted(glob.glob(glob.escape(self.path) + ".*"))

    def _rotate_if_needed(self):
        try:
            if (
                os.path.exists(self.path)
                and os.path.getsize(self.path) > self.max_bytes
            ):
                ts = time.strftime("%Y%m%d-%H%M%S")
                rotated = f"{self.path}.{ts}"
                os.rename(self.path, rotated)
                self.prune()
        except OSError as exc:
            logger.warning("[jsonl] Rotation failed for %s: %s", self.path, exc)

    def prune(self) -> int:
        """Delete rotated files older than the retention window."""

        if self.retention_days <= 0:
            return 0
        cutoff = time.time() - self.retention_days * 86400
        removed = 0
        for path in self.rotated_files():
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError:
                continue
        return removed

    def log(self, record: Dict[str, Any]):
        self._rotate_if_needed()
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            logger.warning("[jsonl] Failed to write request log: %s", exc)
