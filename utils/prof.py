import json
import logging
import os
import time
from contextlib import contextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class Profiler:
    """Section timer that costs next to nothing while disabled.

    Enable by setting environment variable ``WSPRR_PROFILE=1``. Use via:

        from utils.prof import PROFILER
        with PROFILER.section("search.score_map"):
            ...
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled: bool = enabled
        self._sections: Dict[str, Dict[str, float]] = {}

    @contextmanager
    def section(self, name: str):
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            rec = self._sections.setdefault(name, {"total": 0.0, "count": 0})
            rec["total"] += time.perf_counter() - start
            rec["count"] += 1

    def reset(self) -> None:
        self._sections.clear()

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        out: Dict[str, Dict[str, float]] = {}
        for name, rec in self._sections.items():
            total = float(rec["total"])
            count = int(rec["count"])
            out[name] = {
                "total_s": total,
                "count": float(count),
                "avg_ms": (total / count) * 1000.0 if count else 0.0,
            }
        return out

    def log_summary(self) -> None:
        """Log one line per section, slowest first."""
        snap = self.snapshot()
        for name, rec in sorted(snap.items(), key=lambda kv: -kv[1]["total_s"]):
            logger.info(
                "%-28s %8.3f s  %5d calls  %9.2f ms avg",
                name,
                rec["total_s"],
                int(rec["count"]),
                rec["avg_ms"],
            )

    def dump_json(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.snapshot(), f, indent=2, sort_keys=True)


PROFILER = Profiler(enabled=(os.getenv("WSPRR_PROFILE", "0") not in ("0", "", "false", "False")))
