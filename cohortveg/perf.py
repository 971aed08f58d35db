"""Performance monitoring for cohortveg runs.

Stage-level timing instrumentation that can be enabled with a single flag;
zero overhead when disabled.

Usage:
    from cohortveg.perf import PerfMonitor

    perf = PerfMonitor(enabled=True)
    result = run_simulation(config, forcing, perf=perf)
    perf.log_report()

The driver tracks the stages "fast_step", "daily_update" and
"annual_demography".
"""

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class StageStats:
    """Timing statistics for one simulation stage."""
    total_time: float = 0.0
    call_count: int = 0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0

    def add(self, elapsed: float) -> None:
        self.total_time += elapsed
        self.call_count += 1


class PerfMonitor:
    """Wall-clock time per named stage.

    When disabled, track() yields immediately.
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, StageStats] = defaultdict(StageStats)
        self._start_time: Optional[float] = None
        self._total_time: float = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, stage: str):
        """Time the enclosed block under `stage`."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._stats[stage].add(time.perf_counter() - t0)

    def get_stats(self) -> Dict[str, StageStats]:
        return dict(self._stats)

    def summary(self) -> dict:
        """Summary dict suitable for JSON serialization."""
        total = self._total_time or sum(s.total_time for s in self._stats.values())
        result = {}
        for name, stats in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            pct = (stats.total_time / total * 100) if total > 0 else 0
            result[name] = {
                'total_s': round(stats.total_time, 4),
                'calls': stats.call_count,
                'mean_ms': round(stats.mean_time * 1000, 3),
                'pct': round(pct, 1),
            }
        result['_total_s'] = round(total, 4)
        return result

    def report(self, title: str = "Stage timings") -> str:
        """Human-readable table of stage timings."""
        total = self._total_time or sum(s.total_time for s in self._stats.values())
        lines = [
            title,
            f"{'Stage':<20} {'Total (s)':>10} {'Calls':>9} {'Mean (ms)':>10} {'%':>6}",
        ]
        for name, stats in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            pct = (stats.total_time / total * 100) if total > 0 else 0
            lines.append(
                f"{name:<20} {stats.total_time:>10.4f} {stats.call_count:>9} "
                f"{stats.mean_time * 1000:>10.3f} {pct:>5.1f}%"
            )
        lines.append(f"{'TOTAL':<20} {total:>10.4f}")
        return '\n'.join(lines)

    def log_report(self, level: int = logging.INFO) -> None:
        if self.enabled:
            logger.log(level, "%s", self.report())
