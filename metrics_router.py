"""
Metrics Router
==============
Routes request durations into phase-scoped aggregators plus one global
aggregator, and tallies named checks.

Percentiles use linear interpolation between closest ranks on the sorted
samples: for p in [0, 100] the position is (n - 1) * p / 100 and the result
interpolates between the two neighbouring values. This is the same method k6
uses for p(95), so thresholds carried over from the k6 scripts keep their
meaning.
"""

import math
import statistics
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from phase_clock import UNATTRIBUTED, PhaseTimeline

GLOBAL = "global"


def percentile(samples: List[float], p: float) -> float:
    if not samples:
        return 0
    if not 0 <= p <= 100:
        raise ValueError("percentile must be within [0, 100]")
    ordered = sorted(samples)
    position = (len(ordered) - 1) * p / 100
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return ordered[lower]
    weight = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


class PhaseAggregator:
    """
    Running count, failures and duration samples for one bucket.

    Every mutation happens under the aggregator's own lock; no caller ever
    holds two aggregator locks at once.
    """

    def __init__(self, name: str, nominal_duration: Optional[float] = None):
        self.name = name
        self.nominal_duration = nominal_duration
        self.count = 0
        self.failures = 0
        self.durations: List[float] = []
        self._lock = threading.Lock()

    def add(self, duration_ms: float, failed: bool = False):
        with self._lock:
            self.count += 1
            self.durations.append(duration_ms)
            if failed:
                self.failures += 1

    def snapshot(self) -> List[float]:
        with self._lock:
            return list(self.durations)

    @property
    def mean(self) -> float:
        samples = self.snapshot()
        return statistics.mean(samples) if samples else 0

    def percentile(self, p: float) -> float:
        return percentile(self.snapshot(), p)

    def rate(self, duration_seconds: Optional[float] = None) -> float:
        """Samples per second over the nominal (or given) duration."""
        seconds = self.nominal_duration if duration_seconds is None else duration_seconds
        if not seconds or seconds <= 0:
            return 0
        return self.count / seconds

    @property
    def failure_rate(self) -> float:
        return self.failures / self.count if self.count else 0

    def to_dict(self, duration_seconds: Optional[float] = None) -> Dict[str, Any]:
        samples = self.snapshot()
        return {
            "count": self.count,
            "rate": round(self.rate(duration_seconds), 2),
            "avg_ms": round(statistics.mean(samples), 2) if samples else 0,
            "p95_ms": round(percentile(samples, 95), 2),
        }


@dataclass
class CheckTally:
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails


@dataclass
class MetricsRouter:
    """
    One instance per test run, shared by every virtual user.

    `record` touches at most two phase-level buckets (named + global) plus the
    operation and category buckets, each under its own lock.
    """
    timeline: PhaseTimeline = field(default_factory=PhaseTimeline)
    start_time: float = 0
    end_time: float = 0

    def __post_init__(self):
        self.global_aggregator = PhaseAggregator(GLOBAL)
        self.phases: Dict[str, PhaseAggregator] = {
            phase.name: PhaseAggregator(phase.name, phase.duration) for phase in self.timeline
        }
        self.operations: Dict[str, PhaseAggregator] = {}
        self.categories: Dict[str, PhaseAggregator] = {}
        self.checks: Dict[str, CheckTally] = defaultdict(CheckTally)
        self._buckets_lock = threading.Lock()
        self._checks_lock = threading.Lock()

    def record(
        self,
        phase_name: str,
        duration_ms: float,
        failed: bool = False,
        operation: Optional[str] = None,
        category: Optional[str] = None,
    ):
        self.global_aggregator.add(duration_ms, failed)
        if phase_name != UNATTRIBUTED:
            aggregator = self.phases.get(phase_name)
            if aggregator is None:
                raise KeyError(f"Unknown phase: {phase_name}")
            aggregator.add(duration_ms, failed)
        if operation:
            self._bucket(self.operations, operation).add(duration_ms, failed)
        if category:
            self._bucket(self.categories, category).add(duration_ms, failed)

    def _bucket(self, table: Dict[str, PhaseAggregator], name: str) -> PhaseAggregator:
        with self._buckets_lock:
            aggregator = table.get(name)
            if aggregator is None:
                aggregator = table[name] = PhaseAggregator(name)
            return aggregator

    def record_check(self, name: str, passed: bool):
        with self._checks_lock:
            tally = self.checks[name]
            if passed:
                tally.passes += 1
            else:
                tally.fails += 1

    @property
    def duration(self) -> float:
        if not self.start_time:
            return 0
        return (self.end_time or time.time()) - self.start_time

    @property
    def check_passes(self) -> int:
        with self._checks_lock:
            return sum(t.passes for t in self.checks.values())

    @property
    def check_fails(self) -> int:
        with self._checks_lock:
            return sum(t.fails for t in self.checks.values())

    @property
    def check_rate(self) -> float:
        passes, fails = self.check_passes, self.check_fails
        return passes / (passes + fails) if passes + fails else 0

    def report(self) -> Dict[str, Any]:
        g = self.global_aggregator
        samples = g.snapshot()
        overall = g.to_dict(self.duration)
        overall.update({
            "failures": g.failures,
            "failure_rate": round(g.failure_rate, 4),
            "min_ms": round(min(samples), 2) if samples else 0,
            "max_ms": round(max(samples), 2) if samples else 0,
            "p50_ms": round(percentile(samples, 50), 2),
            "p99_ms": round(percentile(samples, 99), 2),
        })
        with self._checks_lock:
            checks = {name: {"passes": t.passes, "fails": t.fails} for name, t in self.checks.items()}
        with self._buckets_lock:
            operations = dict(self.operations)
            categories = dict(self.categories)
        return {
            "duration_seconds": round(self.duration, 2),
            "global": overall,
            "phases": {name: agg.to_dict() for name, agg in self.phases.items()},
            "latency_by_operation": {name: agg.to_dict(self.duration) for name, agg in operations.items()},
            "requests_by_category": {
                name: {"count": agg.count, "failures": agg.failures, "failure_rate": round(agg.failure_rate, 4)}
                for name, agg in categories.items()
            },
            "checks": checks,
            "check_rate": round(self.check_rate, 4),
        }
