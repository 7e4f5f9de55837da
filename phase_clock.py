"""
Phase Clock
===========
Maps elapsed test time onto named load phases, and stage lists onto target
virtual-user counts.

Phase boundaries are test-global: every virtual user reads the same start
timestamp, captured once before the first user is spawned.
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

UNATTRIBUTED = "none"


@dataclass(frozen=True)
class Phase:
    """Named segment, offsets in seconds from test start."""
    name: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, elapsed: float) -> bool:
        return self.start <= elapsed <= self.end


@dataclass(frozen=True)
class Stage:
    """One segment of the concurrency profile: ramp linearly to `target` VUs over `duration` seconds."""
    duration: float
    target: int
    name: Optional[str] = None


class PhaseTimeline:
    """Ordered, non-overlapping phases. Touching boundaries are allowed."""

    def __init__(self, phases: Iterable[Phase] = ()):
        self.phases: List[Phase] = list(phases)
        self._validate()

    def _validate(self):
        names = set()
        previous_end = None
        for phase in self.phases:
            if phase.name == UNATTRIBUTED:
                raise ValueError(f"'{UNATTRIBUTED}' is reserved for unattributed samples")
            if phase.name in names:
                raise ValueError(f"Duplicate phase name: {phase.name}")
            if phase.start < 0 or phase.end < phase.start:
                raise ValueError(f"Phase {phase.name} has invalid bounds [{phase.start}, {phase.end}]")
            if previous_end is not None and phase.start < previous_end:
                raise ValueError(f"Phase {phase.name} overlaps the previous phase")
            names.add(phase.name)
            previous_end = phase.end

    @classmethod
    def from_dicts(cls, items: Sequence[Dict[str, Any]]) -> "PhaseTimeline":
        return cls(Phase(str(item["name"]), float(item["start"]), float(item["end"])) for item in items)

    @classmethod
    def from_stages(cls, stages: Sequence[Stage]) -> "PhaseTimeline":
        """Named stages become phases at their cumulative offsets; unnamed stages leave gaps."""
        phases = []
        offset = 0.0
        for stage in stages:
            if stage.name:
                phases.append(Phase(stage.name, offset, offset + stage.duration))
            offset += stage.duration
        return cls(phases)

    @property
    def names(self) -> List[str]:
        return [phase.name for phase in self.phases]

    def get(self, name: str) -> Optional[Phase]:
        for phase in self.phases:
            if phase.name == name:
                return phase
        return None

    def __iter__(self):
        return iter(self.phases)

    def __len__(self) -> int:
        return len(self.phases)


def current_phase(elapsed_seconds: float, timeline: PhaseTimeline) -> str:
    """First phase whose inclusive [start, end] holds `elapsed_seconds`, else the sentinel."""
    for phase in timeline:
        if phase.contains(elapsed_seconds):
            return phase.name
    return UNATTRIBUTED


class PhaseClock:
    """
    Shared clock for one test run.

    `start()` is write-once: the engine calls it before any virtual user is
    allowed to iterate, so later reads never race the write.
    """

    def __init__(self, timeline: PhaseTimeline, clock: Callable[[], float] = time.time):
        self.timeline = timeline
        self.clock = clock
        self.start_time: Optional[float] = None

    def start(self, at: Optional[float] = None) -> float:
        if self.start_time is None:
            self.start_time = self.clock() if at is None else at
        return self.start_time

    @property
    def started(self) -> bool:
        return self.start_time is not None

    def elapsed(self) -> float:
        if self.start_time is None:
            raise RuntimeError("PhaseClock read before start()")
        return self.clock() - self.start_time

    def current_phase(self) -> str:
        return current_phase(self.elapsed(), self.timeline)


def total_duration(stages: Sequence[Stage]) -> float:
    return sum(stage.duration for stage in stages)


def target_vus(elapsed: float, stages: Sequence[Stage], start_vus: int = 0) -> Optional[int]:
    """
    VU count the profile asks for at `elapsed`, ramping linearly from the
    previous stage's target. Returns None once the last stage is over.
    """
    previous_target = start_vus
    stage_start = 0.0
    for stage in stages:
        stage_end = stage_start + stage.duration
        if elapsed <= stage_end:
            if stage.duration <= 0:
                return stage.target
            progress = (elapsed - stage_start) / stage.duration
            return max(0, math.ceil(previous_target + (stage.target - previous_target) * progress))
        previous_target = stage.target
        stage_start = stage_end
    return None
