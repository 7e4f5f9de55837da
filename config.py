"""
Load test configuration.

Usage:
    config = load_config("config.json")
    config = LoadTestConfig.from_dict({"base_url": "http://localhost:8080", "vus": 10})
"""

import json
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from failure_injection import CATEGORIES, INJECTIONS, ITEM_OPERATIONS
from phase_clock import PhaseTimeline, Stage, total_duration
from token_codec import DEFAULT_COOKIE_NAME, DEFAULT_SECRET, DEFAULT_TOKEN_HEADER

OPERATIONS = ("add", "remove", "increase", "decrease", "view", "browse", "modify")
AUTH_MODES = ("cookie", "bearer")
CREDENTIAL_SOURCES = ("mint", "bootstrap")
ITEM_POLICIES = ("per_iteration", "per_call")
PLAN_MODES = ("sequence", "choice")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Step:
    """One cart call in an iteration plan."""
    op: str
    item: Optional[int] = None
    expect: Optional[Sequence[int]] = None  # overrides the operation's accepted statuses
    chance: float = 1.0
    inject: Optional[str] = None  # bad_token, bad_item or timeout
    timeout: Optional[float] = None  # per-request timeout for injected timeouts

    @property
    def category(self) -> str:
        return CATEGORIES[self.inject]

    @classmethod
    def parse(cls, raw: Union[str, Dict[str, Any]]) -> "Step":
        if isinstance(raw, str):
            return cls(op=raw)
        if not isinstance(raw, dict):
            raise ConfigError(f"Step must be an operation name or an object, got {raw!r}")
        expect = raw.get("expect")
        timeout = raw.get("timeout")
        return cls(
            op=raw["op"],
            item=raw.get("item"),
            expect=tuple(expect) if expect is not None else None,
            chance=float(raw.get("chance", 1.0)),
            inject=raw.get("inject"),
            timeout=float(timeout) if timeout is not None else None,
        )


@dataclass
class PacingConfig:
    """Delay after each iteration; fixed when min == max."""
    min_seconds: float = 0.1
    max_seconds: float = 0.1

    def delay(self) -> float:
        if self.max_seconds <= self.min_seconds:
            return self.min_seconds
        return random.uniform(self.min_seconds, self.max_seconds)


@dataclass
class Thresholds:
    p95_ms: Optional[float] = None
    max_failure_rate: Optional[float] = None
    min_check_rate: Optional[float] = None
    phase_p95_ms: Dict[str, float] = field(default_factory=dict)


@dataclass
class LoadTestConfig:
    base_url: str = "http://localhost:8080"
    catalog_size: int = 8
    ttl_seconds: int = 3600
    secret: str = DEFAULT_SECRET
    subject_prefix: str = "user"

    # Credentials
    auth_mode: str = "cookie"
    credential_source: str = "mint"
    bootstrap_path: str = "/"
    cookie_name: str = DEFAULT_COOKIE_NAME
    token_header: str = DEFAULT_TOKEN_HEADER

    # Iteration plan
    steps: List[Step] = field(default_factory=lambda: [Step(op) for op in ("add", "increase", "decrease", "remove")])
    plan_mode: str = "sequence"
    item_policy: str = "per_iteration"
    pacing: PacingConfig = field(default_factory=PacingConfig)

    # Concurrency profile
    stages: List[Stage] = field(default_factory=list)
    vus: int = 1
    duration_seconds: float = 10.0
    iterations: Optional[int] = None  # per VU
    tick_seconds: float = 0.5

    # Phases; derived from named stages when empty
    phases: Optional[PhaseTimeline] = None

    # Transport
    timeout: float = 30.0
    verify_ssl: bool = True
    browser_headers: bool = False

    thresholds: Thresholds = field(default_factory=Thresholds)
    live_display: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.catalog_size < 1:
            raise ConfigError("catalog_size must be at least 1")
        if self.ttl_seconds <= 0:
            raise ConfigError("ttl_seconds must be positive")
        if self.auth_mode not in AUTH_MODES:
            raise ConfigError(f"auth_mode must be one of {AUTH_MODES}")
        if self.credential_source not in CREDENTIAL_SOURCES:
            raise ConfigError(f"credential_source must be one of {CREDENTIAL_SOURCES}")
        if self.item_policy not in ITEM_POLICIES:
            raise ConfigError(f"item_policy must be one of {ITEM_POLICIES}")
        if self.plan_mode not in PLAN_MODES:
            raise ConfigError(f"plan_mode must be one of {PLAN_MODES}")
        if not self.steps:
            raise ConfigError("at least one step is required")
        for step in self.steps:
            if step.op not in OPERATIONS:
                raise ConfigError(f"Unknown operation: {step.op}")
            if step.item is not None and not 0 <= step.item < self.catalog_size:
                raise ConfigError(f"Item {step.item} is outside the catalog (size {self.catalog_size})")
            if not 0 <= step.chance <= 1:
                raise ConfigError("step chance must be within [0, 1]")
            if step.inject is not None and step.inject not in INJECTIONS:
                raise ConfigError(f"Unknown injection: {step.inject}")
            if step.inject == "bad_item" and step.op not in ITEM_OPERATIONS:
                raise ConfigError(f"{step.op} takes no item; bad_item cannot apply")
            if step.inject == "bad_token" and step.op == "browse":
                raise ConfigError("browse sends no credential; bad_token cannot apply")
            if step.timeout is not None and step.timeout <= 0:
                raise ConfigError("step timeout must be positive")
        if self.pacing.min_seconds < 0 or self.pacing.max_seconds < 0:
            raise ConfigError("pacing must not be negative")
        if not self.stages and self.vus < 1:
            raise ConfigError("vus must be at least 1")
        if self.iterations is not None and self.iterations < 1:
            raise ConfigError("iterations must be at least 1")
        for stage in self.stages:
            if stage.duration < 0 or stage.target < 0:
                raise ConfigError("stage duration and target must not be negative")

    @property
    def timeline(self) -> PhaseTimeline:
        if self.phases is not None:
            return self.phases
        return PhaseTimeline.from_stages(self.stages)

    @property
    def planned_duration(self) -> float:
        if self.stages:
            return total_duration(self.stages)
        return self.duration_seconds

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoadTestConfig":
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")
        data = dict(data)
        try:
            if "steps" in data:
                data["steps"] = [Step.parse(raw) for raw in data["steps"]]
            if "stages" in data:
                data["stages"] = [
                    Stage(float(s["duration"]), int(s["target"]), s.get("name")) for s in data["stages"]
                ]
            if "phases" in data:
                data["phases"] = PhaseTimeline.from_dicts(data["phases"])
            if "pacing" in data:
                pacing = data["pacing"]
                if isinstance(pacing, (int, float)):
                    data["pacing"] = PacingConfig(float(pacing), float(pacing))
                else:
                    data["pacing"] = PacingConfig(float(pacing["min"]), float(pacing.get("max", pacing["min"])))
            if "thresholds" in data:
                data["thresholds"] = Thresholds(**data["thresholds"])
            return cls(**data)
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(path: Union[str, Path]) -> LoadTestConfig:
    """Read a JSON config file."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"{path}: {e}") from e
    return LoadTestConfig.from_dict(data)
