"""
Run Orchestrator
================
One virtual user's iteration loop:

    NEED_CREDENTIAL -> OPERATING -> PACING -> (next iteration)

Each virtual user owns its SessionState; the cart client, phase clock and
metrics router are shared by all of them. Nothing is retried: a failed call
is recorded and the iteration moves on to its next step.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from rich.console import Console

import failure_injection
from cart_client import CartClient, CartResult
from config import LoadTestConfig, Step
from metrics_router import MetricsRouter
from phase_clock import PhaseClock
from session_state import SessionState

err_console = Console(stderr=True)


class IterationState(Enum):
    NEED_CREDENTIAL = "need_credential"
    OPERATING = "operating"
    PACING = "pacing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class IterationReport:
    """What one iteration did."""
    number: int
    state: IterationState = IterationState.NEED_CREDENTIAL
    phase: Optional[str] = None  # phase when the first request was issued
    results: List[CartResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.state == IterationState.ABORTED


class VirtualUser:
    """A simulated client identity executing iterations one after another."""

    def __init__(
        self,
        vu_id: int,
        config: LoadTestConfig,
        client: CartClient,
        session_state: SessionState,
        clock: PhaseClock,
        metrics: MetricsRouter,
    ):
        self.vu_id = vu_id
        self.config = config
        self.client = client
        self.session_state = session_state
        self.clock = clock
        self.metrics = metrics
        self.iteration = 0

    @property
    def subject(self) -> str:
        return f"{self.config.subject_prefix}_{self.vu_id}_{int(time.time() * 1000)}"

    async def run_iteration(self) -> IterationReport:
        self.iteration += 1
        report = IterationReport(number=self.iteration)

        if not await self._establish_credential(report):
            report.state = IterationState.ABORTED
            return report

        report.state = IterationState.OPERATING
        for step, item_id in self._plan():
            if step.chance < 1 and random.random() >= step.chance:
                continue
            await self._perform(step, item_id, report)

        report.state = IterationState.PACING
        await asyncio.sleep(self.config.pacing.delay())

        report.state = IterationState.DONE
        return report

    async def _establish_credential(self, report: IterationReport) -> bool:
        if self.session_state.has_credential:
            return True

        if self.config.credential_source == "bootstrap":
            phase = self.clock.current_phase()
            report.phase = phase
            result = await self.client.bootstrap()
            self.metrics.record(phase, result.latency_ms, result.failed, result.operation)
            self.metrics.record_check(result.check_name, result.check_passed)
            self.session_state.rotate(result.rotated)
        else:
            try:
                self.session_state.ensure(self.subject)
            except (TypeError, ValueError) as e:
                report.error = f"mint failed: {e}"

        if not self.session_state.has_credential:
            report.error = report.error or "no credential in bootstrap response"
            err_console.print(f"[red]VU {self.vu_id}: failed to obtain credential ({report.error})[/red]")
            return False
        return True

    def _plan(self):
        """(step, item) pairs for this iteration."""
        steps = self.config.steps
        if self.config.plan_mode == "choice":
            steps = [random.choice(steps)]

        iteration_item = self._pick_item()
        for step in steps:
            if step.item is not None:
                item_id = step.item
            elif self.config.item_policy == "per_call":
                item_id = self._pick_item()
            else:
                item_id = iteration_item
            yield step, item_id

    def _pick_item(self) -> int:
        return random.randrange(self.config.catalog_size)

    async def _perform(self, step: Step, item_id: int, report: IterationReport) -> CartResult:
        # Phase is read when the call is issued, not when it completes
        phase = self.clock.current_phase()
        if report.phase is None:
            report.phase = phase

        op = step.op
        if op == "modify":
            op = random.choice(("increase", "decrease"))
        if op in ("view", "browse"):
            item_id = None

        planned = failure_injection.prepare(
            step.inject,
            self.session_state.credential,
            item_id,
            self.session_state.codec,
            self.subject,
            step.expect,
            step.timeout,
        )
        result = await self.client.call(
            op,
            planned.credential,
            planned.item_id,
            planned.expect,
            timeout=planned.timeout,
            allow_redirects=planned.allow_redirects,
            check_name=planned.check_name,
        )
        failure_injection.settle(step.inject, result)

        # The next call must carry whatever this one rotated to
        self.session_state.rotate(result.rotated)
        self.metrics.record(phase, result.latency_ms, result.failed, result.operation, step.category)
        self.metrics.record_check(result.check_name, result.check_passed)
        report.results.append(result)
        return result
