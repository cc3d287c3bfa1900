"""
simulators.py — scan and AI-cancel progress runners

Both flows are a finite walk through named, timed steps:

    idle → running (step 1 … step N, progress %) → complete

Every wait goes through a CancelToken, so closing the modal stops the walk
at the next step boundary instead of letting a timer chain run on. The
`wait` hook exists so tests (and headless callers) can skip real sleeping.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Optional

from models import FoundSubscription, Subscription, SubscriptionCreate

log = logging.getLogger(__name__)

SCAN_TICK_SECONDS = 0.2
SCAN_TICK_PERCENT = 10
SCAN_TICK_CEILING = 90
AI_STEP_SECONDS = 1.0
AUTO_CLOSE_SECONDS = 2.0
SCAN_LEAD_DAYS = 30


class SimulationCancelled(Exception):
    pass


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True means the token was cancelled meanwhile."""
        return self._event.wait(seconds)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise SimulationCancelled()


class Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    label: str
    seconds: float


@dataclass(frozen=True)
class Progress:
    index: int
    label: str
    percent: float


ProgressCallback = Callable[[Progress], None]
Wait = Callable[[float], bool]


def total_duration(steps: list[Step]) -> float:
    return sum(s.seconds for s in steps)


def run_steps(steps: list[Step], token: CancelToken,
              on_progress: Optional[ProgressCallback] = None, wait: Optional[Wait] = None):
    """Walk `steps` in order, reporting progress before each wait."""
    wait = wait or token.wait
    count = len(steps)
    for i, step in enumerate(steps):
        token.raise_if_cancelled()
        if on_progress:
            on_progress(Progress(index=i, label=step.label, percent=(i + 1) / count * 100))
        if wait(step.seconds) or token.cancelled:
            raise SimulationCancelled()


def _pause(token: CancelToken, wait: Optional[Wait], seconds: float):
    if (wait or token.wait)(seconds) or token.cancelled:
        raise SimulationCancelled()


# ── Scan ──────────────────────────────────────────────────────────────────────
@dataclass
class Candidate:
    found: FoundSubscription
    selected: bool = True


def candidate_to_subscription(found: FoundSubscription, today: Optional[date] = None) -> SubscriptionCreate:
    """A scan hit becomes a monthly "Other" subscription due in 30 days."""
    today = today or date.today()
    return SubscriptionCreate(
        name=found.name,
        cost=found.cost,
        billing_frequency="monthly",
        next_payment_date=today + timedelta(days=SCAN_LEAD_DAYS),
        category="Other",
        description=f"Added via Gmail scan ({round(found.confidence * 100)}% confidence)",
    )


@dataclass
class ScanSession:
    """
    One run of the scan modal.

    While the scan request is in flight the progress bar creeps up by 10%
    every 200 ms and parks at 90%; it jumps to 100% when results arrive.
    Every candidate starts out selected.
    """

    api: object
    token: CancelToken = field(default_factory=CancelToken)
    wait: Optional[Wait] = None
    on_progress: Optional[ProgressCallback] = None
    phase: Phase = Phase.IDLE
    progress: float = 0
    candidates: list[Candidate] = field(default_factory=list)
    error: Optional[str] = None

    def _report(self, label: str):
        if self.on_progress:
            self.on_progress(Progress(index=int(self.progress // SCAN_TICK_PERCENT), label=label,
                                      percent=self.progress))

    def start(self) -> list[Candidate]:
        self.phase = Phase.RUNNING
        self.progress = 0
        self.candidates = []
        self.error = None
        log.info("Starting Gmail scan...")

        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(self.api.scan)
            try:
                while not pending.done() and self.progress < SCAN_TICK_CEILING:
                    _pause(self.token, self.wait, SCAN_TICK_SECONDS)
                    self.progress += SCAN_TICK_PERCENT
                    self._report("Scanning inbox")
                self.token.raise_if_cancelled()
                found = pending.result()
            except SimulationCancelled:
                self.phase = Phase.CANCELLED
                log.info("Scan cancelled by user.")
                raise
            except Exception as exc:
                self.phase = Phase.FAILED
                self.error = str(exc)
                raise

        if self.token.cancelled:
            self.phase = Phase.CANCELLED
            raise SimulationCancelled()
        self.progress = 100
        self.candidates = [Candidate(found=f) for f in found]
        self.phase = Phase.COMPLETE
        self._report("Scan complete")
        log.info(f"Scan completed, found {len(self.candidates)} subscription(s)")
        return self.candidates

    def toggle(self, index: int):
        self.candidates[index].selected = not self.candidates[index].selected

    def selected(self) -> list[FoundSubscription]:
        return [c.found for c in self.candidates if c.selected]

    def add_selected(self, today: Optional[date] = None) -> list[Subscription]:
        """Create one subscription per selected candidate, in order."""
        added = []
        for found in self.selected():
            added.append(self.api.add_subscription(candidate_to_subscription(found, today)))
        return added


# ── AI cancellation ───────────────────────────────────────────────────────────
@dataclass
class AiCancelSession:
    """
    One run of the AI-cancel modal: request the plan, then walk its steps
    one per second, then hold the finished state briefly before closing.
    `requested` turns true once the server accepted the cancellation, which
    is what decides whether the dashboard needs a reload afterwards.
    """

    api: object
    subscription_id: str
    token: CancelToken = field(default_factory=CancelToken)
    wait: Optional[Wait] = None
    on_progress: Optional[ProgressCallback] = None
    phase: Phase = Phase.IDLE
    steps: list[str] = field(default_factory=list)
    current_step: int = 0
    progress: float = 0
    estimated_time: str = ""
    cancellation_url: Optional[str] = None
    requested: bool = False

    def _track(self, progress: Progress):
        self.current_step = progress.index
        self.progress = progress.percent
        if self.on_progress:
            self.on_progress(progress)

    def start(self):
        self.phase = Phase.RUNNING
        self.progress = 0
        self.current_step = 0
        try:
            self.token.raise_if_cancelled()
            result = self.api.ai_cancel(self.subscription_id)
            self.requested = True
            self.steps = list(result.cancellation_steps)
            self.estimated_time = result.estimated_time or ""
            self.cancellation_url = result.cancellation_url
            plan = [Step(label, AI_STEP_SECONDS) for label in self.steps]
            log.info(f"AI cancellation for {self.subscription_id}: {len(plan)} steps, ~{total_duration(plan):.0f}s")
            run_steps(plan, self.token, self._track, self.wait)
            self.phase = Phase.COMPLETE
            _pause(self.token, self.wait, AUTO_CLOSE_SECONDS)
        except SimulationCancelled:
            if self.phase is not Phase.COMPLETE:
                self.phase = Phase.CANCELLED
            raise
        except Exception:
            self.phase = Phase.FAILED
            raise
