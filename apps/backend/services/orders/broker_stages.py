"""
Broker Stage Scheduler
======================

Runs the post-placement broker protocol for immediate-mode baskets:

  Stage 2  acknowledge  -> broker moves lines pending -> placed
  Stage 3  confirm      -> broker moves lines placed  -> confirmed

Both stages are APScheduler date jobs on the app's AsyncIOScheduler, so the
submitting request never waits on them. A failed stage is rescheduled with
exponential backoff until max_attempts. Stage 2 failing never prevents
Stage 3 from running.

cancel(basket_id) (or scheduler shutdown) drops whatever has not run yet.
Lines left in pending/placed stay valid for reconciliation.

Per-basket bookkeeping (outcomes, cancel marks, stages still running) is kept
for at most max_tracked_baskets baskets, oldest evicted first.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .models import BrokerEvent, BrokerStage, StageOutcome
from .notifications import NotificationDispatcher
from .order_store import OrderStoreClient

log = logging.getLogger("pointvest.stages")

STAGES: tuple = ("acknowledge", "confirm")


def stage_job_id(basket_id: str, stage: str) -> str:
    return f"broker-stage:{basket_id}:{stage}"


@dataclass(frozen=True)
class StageDispatch:
    acknowledge_dispatched: bool
    confirm_scheduled: bool
    confirm_run_at: Optional[str] = None


class BrokerStageScheduler:
    def __init__(
        self,
        notifier: NotificationDispatcher,
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        order_store: Optional[OrderStoreClient] = None,
        confirm_delay_seconds: float = 20.0,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        confirm_fallback: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        max_tracked_baskets: int = 1000,
    ) -> None:
        self.notifier = notifier
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.order_store = order_store
        self.confirm_delay_seconds = max(0.0, float(confirm_delay_seconds))
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        # When the broker sink cannot be reached at all, advance the lines
        # through the order store instead of leaving them for reconciliation.
        self.confirm_fallback = bool(confirm_fallback) and order_store is not None
        self.clock = clock
        self.max_tracked_baskets = max(1, int(max_tracked_baskets))

        self._outcomes: "OrderedDict[str, List[StageOutcome]]" = OrderedDict()
        self._cancelled: "OrderedDict[str, bool]" = OrderedDict()
        self._active: "OrderedDict[str, Set[str]]" = OrderedDict()

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("[stages] broker stage scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            # Pending stage jobs are dropped, not run.
            self.scheduler.shutdown(wait=False)
            self._active.clear()
            log.info("[stages] broker stage scheduler stopped")

    # -----------------------------
    # Dispatch / cancel
    # -----------------------------
    def dispatch(self, event: BrokerEvent) -> StageDispatch:
        """
        Issue Stage 2 now and schedule Stage 3 after the confirm delay.
        Each scheduling step is independent: one failing leaves the other intact.
        """
        self._cancelled.pop(event.basket_id, None)

        ack = True
        try:
            self._schedule(event, "acknowledge", attempt=1, delay_seconds=0.0)
        except Exception as e:
            ack = False
            log.warning(f"[stages] could not dispatch acknowledge basket={event.basket_id}: {e}")

        confirm_at: Optional[str] = None
        try:
            confirm_at = self._schedule(event, "confirm", attempt=1, delay_seconds=self.confirm_delay_seconds)
        except Exception as e:
            log.warning(f"[stages] could not schedule confirm basket={event.basket_id}: {e}")

        running = {s for s, ok in (("acknowledge", ack), ("confirm", confirm_at is not None)) if ok}
        if running:
            self._track(self._active, event.basket_id, running)

        return StageDispatch(
            acknowledge_dispatched=ack,
            confirm_scheduled=confirm_at is not None,
            confirm_run_at=confirm_at,
        )

    def cancel(self, basket_id: str) -> int:
        """Drop pending stage jobs for a basket. Returns how many were removed."""
        # Only baskets with stages still running need a mark for in-flight jobs.
        if self._active.pop(basket_id, None) is not None:
            self._track(self._cancelled, basket_id, True)
        removed = 0
        for stage in STAGES:
            try:
                self.scheduler.remove_job(stage_job_id(basket_id, stage))
                removed += 1
            except JobLookupError:
                continue
        if removed:
            log.info(f"[stages] cancelled {removed} pending stage job(s) basket={basket_id}")
        return removed

    def pending_stages(self, basket_id: str) -> List[str]:
        return [s for s in STAGES if self.scheduler.get_job(stage_job_id(basket_id, s)) is not None]

    def outcomes(self, basket_id: str) -> List[StageOutcome]:
        return list(self._outcomes.get(basket_id, []))

    # -----------------------------
    # Internals
    # -----------------------------
    def _schedule(self, event: BrokerEvent, stage: BrokerStage, *, attempt: int, delay_seconds: float) -> str:
        run_at = self.clock() + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            self.run_stage,
            "date",
            run_date=run_at,
            args=[event, stage, attempt],
            id=stage_job_id(event.basket_id, stage),
            replace_existing=True,
            misfire_grace_time=60,
        )
        return run_at.isoformat()

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    def _track(self, store: "OrderedDict", basket_id: str, value) -> None:
        store[basket_id] = value
        store.move_to_end(basket_id)
        while len(store) > self.max_tracked_baskets:
            store.popitem(last=False)

    def _finish(self, basket_id: str, stage: BrokerStage) -> None:
        running = self._active.get(basket_id)
        if running is None:
            return
        running.discard(stage)
        if not running:
            del self._active[basket_id]

    def _record(self, event: BrokerEvent, stage: BrokerStage, attempt: int, notified: bool, detail: Optional[str]) -> None:
        if event.basket_id not in self._outcomes:
            self._track(self._outcomes, event.basket_id, [])
        self._outcomes[event.basket_id].append(
            StageOutcome(
                basket_id=event.basket_id,
                stage=stage,
                attempt=attempt,
                notified=notified,
                at=self.clock().isoformat(),
                detail=detail,
            )
        )

    async def run_stage(self, event: BrokerEvent, stage: BrokerStage, attempt: int) -> bool:
        if event.basket_id in self._cancelled:
            log.info(f"[stages] skipping {stage} for cancelled basket={event.basket_id}")
            return False

        notified = await self.notifier.notify_broker(event, stage)
        if notified:
            self._record(event, stage, attempt, True, None)
            self._finish(event.basket_id, stage)
            log.info(f"[stages] {stage} delivered basket={event.basket_id} attempt={attempt}")
            return True

        if attempt < self.max_attempts:
            delay = self._backoff(attempt)
            self._record(event, stage, attempt, False, f"retry in {delay}s")
            log.warning(f"[stages] {stage} not delivered basket={event.basket_id} attempt={attempt}; retry in {delay}s")
            self._schedule(event, stage, attempt=attempt + 1, delay_seconds=delay)
            return False

        self._record(event, stage, attempt, False, "attempts exhausted")
        self._finish(event.basket_id, stage)
        log.warning(f"[stages] {stage} gave up basket={event.basket_id} after {attempt} attempt(s)")

        if self.confirm_fallback:
            await self._fallback_transition(event, stage)
        return False

    async def _fallback_transition(self, event: BrokerEvent, stage: BrokerStage) -> None:
        try:
            res = await self.order_store.transition_basket(event.member_id, event.basket_id, stage)
        except Exception as e:
            log.warning(f"[stages] fallback {stage} transition failed basket={event.basket_id}: {e}")
            return
        self._record(event, stage, self.max_attempts, bool(res.get("ok")), "order store fallback")
