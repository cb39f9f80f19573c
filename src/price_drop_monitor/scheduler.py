from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from .models import ControlResult
from .orchestrator import MonitoringOrchestrator


logger = logging.getLogger(__name__)

CHECK_JOB_ID = "hourly-price-check"
SUMMARY_JOB_ID = "daily-summary"


def _default_scheduler() -> BaseScheduler:
    return BackgroundScheduler(timezone="UTC")


@dataclass
class SchedulerState:
    """In-process only; a restart starts inactive."""

    is_active: bool = False
    scheduler: BaseScheduler | None = None
    job_ids: list[str] = field(default_factory=list)


class MonitoringScheduler:
    def __init__(
        self,
        orchestrator: MonitoringOrchestrator,
        *,
        check_minute: int = 0,
        summary_hour: int = 9,
        summary_minute: int = 0,
        scheduler_factory: Callable[[], BaseScheduler] = _default_scheduler,
        state: SchedulerState | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._check_minute = check_minute
        self._summary_hour = summary_hour
        self._summary_minute = summary_minute
        self._factory = scheduler_factory
        self._lock = threading.Lock()
        self.state = state if state is not None else SchedulerState()

    def _set_state(self, *, is_active: bool, scheduler: BaseScheduler | None, job_ids: list[str]) -> None:
        # Updated in place so an injected state object sees every change.
        self.state.is_active = is_active
        self.state.scheduler = scheduler
        self.state.job_ids = job_ids

    def _run_cycle(self) -> None:
        try:
            self._orchestrator.check_all()
        except Exception:
            logger.exception("[scheduler] check cycle crashed")

    def _run_summary(self) -> None:
        try:
            self._orchestrator.daily_summary()
        except Exception:
            logger.exception("[scheduler] daily summary crashed")

    def start(self) -> ControlResult:
        with self._lock:
            if self.state.is_active:
                return ControlResult(success=False, message="Monitoring is already running", data=self._status_data())

            sched = self._factory()
            sched.add_job(
                self._run_cycle,
                trigger=CronTrigger(minute=self._check_minute),
                id=CHECK_JOB_ID,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )
            sched.add_job(
                self._run_summary,
                trigger=CronTrigger(hour=self._summary_hour, minute=self._summary_minute),
                id=SUMMARY_JOB_ID,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )
            sched.start()
            self._set_state(is_active=True, scheduler=sched, job_ids=[CHECK_JOB_ID, SUMMARY_JOB_ID])
            logger.info(
                "[scheduler] started check=minute:%02d summary=%02d:%02d",
                self._check_minute,
                self._summary_hour,
                self._summary_minute,
            )
            return ControlResult(success=True, message="Price monitoring started", data=self._status_data())

    def stop(self) -> ControlResult:
        with self._lock:
            if not self.state.is_active or self.state.scheduler is None:
                return ControlResult(success=False, message="Monitoring is not running", data=self._status_data())
            # An in-flight cycle finishes on its own thread; nothing new is scheduled.
            self.state.scheduler.shutdown(wait=False)
            self._set_state(is_active=False, scheduler=None, job_ids=[])
            logger.info("[scheduler] stopped")
            return ControlResult(success=True, message="Price monitoring stopped", data=self._status_data())

    def check_now(self) -> ControlResult:
        report = self._orchestrator.check_all()
        data: dict[str, Any] = {
            "checked": report.checked,
            "succeeded": report.succeeded,
            "failed": report.failed,
            "alerts_created": report.alerts_created,
            "store_stats": report.store_stats,
            "results": [asdict(o) for o in report.outcomes],
        }
        if not report.ok:
            return ControlResult(success=False, message=f"Price check failed: {report.error}", data=data)
        return ControlResult(
            success=True,
            message=f"Checked {report.checked} items: {report.succeeded} ok, {report.failed} failed, {report.alerts_created} alerts",
            data=data,
        )

    def _status_data(self) -> dict[str, Any]:
        jobs: list[dict[str, Any]] = []
        sched = self.state.scheduler
        if self.state.is_active and sched is not None:
            for job in sched.get_jobs():
                nrt = getattr(job, "next_run_time", None)
                jobs.append({"id": job.id, "next_run_time": nrt.isoformat() if nrt else None})
        return {"is_active": self.state.is_active, "active_jobs": len(jobs), "jobs": jobs}

    def status(self) -> ControlResult:
        with self._lock:
            data = self._status_data()
        msg = "Monitoring is active" if data["is_active"] else "Monitoring is inactive"
        return ControlResult(success=True, message=msg, data=data)
