"""Core tracker: wires fetcher, extractor, store, notifier and scheduler."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Mapping, Optional

from .config import Settings
from .extractor import Extractor
from .fetcher import FetchError, Fetcher
from .logging_setup import get_ring_buffer, set_level
from .models import UNKNOWN, Observation, Target, TargetSite
from .notifier import EmailNotifier
from .retry import RetryPolicy
from .scheduler import Scheduler
from .store import AppointmentStore

logger = logging.getLogger(__name__)

CHECK_JOB = "appointment_check"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AppointmentTracker:
    """
    Periodically checks both REAL ID sites and notifies once per
    availability window.

    Every collaborator is owned by the instance and can be injected for
    testing; nothing is shared through module globals.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[AppointmentStore] = None,
        fetcher: Optional[Fetcher] = None,
        extractor: Optional[Extractor] = None,
        notifier: Optional[EmailNotifier] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.settings = settings
        self.store = store or AppointmentStore(settings.data_file, settings.max_history)
        self.fetcher = fetcher or Fetcher.from_settings(settings)
        self.extractor = extractor or Extractor(settings.debug_dir)
        self.notifier = notifier or EmailNotifier(
            settings.email, policy=RetryPolicy.from_settings(settings)
        )
        self.scheduler = scheduler or Scheduler()
        self.initialized = False
        self.shutting_down = False
        self._started_at = time.monotonic()
        self._shutdown_event: Optional[asyncio.Event] = None

    def init(self) -> None:
        """Apply log level and log the (obfuscated) configuration. Idempotent."""
        if self.initialized:
            logger.warning("Tracker already initialized, skipping")
            return
        logger.info("Initializing REAL ID Appointment Tracker")
        set_level(self.settings.log_level)
        logger.info(f"Using configuration: {self.settings.safe_dict()}")
        self.initialized = True
        logger.info("Tracker initialized successfully")

    async def start(self) -> None:
        """Schedule the recurring check, start the scheduler, check once now."""
        if not self.initialized:
            self.init()

        logger.info("Starting REAL ID Appointment Tracker")
        self.scheduler.schedule(CHECK_JOB, self.settings.cron_expression, self.run_check)
        self.scheduler.start()
        logger.info(f"Tracker running. Checking every {self.settings.check_interval} minutes.")

        await self.scheduler.execute_now(CHECK_JOB)

    def stop(self) -> None:
        """Stop future scheduled checks; one already running still finishes."""
        logger.info("Stopping the tracker...")
        self.scheduler.stop()
        logger.info("Tracker stopped")

    async def check_site(self, site: TargetSite) -> int:
        """Fetch and parse one site. Returns UNKNOWN on any fetch or parse failure."""
        try:
            html = await self.fetcher.fetch(site.url, site.target.value)
        except FetchError as e:
            logger.error(f"Failed to check {site.target.value} site: {e}")
            return UNKNOWN

        self.extractor.check_structure(html, site)
        count = self.extractor.extract(html, site)
        if count == UNKNOWN:
            logger.warning(f"Failed to extract appointment count from {site.target.value} site")
        else:
            logger.info(f"{site.target.value} site has {count} REAL ID appointments available")
        return count

    async def run_check(self) -> dict[str, int]:
        """
        Check every site in turn, record the counts and alert on 0 -> N.

        A failure on one site never prevents checking the other.
        """
        logger.info("Starting appointment check...")
        results: dict[str, int] = {}

        for site in self.settings.sites:
            count = await self.check_site(site)
            results[site.target.value] = count
            if count == UNKNOWN:
                continue

            transition = self.store.update(site.target, count)
            if transition.became_available:
                logger.info(
                    f"ALERT: {site.label} now has {count} appointments available!"
                )
                await self.notifier.send(site, count)

        logger.info("Check completed")
        return results

    async def run_test(self, send_notification: bool = True) -> dict[str, Any]:
        """
        One-shot diagnostic: check both sites and optionally send a test email.

        Nothing is written to the store, so notification state is unaffected.
        """
        logger.info("Running system test...")
        report: dict[str, Any] = {}

        for site in self.settings.sites:
            logger.info(f"Testing {site.target.value} site check...")
            count = await self.check_site(site)
            report[site.target.value] = {
                "checked": True,
                "count": count,
                "status": "Success" if count >= 0 else "Failed",
                "url": site.url,
            }

        if not self.notifier.is_configured:
            notification = {"checked": False, "status": "Not tested (email not configured)"}
        elif not send_notification:
            notification = {"checked": False, "status": "Not tested (skipped)"}
        else:
            logger.info("Testing notification system...")
            sent = await self.notifier.send_test()
            notification = {"checked": True, "status": "Success" if sent else "Failed"}
        report["notification"] = notification
        report["timestamp"] = datetime.now().isoformat()

        logger.info(f"Test completed: {report}")
        return report

    def get_status(self) -> dict[str, Any]:
        status = self.scheduler.get_status()
        current = self.store.get_current()
        return {
            "status": "running" if status.is_running else "stopped",
            "uptime": round(time.monotonic() - self._started_at, 1),
            "last_check": _iso(status.last_check_time),
            "next_check": _iso(status.next_check_time),
            "check_count": status.check_count,
            "missed_checks": status.missed_checks,
            "current_appointments": {
                target.value: obs.count if obs else 0 for target, obs in current.items()
            },
            "last_updated": {
                target.value: _iso(obs.timestamp) if obs else None for target, obs in current.items()
            },
            "scheduled_jobs": status.job_names,
            "timestamp": datetime.now().isoformat(),
        }

    def get_history(self, target: Target | str | None = None, limit: Optional[int] = None) -> list[Observation]:
        return self.store.get_history(target, limit)

    def clear_history(self, target: Target | str | None = None) -> None:
        self.store.clear_history(target)

    def recent_logs(self, limit: Optional[int] = None) -> list[dict]:
        return get_ring_buffer().recent(limit)

    def reconfigure(self, overrides: Mapping[str, Any]) -> Settings:
        """
        Apply new TRACKER_* values at runtime.

        Raises:
            ConfigError: If the result is invalid; the live settings are kept
        """
        new_settings = self.settings.with_overrides(overrides)
        was_running = self.scheduler.is_running

        self.settings = new_settings
        self.fetcher.policy = RetryPolicy.from_settings(new_settings)
        self.fetcher.timeout = new_settings.request_timeout
        self.fetcher.headers["User-Agent"] = new_settings.user_agent
        self.notifier = EmailNotifier(new_settings.email, policy=RetryPolicy.from_settings(new_settings))
        self.store.max_history = new_settings.max_history
        set_level(new_settings.log_level)

        if was_running:
            self.scheduler.schedule(CHECK_JOB, new_settings.cron_expression, self.run_check)
        logger.info(f"Configuration updated: {new_settings.safe_dict()}")
        return new_settings

    async def run_forever(self) -> None:
        """Start and block until shutdown() is called."""
        self._shutdown_event = asyncio.Event()
        await self.start()
        await self._shutdown_event.wait()
        # A check already in progress finishes, notifications included
        await self.scheduler.drain()
        await self.fetcher.close()

    def shutdown(self, signal_name: Optional[str] = None) -> None:
        """Stop the scheduler, flush state and release run_forever(). Idempotent."""
        if self.shutting_down:
            return
        self.shutting_down = True

        logger.info(f"Shutting down gracefully{f' (signal: {signal_name})' if signal_name else ''}...")
        try:
            self.scheduler.stop()
            self.store.save()
            logger.info("Shutdown complete")
        finally:
            if self._shutdown_event is not None:
                self._shutdown_event.set()
