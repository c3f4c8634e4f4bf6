#!/usr/bin/env python3
"""
REAL ID Appointment Tracker - Entry Point

Polls the NJ MVC appointment pages and emails you when REAL ID
appointments open up.

Usage:
    python run.py                      # Run continuous monitoring
    python run.py --once               # Single check cycle (updates state, may notify)
    python run.py --test               # Diagnostic check of both sites + test email
    python run.py --test-email         # Send a test notification only
    python run.py --status             # Show saved state
    python run.py --history            # Show availability history
    python run.py --clear-history all  # Clear history (regular, mobile or all)
    python run.py --interval 5         # Custom check interval in minutes
"""

import argparse
import asyncio
import logging
import signal
import sys

from appointment_tracker.config import ConfigError, Settings
from appointment_tracker.logging_setup import setup_logging
from appointment_tracker.models import UNKNOWN
from appointment_tracker.tracker import AppointmentTracker

logger = logging.getLogger("appointment_tracker.run")


def _format_count(count: int) -> str:
    return "unknown (check failed)" if count == UNKNOWN else str(count)


async def test_email(tracker: AppointmentTracker) -> bool:
    """Send a test notification to every configured recipient."""
    print("\n🔔 Testing email notifications...")

    if not tracker.notifier.is_configured:
        print("❌ Email not configured!")
        print("   Set TRACKER_EMAIL_SENDER, TRACKER_EMAIL_PASSWORD and TRACKER_EMAIL_RECIPIENT")
        print("   in a .env file or as environment variables.")
        return False

    print(f"   Recipients: {', '.join(tracker.settings.email.recipients)}")
    success = await tracker.notifier.send_test()

    if success:
        print("✅ Test notification sent successfully! Check your inbox/phone.")
    else:
        print("❌ Failed to send test notification. See log for details.")
    return success


async def run_single_check(tracker: AppointmentTracker) -> None:
    """Run one check cycle and print the counts."""
    print("\n🔍 Running single check cycle...")
    tracker.init()
    results = await tracker.run_check()
    await tracker.fetcher.close()

    print("\n📊 Results:")
    for site in tracker.settings.sites:
        count = results[site.target.value]
        status = "✓" if count != UNKNOWN else "✗"
        print(f"   {status} {site.label}: {_format_count(count)}")


async def run_diagnostic(tracker: AppointmentTracker) -> None:
    """Run the system test and print a human-readable report."""
    print("\n🧪 Running system test...")
    tracker.init()
    report = await tracker.run_test()
    await tracker.fetcher.close()

    print("\n📊 Test report:")
    for site in tracker.settings.sites:
        entry = report[site.target.value]
        print(f"   {site.label}: {entry['status']} ({_format_count(entry['count'])} appointments)")
    print(f"   Notification: {report['notification']['status']}")


def print_status(tracker: AppointmentTracker) -> None:
    status = tracker.get_status()
    print("\n📋 Tracker status:")
    print(f"   Scheduler: {status['status']}")
    print(f"   Last check: {status['last_check'] or 'never (in this process)'}")
    for target, count in status["current_appointments"].items():
        updated = status["last_updated"][target] or "never"
        print(f"   {target}: {count} appointments (updated {updated})")


def print_history(tracker: AppointmentTracker, limit: int = 20) -> None:
    history = tracker.get_history(limit=limit)
    print("\n🕑 Availability history (newest first):")
    if not history:
        print("   (empty)")
    for entry in history:
        print(f"   {entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.label}: {entry.count} appointments")


async def run_continuous(tracker: AppointmentTracker) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    print("\n🚀 Starting REAL ID appointment tracking...")
    print(f"   Interval: every {tracker.settings.check_interval} minutes")
    print(f"   Email: {'Configured' if tracker.notifier.is_configured else 'NOT SET'}")
    print("\n   Press Ctrl+C to stop.\n")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, tracker.shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt handling in main()
            pass

    await tracker.run_forever()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="REAL ID Appointment Tracker with email/SMS alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--once", action="store_true", help="Run a single check cycle and exit")
    parser.add_argument("--test", action="store_true", help="Run a diagnostic check and exit")
    parser.add_argument("--test-email", action="store_true", help="Send a test notification and exit")
    parser.add_argument("--status", action="store_true", help="Show saved appointment state and exit")
    parser.add_argument("--history", action="store_true", help="Show availability history and exit")
    parser.add_argument(
        "--clear-history",
        nargs="?",
        const="all",
        choices=["regular", "mobile", "all"],
        help="Clear availability history (default: all)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Check interval in minutes (default: TRACKER_CHECK_INTERVAL or 10)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    try:
        settings = Settings.from_env()
        if args.interval is not None:
            settings = settings.with_overrides({"TRACKER_CHECK_INTERVAL": args.interval})
        if args.verbose:
            settings = settings.with_overrides({"TRACKER_LOG_LEVEL": "debug"})
    except ConfigError as e:
        print("❌ Configuration errors:")
        for error in e.errors:
            print(f"   - {error}")
        return 1

    setup_logging(settings.log_level, settings.log_file, settings.log_max_bytes)
    tracker = AppointmentTracker(settings)

    try:
        if args.test_email:
            return 0 if asyncio.run(test_email(tracker)) else 1
        if args.status:
            print_status(tracker)
            return 0
        if args.history:
            print_history(tracker)
            return 0
        if args.clear_history:
            tracker.clear_history(None if args.clear_history == "all" else args.clear_history)
            print(f"🧹 History cleared ({args.clear_history})")
            return 0
        if args.test:
            asyncio.run(run_diagnostic(tracker))
            return 0
        if args.once:
            asyncio.run(run_single_check(tracker))
            return 0

        try:
            asyncio.run(run_continuous(tracker))
        except KeyboardInterrupt:
            tracker.shutdown("SIGINT")
            print("\n\n👋 Tracker stopped.")
        return 0
    except Exception as e:
        logger.critical(f"Unhandled error: {e}", exc_info=True)
        print(f"❌ Fatal error: {e} (see log for details)")
        return 1


if __name__ == "__main__":
    sys.exit(main())
