"""
Automation Runner - Google Review Processing
============================================

Runs the review automation without the web server.

    python run_automation.py          # every polling interval until Ctrl+C
    python run_automation.py --once   # a single cycle, then exit
"""

import sys
import time
import argparse
import logging

from review_autopilot.application import AutomationEngine
from review_autopilot.infrastructure.config import get_settings

logger = logging.getLogger(__name__)


def run_once(engine: AutomationEngine) -> int:
    report = engine.run_cycle()
    if report is None:
        print("A cycle is already in progress")
        return 1

    print("\n" + "=" * 60)
    print("Cycle Complete!")
    print(f"   Outlets: {report.outlets_processed} | New reviews: {report.reviews_created}")
    print(f"   Auto-replied: {report.auto_replied} | Closed: {report.closed} | Queued: {report.queued}")
    print(f"   Reminders: {report.reminders_sent} | Escalated: {report.escalated} | Errors: {report.errors}")
    print("=" * 60 + "\n")
    return 1 if report.errors else 0


def run_forever(engine: AutomationEngine) -> int:
    if not engine.start():
        print("Automation is disabled. Set AUTOMATION_ENABLED=true to run it.")
        return 1

    print(f"Automation running every {engine.settings.automation.polling_interval_minutes} minutes")
    print("   Press Ctrl+C to stop\n")
    try:
        while engine.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted! Waiting for the current cycle to finish...")
    finally:
        engine.stop(timeout=60)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Review automation runner")
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    print("\n" + "=" * 60)
    print("   Review Autopilot - Automation Runner")
    print("=" * 60 + "\n")

    for issue in settings.validate():
        logger.warning(issue)

    engine = AutomationEngine.from_settings(settings)
    if args.once:
        return run_once(engine)
    return run_forever(engine)


if __name__ == "__main__":
    sys.exit(main())
