"""
Review Autopilot - Web Server Entry Point
=========================================

Run this to start the API server together with the automation engine:
    python main.py

Then open http://127.0.0.1:8000/api/automation/status in your browser.

To run the automation without the web server:
    python run_automation.py
"""

import logging

import uvicorn

from review_autopilot.infrastructure.config import get_settings


def main():
    """Start the web server."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("\n" + "=" * 50)
    print("   Review Autopilot - API Server")
    print("=" * 50)
    print(f"\n   Automation enabled: {settings.automation.enabled}")
    print("   Starting server at http://127.0.0.1:8000")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "review_autopilot.web.app:app",
        host="127.0.0.1",
        port=8000,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
