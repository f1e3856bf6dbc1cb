# Review Autopilot - Automated Google Review Responses
# =====================================================
# Polls Google Business Profile for new reviews, auto-replies to positive
# ones and walks critical ones through a WhatsApp reminder/escalation flow.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI app and CLI runner (process bootstrap)
# - Application:    Automation engine and its scheduler (orchestration)
# - Domain:         Review entities and the workflow state machine
# - Infrastructure: External services (Google, WhatsApp, LLM, SQLite)

__version__ = "0.1.0"
