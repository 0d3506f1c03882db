# WellPulse - Employee Wellness Messaging Pipeline
# =================================================
# Sends check-ins, polls and announcements to employees over WhatsApp/SMS
# and reconciles their replies, using a Layered Architecture:
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI app and CLI runner (web/, run_dispatch.py)
# - Application:    Use cases: resolve, render, dispatch, route (application/)
# - Domain:         Broadcast/recipient/context types and errors (domain/)
# - Infrastructure: External services (Twilio, SQLite, LLM, config)
#
# Infrastructure components are injected, so a different gateway or data
# store can be swapped in without touching the application layer.
