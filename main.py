"""
WellPulse - Web Server Entry Point
==================================

Run this to start the API (dispatch trigger + Twilio webhook):
    python main.py

Point the Twilio messaging webhook at http://<host>:8000/webhooks/twilio.

To dispatch a broadcast from the command line:
    python run_dispatch.py <organization_id> <broadcast_id>
"""

import os

import uvicorn


def main():
    """Start the web server."""
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    print("\n" + "=" * 50)
    print("   WellPulse - Messaging API")
    print("=" * 50)
    print(f"\n   Starting server at http://{host}:{port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "wellpulse.web.app:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "").lower() in ("1", "true"),
        log_level="info"
    )


if __name__ == "__main__":
    main()
