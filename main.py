"""
main.py: Server launcher and entry point.

Run this file to start the booking engine API:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Host and port come from BOOKING_HOST / BOOKING_PORT when set.
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("BOOKING_HOST", "127.0.0.1")
PORT = int(os.getenv("BOOKING_PORT", "8000"))


def main() -> None:
    """Start the booking engine server."""
    print("=" * 60)
    print("  Prestation Booking Engine")
    print("=" * 60)
    print(f"  Server  : http://{HOST}:{PORT}")
    print(f"  API docs: http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Start uvicorn; this blocks until CTRL+C
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("BOOKING_RELOAD", "false").lower() in {"1", "true", "yes"},
        log_level="info",
    )


if __name__ == "__main__":
    main()
