"""
HTTP and websocket surface of the live notification service.

This package provides a single FastAPI application that exposes:
- The live channel (``/ws`` plus the long-poll fallback)
- Health, info and admin endpoints under ``/api``
"""

from api.main import app

__all__ = ["app"]
