"""
asgi.py -- ASGI entry point for the LabLive auth service.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 1

Rate-limit counters live in process memory, so run a single worker unless a
shared limiter storage is configured.
"""

from api.main import app

__all__ = ["app"]
